"""Channel remapping — reduce any source layout to a 1- or 2-channel
measurement layout with BS.1770 channel roles.

Mono keeps its single channel as CENTER, stereo maps to LEFT/RIGHT, and every
other count (including 0) falls back to LEFT/RIGHT on the first two channels.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import numpy as np
import structlog
from numpy.typing import NDArray

logger = structlog.get_logger()


class ChannelLayout(StrEnum):
    """Source layout classes that drive remap and split policy."""

    MONO = "mono"
    STEREO = "stereo"
    MULTI = "multi"

    @classmethod
    def from_channels(cls, channels: int) -> ChannelLayout:
        if channels == 1:
            return cls.MONO
        if channels == 2:
            return cls.STEREO
        return cls.MULTI


class ChannelRole(StrEnum):
    """Loudness roles understood by the weighting stage."""

    LEFT = "left"
    RIGHT = "right"
    CENTER = "center"
    LEFT_SURROUND = "left_surround"
    RIGHT_SURROUND = "right_surround"
    DUAL_MONO = "dual_mono"
    UNUSED = "unused"


@dataclass(frozen=True)
class RemapPlan:
    """Which source channels are measured, and in which role."""

    source_channels: int
    indices: tuple[int, ...]
    roles: tuple[ChannelRole, ...]
    fallback: bool = False

    @property
    def target_channels(self) -> int:
        return len(self.indices)

    @property
    def layout(self) -> ChannelLayout:
        return ChannelLayout.from_channels(self.source_channels)


def plan_for(channels: int) -> RemapPlan:
    """Build the measurement plan for a source with ``channels`` channels."""
    if channels == 1:
        return RemapPlan(1, (0,), (ChannelRole.CENTER,))
    if channels == 2:
        return RemapPlan(2, (0, 1), (ChannelRole.LEFT, ChannelRole.RIGHT))

    logger.warning(
        "channel_layout_fallback",
        channels=channels,
        measured=[0, 1],
        detail="expected 1 or 2 channels, measuring first two as left/right",
    )
    return RemapPlan(channels, (0, 1), (ChannelRole.LEFT, ChannelRole.RIGHT), fallback=True)


class ChannelRemapper:
    """Extract the measured columns from each decoded packet, in order."""

    def __init__(self, channels: int) -> None:
        self.plan = plan_for(channels)

    @property
    def target_channels(self) -> int:
        return self.plan.target_channels

    @property
    def roles(self) -> tuple[ChannelRole, ...]:
        return self.plan.roles

    def remap(self, frame: NDArray[np.int16]) -> NDArray[np.int16]:
        """Return the leading ``target_channels`` columns of ``frame``.

        Columns the frame does not carry (a 0-channel source) read as silence.
        """
        data = np.asarray(frame)
        if data.ndim == 1:
            data = data[:, np.newaxis]

        target = self.plan.target_channels
        available = data.shape[1]
        if available >= target:
            return data[:, :target]

        out = np.zeros((data.shape[0], target), dtype=data.dtype)
        out[:, :available] = data
        return out
