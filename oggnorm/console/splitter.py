"""Track splitter — de-interleave a ≥4-channel stream into two stereo stems.

Default stem mapping (overridable through settings or ``StemMapping``):
  instrumental = channels (0, 1)
  vocal        = channels (2, 3)
Channels not named by the mapping are ignored.

All packets are buffered before encoding, so each WAV header is written once
with the final frame count. Both outputs are committed together: a failed
split leaves both buffers empty.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import soundfile as sf
import structlog
from numpy.typing import NDArray

from oggnorm.config import settings
from oggnorm.ear.decoder import FrameDecoder, open_decoder
from oggnorm.errors import ConfigError, UnsupportedChannelLayout
from oggnorm.stream import ByteStream

logger = structlog.get_logger()

MIN_SPLIT_CHANNELS = 4


# ── Types ────────────────────────────────────────────────


@dataclass(frozen=True)
class StemMapping:
    """Source channel pairs routed to each stereo stem."""

    instrumental: tuple[int, int] = field(default_factory=lambda: settings.instrumental_channels)
    vocal: tuple[int, int] = field(default_factory=lambda: settings.vocal_channels)

    def validate(self, channels: int) -> None:
        indices = (*self.instrumental, *self.vocal)
        if len(self.instrumental) != 2 or len(self.vocal) != 2:
            raise ConfigError(f"Each stem needs exactly two channels, got {self}")
        if len(set(indices)) != len(indices):
            raise ConfigError(f"Stem channels must be distinct, got {indices}")
        bad = [i for i in indices if i < 0 or i >= channels]
        if bad:
            raise ConfigError(f"Stem channels {bad} out of range for {channels}-channel source")


@dataclass
class SplitResult:
    """Summary of one completed split."""

    frames: int
    sample_rate: int
    source_channels: int
    instrumental_bytes: int
    vocal_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "frames": self.frames,
            "sample_rate": self.sample_rate,
            "source_channels": self.source_channels,
            "instrumental_bytes": self.instrumental_bytes,
            "vocal_bytes": self.vocal_bytes,
        }


# ── Encoding ─────────────────────────────────────────────


def _encode_wav(stereo: NDArray[np.int16], sample_rate: int) -> bytes:
    """16-bit PCM WAV bytes for an ``(n, 2)`` int16 array."""
    buf = io.BytesIO()
    sf.write(buf, np.ascontiguousarray(stereo), sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


# ── Splitter ─────────────────────────────────────────────


class TrackSplitter:
    """Owns the instrumental and vocal output buffers."""

    def __init__(self, mapping: StemMapping | None = None, packet_frames: int | None = None) -> None:
        self.mapping = mapping or StemMapping()
        self.packet_frames = packet_frames
        self.instrumental = ByteStream()
        self.vocal = ByteStream()

    def split(self, decoder: FrameDecoder) -> SplitResult:
        """Drain ``decoder`` and write both stems, replacing prior output."""
        self.instrumental.clear()
        self.vocal.clear()

        channels = decoder.channels
        if channels < MIN_SPLIT_CHANNELS:
            decoder.close()
            raise UnsupportedChannelLayout(
                f"Splitting needs at least {MIN_SPLIT_CHANNELS} channels, got {channels}"
            )
        try:
            self.mapping.validate(channels)
            packets: list[NDArray[np.int16]] = []
            while True:
                packet = decoder.read_packet()
                if packet is None:
                    break
                packets.append(np.asarray(packet, dtype=np.int16))
        finally:
            decoder.close()

        if packets:
            frames = np.concatenate(packets)
        else:
            frames = np.zeros((0, channels), dtype=np.int16)

        instrumental = _encode_wav(frames[:, list(self.mapping.instrumental)], decoder.sample_rate)
        vocal = _encode_wav(frames[:, list(self.mapping.vocal)], decoder.sample_rate)

        self.instrumental.write(instrumental)
        self.vocal.write(vocal)

        result = SplitResult(
            frames=len(frames),
            sample_rate=decoder.sample_rate,
            source_channels=channels,
            instrumental_bytes=len(instrumental),
            vocal_bytes=len(vocal),
        )
        logger.info("split_complete", **result.to_dict())
        return result

    def split_bytes(self, source_bytes: bytes | bytearray | memoryview) -> SplitResult:
        """Decode an Ogg Vorbis stream and split it."""
        self.instrumental.clear()
        self.vocal.clear()
        decoder = open_decoder(ByteStream(source_bytes), self.packet_frames)
        return self.split(decoder)
