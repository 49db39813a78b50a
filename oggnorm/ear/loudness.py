"""Incremental integrated loudness — ITU-R BS.1770-4 / EBU R128.

Pipeline per fed chunk:
  ① int16 → float (1/32768 scale)
  ② K-weighting: high-shelf pre-filter + RLB high-pass (two biquads),
     filter state persisted across chunks
  ③ 100 ms hops: weighted sum of squares per completed hop
  ④ 400 ms blocks (4 hops, 75% overlap) → block energies
  ⑤ finalize: absolute gate -70 LUFS, relative gate -10 LU, integrate

Hop energies are only computed from complete hop buffers, so the result is
identical however the input is chunked.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Sequence
from functools import lru_cache
from typing import Protocol

import numpy as np
import structlog
from numpy.typing import NDArray
from scipy import signal

from oggnorm.config import settings
from oggnorm.ear.remap import ChannelRole
from oggnorm.errors import ConfigError, UnsupportedChannelLayout

logger = structlog.get_logger()


# ── Constants ────────────────────────────────────────────

LUFS_OFFSET = -0.691
ABSOLUTE_GATE_LUFS = -70.0
RELATIVE_GATE_LU = -10.0

HOPS_PER_BLOCK = 4  # 400 ms block / 100 ms hop
HOPS_PER_SHORT_TERM = 30  # 3 s window

INT16_SCALE = 1.0 / 32768.0

CHANNEL_WEIGHTS: dict[ChannelRole, float] = {
    ChannelRole.LEFT: 1.0,
    ChannelRole.RIGHT: 1.0,
    ChannelRole.CENTER: 1.0,
    ChannelRole.LEFT_SURROUND: 1.41,
    ChannelRole.RIGHT_SURROUND: 1.41,
    ChannelRole.DUAL_MONO: 2.0,
    ChannelRole.UNUSED: 0.0,
}

# Published BS.1770 coefficients at 48 kHz (pre-filter, RLB high-pass).
_K_WEIGHTING_TABLE: dict[int, tuple[tuple[float, ...], tuple[float, ...]]] = {
    48000: (
        (1.53512485958697, -2.69169618940638, 1.19839281085285,
         1.0, -1.69065929318241, 0.73248077421585),
        (1.0, -2.0, 1.0,
         1.0, -1.99004745483398, 0.99007225036621),
    ),
}


# ── K-weighting ──────────────────────────────────────────


def _design_k_weighting(sample_rate: int) -> tuple[tuple[float, ...], tuple[float, ...]]:
    """Derive both K-weighting biquads for an arbitrary rate.

    Analog prototypes from BS.1770 mapped with the bilinear transform; at
    48 kHz this reproduces the published table.
    """
    # Stage 1: high-shelf pre-filter
    f0 = 1681.974450955533
    gain_db = 3.999843853973347
    q = 0.7071752369554196
    k = np.tan(np.pi * f0 / sample_rate)
    vh = 10.0 ** (gain_db / 20.0)
    vb = vh ** 0.4996667741545416
    a0 = 1.0 + k / q + k * k
    shelf = (
        (vh + vb * k / q + k * k) / a0,
        2.0 * (k * k - vh) / a0,
        (vh - vb * k / q + k * k) / a0,
        1.0,
        2.0 * (k * k - 1.0) / a0,
        (1.0 - k / q + k * k) / a0,
    )

    # Stage 2: RLB high-pass
    f0 = 38.13547087602444
    q = 0.5003270373238773
    k = np.tan(np.pi * f0 / sample_rate)
    a0 = 1.0 + k / q + k * k
    highpass = (
        1.0, -2.0, 1.0,
        1.0,
        2.0 * (k * k - 1.0) / a0,
        (1.0 - k / q + k * k) / a0,
    )
    return tuple(float(c) for c in shelf), tuple(float(c) for c in highpass)


@lru_cache(maxsize=16)
def k_weighting_sos(sample_rate: int) -> NDArray[np.float64]:
    """Second-order sections for the K-weighting filter at ``sample_rate``."""
    stages = _K_WEIGHTING_TABLE.get(sample_rate) or _design_k_weighting(sample_rate)
    return np.array(stages, dtype=np.float64)


# ── Gating ───────────────────────────────────────────────


def energy_to_lufs(energy: float) -> float:
    """Convert a weighted mean-square energy to LUFS (``-inf`` for 0)."""
    if energy <= 0.0:
        return float("-inf")
    return LUFS_OFFSET + 10.0 * float(np.log10(energy))


def gated_loudness(block_energies: Sequence[float] | NDArray[np.float64]) -> float | None:
    """Two-stage gated integration of block energies.

    Returns ``None`` when no block survives the absolute gate.
    """
    energies = np.asarray(block_energies, dtype=np.float64)
    if energies.size == 0:
        return None

    with np.errstate(divide="ignore"):
        block_lufs = LUFS_OFFSET + 10.0 * np.log10(energies)

    above_abs = energies[block_lufs > ABSOLUTE_GATE_LUFS]
    if above_abs.size == 0:
        return None

    relative_threshold = energy_to_lufs(float(np.mean(above_abs))) + RELATIVE_GATE_LU
    gated = energies[block_lufs > max(relative_threshold, ABSOLUTE_GATE_LUFS)]
    if gated.size == 0:
        return None

    return energy_to_lufs(float(np.mean(gated)))


# ── Strategy contract ────────────────────────────────────


class LoudnessMeter(Protocol):
    """Feed/finalize contract any compliant meter can implement."""

    def feed(self, frames: NDArray) -> None: ...

    def finalize(self) -> float: ...


# ── Accumulator ──────────────────────────────────────────


class LoudnessAccumulator:
    """Resumable gated-loudness meter for one measurement.

    Owns all of the measurement state: filter memory, the partial hop
    buffer, the running block window and the list of block energies.
    """

    def __init__(
        self,
        roles: Sequence[ChannelRole],
        sample_rate: int,
        target_loudness: float | None = None,
    ) -> None:
        roles = tuple(roles)
        if len(roles) not in (1, 2):
            raise UnsupportedChannelLayout(
                f"Expected 1 or 2 measurement channels, got {len(roles)}"
            )
        if sample_rate <= 0:
            raise ConfigError(f"sample_rate must be positive, got {sample_rate}")

        self.roles = roles
        self.sample_rate = int(sample_rate)
        self.target_loudness = (
            settings.target_loudness if target_loudness is None else float(target_loudness)
        )

        self._weights = np.array([CHANNEL_WEIGHTS[r] for r in roles], dtype=np.float64)
        self._sos = k_weighting_sos(self.sample_rate)
        self._zi = np.zeros((self._sos.shape[0], 2, len(roles)), dtype=np.float64)
        self._hop_size = (self.sample_rate + 5) // 10

        self._partial = np.zeros((0, len(roles)), dtype=np.float64)
        self._block_window: deque[float] = deque(maxlen=HOPS_PER_BLOCK)
        self._short_term_window: deque[float] = deque(maxlen=HOPS_PER_SHORT_TERM)
        self._block_energies: list[float] = []
        self._energy_sum = 0.0
        self._hops_seen = 0
        self._frames_fed = 0
        self._result: float | None = None

    # ── Properties ──

    @property
    def channels(self) -> int:
        return len(self.roles)

    @property
    def frames_fed(self) -> int:
        return self._frames_fed

    @property
    def block_count(self) -> int:
        return len(self._block_energies)

    @property
    def finalized(self) -> bool:
        return self._result is not None

    @property
    def block_energies(self) -> tuple[float, ...]:
        return tuple(self._block_energies)

    # ── Feeding ──

    def feed(self, frames: NDArray) -> None:
        """Accumulate ``frames`` shaped ``(n, channels)`` in arrival order."""
        if self._result is not None:
            raise ConfigError("Cannot feed a finalized loudness accumulator")

        data = np.asarray(frames)
        if data.ndim == 1:
            data = data[:, np.newaxis]
        if data.ndim != 2 or data.shape[1] != self.channels:
            raise UnsupportedChannelLayout(
                f"Expected frames with {self.channels} channel(s), got shape {data.shape}"
            )
        if len(data) == 0:
            return

        if np.issubdtype(data.dtype, np.integer):
            samples = data.astype(np.float64) * INT16_SCALE
        else:
            samples = data.astype(np.float64)

        filtered, self._zi = signal.sosfilt(self._sos, samples, axis=0, zi=self._zi)
        self._frames_fed += len(data)

        buf = np.concatenate([self._partial, filtered]) if len(self._partial) else filtered
        n_hops = len(buf) // self._hop_size
        for i in range(n_hops):
            hop = buf[i * self._hop_size:(i + 1) * self._hop_size]
            self._push_hop(self._hop_energy(hop))
        self._partial = buf[n_hops * self._hop_size:].copy()

    def _hop_energy(self, hop: NDArray[np.float64]) -> float:
        return float(np.sum(hop * hop, axis=0) @ self._weights)

    def _push_hop(self, energy: float) -> None:
        self._hops_seen += 1
        self._block_window.append(energy)
        self._short_term_window.append(energy)
        if len(self._block_window) == HOPS_PER_BLOCK:
            block = sum(self._block_window) / (HOPS_PER_BLOCK * self._hop_size)
            self._append_block(block)

    def _append_block(self, energy: float) -> None:
        self._block_energies.append(energy)
        self._energy_sum += energy

    # ── Readings ──

    def momentary(self) -> float:
        """Loudness of the most recent complete 400 ms block."""
        if not self._block_energies:
            return ABSOLUTE_GATE_LUFS
        return max(energy_to_lufs(self._block_energies[-1]), ABSOLUTE_GATE_LUFS)

    def short_term(self) -> float:
        """Loudness over the last 3 s of complete hops."""
        if not self._short_term_window:
            return ABSOLUTE_GATE_LUFS
        energy = sum(self._short_term_window) / (len(self._short_term_window) * self._hop_size)
        return max(energy_to_lufs(energy), ABSOLUTE_GATE_LUFS)

    def ungated_mean(self) -> float:
        """Running mean of all block energies, as LUFS."""
        if not self._block_energies:
            return ABSOLUTE_GATE_LUFS
        energy = self._energy_sum / len(self._block_energies)
        return max(energy_to_lufs(energy), ABSOLUTE_GATE_LUFS)

    # ── Finalize ──

    def finalize(self) -> float:
        """Close the measurement and return integrated loudness in LUFS.

        Samples after the last complete block form one trailing block over
        the most recent ≤400 ms. Without any measurable energy the target
        loudness is returned.
        """
        if self._result is not None:
            return self._result

        if self._frames_fed == 0:
            logger.info("loudness_empty", target=self.target_loudness)
            self._result = self.target_loudness
            return self._result

        self._append_trailing_block()

        loudness = gated_loudness(self._block_energies)
        if loudness is None or not np.isfinite(loudness):
            logger.warning(
                "loudness_gated_out",
                blocks=len(self._block_energies),
                target=self.target_loudness,
            )
            loudness = self.target_loudness

        self._result = float(loudness)
        logger.debug(
            "loudness_finalized",
            lufs=round(self._result, 3),
            blocks=len(self._block_energies),
            frames=self._frames_fed,
        )
        return self._result

    def _append_trailing_block(self) -> None:
        partial_len = len(self._partial)
        if partial_len:
            tail = list(self._block_window)[-(HOPS_PER_BLOCK - 1):]
        elif 0 < self._hops_seen < HOPS_PER_BLOCK:
            tail = list(self._block_window)
        else:
            return

        energy = sum(tail) + (self._hop_energy(self._partial) if partial_len else 0.0)
        count = len(tail) * self._hop_size + partial_len
        self._append_block(energy / count)
        self._partial = self._partial[:0]
