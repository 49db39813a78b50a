"""Loudness accumulator tests — BS.1770 reference, gating, incrementality.

Signals are synthesized with numpy so every expected value is known.
"""

from __future__ import annotations

import numpy as np
import pytest

from oggnorm.ear.loudness import (
    ABSOLUTE_GATE_LUFS,
    LoudnessAccumulator,
    _design_k_weighting,
    energy_to_lufs,
    gated_loudness,
    k_weighting_sos,
)
from oggnorm.ear.remap import ChannelRole
from oggnorm.errors import ConfigError, UnsupportedChannelLayout

MONO = (ChannelRole.CENTER,)
STEREO = (ChannelRole.LEFT, ChannelRole.RIGHT)


# ── Helpers ──────────────────────────────────────────────


def _sine(freq: float, seconds: float, sr: int = 48000, amplitude: float = 1.0) -> np.ndarray:
    """int16 mono sine, shape (n,)."""
    t = np.arange(int(seconds * sr)) / sr
    return np.round(amplitude * 32767 * np.sin(2 * np.pi * freq * t)).astype(np.int16)


def _noise(seconds: float, channels: int, sr: int = 44100, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    data = rng.normal(0.0, 0.2, size=(int(seconds * sr), channels))
    return np.round(np.clip(data, -1.0, 1.0) * 32767).astype(np.int16)


def _measure(frames: np.ndarray, roles=STEREO, sr: int = 44100, target: float = -24.0) -> float:
    acc = LoudnessAccumulator(roles, sr, target)
    acc.feed(frames)
    return acc.finalize()


# ── K-weighting coefficients ─────────────────────────────


def test_published_coefficients_at_48k():
    sos = k_weighting_sos(48000)
    np.testing.assert_allclose(
        sos[0], [1.53512485958697, -2.69169618940638, 1.19839281085285, 1.0, -1.69065929318241, 0.73248077421585]
    )
    np.testing.assert_allclose(sos[1], [1.0, -2.0, 1.0, 1.0, -1.99004745483398, 0.99007225036621])


def test_designed_coefficients_match_published_table():
    """The per-rate design reproduces the BS.1770 table at 48 kHz."""
    designed = np.array(_design_k_weighting(48000))
    np.testing.assert_allclose(designed, k_weighting_sos(48000), atol=1e-6)


def test_other_rates_get_their_own_filter():
    assert not np.allclose(k_weighting_sos(44100), k_weighting_sos(48000))


# ── Reference levels ─────────────────────────────────────


def test_full_scale_997hz_mono_reference():
    """0 dBFS 997 Hz sine, mono, 48 kHz measures about -3.01 LUFS."""
    lufs = _measure(_sine(997, 1.0), roles=MONO, sr=48000)
    assert lufs == pytest.approx(-3.01, abs=0.1)


def test_minus_20_dbfs_sine_reads_20_lu_lower():
    loud = _measure(_sine(997, 2.0), roles=MONO, sr=48000)
    quiet = _measure(_sine(997, 2.0, amplitude=0.1), roles=MONO, sr=48000)
    assert loud - quiet == pytest.approx(20.0, abs=0.05)


def test_identical_stereo_channels_add_3_db():
    mono = _sine(997, 1.0, amplitude=0.5)
    stereo = np.column_stack([mono, mono])
    diff = _measure(stereo, roles=STEREO, sr=48000) - _measure(mono, roles=MONO, sr=48000)
    assert diff == pytest.approx(10 * np.log10(2), abs=1e-6)


def test_stream_shorter_than_one_block_still_measures():
    """200 ms of audio becomes one trailing block."""
    lufs = _measure(_sine(997, 0.2), roles=MONO, sr=48000)
    assert np.isfinite(lufs)
    assert lufs == pytest.approx(-3.01, abs=0.25)


# ── Incrementality ───────────────────────────────────────


def test_chunked_feed_matches_single_feed():
    """Arbitrary chunk boundaries never change the result."""
    frames = _noise(2.37, channels=2)
    whole = _measure(frames)

    rng = np.random.default_rng(3)
    acc = LoudnessAccumulator(STEREO, 44100, -24.0)
    start = 0
    while start < len(frames):
        size = int(rng.integers(1, 5000))
        acc.feed(frames[start:start + size])
        start += size

    assert acc.frames_fed == len(frames)
    assert acc.finalize() == pytest.approx(whole, abs=1e-6)


def test_single_frame_feeds_match_single_feed():
    frames = _noise(0.45, channels=1, sr=8000)
    whole = _measure(frames, roles=MONO, sr=8000)

    acc = LoudnessAccumulator(MONO, 8000, -24.0)
    for i in range(len(frames)):
        acc.feed(frames[i:i + 1])

    assert acc.finalize() == pytest.approx(whole, abs=1e-6)


def test_block_count_follows_100ms_hop():
    acc = LoudnessAccumulator(MONO, 48000)
    acc.feed(_sine(440, 1.0))
    # 10 hops → blocks end at hops 4..10
    assert acc.block_count == 7


# ── Gating ───────────────────────────────────────────────


def test_block_below_absolute_gate_never_changes_result():
    rng = np.random.default_rng(11)
    blocks = list(10 ** rng.uniform(-5, -1, size=50))
    reference = gated_loudness(blocks)

    quiet = 10 ** ((ABSOLUTE_GATE_LUFS - 5.0 + 0.691) / 10)
    assert gated_loudness(blocks + [quiet]) == pytest.approx(reference, abs=1e-12)
    assert gated_loudness(blocks + [quiet] * 100) == pytest.approx(reference, abs=1e-12)


def test_silent_blocks_fed_through_accumulator_never_change_result():
    """Silence appended after a settled tail adds only sub-gate blocks."""
    hop = 4800  # 100 ms at 48 kHz
    content = _sine(997, 1.0)  # exactly 10 hops
    settled = np.concatenate([content, np.zeros(7 * hop, dtype=np.int16)])

    short = LoudnessAccumulator(MONO, 48000)
    short.feed(settled)
    reference = short.finalize()

    # 16 more silent hops plus half a hop, which also exercises the trailing block
    padded = np.concatenate([settled, np.zeros(16 * hop + hop // 2, dtype=np.int16)])
    long = LoudnessAccumulator(MONO, 48000)
    long.feed(padded)
    result = long.finalize()

    extra = long.block_energies[short.block_count:]
    assert long.block_energies[:short.block_count] == short.block_energies
    assert len(extra) == 17
    assert all(energy_to_lufs(e) < ABSOLUTE_GATE_LUFS for e in extra)
    assert result == pytest.approx(reference, abs=1e-12)


def test_relative_gate_drops_blocks_more_than_10_lu_down():
    loud = 10 ** ((-20 + 0.691) / 10)
    soft = 10 ** ((-40 + 0.691) / 10)
    assert gated_loudness([loud] * 10 + [soft] * 10) == pytest.approx(-20.0, abs=1e-9)


def test_gated_loudness_none_when_everything_is_gated():
    assert gated_loudness([]) is None
    assert gated_loudness([0.0, 1e-12]) is None


# ── Safe defaults ────────────────────────────────────────


def test_finalize_without_frames_returns_target():
    acc = LoudnessAccumulator(STEREO, 48000, target_loudness=-16.0)
    result = acc.finalize()
    assert result == -16.0
    assert np.isfinite(result)


def test_silence_returns_target_not_infinity():
    lufs = _measure(np.zeros((48000, 2), dtype=np.int16), sr=48000, target=-23.0)
    assert lufs == -23.0


def test_finalize_is_idempotent_and_closes_feeding():
    acc = LoudnessAccumulator(MONO, 48000)
    acc.feed(_sine(997, 0.5))
    first = acc.finalize()
    assert acc.finalize() == first
    assert acc.finalized
    with pytest.raises(ConfigError):
        acc.feed(_sine(997, 0.1))


def test_readings_floor_before_any_block():
    acc = LoudnessAccumulator(MONO, 48000)
    assert acc.momentary() == ABSOLUTE_GATE_LUFS
    assert acc.short_term() == ABSOLUTE_GATE_LUFS
    assert acc.ungated_mean() == ABSOLUTE_GATE_LUFS


def test_momentary_and_short_term_track_steady_tone():
    acc = LoudnessAccumulator(MONO, 48000)
    acc.feed(_sine(997, 3.5))
    assert acc.momentary() == pytest.approx(-3.01, abs=0.1)
    assert acc.short_term() == pytest.approx(-3.01, abs=0.1)
    assert acc.ungated_mean() == pytest.approx(-3.01, abs=0.1)


# ── Layout errors ────────────────────────────────────────


def test_no_roles_is_unsupported():
    with pytest.raises(UnsupportedChannelLayout):
        LoudnessAccumulator((), 48000)


def test_more_than_two_roles_is_unsupported():
    with pytest.raises(UnsupportedChannelLayout):
        LoudnessAccumulator(STEREO + (ChannelRole.CENTER,), 48000)


def test_mismatched_frame_width_is_rejected():
    acc = LoudnessAccumulator(STEREO, 48000)
    with pytest.raises(UnsupportedChannelLayout):
        acc.feed(np.zeros((10, 3), dtype=np.int16))


def test_non_positive_sample_rate_is_config_error():
    with pytest.raises(ConfigError):
        LoudnessAccumulator(MONO, 0)
