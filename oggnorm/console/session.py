"""Normalization session — resumable decode → remap → accumulate.

States::

    IDLE ──configure──▶ CONFIGURED ──step──▶ RUNNING ──step (EOS)──▶ FINISHED
      ▲                     ▲                    │
      └── DecodeError ──────┴──── configure ─────┘  (discards progress)

Each ``step()`` pulls exactly one decoded packet, so a host can interleave
measurement with its own scheduling instead of blocking on a full decode.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum

import structlog

from oggnorm.config import settings
from oggnorm.ear.decoder import FrameDecoder, open_decoder
from oggnorm.ear.loudness import LoudnessAccumulator, LoudnessMeter
from oggnorm.ear.remap import ChannelLayout, ChannelRemapper, ChannelRole
from oggnorm.errors import ConfigError, DecodeError, UnsupportedChannelLayout
from oggnorm.stream import ByteStream

logger = structlog.get_logger()

DecoderFactory = Callable[[ByteStream, int], FrameDecoder]
MeterFactory = Callable[[Sequence[ChannelRole], int, float], LoudnessMeter]


# ── Types ────────────────────────────────────────────────


class SessionState(StrEnum):
    IDLE = "idle"
    CONFIGURED = "configured"
    RUNNING = "running"
    FINISHED = "finished"


class StepResult(StrEnum):
    NOT_DONE = "not_done"
    DONE = "done"


@dataclass
class _Measurement:
    """Everything one configure() call owns; replaced as a unit."""

    decoder: FrameDecoder
    remapper: ChannelRemapper
    meter: LoudnessMeter
    target_loudness: float
    packets: int = 0


def validate_target(target_loudness: float) -> float:
    """Reject non-finite or positive LUFS targets."""
    try:
        target = float(target_loudness)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Target loudness must be a number, got {target_loudness!r}") from exc
    if not math.isfinite(target) or target > 0.0:
        raise ConfigError(f"Target loudness must be finite and <= 0 LUFS, got {target}")
    return target


# ── Session ──────────────────────────────────────────────


class NormalizationSession:
    """One loudness measurement at a time, driven by ``step()``."""

    def __init__(
        self,
        decoder_factory: DecoderFactory | None = None,
        meter_factory: MeterFactory | None = None,
        packet_frames: int | None = None,
    ) -> None:
        self._decoder_factory = decoder_factory or open_decoder
        self._meter_factory = meter_factory or LoudnessAccumulator
        self._packet_frames = settings.packet_frames if packet_frames is None else packet_frames
        if self._packet_frames <= 0:
            raise ConfigError(f"packet_frames must be positive, got {self._packet_frames}")

        self._state = SessionState.IDLE
        self._measurement: _Measurement | None = None
        self._channels = 0
        self._sample_rate = 0
        self._result: float | None = None

    # ── Properties ──

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def layout(self) -> ChannelLayout | None:
        if self._state is SessionState.IDLE:
            return None
        return ChannelLayout.from_channels(self._channels)

    @property
    def target_loudness(self) -> float:
        if self._measurement is None:
            return settings.target_loudness
        return self._measurement.target_loudness

    @property
    def meter(self) -> LoudnessMeter | None:
        return None if self._measurement is None else self._measurement.meter

    # ── Lifecycle ──

    def configure(
        self,
        source_bytes: bytes | bytearray | memoryview,
        target_loudness: float | None = None,
    ) -> SessionState:
        """Discard any prior progress and prepare a fresh measurement."""
        target = validate_target(
            settings.target_loudness if target_loudness is None else target_loudness
        )
        self._reset()

        decoder = self._decoder_factory(ByteStream(source_bytes), self._packet_frames)
        try:
            remapper = ChannelRemapper(decoder.channels)
            meter = self._meter_factory(remapper.roles, decoder.sample_rate, target)
        except (ConfigError, UnsupportedChannelLayout):
            decoder.close()
            raise

        self._measurement = _Measurement(
            decoder=decoder,
            remapper=remapper,
            meter=meter,
            target_loudness=target,
        )
        self._channels = decoder.channels
        self._sample_rate = decoder.sample_rate
        self._state = SessionState.CONFIGURED

        logger.info(
            "session_configured",
            channels=self._channels,
            sample_rate=self._sample_rate,
            target=target,
            fallback=remapper.plan.fallback,
        )
        return self._state

    def step(self) -> StepResult:
        """Decode one packet and feed it, or finalize at end-of-stream."""
        if self._state is SessionState.FINISHED:
            return StepResult.DONE
        if self._measurement is None:
            raise ConfigError("Session is not configured")

        m = self._measurement
        try:
            packet = m.decoder.read_packet()
        except DecodeError:
            logger.warning("session_decode_failed", packets=m.packets)
            self._reset()
            raise

        if packet is None:
            self._result = m.meter.finalize()
            m.decoder.close()
            self._state = SessionState.FINISHED
            logger.info("session_finished", lufs=round(self._result, 3), packets=m.packets)
            return StepResult.DONE

        m.meter.feed(m.remapper.remap(packet))
        m.packets += 1
        self._state = SessionState.RUNNING
        return StepResult.NOT_DONE

    def run(self) -> float:
        """Drive ``step()`` to completion and return the loudness."""
        while self.step() is StepResult.NOT_DONE:
            pass
        return self.result()

    def result(self) -> float:
        """Measured loudness, or the ``0.0`` sentinel before FINISHED."""
        if self._state is not SessionState.FINISHED or self._result is None:
            return 0.0
        return self._result

    def gain_db(self) -> float:
        """Gain that brings the measured loudness to the target, in dB."""
        if self._state is not SessionState.FINISHED or self._result is None:
            return 0.0
        return self.target_loudness - self._result

    def linear_gain(self) -> float:
        return 10.0 ** (self.gain_db() / 20.0)

    def _reset(self) -> None:
        if self._measurement is not None:
            self._measurement.decoder.close()
        self._measurement = None
        self._channels = 0
        self._sample_rate = 0
        self._result = None
        self._state = SessionState.IDLE


# ── One-shot API ─────────────────────────────────────────


def measure_loudness(
    source_bytes: bytes | bytearray | memoryview,
    target_loudness: float | None = None,
    decoder_factory: DecoderFactory | None = None,
) -> float:
    """Measure a whole stream; fall back to the target on bad input."""
    target = validate_target(
        settings.target_loudness if target_loudness is None else target_loudness
    )
    session = NormalizationSession(decoder_factory=decoder_factory)
    try:
        session.configure(source_bytes, target)
        return session.run()
    except (DecodeError, UnsupportedChannelLayout) as exc:
        logger.warning("measure_loudness_failed", error=str(exc), fallback=target)
        return target
