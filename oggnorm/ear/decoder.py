"""Frame decoders — pull interleaved PCM16 packets from a compressed source.

The Ogg/Vorbis bitstream itself is parsed by libsndfile through ``soundfile``.
This module only adapts it to a pull contract:

- ``channels`` / ``sample_rate``: immutable once the decoder is open
- ``read_packet()``: one ``int16`` array shaped ``(frames, channels)``,
  or ``None`` at end-of-stream
- every decoder failure surfaces as ``DecodeError``
"""

from __future__ import annotations

from typing import Protocol

import numpy as np
import soundfile as sf
import structlog
from numpy.typing import NDArray

from oggnorm.config import settings
from oggnorm.errors import ConfigError, DecodeError
from oggnorm.stream import ByteStream

logger = structlog.get_logger()

REQUIRED_FORMAT = "OGG"
REQUIRED_SUBTYPE = "VORBIS"


# ── Contract ─────────────────────────────────────────────


class FrameDecoder(Protocol):
    """Pull-based PCM16 packet source."""

    @property
    def channels(self) -> int: ...

    @property
    def sample_rate(self) -> int: ...

    def read_packet(self) -> NDArray[np.int16] | None: ...

    def close(self) -> None: ...


def _check_packet_frames(packet_frames: int) -> int:
    if packet_frames <= 0:
        raise ConfigError(f"packet_frames must be positive, got {packet_frames}")
    return packet_frames


# ── libsndfile adapter ───────────────────────────────────


class SoundFileDecoder:
    """Decode an Ogg Vorbis byte stream through libsndfile.

    The stream is opened immediately so malformed headers fail at
    construction time. Each ``read_packet()`` call decodes at most
    ``packet_frames`` frames, which bounds the work done per call.
    """

    def __init__(self, stream: ByteStream, packet_frames: int | None = None) -> None:
        self._packet_frames = _check_packet_frames(
            settings.packet_frames if packet_frames is None else packet_frames
        )
        try:
            self._file = sf.SoundFile(stream, mode="r")
        except (RuntimeError, TypeError, ValueError) as exc:
            logger.warning("decode_failed", stage="open", error=str(exc))
            raise DecodeError(f"Cannot open audio stream: {exc}") from exc

        if (self._file.format, self._file.subtype) != (REQUIRED_FORMAT, REQUIRED_SUBTYPE):
            found = f"{self._file.format}/{self._file.subtype}"
            self._file.close()
            logger.warning("decode_failed", stage="open", error=f"not Ogg Vorbis: {found}")
            raise DecodeError(f"Expected Ogg Vorbis, got {found}")

        self._channels = int(self._file.channels)
        self._sample_rate = int(self._file.samplerate)
        logger.debug(
            "decoder_opened",
            format=self._file.format,
            subtype=self._file.subtype,
            channels=self._channels,
            sample_rate=self._sample_rate,
        )

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def read_packet(self) -> NDArray[np.int16] | None:
        if self._file.closed:
            return None
        try:
            packet = self._file.read(self._packet_frames, dtype="int16", always_2d=True)
        except (RuntimeError, ValueError) as exc:
            logger.warning("decode_failed", stage="read", error=str(exc))
            raise DecodeError(f"Corrupt audio data: {exc}") from exc
        if len(packet) == 0:
            return None
        return packet

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()


def open_decoder(stream: ByteStream, packet_frames: int | None = None) -> SoundFileDecoder:
    """Default decoder factory used by sessions and the splitter."""
    return SoundFileDecoder(stream, packet_frames)


# ── In-memory PCM source ─────────────────────────────────


class ArrayDecoder:
    """Serve already-decoded PCM as packets.

    Useful for hosts that decoded elsewhere and for exact-sample testing.
    """

    def __init__(
        self,
        samples: NDArray[np.int16],
        sample_rate: int,
        packet_frames: int | None = None,
    ) -> None:
        data = np.asarray(samples, dtype=np.int16)
        if data.ndim == 1:
            data = data[:, np.newaxis]
        if data.ndim != 2:
            raise ConfigError(f"samples must be 1-D or 2-D, got {data.ndim}-D")
        if sample_rate <= 0:
            raise DecodeError(f"Invalid sample rate: {sample_rate}")

        self._data = data
        self._sample_rate = int(sample_rate)
        self._channels = int(data.shape[1])
        self._packet_frames = _check_packet_frames(
            settings.packet_frames if packet_frames is None else packet_frames
        )
        self._cursor = 0
        self._closed = False

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    def read_packet(self) -> NDArray[np.int16] | None:
        if self._closed or self._cursor >= len(self._data):
            return None
        end = self._cursor + self._packet_frames
        packet = self._data[self._cursor:end]
        self._cursor = min(end, len(self._data))
        return packet

    def close(self) -> None:
        self._closed = True
