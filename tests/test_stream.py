"""Tests for ByteStream — cursor reads, append-only writes, wrapping seek."""

from __future__ import annotations

import io
import os

import numpy as np
import pytest
import soundfile as sf

from oggnorm.errors import InvalidOffset
from oggnorm.stream import ByteStream


# ── Read ─────────────────────────────────────────────────


def test_read_returns_requested_bytes() -> None:
    stream = ByteStream(b"0123456789")
    assert stream.read(4) == b"0123"
    assert stream.read(4) == b"4567"
    assert stream.tell() == 8


def test_short_read_at_end_of_data() -> None:
    """A read past the end returns what is left, then empty bytes."""
    stream = ByteStream(b"abc")
    assert stream.read(10) == b"abc"
    assert stream.read(10) == b""


def test_read_all_with_negative_size() -> None:
    stream = ByteStream(b"abcdef")
    stream.seek(2)
    assert stream.read() == b"cdef"


# ── Write ────────────────────────────────────────────────


def test_write_appends_regardless_of_cursor() -> None:
    stream = ByteStream(b"head")
    stream.seek(1)
    assert stream.write(b"TAIL") == 4
    assert stream.getvalue() == b"headTAIL"
    assert stream.tell() == 1
    assert stream.read(3) == b"ead"


def test_interleaved_write_and_read() -> None:
    stream = ByteStream()
    stream.write(b"ab")
    assert stream.read(1) == b"a"
    stream.write(b"cd")
    assert stream.read() == b"bcd"


# ── Seek ─────────────────────────────────────────────────


def test_seek_within_bounds() -> None:
    stream = ByteStream(b"0123456789")
    assert stream.seek(3) == 3
    assert stream.read(1) == b"3"
    assert stream.seek(10) == 10
    assert stream.read(1) == b""


def test_seek_past_end_wraps_modulo_length() -> None:
    stream = ByteStream(b"0123456789")
    assert stream.seek(13) == 3
    assert stream.read(2) == b"34"
    assert stream.seek(25) == 5


def test_seek_relative_modes() -> None:
    stream = ByteStream(b"0123456789")
    stream.seek(4)
    assert stream.seek(2, os.SEEK_CUR) == 6
    assert stream.seek(-3, os.SEEK_END) == 7
    assert stream.seek(0, os.SEEK_END) == 10


def test_negative_seek_raises_invalid_offset() -> None:
    stream = ByteStream(b"0123")
    stream.seek(2)
    with pytest.raises(InvalidOffset):
        stream.seek(-1)
    with pytest.raises(InvalidOffset):
        stream.seek(-5, os.SEEK_CUR)
    assert stream.tell() == 2


def test_invalid_offset_is_value_error() -> None:
    with pytest.raises(ValueError):
        ByteStream(b"x").seek(-1)


def test_seek_on_empty_buffer_lands_at_zero() -> None:
    stream = ByteStream()
    assert stream.seek(7) == 0
    assert stream.read(1) == b""


# ── Clear ────────────────────────────────────────────────


def test_clear_resets_buffer_and_cursor() -> None:
    stream = ByteStream(b"something")
    stream.seek(4)
    stream.clear()
    assert len(stream) == 0
    assert stream.tell() == 0
    assert stream.getvalue() == b""


# ── Virtual file ─────────────────────────────────────────


def test_soundfile_reads_from_byte_stream() -> None:
    """libsndfile can decode straight out of a ByteStream."""
    data = (np.arange(200, dtype=np.int16) * 100).reshape(100, 2)
    buf = io.BytesIO()
    sf.write(buf, data, 8000, format="WAV", subtype="PCM_16")

    decoded, sr = sf.read(ByteStream(buf.getvalue()), dtype="int16")

    assert sr == 8000
    np.testing.assert_array_equal(decoded, data)
