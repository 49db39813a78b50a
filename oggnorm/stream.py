"""Growable, seekable in-memory byte buffer.

Reads follow a cursor; writes always append to the end and leave the cursor
alone, so one buffer can be filled sequentially while being read from an
arbitrary position. The object quacks like a file (read/seek/tell/write) and
can be handed to ``soundfile`` as a virtual file.
"""

from __future__ import annotations

import os

from oggnorm.errors import InvalidOffset


class ByteStream:
    """Append-only writer with an independent read cursor."""

    def __init__(self, data: bytes | bytearray | memoryview = b"") -> None:
        self._buffer = bytearray(data)
        self._pos = 0

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        return f"ByteStream(len={len(self._buffer)}, pos={self._pos})"

    # ── File protocol ──────────────────────────────────────

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def read(self, n: int | None = -1) -> bytes:
        """Return up to ``n`` bytes from the cursor; short at end-of-data."""
        length = len(self._buffer)
        if self._pos >= length:
            return b""
        end = length if n is None or n < 0 else min(self._pos + n, length)
        chunk = bytes(self._buffer[self._pos:end])
        self._pos = end
        return chunk

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Append ``data`` at the end. The read cursor does not move."""
        view = memoryview(data).cast("B")
        self._buffer.extend(view)
        return len(view)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the cursor and return its new absolute position.

        Targets inside ``[0, len]`` are taken as is. Targets past the end wrap
        modulo the current length instead of clamping.
        """
        length = len(self._buffer)
        if whence == os.SEEK_SET:
            target = offset
        elif whence == os.SEEK_CUR:
            target = self._pos + offset
        elif whence == os.SEEK_END:
            target = length + offset
        else:
            raise InvalidOffset(f"Unsupported whence value: {whence}")

        if target < 0:
            raise InvalidOffset(f"Seek target {target} is negative")
        if target > length:
            target = target % length if length else 0

        self._pos = target
        return target

    def tell(self) -> int:
        return self._pos

    def flush(self) -> None:
        pass

    # ── Buffer access ──────────────────────────────────────

    def getvalue(self) -> bytes:
        """Full buffer contents, independent of the cursor."""
        return bytes(self._buffer)

    def clear(self) -> None:
        """Reset to an empty buffer with the cursor at 0."""
        self._buffer = bytearray()
        self._pos = 0
