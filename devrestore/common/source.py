"""Seekable local image files served to the device."""
from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO, Optional

from ..errors import ResourceError


class SourceImage:
    """Read-only image file with a known size.

    Use as a context manager; the underlying handle is closed on exit.
    """

    def __init__(self, fh: BinaryIO, size: int, *, name: str = "<image>") -> None:
        self._fh = fh
        self.size = size
        self.name = name

    @classmethod
    def open(cls, path: Path | str) -> "SourceImage":
        path = Path(path)
        try:
            fh = open(path, "rb")
        except OSError as exc:
            raise ResourceError(f"unable to open {path}: {exc}") from exc
        try:
            size = os.fstat(fh.fileno()).st_size
        except OSError as exc:
            fh.close()
            raise ResourceError(f"unable to stat {path}: {exc}") from exc
        return cls(fh, size, name=str(path))

    def read_at(self, offset: int, length: int, *, what: str = "source truncated") -> bytes:
        """Return exactly ``length`` bytes starting at absolute ``offset``."""

        if offset < 0 or length < 0:
            raise ResourceError(f"{what}: negative range {offset}+{length}")
        if offset + length > self.size:
            raise ResourceError(
                f"{what}: range {offset}+{length} exceeds image size {self.size}"
            )
        self._fh.seek(offset, os.SEEK_SET)
        return self._read_exact(length, what=what)

    def rewind(self) -> None:
        self._fh.seek(0, os.SEEK_SET)

    def read_next(self, length: int, *, what: str = "source truncated during streaming") -> bytes:
        """Read exactly ``length`` bytes from the current position."""

        return self._read_exact(length, what=what)

    def _read_exact(self, length: int, *, what: str) -> bytes:
        buf = bytearray()
        try:
            while len(buf) < length:
                data = self._fh.read(length - len(buf))
                if not data:
                    break
                buf.extend(data)
        except OSError as exc:
            raise ResourceError(f"{what}: {exc}") from exc
        if len(buf) != length:
            raise ResourceError(f"{what}: wanted {length} bytes, got {len(buf)}")
        return bytes(buf)

    def close(self) -> None:
        self._fh.close()

    @property
    def closed(self) -> bool:
        return self._fh.closed

    def __enter__(self) -> "SourceImage":
        return self

    def __exit__(self, *exc_info: object) -> Optional[bool]:
        self.close()
        return None


def read_whole_file(path: Path | str) -> bytes:
    """Load a complete file, reporting failures as ``ResourceError``."""

    path = Path(path)
    try:
        with open(path, "rb") as fh:
            size = os.fstat(fh.fileno()).st_size
            data = fh.read()
    except OSError as exc:
        raise ResourceError(f"unable to read {path}: {exc}") from exc
    if len(data) != size:
        raise ResourceError(f"short read on {path}: wanted {size} bytes, got {len(data)}")
    return data


__all__ = ["SourceImage", "read_whole_file"]
