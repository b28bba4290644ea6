"""An in-memory block device standing in for the virtio disk."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Any, Union

from .layout import BSIZE

SECTOR_SIZE = 512
SECTORS_PER_BLOCK = BSIZE // SECTOR_SIZE

PathLike = Union[str, Path]


class BlockDevice:
    """A disk image held in memory, addressed in BSIZE blocks."""

    def __init__(self, data: Union[bytes, bytearray]) -> None:
        if len(data) % BSIZE != 0:
            raise ValueError(f"disk image size must be a multiple of {BSIZE} bytes")
        self._data = bytearray(data)
        self._lock = threading.RLock()
        self.reads = 0
        self.writes = 0

    @classmethod
    def from_file(cls, path: PathLike) -> "BlockDevice":
        """Load a disk image from a file."""
        return cls(Path(path).read_bytes())

    @classmethod
    def blank(cls, nblocks: int) -> "BlockDevice":
        """A zero-filled disk of nblocks blocks."""
        if nblocks < 0:
            raise ValueError("block count must not be negative")
        return cls(bytes(nblocks * BSIZE))

    @property
    def nblocks(self) -> int:
        return len(self._data) // BSIZE

    def save(self, path: PathLike) -> None:
        """Write the disk image to a file."""
        with self._lock:
            Path(path).write_bytes(bytes(self._data))

    def _offset(self, blockno: int) -> int:
        if not 0 <= blockno < self.nblocks:
            raise ValueError(f"block {blockno} is outside the disk")
        return blockno * SECTORS_PER_BLOCK * SECTOR_SIZE

    def read_block(self, blockno: int) -> bytes:
        """Contents of one block."""
        with self._lock:
            off = self._offset(blockno)
            self.reads += 1
            return bytes(self._data[off:off + BSIZE])

    def write_block(self, blockno: int, data: Union[bytes, bytearray, memoryview]) -> None:
        """Replace the contents of one block."""
        if len(data) != BSIZE:
            raise ValueError(f"a block holds exactly {BSIZE} bytes")
        with self._lock:
            off = self._offset(blockno)
            self._data[off:off + BSIZE] = data
            self.writes += 1

    def rw(self, buf: Any, write: bool) -> None:
        """Transfer a buffer to or from the disk.

        The buffer needs blockno, data and disk attributes; disk is set
        while the device owns the buffer.
        """
        with self._lock:
            buf.disk = True
            try:
                if write:
                    self.write_block(buf.blockno, buf.data)
                else:
                    buf.data[:] = self.read_block(buf.blockno)
            finally:
                buf.disk = False