"""Buffer cache: cached copies of disk blocks with LRU recycling."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List

from .disk import BlockDevice
from .kprintf import panic
from .layout import BSIZE, NBUF
from .locks import SleepLock, SpinLock


@dataclass(eq=False)
class Buf:
    """One cached disk block."""

    dev: int = 0
    blockno: int = 0
    valid: bool = False  # has data been read from disk?
    disk: bool = False  # does the disk own the buffer?
    refcnt: int = 0
    data: bytearray = field(default_factory=lambda: bytearray(BSIZE))
    lock: SleepLock = field(default_factory=lambda: SleepLock("buffer"), repr=False)


class BufferCache:
    """A fixed pool of block buffers, most recently used first."""

    def __init__(self, disk: BlockDevice, nbuf: int = NBUF) -> None:
        if nbuf < 1:
            raise ValueError("the cache needs at least one buffer")
        self.disk = disk
        self._lock = SpinLock("bcache")
        # Each buffer is pushed onto the front in turn.
        self._lru: List[Buf] = [Buf() for _ in range(nbuf)][::-1]

    def _get(self, dev: int, blockno: int) -> Buf:
        with self._lock:
            found = next(
                (b for b in self._lru if b.dev == dev and b.blockno == blockno), None
            )
            if found is not None:
                found.refcnt += 1
            else:
                found = next((b for b in reversed(self._lru) if b.refcnt == 0), None)
                if found is None:
                    panic("bget: no buffers")
                found.dev = dev
                found.blockno = blockno
                found.valid = False
                found.refcnt = 1
        found.lock.acquire()
        return found

    def read(self, dev: int, blockno: int) -> Buf:
        """Return a locked buffer holding the contents of the block."""
        b = self._get(dev, blockno)
        if not b.valid:
            self.disk.rw(b, False)
            b.valid = True
        return b

    def write(self, buf: Buf) -> None:
        """Write the buffer's contents to disk; the caller must hold it."""
        if not buf.lock.holding():
            panic("bwrite")
        self.disk.rw(buf, True)

    def release(self, buf: Buf) -> None:
        """Release a locked buffer and mark it most recently used."""
        if not buf.lock.holding():
            panic("brelse")
        buf.lock.release()
        with self._lock:
            buf.refcnt -= 1
            if buf.refcnt == 0:
                self._lru.remove(buf)
                self._lru.insert(0, buf)

    def pin(self, buf: Buf) -> None:
        with self._lock:
            buf.refcnt += 1

    def unpin(self, buf: Buf) -> None:
        with self._lock:
            buf.refcnt -= 1

    @contextmanager
    def block(self, dev: int, blockno: int) -> Iterator[Buf]:
        """Hold the block's buffer for the duration of a with-block."""
        b = self.read(dev, blockno)
        try:
            yield b
        finally:
            self.release(b)