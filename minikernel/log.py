"""Write-ahead redo log giving file system operations crash atomicity."""

from __future__ import annotations

import struct
import threading
from contextlib import contextmanager
from typing import Iterator, List, Tuple

from .bio import Buf, BufferCache
from .kprintf import panic
from .layout import BSIZE, LOGSIZE, MAXOPBLOCKS, Superblock

# Header block: count of logged blocks followed by their home block numbers.
_HEADER = struct.Struct(f"<i{LOGSIZE}i")


class Log:
    """Groups the block writes of concurrent operations into one commit."""

    def __init__(self, cache: BufferCache, dev: int, sb: Superblock) -> None:
        if _HEADER.size >= BSIZE:
            panic("initlog: too big logheader")
        self._cache = cache
        self.dev = dev
        self.start = sb.logstart
        self.size = sb.nlog
        self._cond = threading.Condition()
        self.outstanding = 0  # how many operations are executing
        self.committing = False
        self._blocks: List[int] = []
        self._recover()

    @property
    def pending(self) -> Tuple[int, ...]:
        """Home block numbers logged in the current transaction."""
        with self._cond:
            return tuple(self._blocks)

    def _install(self, recovering: bool) -> None:
        """Copy committed blocks from the log to their home locations."""
        for tail, home in enumerate(self._blocks):
            lbuf = self._cache.read(self.dev, self.start + tail + 1)
            dbuf = self._cache.read(self.dev, home)
            dbuf.data[:] = lbuf.data
            self._cache.write(dbuf)
            if not recovering:
                self._cache.unpin(dbuf)
            self._cache.release(lbuf)
            self._cache.release(dbuf)

    def _read_head(self) -> None:
        with self._cache.block(self.dev, self.start) as buf:
            n, *blocks = _HEADER.unpack_from(buf.data)
        self._blocks = list(blocks[:max(n, 0)])

    def _write_head(self) -> None:
        """Write the in-memory header to disk; this is the commit point."""
        with self._cache.block(self.dev, self.start) as buf:
            _, *entries = _HEADER.unpack_from(buf.data)
            entries[:len(self._blocks)] = self._blocks
            _HEADER.pack_into(buf.data, 0, len(self._blocks), *entries)
            self._cache.write(buf)

    def _recover(self) -> None:
        self._read_head()
        self._install(True)
        self._blocks = []
        self._write_head()

    def begin_op(self) -> None:
        """Start an operation, waiting while a commit runs or space is short."""
        with self._cond:
            while (
                self.committing
                or len(self._blocks) + (self.outstanding + 1) * MAXOPBLOCKS > LOGSIZE
            ):
                self._cond.wait()
            self.outstanding += 1

    def end_op(self) -> None:
        """Finish an operation, committing if it was the last one outstanding."""
        with self._cond:
            self.outstanding -= 1
            if self.committing:
                panic("log.committing")
            do_commit = self.outstanding == 0
            if do_commit:
                self.committing = True
            else:
                self._cond.notify_all()
        if do_commit:
            self._commit()
            with self._cond:
                self.committing = False
                self._cond.notify_all()

    def _write_log(self) -> None:
        """Copy modified blocks from the cache into the log area."""
        for tail, home in enumerate(self._blocks):
            to = self._cache.read(self.dev, self.start + tail + 1)
            src = self._cache.read(self.dev, home)
            to.data[:] = src.data
            self._cache.write(to)
            self._cache.release(src)
            self._cache.release(to)

    def _commit(self) -> None:
        if self._blocks:
            self._write_log()
            self._write_head()
            self._install(False)
            self._blocks = []
            self._write_head()

    def write(self, buf: Buf) -> None:
        """Record a modified buffer in the transaction and pin it in the cache."""
        with self._cond:
            n = len(self._blocks)
            if n >= LOGSIZE or n >= self.size - 1:
                panic("too big a transaction")
            if self.outstanding < 1:
                panic("log_write outside of trans")
            if buf.blockno not in self._blocks:
                self._cache.pin(buf)
                self._blocks.append(buf.blockno)

    @contextmanager
    def transaction(self) -> Iterator["Log"]:
        """Run a with-block as one file system operation."""
        self.begin_op()
        try:
            yield self
        finally:
            self.end_op()