"""Pipes: a bounded byte channel between a writing end and a reading end."""

from __future__ import annotations

import errno
import threading
from typing import Union

PIPESIZE = 512


class Pipe:
    """A ring buffer of PIPESIZE bytes shared by one reader and one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._data = bytearray(PIPESIZE)
        self._nread = 0  # number of bytes read
        self._nwrite = 0  # number of bytes written
        self.readopen = True
        self.writeopen = True

    def __len__(self) -> int:
        """Bytes written but not yet read."""
        with self._cond:
            return self._nwrite - self._nread

    def write(self, data: Union[bytes, bytearray, memoryview]) -> int:
        """Write all of data, blocking while the pipe is full.

        Raises BrokenPipeError once the read end is closed.
        """
        data = bytes(data)
        i = 0
        with self._cond:
            while i < len(data):
                if not self.readopen:
                    raise BrokenPipeError(errno.EPIPE, "read end of pipe is closed")
                if self._nwrite == self._nread + PIPESIZE:
                    self._cond.notify_all()
                    self._cond.wait()
                else:
                    self._data[self._nwrite % PIPESIZE] = data[i]
                    self._nwrite += 1
                    i += 1
            self._cond.notify_all()
        return i

    def read(self, n: int) -> bytes:
        """Read up to n bytes, waiting for data while the write end is open.

        Returns b"" at end of file.
        """
        out = bytearray()
        with self._cond:
            while self._nread == self._nwrite and self.writeopen:
                self._cond.wait()
            while len(out) < n and self._nread != self._nwrite:
                out.append(self._data[self._nread % PIPESIZE])
                self._nread += 1
            self._cond.notify_all()
        return bytes(out)

    def close(self, writable: bool) -> None:
        """Close the write end if writable is true, otherwise the read end."""
        with self._cond:
            if writable:
                self.writeopen = False
            else:
                self.readopen = False
            self._cond.notify_all()