"""Console input and output: line-at-a-time reads with editing keys."""

from __future__ import annotations

import sys
import threading
from typing import Callable, Optional, Union

INPUT_BUF_SIZE = 128
BACKSPACE = 0x100


def _ctrl(x: str) -> int:
    return ord(x) - ord("@")


CTRL_D = _ctrl("D")  # end of file
CTRL_H = _ctrl("H")  # backspace
CTRL_P = _ctrl("P")  # print process list
CTRL_U = _ctrl("U")  # kill line
DELETE = 0x7F
NEWLINE = ord("\n")
RETURN = ord("\r")


def _write_stdout(data: bytes) -> None:
    stream = getattr(sys.stdout, "buffer", None)
    if stream is not None:
        stream.write(data)
        stream.flush()
    else:
        sys.stdout.write(data.decode("latin-1"))
        sys.stdout.flush()


class Console:
    """Buffers typed characters into lines and echoes them to the output."""

    def __init__(
        self,
        output: Optional[Callable[[bytes], object]] = None,
        on_dump: Optional[Callable[[], object]] = None,
    ) -> None:
        self._output = output if output is not None else _write_stdout
        self._on_dump = on_dump
        self._cond = threading.Condition()
        self._buf = bytearray(INPUT_BUF_SIZE)
        self._r = 0  # read index
        self._w = 0  # write index
        self._e = 0  # edit index

    def _putc(self, c: int) -> None:
        if c == BACKSPACE:
            # Overwrite the erased character with a space.
            self._output(b"\b \b")
        else:
            self._output(bytes([c & 0xFF]))

    def interrupt(self, c: Union[int, str]) -> None:
        """Handle one input character: editing keys, echo and buffering."""
        if isinstance(c, str):
            c = ord(c)
        with self._cond:
            if c == CTRL_P:
                if self._on_dump is not None:
                    self._on_dump()
            elif c == CTRL_U:
                while (
                    self._e != self._w
                    and self._buf[(self._e - 1) % INPUT_BUF_SIZE] != NEWLINE
                ):
                    self._e -= 1
                    self._putc(BACKSPACE)
            elif c in (CTRL_H, DELETE):
                if self._e != self._w:
                    self._e -= 1
                    self._putc(BACKSPACE)
            elif c != 0 and self._e - self._r < INPUT_BUF_SIZE:
                if c == RETURN:
                    c = NEWLINE
                self._putc(c)
                self._buf[self._e % INPUT_BUF_SIZE] = c & 0xFF
                self._e += 1
                if c in (NEWLINE, CTRL_D) or self._e - self._r == INPUT_BUF_SIZE:
                    # A whole line, end of file or a full buffer has arrived.
                    self._w = self._e
                    self._cond.notify_all()

    def read(self, n: int) -> bytes:
        """Read up to n bytes, at most one line; waits until input arrives."""
        target = n
        out = bytearray()
        with self._cond:
            while n > 0:
                while self._r == self._w:
                    self._cond.wait()
                c = self._buf[self._r % INPUT_BUF_SIZE]
                self._r += 1
                if c == CTRL_D:
                    if n < target:
                        # Keep ^D so the next read returns nothing.
                        self._r -= 1
                    break
                out.append(c)
                n -= 1
                if c == NEWLINE:
                    break
        return bytes(out)

    def write(self, data: Union[bytes, bytearray, memoryview]) -> int:
        """Send data to the output and return its length."""
        data = bytes(data)
        self._output(data)
        return len(data)