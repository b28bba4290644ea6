"""Kernel-style formatted output and panics."""

from __future__ import annotations

from typing import Any, Iterator, NoReturn

_MASK64 = (1 << 64) - 1

# conversion -> (argument width in bits, base, signed)
_INT_SPECS = {
    "lld": (64, 10, True),
    "llu": (64, 10, False),
    "llx": (64, 16, False),
    "ld": (64, 10, True),
    "lu": (64, 10, False),
    "lx": (64, 16, False),
    "d": (32, 10, True),
    "u": (32, 10, False),
    "x": (32, 16, False),
}


class KernelPanic(Exception):
    """Raised where the kernel would halt with a panic message."""

    @property
    def message(self) -> str:
        return self.args[0] if self.args else ""


def panic(message: str) -> NoReturn:
    """Halt the current operation with a kernel panic."""
    raise KernelPanic(message)


def _signed(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >> (bits - 1) else value


def _format_int(value: int, bits: int, base: int, sign: bool) -> str:
    xx = _signed(int(value), bits)
    if sign and xx < 0:
        text = _digits(-xx, base)
        return "-" + text
    return _digits(xx & _MASK64, base)


def _digits(x: int, base: int) -> str:
    return str(x) if base == 10 else format(x, "x")


def _next_arg(args: Iterator[Any]) -> Any:
    try:
        return next(args)
    except StopIteration:
        raise TypeError("not enough arguments for format string") from None


def _string_arg(value: Any) -> str:
    if value is None:
        return "(null)"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).split(b"\0", 1)[0].decode("latin-1")
    return str(value)


def kformat(fmt: str, *args: Any) -> str:
    """Format like the kernel printf: %d %u %x with l/ll, %p, %s and %%."""
    fmt = fmt.split("\0", 1)[0]
    values = iter(args)
    out = []
    i = 0
    while i < len(fmt):
        c = fmt[i]
        i += 1
        if c != "%":
            out.append(c)
            continue
        spec = next((s for s in _INT_SPECS if fmt.startswith(s, i)), None)
        if spec is not None:
            bits, base, sign = _INT_SPECS[spec]
            out.append(_format_int(_next_arg(values), bits, base, sign))
            i += len(spec)
            continue
        if i >= len(fmt):
            break
        c0 = fmt[i]
        i += 1
        if c0 == "p":
            out.append("0x" + format(int(_next_arg(values)) & _MASK64, "016x"))
        elif c0 == "s":
            out.append(_string_arg(_next_arg(values)))
        elif c0 == "%":
            out.append("%")
        else:
            # Unknown sequence is printed as-is to draw attention.
            out.append("%" + c0)
    return "".join(out)