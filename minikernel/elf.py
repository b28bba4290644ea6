"""ELF executable headers and the memory layout a new program starts with."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Union

from .layout import MAXARG
from .pages import MAXVA, PGSIZE, PTE_W, PTE_X, pg_round_up

ELF_MAGIC = 0x464C457F  # "\x7fELF" read as a little-endian word

ELF_PROG_LOAD = 1

ELF_PROG_FLAG_EXEC = 1
ELF_PROG_FLAG_WRITE = 2
ELF_PROG_FLAG_READ = 4

_ELFHDR = struct.Struct("<I12sHHIQQQIHHHHHH")
_PROGHDR = struct.Struct("<IIQQQQQQ")
_UINT64 = 1 << 64

ELF_HEADER_SIZE = _ELFHDR.size
PROG_HEADER_SIZE = _PROGHDR.size


class ExecError(ValueError):
    """The executable image cannot be loaded."""


@dataclass(frozen=True)
class ElfHeader:
    """The ELF file header."""

    magic: int
    ident: bytes
    type: int
    machine: int
    version: int
    entry: int
    phoff: int
    shoff: int
    flags: int
    ehsize: int
    phentsize: int
    phnum: int
    shentsize: int
    shnum: int
    shstrndx: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "ElfHeader":
        if len(data) < _ELFHDR.size:
            raise ExecError(f"ELF header needs {_ELFHDR.size} bytes, got {len(data)}")
        return cls(*_ELFHDR.unpack_from(data))


@dataclass(frozen=True)
class ProgramHeader:
    """One program section header."""

    type: int
    flags: int
    off: int
    vaddr: int
    paddr: int
    filesz: int
    memsz: int
    align: int

    @classmethod
    def from_bytes(cls, data: bytes) -> "ProgramHeader":
        if len(data) < _PROGHDR.size:
            raise ExecError(
                f"program header needs {_PROGHDR.size} bytes, got {len(data)}"
            )
        return cls(*_PROGHDR.unpack_from(data))


def flags_to_perm(flags: int) -> int:
    """Page permission bits for a segment's flags."""
    perm = 0
    if flags & ELF_PROG_FLAG_EXEC:
        perm = PTE_X
    if flags & ELF_PROG_FLAG_WRITE:
        perm |= PTE_W
    return perm


def load_segments(image: bytes) -> Tuple[ElfHeader, bytearray, Dict[int, int]]:
    """Lay out the loadable segments of an executable image.

    Returns the header, the program memory from address 0 up to the end of
    the highest segment, and the permission bits of each page by address.
    """
    image = bytes(image)
    elf = ElfHeader.from_bytes(image)
    if elf.magic != ELF_MAGIC:
        raise ExecError("not an ELF executable")

    memory = bytearray()
    perms: Dict[int, int] = {}
    sz = 0
    for i in range(elf.phnum):
        off = elf.phoff + i * PROG_HEADER_SIZE
        ph = ProgramHeader.from_bytes(image[off:off + PROG_HEADER_SIZE])
        if ph.type != ELF_PROG_LOAD:
            continue
        if ph.memsz < ph.filesz:
            raise ExecError("segment memory size below its file size")
        if ph.vaddr + ph.memsz >= _UINT64:
            raise ExecError("segment wraps around the address space")
        if ph.vaddr % PGSIZE != 0:
            raise ExecError("segment is not page-aligned")
        newsz = max(sz, ph.vaddr + ph.memsz)
        if newsz == 0 or newsz > MAXVA:
            raise ExecError("cannot allocate segment memory")
        perm = flags_to_perm(ph.flags)
        for page in range(pg_round_up(sz), newsz, PGSIZE):
            perms[page] = perm
        memory.extend(bytes(newsz - sz))
        sz = newsz

        content = image[ph.off:ph.off + ph.filesz]
        if len(content) != ph.filesz:
            raise ExecError("segment extends past the end of the file")
        memory[ph.vaddr:ph.vaddr + ph.filesz] = content
    return elf, memory, perms


def _arg_bytes(arg: Union[str, bytes]) -> bytes:
    raw = arg if isinstance(arg, (bytes, bytearray)) else arg.encode("utf-8", "surrogateescape")
    return bytes(raw).split(b"\0", 1)[0] + b"\0"


def layout_arguments(
    argv: Sequence[Union[str, bytes]], sp: int, stackbase: int
) -> Tuple[int, bytes]:
    """Push argument strings and the argv pointer array onto a user stack.

    Returns the new stack pointer and the stack contents from it up to the
    old stack pointer. The pointer array sits at the new stack pointer.
    """
    if len(argv) > MAXARG:
        raise ExecError(f"more than {MAXARG} arguments")
    top = sp
    pieces: List[Tuple[int, bytes]] = []
    pointers: List[int] = []
    for arg in argv:
        raw = _arg_bytes(arg)
        sp -= len(raw)
        sp -= sp % 16  # the stack pointer must be 16-byte aligned
        if sp < stackbase:
            raise ExecError("arguments do not fit on the stack")
        pieces.append((sp, raw))
        pointers.append(sp)
    pointers.append(0)

    table = struct.pack(f"<{len(pointers)}Q", *pointers)
    sp -= len(table)
    sp -= sp % 16
    if sp < stackbase:
        raise ExecError("arguments do not fit on the stack")
    pieces.append((sp, table))

    stack = bytearray(top - sp)
    for addr, raw in pieces:
        stack[addr - sp:addr - sp + len(raw)] = raw
    return sp, bytes(stack)