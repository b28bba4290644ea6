import struct

import pytest

from minikernel.elf import (
    ELF_MAGIC,
    ELF_PROG_LOAD,
    ElfHeader,
    ExecError,
    ProgramHeader,
    flags_to_perm,
    layout_arguments,
    load_segments,
)
from minikernel.layout import MAXARG
from minikernel.pages import PGSIZE, PTE_W, PTE_X

HDR = struct.Struct("<I12sHHIQQQIHHHHHH")
PH = struct.Struct("<IIQQQQQQ")


def build_elf(segments, entry=0, magic=ELF_MAGIC):
    """segments: list of (type, flags, vaddr, content, memsz)."""
    phoff = HDR.size
    data_off = phoff + PH.size * len(segments)
    phs = b""
    body = b""
    for ptype, flags, vaddr, content, memsz in segments:
        phs += PH.pack(ptype, flags, data_off + len(body), vaddr, vaddr,
                       len(content), memsz, PGSIZE)
        body += content
    header = HDR.pack(magic, b"\x02\x01\x01" + bytes(9), 2, 0xF3, 1, entry,
                      phoff, 0, 0, HDR.size, PH.size, len(segments), 0, 0, 0)
    return header + phs + body


def test_header_fields_round_trip():
    image = build_elf([], entry=0x1234)
    elf = ElfHeader.from_bytes(image)
    assert elf.magic == ELF_MAGIC
    assert elf.entry == 0x1234
    assert elf.phoff == HDR.size
    assert elf.phnum == 0


def test_header_too_short():
    with pytest.raises(ExecError):
        ElfHeader.from_bytes(b"\x7fELF")


def test_program_header_fields():
    raw = PH.pack(ELF_PROG_LOAD, 5, 100, PGSIZE, PGSIZE, 7, 9, PGSIZE)
    ph = ProgramHeader.from_bytes(raw)
    assert (ph.type, ph.flags, ph.off, ph.vaddr, ph.filesz, ph.memsz) == (
        ELF_PROG_LOAD, 5, 100, PGSIZE, 7, 9)


def test_program_header_too_short():
    with pytest.raises(ExecError):
        ProgramHeader.from_bytes(bytes(PH.size - 1))


def test_flags_to_perm():
    assert flags_to_perm(1) == PTE_X
    assert flags_to_perm(2) == PTE_W
    assert flags_to_perm(3) == PTE_X | PTE_W
    assert flags_to_perm(4) == 0


def test_load_single_segment():
    image = build_elf([(ELF_PROG_LOAD, 5, 0, b"hello", 100)], entry=0)
    elf, memory, perms = load_segments(image)
    assert elf.entry == 0
    assert len(memory) == 100
    assert memory[:5] == b"hello"
    assert memory[5:] == bytes(95)
    assert perms == {0: PTE_X}


def test_load_two_segments_and_skip_others():
    image = build_elf([
        (ELF_PROG_LOAD, 1, 0, b"code", 10),
        (ELF_PROG_LOAD + 5, 0, 0, b"junk", 4),
        (ELF_PROG_LOAD, 6, PGSIZE, b"data", 8),
    ])
    _, memory, perms = load_segments(image)
    assert len(memory) == PGSIZE + 8
    assert memory[:4] == b"code"
    assert memory[PGSIZE:PGSIZE + 4] == b"data"
    assert perms == {0: PTE_X, PGSIZE: PTE_W}


def test_bad_magic():
    with pytest.raises(ExecError):
        load_segments(build_elf([], magic=0))


def test_memsz_below_filesz():
    with pytest.raises(ExecError):
        load_segments(build_elf([(ELF_PROG_LOAD, 1, 0, b"hello", 3)]))


def test_unaligned_vaddr():
    with pytest.raises(ExecError):
        load_segments(build_elf([(ELF_PROG_LOAD, 1, 8, b"x", 1)]))


def test_truncated_segment():
    image = build_elf([(ELF_PROG_LOAD, 1, 0, b"hello", 10)])
    with pytest.raises(ExecError):
        load_segments(image[:-2])


def test_missing_program_header():
    image = build_elf([(ELF_PROG_LOAD, 1, 0, b"", 10)])
    with pytest.raises(ExecError):
        load_segments(image[:HDR.size + 4])


def test_layout_arguments_structure():
    top, base = 2 * PGSIZE, PGSIZE
    argv = ["echo", "hello", b"world"]
    sp, stack = layout_arguments(argv, top, base)
    assert sp % 16 == 0
    assert base <= sp < top
    assert len(stack) == top - sp
    pointers = struct.unpack_from(f"<{len(argv) + 1}Q", stack)
    assert pointers[-1] == 0
    for ptr, arg in zip(pointers, argv):
        raw = arg if isinstance(arg, bytes) else arg.encode()
        assert ptr % 16 == 0
        assert stack[ptr - sp:ptr - sp + len(raw) + 1] == raw + b"\0"


def test_layout_arguments_strings_descend():
    sp, stack = layout_arguments(["a", "b"], 2 * PGSIZE, PGSIZE)
    first, second, end = struct.unpack_from("<3Q", stack)
    assert first > second > sp
    assert end == 0


def test_layout_no_arguments():
    top = 2 * PGSIZE
    sp, stack = layout_arguments([], top, PGSIZE)
    assert sp < top
    assert sp % 16 == 0
    assert stack == bytes(top - sp)


def test_layout_too_many_arguments():
    with pytest.raises(ExecError):
        layout_arguments(["x"] * (MAXARG + 1), 2 * PGSIZE, PGSIZE)


def test_layout_stack_overflow():
    with pytest.raises(ExecError):
        layout_arguments(["x" * 64], PGSIZE + 32, PGSIZE)