"""Page-table arithmetic and a physical page allocator."""

from __future__ import annotations

from typing import List, Optional

from .kprintf import panic
from .locks import SpinLock

PGSIZE = 4096  # bytes per page
PGSHIFT = 12  # bits of offset within a page

PTE_V = 1 << 0  # valid
PTE_R = 1 << 1
PTE_W = 1 << 2
PTE_X = 1 << 3
PTE_U = 1 << 4  # user can access

PXMASK = 0x1FF  # 9 bits
SATP_SV39 = 8 << 60

# One beyond the highest possible virtual address.
MAXVA = 1 << (9 + 9 + 9 + 12 - 1)

_FREE_JUNK = 1
_ALLOC_JUNK = 5


def pg_round_up(size: int) -> int:
    return (size + PGSIZE - 1) & ~(PGSIZE - 1)


def pg_round_down(addr: int) -> int:
    return addr & ~(PGSIZE - 1)


def pa_to_pte(pa: int) -> int:
    """Shift a physical address into page-table-entry position."""
    return (pa >> 12) << 10


def pte_to_pa(pte: int) -> int:
    return (pte >> 10) << 12


def pte_flags(pte: int) -> int:
    return pte & 0x3FF


def px_shift(level: int) -> int:
    return PGSHIFT + 9 * level


def px(level: int, va: int) -> int:
    """The 9-bit page-table index of va at the given level."""
    return (va >> px_shift(level)) & PXMASK


def make_satp(pagetable: int) -> int:
    return SATP_SV39 | (pagetable >> 12)


class PageAllocator:
    """Hands out whole pages of a simulated physical memory range."""

    def __init__(self, start: int, end: int) -> None:
        if end < start:
            raise ValueError("end must not be below start")
        self.start = start
        self.end = end
        self._base = pg_round_up(start)
        npages = max(0, (pg_round_up(end) - self._base) // PGSIZE)
        self._memory = bytearray(npages * PGSIZE)
        self._lock = SpinLock("kmem")
        self._freelist: List[int] = []
        for pa in range(self._base, end - PGSIZE + 1, PGSIZE):
            self.free(pa)

    def _offset(self, pa: int) -> int:
        return pa - self._base

    def _fill(self, pa: int, value: int) -> None:
        off = self._offset(pa)
        self._memory[off:off + PGSIZE] = bytes([value]) * PGSIZE

    def free(self, pa: int) -> None:
        """Return a page to the free list, filling it with junk."""
        if pa % PGSIZE != 0 or pa < self.start or pa >= self.end:
            panic("kfree")
        self._fill(pa, _FREE_JUNK)
        with self._lock:
            self._freelist.append(pa)

    def alloc(self) -> Optional[int]:
        """Allocate one page and return its address, or None if none is left."""
        with self._lock:
            pa = self._freelist.pop() if self._freelist else None
        if pa is not None:
            self._fill(pa, _ALLOC_JUNK)
        return pa

    def page(self, pa: int) -> memoryview:
        """Writable view of the page at address pa."""
        off = self._offset(pa)
        if pa % PGSIZE != 0 or off < 0 or off + PGSIZE > len(self._memory):
            raise ValueError(f"no page at {pa:#x}")
        return memoryview(self._memory)[off:off + PGSIZE]

    def free_count(self) -> int:
        with self._lock:
            return len(self._freelist)