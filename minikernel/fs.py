"""File system: block allocation, inodes, directories and path names."""

from __future__ import annotations

import errno
import logging
import struct
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from .bio import Buf, BufferCache
from .kprintf import panic
from .layout import (
    BPB,
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    DIRSIZ,
    FSMAGIC,
    IPB,
    MAXFILE,
    NDIRECT,
    NINDIRECT,
    NINODE,
    ROOTINO,
    DirEntry,
    DiskInode,
    InodeType,
    Superblock,
    bblock,
    iblock,
    namecmp,
)
from .locks import SpinLock
from .log import Log

logger = logging.getLogger(__name__)

_UINT = struct.Struct("<I")
_INDIRECT = struct.Struct(f"<{NINDIRECT}I")
_UINT_MAX = 0xFFFFFFFF


@dataclass(eq=False)
class Inode:
    """In-memory copy of an inode."""

    dev: int = 0
    inum: int = 0
    ref: int = 0
    valid: bool = False  # has the inode been read from disk?
    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: List[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))
    lock: SleepLock = field(default=None, repr=False)  # type: ignore[assignment]

    def __post_init__(self) -> None:
        if self.lock is None:
            self.lock = SleepLock("inode")


from .locks import SleepLock  # noqa: E402  (used by Inode's default lock)


@dataclass(frozen=True)
class Stat:
    """Metadata about a file."""

    dev: int
    ino: int
    type: int
    nlink: int
    size: int


def skip_elem(path: str) -> Optional[Tuple[str, str]]:
    """Split the first element off a path.

    Returns (name, rest) where rest has no leading slashes, or None when
    the path holds no further element.
    """
    path = path.lstrip("/")
    if not path:
        return None
    name, _, rest = path.partition("/")
    return name[:DIRSIZ], rest.lstrip("/")


def _dinode_offset(inum: int) -> int:
    return (inum % IPB) * DINODE_SIZE


class FileSystem:
    """One mounted file system on a block device, with its inode table."""

    def __init__(self, cache: BufferCache, dev: int, ninode: int = NINODE) -> None:
        self.cache = cache
        self.dev = dev
        with cache.block(dev, 1) as bp:
            self.sb = Superblock.from_bytes(bytes(bp.data))
        if self.sb.magic != FSMAGIC:
            panic("invalid file system")
        self.log = Log(cache, dev, self.sb)
        self._itable_lock = SpinLock("itable")
        self._inodes = [Inode() for _ in range(ninode)]

    # Blocks.

    def _bzero(self, bno: int) -> None:
        with self.cache.block(self.dev, bno) as bp:
            bp.data[:] = bytes(BSIZE)
            self.log.write(bp)

    def _claim_bit(self, bp: Buf, limit: int) -> Optional[int]:
        for bi in range(limit):
            byte, mask = bi // 8, 1 << (bi % 8)
            if not bp.data[byte] & mask:
                bp.data[byte] |= mask
                self.log.write(bp)
                return bi
        return None

    def _balloc(self) -> int:
        """Allocate a zeroed block; 0 when the disk is full."""
        sb = self.sb
        for b in range(0, sb.size, BPB):
            with self.cache.block(self.dev, bblock(b, sb)) as bp:
                bi = self._claim_bit(bp, min(BPB, sb.size - b))
            if bi is not None:
                self._bzero(b + bi)
                return b + bi
        logger.warning("balloc: out of blocks")
        return 0

    def _bfree(self, b: int) -> None:
        with self.cache.block(self.dev, bblock(b, self.sb)) as bp:
            bi = b % BPB
            byte, mask = bi // 8, 1 << (bi % 8)
            if not bp.data[byte] & mask:
                panic("freeing free block")
            bp.data[byte] &= ~mask & 0xFF
            self.log.write(bp)

    # Inodes.

    def ialloc(self, itype: int) -> Inode:
        """Allocate an inode of the given type; returned unlocked and referenced."""
        for inum in range(1, self.sb.ninodes):
            with self.cache.block(self.dev, iblock(inum, self.sb)) as bp:
                off = _dinode_offset(inum)
                dip = DiskInode.from_bytes(bytes(bp.data[off:off + DINODE_SIZE]))
                free = dip.type == 0
                if free:
                    bp.data[off:off + DINODE_SIZE] = DiskInode(type=int(itype)).to_bytes()
                    self.log.write(bp)
            if free:
                return self.iget(inum)
        raise OSError(errno.ENOSPC, "ialloc: no inodes")

    def iupdate(self, ip: Inode) -> None:
        """Copy the in-memory inode to disk; the caller holds its lock."""
        with self.cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
            off = _dinode_offset(ip.inum)
            dip = DiskInode(ip.type, ip.major, ip.minor, ip.nlink, ip.size, ip.addrs)
            bp.data[off:off + DINODE_SIZE] = dip.to_bytes()
            self.log.write(bp)

    def iget(self, inum: int) -> Inode:
        """Find or make the table entry for inode inum, without locking or reading it."""
        with self._itable_lock:
            empty = None
            for ip in self._inodes:
                if ip.ref > 0 and ip.dev == self.dev and ip.inum == inum:
                    ip.ref += 1
                    return ip
                if empty is None and ip.ref == 0:
                    empty = ip
            if empty is None:
                panic("iget: no inodes")
            empty.dev = self.dev
            empty.inum = inum
            empty.ref = 1
            empty.valid = False
            return empty

    def idup(self, ip: Inode) -> Inode:
        with self._itable_lock:
            ip.ref += 1
        return ip

    def ilock(self, ip: Inode) -> None:
        """Lock the inode, reading it from disk if needed."""
        if ip is None or ip.ref < 1:
            panic("ilock")
        ip.lock.acquire()
        if not ip.valid:
            with self.cache.block(ip.dev, iblock(ip.inum, self.sb)) as bp:
                off = _dinode_offset(ip.inum)
                dip = DiskInode.from_bytes(bytes(bp.data[off:off + DINODE_SIZE]))
            ip.type = dip.type
            ip.major = dip.major
            ip.minor = dip.minor
            ip.nlink = dip.nlink
            ip.size = dip.size
            ip.addrs = list(dip.addrs)
            ip.valid = True
            if ip.type == 0:
                panic("ilock: no type")

    def iunlock(self, ip: Inode) -> None:
        if ip is None or not ip.lock.holding() or ip.ref < 1:
            panic("iunlock")
        ip.lock.release()

    def iput(self, ip: Inode) -> None:
        """Drop a reference; free the inode on disk when unreferenced and unlinked."""
        self._itable_lock.acquire()
        try:
            if ip.ref == 1 and ip.valid and ip.nlink == 0:
                ip.lock.acquire()
                self._itable_lock.release()
                try:
                    self.itrunc(ip)
                    ip.type = 0
                    self.iupdate(ip)
                    ip.valid = False
                finally:
                    ip.lock.release()
                    self._itable_lock.acquire()
            ip.ref -= 1
        finally:
            self._itable_lock.release()

    def iunlockput(self, ip: Inode) -> None:
        self.iunlock(ip)
        self.iput(ip)

    @contextmanager
    def locked(self, ip: Inode) -> Iterator[Inode]:
        """Hold the inode's lock for the duration of a with-block."""
        self.ilock(ip)
        try:
            yield ip
        finally:
            self.iunlock(ip)

    # Inode content.

    def _bmap(self, ip: Inode, bn: int) -> int:
        """Disk block of the bn-th block of ip, allocating it; 0 if the disk is full."""
        if bn < NDIRECT:
            addr = ip.addrs[bn]
            if addr == 0:
                addr = self._balloc()
                if addr == 0:
                    return 0
                ip.addrs[bn] = addr
            return addr
        bn -= NDIRECT
        if bn < NINDIRECT:
            ind = ip.addrs[NDIRECT]
            if ind == 0:
                ind = self._balloc()
                if ind == 0:
                    return 0
                ip.addrs[NDIRECT] = ind
            with self.cache.block(ip.dev, ind) as bp:
                off = bn * _UINT.size
                (addr,) = _UINT.unpack_from(bp.data, off)
                if addr == 0:
                    addr = self._balloc()
                    if addr:
                        _UINT.pack_into(bp.data, off, addr)
                        self.log.write(bp)
            return addr
        panic("bmap: out of range")

    def itrunc(self, ip: Inode) -> None:
        """Discard the inode's contents; the caller holds its lock."""
        for i, addr in enumerate(ip.addrs[:NDIRECT]):
            if addr:
                self._bfree(addr)
                ip.addrs[i] = 0
        ind = ip.addrs[NDIRECT]
        if ind:
            with self.cache.block(ip.dev, ind) as bp:
                entries = _INDIRECT.unpack_from(bp.data)
            for addr in entries:
                if addr:
                    self._bfree(addr)
            self._bfree(ind)
            ip.addrs[NDIRECT] = 0
        ip.size = 0
        self.iupdate(ip)

    def stati(self, ip: Inode) -> Stat:
        return Stat(ip.dev, ip.inum, ip.type, ip.nlink, ip.size)

    def readi(self, ip: Inode, off: int, n: int) -> bytes:
        """Read up to n bytes at offset off; short at end of file."""
        if n < 0 or off < 0:
            raise ValueError("offset and count must not be negative")
        if off > ip.size or off + n > _UINT_MAX:
            return b""
        n = min(n, ip.size - off)
        out = bytearray()
        while len(out) < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr == 0:
                break
            start = off % BSIZE
            m = min(n - len(out), BSIZE - start)
            with self.cache.block(ip.dev, addr) as bp:
                out += bp.data[start:start + m]
            off += m
        return bytes(out)

    def writei(self, ip: Inode, data: bytes, off: int) -> int:
        """Write data at offset off and return the count written.

        A count below len(data) means the disk ran out of blocks.
        """
        data = bytes(data)
        n = len(data)
        if off < 0 or off > ip.size or off + n > _UINT_MAX:
            raise ValueError("write offset is past the end of the file")
        if off + n > MAXFILE * BSIZE:
            raise ValueError("write would exceed the maximum file size")
        tot = 0
        while tot < n:
            addr = self._bmap(ip, off // BSIZE)
            if addr == 0:
                break
            start = off % BSIZE
            m = min(n - tot, BSIZE - start)
            with self.cache.block(ip.dev, addr) as bp:
                bp.data[start:start + m] = data[tot:tot + m]
                self.log.write(bp)
            tot += m
            off += m
        if off > ip.size:
            ip.size = off
        # bmap may have added blocks even if the size is unchanged.
        self.iupdate(ip)
        return tot

    # Directories.

    def _entry_at(self, dp: Inode, off: int, what: str) -> DirEntry:
        raw = self.readi(dp, off, DIRENT_SIZE)
        if len(raw) != DIRENT_SIZE:
            panic(what)
        return DirEntry.from_bytes(raw)

    def dirlookup(self, dp: Inode, name: str) -> Optional[Tuple[Inode, int]]:
        """Find name in directory dp; returns (inode, entry offset) or None."""
        if dp.type != InodeType.DIR:
            panic("dirlookup not DIR")
        for off in range(0, dp.size, DIRENT_SIZE):
            de = self._entry_at(dp, off, "dirlookup read")
            if de.inum and namecmp(name, de.name) == 0:
                return self.iget(de.inum), off
        return None

    def dirlink(self, dp: Inode, name: str, inum: int) -> None:
        """Add the entry (name, inum) to directory dp."""
        found = self.dirlookup(dp, name)
        if found is not None:
            self.iput(found[0])
            raise FileExistsError(errno.EEXIST, "name already present", name)
        off = 0
        while off < dp.size:
            if self._entry_at(dp, off, "dirlink read").inum == 0:
                break
            off += DIRENT_SIZE
        entry = DirEntry(inum, name).to_bytes()
        if self.writei(dp, entry, off) != DIRENT_SIZE:
            raise OSError(errno.ENOSPC, "dirlink: out of disk blocks")

    # Paths.

    def _namex(
        self, path: str, parent: bool, cwd: Optional[Inode]
    ) -> Optional[Tuple[Inode, str]]:
        if path.startswith("/"):
            ip = self.iget(ROOTINO)
        else:
            if cwd is None:
                raise ValueError("a relative path needs a current directory")
            ip = self.idup(cwd)
        name = ""
        while (elem := skip_elem(path)) is not None:
            name, path = elem
            self.ilock(ip)
            if ip.type != InodeType.DIR:
                self.iunlockput(ip)
                return None
            if parent and path == "":
                # Stop one level early.
                self.iunlock(ip)
                return ip, name
            found = self.dirlookup(ip, name)
            self.iunlockput(ip)
            if found is None:
                return None
            ip = found[0]
        if parent:
            self.iput(ip)
            return None
        return ip, name

    def namei(self, path: str, cwd: Optional[Inode] = None) -> Optional[Inode]:
        """Inode for a path name, or None if it does not exist."""
        found = self._namex(path, False, cwd)
        return None if found is None else found[0]

    def nameiparent(
        self, path: str, cwd: Optional[Inode] = None
    ) -> Optional[Tuple[Inode, str]]:
        """Parent directory of a path and its final element, or None."""
        return self._namex(path, True, cwd)