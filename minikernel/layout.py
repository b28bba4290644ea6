"""System parameters, on-disk file system structures and name comparison."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import List, Union

# System parameters.
NPROC = 64  # maximum number of processes
NCPU = 8  # maximum number of CPUs
NOFILE = 16  # open files per process
NFILE = 100  # open files per system
NINODE = 50  # maximum number of active i-nodes
NDEV = 10  # maximum major device number
ROOTDEV = 1  # device number of file system root disk
MAXARG = 32  # max exec arguments
MAXOPBLOCKS = 10  # max # of blocks any FS op writes
LOGSIZE = MAXOPBLOCKS * 3  # max data blocks in on-disk log
NBUF = MAXOPBLOCKS * 3  # size of disk block cache
FSSIZE = 2000  # size of file system in blocks
MAXPATH = 128  # maximum file path name
USERSTACK = 1  # user stack pages

# On-disk format.
ROOTINO = 1  # root i-number
BSIZE = 1024  # block size
FSMAGIC = 0x10203040
NDIRECT = 12
NINDIRECT = BSIZE // 4
MAXFILE = NDIRECT + NINDIRECT
DIRSIZ = 14

_SUPERBLOCK = struct.Struct("<8I")
_DINODE = struct.Struct(f"<4hI{NDIRECT + 1}I")
_DIRENT = struct.Struct(f"<H{DIRSIZ}s")

SUPERBLOCK_SIZE = _SUPERBLOCK.size
DINODE_SIZE = _DINODE.size
DIRENT_SIZE = _DIRENT.size

IPB = BSIZE // DINODE_SIZE  # inodes per block
BPB = BSIZE * 8  # bitmap bits per block

_ENCODING = "utf-8"


class InodeType(enum.IntEnum):
    """Kinds of inode stored in the type field of a disk inode."""

    DIR = 1
    FILE = 2
    DEVICE = 3


def _unpack(layout: struct.Struct, data: bytes, what: str) -> tuple:
    if len(data) < layout.size:
        raise ValueError(f"{what} needs {layout.size} bytes, got {len(data)}")
    return layout.unpack_from(data)


@dataclass(frozen=True)
class Superblock:
    """Describes the disk layout; stored in block 1."""

    magic: int
    size: int  # size of file system image (blocks)
    nblocks: int  # number of data blocks
    ninodes: int  # number of inodes
    nlog: int  # number of log blocks
    logstart: int  # block number of first log block
    inodestart: int  # block number of first inode block
    bmapstart: int  # block number of first free map block

    @classmethod
    def from_bytes(cls, data: bytes) -> "Superblock":
        return cls(*_unpack(_SUPERBLOCK, data, "superblock"))

    def to_bytes(self) -> bytes:
        return _SUPERBLOCK.pack(
            self.magic,
            self.size,
            self.nblocks,
            self.ninodes,
            self.nlog,
            self.logstart,
            self.inodestart,
            self.bmapstart,
        )


@dataclass
class DiskInode:
    """On-disk inode structure; type 0 marks a free inode."""

    type: int = 0
    major: int = 0
    minor: int = 0
    nlink: int = 0
    size: int = 0
    addrs: List[int] = field(default_factory=lambda: [0] * (NDIRECT + 1))

    def __post_init__(self) -> None:
        self.addrs = list(self.addrs)
        if len(self.addrs) != NDIRECT + 1:
            raise ValueError(f"an inode has {NDIRECT + 1} block addresses")

    @classmethod
    def from_bytes(cls, data: bytes) -> "DiskInode":
        itype, major, minor, nlink, size, *addrs = _unpack(_DINODE, data, "inode")
        return cls(itype, major, minor, nlink, size, addrs)

    def to_bytes(self) -> bytes:
        return _DINODE.pack(
            self.type, self.major, self.minor, self.nlink, self.size, *self.addrs
        )


@dataclass
class DirEntry:
    """One directory entry; inum 0 marks an unused slot."""

    inum: int
    name: str

    @classmethod
    def from_bytes(cls, data: bytes) -> "DirEntry":
        inum, raw = _unpack(_DIRENT, data, "directory entry")
        raw = raw.split(b"\0", 1)[0]
        return cls(inum, raw.decode(_ENCODING, "surrogateescape"))

    def to_bytes(self) -> bytes:
        raw = self.name.encode(_ENCODING, "surrogateescape")
        return _DIRENT.pack(self.inum, raw)


def iblock(inum: int, sb: Superblock) -> int:
    """Block holding inode number inum."""
    return inum // IPB + sb.inodestart


def bblock(b: int, sb: Superblock) -> int:
    """Block of the free map holding the bit for block b."""
    return b // BPB + sb.bmapstart


def _name_bytes(name: Union[str, bytes, bytearray]) -> bytes:
    if isinstance(name, (bytes, bytearray)):
        raw = bytes(name)
    else:
        raw = name.encode(_ENCODING, "surrogateescape")
    return raw.split(b"\0", 1)[0][:DIRSIZ]


def namecmp(s: Union[str, bytes], t: Union[str, bytes]) -> int:
    """Compare two names on at most DIRSIZ bytes, like strncmp."""
    a, b = _name_bytes(s), _name_bytes(t)
    for x, y in zip(a, b):
        if x != y:
            return x - y
    if len(a) == len(b):
        return 0
    return a[len(b)] if len(a) > len(b) else -b[len(a)]