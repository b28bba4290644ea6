"""Open file objects shared by file descriptors: pipes, inodes and devices."""

from __future__ import annotations

import enum
import errno
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

from .fs import FileSystem, Inode, Stat
from .kprintf import panic
from .layout import BSIZE, MAXOPBLOCKS, NDEV, NFILE
from .locks import SpinLock
from .pipe import Pipe

CONSOLE = 1  # major device number of the console

# Write a few blocks at a time to stay within one log transaction:
# inode, indirect block, allocation blocks and two blocks of slop.
_MAX_WRITE = ((MAXOPBLOCKS - 1 - 1 - 2) // 2) * BSIZE

DeviceRead = Callable[[int], bytes]
DeviceWrite = Callable[[bytes], int]


class FileType(enum.Enum):
    NONE = 0
    PIPE = 1
    INODE = 2
    DEVICE = 3


@dataclass(eq=False)
class File:
    """An open file; ref counts the descriptors that share it."""

    type: FileType = FileType.NONE
    ref: int = 0
    readable: bool = False
    writable: bool = False
    pipe: Optional[Pipe] = None
    ip: Optional[Inode] = None
    off: int = 0
    major: int = 0


class FileTable:
    """System-wide table of open files and the device switch."""

    def __init__(self, fs: FileSystem, nfile: int = NFILE) -> None:
        self.fs = fs
        self._lock = SpinLock("ftable")
        self._files: List[File] = [File() for _ in range(nfile)]
        self._devsw: Dict[int, Tuple[Optional[DeviceRead], Optional[DeviceWrite]]] = {}

    def register_device(
        self, major: int, read: Optional[DeviceRead], write: Optional[DeviceWrite]
    ) -> None:
        """Connect read and write functions to a major device number."""
        if not 0 <= major < NDEV:
            raise ValueError(f"major device number must be below {NDEV}")
        self._devsw[major] = (read, write)

    def alloc(self) -> File:
        """Allocate a file structure with one reference."""
        with self._lock:
            for f in self._files:
                if f.ref == 0:
                    f.ref = 1
                    return f
        raise OSError(errno.ENFILE, "file table is full")

    def dup(self, f: File) -> File:
        """Add a reference to f."""
        with self._lock:
            if f.ref < 1:
                panic("filedup")
            f.ref += 1
        return f

    def close(self, f: File) -> None:
        """Drop a reference; release what the file holds when none remain."""
        with self._lock:
            if f.ref < 1:
                panic("fileclose")
            f.ref -= 1
            if f.ref > 0:
                return
            ftype, pipe, ip, writable = f.type, f.pipe, f.ip, f.writable
            f.type = FileType.NONE
            f.pipe = None
            f.ip = None
        if ftype is FileType.PIPE and pipe is not None:
            pipe.close(writable)
        elif ftype in (FileType.INODE, FileType.DEVICE) and ip is not None:
            with self.fs.log.transaction():
                self.fs.iput(ip)

    def stat(self, f: File) -> Stat:
        """Metadata about an inode or device file."""
        if f.type in (FileType.INODE, FileType.DEVICE) and f.ip is not None:
            with self.fs.locked(f.ip):
                return self.fs.stati(f.ip)
        raise OSError(errno.EINVAL, "file has no inode")

    def _device(self, f: File, index: int) -> Callable:
        entry = self._devsw.get(f.major) if 0 <= f.major < NDEV else None
        func = entry[index] if entry else None
        if func is None:
            raise OSError(errno.ENODEV, f"no driver for device {f.major}")
        return func

    def read(self, f: File, n: int) -> bytes:
        """Read up to n bytes from f."""
        if not f.readable:
            raise OSError(errno.EBADF, "file not open for reading")
        if f.type is FileType.PIPE:
            return f.pipe.read(n)
        if f.type is FileType.DEVICE:
            return bytes(self._device(f, 0)(n))
        if f.type is FileType.INODE:
            with self.fs.locked(f.ip):
                data = self.fs.readi(f.ip, f.off, n)
                f.off += len(data)
            return data
        panic("fileread")

    def write(self, f: File, data: Union[bytes, bytearray, memoryview]) -> int:
        """Write data to f and return the count written."""
        if not f.writable:
            raise OSError(errno.EBADF, "file not open for writing")
        data = bytes(data)
        if f.type is FileType.PIPE:
            return f.pipe.write(data)
        if f.type is FileType.DEVICE:
            return self._device(f, 1)(data)
        if f.type is FileType.INODE:
            return self._write_inode(f, data)
        panic("filewrite")

    def _write_inode(self, f: File, data: bytes) -> int:
        i = 0
        while i < len(data):
            chunk = data[i:i + _MAX_WRITE]
            try:
                with self.fs.log.transaction():
                    with self.fs.locked(f.ip):
                        r = self.fs.writei(f.ip, chunk, f.off)
                        f.off += r
            except ValueError as exc:
                raise OSError(errno.EFBIG, str(exc)) from exc
            if r != len(chunk):
                raise OSError(errno.ENOSPC, "out of disk blocks")
            i += r
        return len(data)

    def pipe(self) -> Tuple[File, File]:
        """Create a pipe and return its (read end, write end) files."""
        rf = self.alloc()
        try:
            wf = self.alloc()
        except OSError:
            self.close(rf)
            raise
        p = Pipe()
        rf.type, rf.readable, rf.writable, rf.pipe = FileType.PIPE, True, False, p
        wf.type, wf.readable, wf.writable, wf.pipe = FileType.PIPE, False, True, p
        return rf, wf