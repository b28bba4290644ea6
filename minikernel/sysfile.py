"""File system calls of a process: argument checks over files and inodes."""

from __future__ import annotations

import enum
import errno
import functools
from typing import Callable, List, Optional, Tuple, TypeVar, Union

from .file import File, FileTable, FileType
from .fs import FileSystem, Inode, Stat
from .kprintf import panic
from .layout import DIRENT_SIZE, MAXPATH, NDEV, NOFILE, DirEntry, InodeType, namecmp

_T = TypeVar("_T")


class OpenFlag(enum.IntFlag):
    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200
    TRUNC = 0x400


class SyscallError(OSError):
    """A system call failed; errno tells why."""


def _syscall(method: Callable[..., _T]) -> Callable[..., _T]:
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except SyscallError:
            raise
        except OSError as exc:
            raise SyscallError(exc.errno or errno.EIO, exc.strerror or str(exc)) from exc

    return wrapper


def _check_path(path: str) -> None:
    if len(path.encode("utf-8", "surrogateescape")) >= MAXPATH:
        raise SyscallError(errno.ENAMETOOLONG, "path name too long", path)


class Process:
    """The file descriptors and current directory of one process."""

    def __init__(
        self, fs: FileSystem, files: FileTable, cwd: Optional[Inode] = None
    ) -> None:
        self.fs = fs
        self.files = files
        self.cwd = cwd if cwd is not None else fs.namei("/")
        self._ofile: List[Optional[File]] = [None] * NOFILE

    def _file(self, fd: int) -> File:
        f = self._ofile[fd] if 0 <= fd < NOFILE else None
        if f is None:
            raise SyscallError(errno.EBADF, f"bad file descriptor {fd}")
        return f

    def _fdalloc(self, f: File) -> Optional[int]:
        for fd, slot in enumerate(self._ofile):
            if slot is None:
                self._ofile[fd] = f
                return fd
        return None

    @_syscall
    def dup(self, fd: int) -> int:
        f = self._file(fd)
        nfd = self._fdalloc(f)
        if nfd is None:
            raise SyscallError(errno.EMFILE, "too many open files")
        self.files.dup(f)
        return nfd

    @_syscall
    def read(self, fd: int, n: int) -> bytes:
        return self.files.read(self._file(fd), n)

    @_syscall
    def write(self, fd: int, data: Union[bytes, bytearray, memoryview]) -> int:
        return self.files.write(self._file(fd), data)

    @_syscall
    def close(self, fd: int) -> None:
        f = self._file(fd)
        self._ofile[fd] = None
        self.files.close(f)

    @_syscall
    def fstat(self, fd: int) -> Stat:
        return self.files.stat(self._file(fd))

    @_syscall
    def link(self, old: str, new: str) -> None:
        """Create the path new as a link to the same inode as old."""
        _check_path(old)
        _check_path(new)
        fs = self.fs
        with fs.log.transaction():
            ip = fs.namei(old, self.cwd)
            if ip is None:
                raise SyscallError(errno.ENOENT, "no such file", old)
            fs.ilock(ip)
            if ip.type == InodeType.DIR:
                fs.iunlockput(ip)
                raise SyscallError(errno.EPERM, "cannot link a directory", old)
            ip.nlink += 1
            fs.iupdate(ip)
            fs.iunlock(ip)
            try:
                found = fs.nameiparent(new, self.cwd)
                if found is None:
                    raise SyscallError(errno.ENOENT, "no such directory", new)
                dp, name = found
                fs.ilock(dp)
                try:
                    if dp.dev != ip.dev:
                        raise SyscallError(errno.EXDEV, "cross-device link", new)
                    fs.dirlink(dp, name, ip.inum)
                finally:
                    fs.iunlockput(dp)
            except BaseException:
                fs.ilock(ip)
                ip.nlink -= 1
                fs.iupdate(ip)
                fs.iunlockput(ip)
                raise
            fs.iput(ip)

    def _isdirempty(self, dp: Inode) -> bool:
        """Whether directory dp holds nothing but "." and ".."."""
        for off in range(2 * DIRENT_SIZE, dp.size, DIRENT_SIZE):
            raw = self.fs.readi(dp, off, DIRENT_SIZE)
            if len(raw) != DIRENT_SIZE:
                panic("isdirempty: readi")
            if DirEntry.from_bytes(raw).inum != 0:
                return False
        return True

    def _unlink_entry(self, dp: Inode, name: str) -> Inode:
        """Clear name's entry in locked dp and return its inode, locked."""
        fs = self.fs
        if namecmp(name, ".") == 0 or namecmp(name, "..") == 0:
            raise SyscallError(errno.EINVAL, "cannot unlink . or ..", name)
        found = fs.dirlookup(dp, name)
        if found is None:
            raise SyscallError(errno.ENOENT, "no such file", name)
        ip, off = found
        fs.ilock(ip)
        if ip.nlink < 1:
            panic("unlink: nlink < 1")
        if ip.type == InodeType.DIR and not self._isdirempty(ip):
            fs.iunlockput(ip)
            raise SyscallError(errno.ENOTEMPTY, "directory not empty", name)
        if fs.writei(dp, bytes(DIRENT_SIZE), off) != DIRENT_SIZE:
            panic("unlink: writei")
        if ip.type == InodeType.DIR:
            dp.nlink -= 1
            fs.iupdate(dp)
        return ip

    @_syscall
    def unlink(self, path: str) -> None:
        _check_path(path)
        fs = self.fs
        with fs.log.transaction():
            found = fs.nameiparent(path, self.cwd)
            if found is None:
                raise SyscallError(errno.ENOENT, "no such directory", path)
            dp, name = found
            fs.ilock(dp)
            try:
                ip = self._unlink_entry(dp, name)
            finally:
                fs.iunlockput(dp)
            ip.nlink -= 1
            fs.iupdate(ip)
            fs.iunlockput(ip)

    def _create(self, path: str, itype: InodeType, major: int, minor: int) -> Inode:
        """Create path, or open an existing file for FILE; returns it locked."""
        fs = self.fs
        found = fs.nameiparent(path, self.cwd)
        if found is None:
            raise SyscallError(errno.ENOENT, "no such directory", path)
        dp, name = found
        fs.ilock(dp)
        hit = fs.dirlookup(dp, name)
        if hit is not None:
            ip = hit[0]
            fs.iunlockput(dp)
            fs.ilock(ip)
            if itype == InodeType.FILE and ip.type in (InodeType.FILE, InodeType.DEVICE):
                return ip
            fs.iunlockput(ip)
            raise SyscallError(errno.EEXIST, "file exists", path)
        try:
            ip = fs.ialloc(itype)
        except BaseException:
            fs.iunlockput(dp)
            raise
        fs.ilock(ip)
        ip.major = major
        ip.minor = minor
        ip.nlink = 1
        fs.iupdate(ip)
        try:
            if itype == InodeType.DIR:
                # No nlink increment for ".": avoid a cyclic reference count.
                fs.dirlink(ip, ".", ip.inum)
                fs.dirlink(ip, "..", dp.inum)
            fs.dirlink(dp, name, ip.inum)
        except OSError:
            ip.nlink = 0
            fs.iupdate(ip)
            fs.iunlockput(ip)
            fs.iunlockput(dp)
            raise
        if itype == InodeType.DIR:
            dp.nlink += 1  # for ".."
            fs.iupdate(dp)
        fs.iunlockput(dp)
        return ip

    @_syscall
    def open(self, path: str, omode: int) -> int:
        """Open path and return a new file descriptor."""
        _check_path(path)
        omode = int(omode)
        fs = self.fs
        with fs.log.transaction():
            if omode & OpenFlag.CREATE:
                ip = self._create(path, InodeType.FILE, 0, 0)
            else:
                ip = fs.namei(path, self.cwd)
                if ip is None:
                    raise SyscallError(errno.ENOENT, "no such file", path)
                fs.ilock(ip)
                if ip.type == InodeType.DIR and omode != OpenFlag.RDONLY:
                    fs.iunlockput(ip)
                    raise SyscallError(errno.EISDIR, "is a directory", path)
            if ip.type == InodeType.DEVICE and not 0 <= ip.major < NDEV:
                fs.iunlockput(ip)
                raise SyscallError(errno.ENXIO, "bad device number", path)
            try:
                f = self.files.alloc()
            except BaseException:
                fs.iunlockput(ip)
                raise
            fd = self._fdalloc(f)
            if fd is None:
                self.files.close(f)
                fs.iunlockput(ip)
                raise SyscallError(errno.EMFILE, "too many open files")
            if ip.type == InodeType.DEVICE:
                f.type = FileType.DEVICE
                f.major = ip.major
            else:
                f.type = FileType.INODE
                f.off = 0
            f.ip = ip
            f.readable = not omode & OpenFlag.WRONLY
            f.writable = bool(omode & (OpenFlag.WRONLY | OpenFlag.RDWR))
            if omode & OpenFlag.TRUNC and ip.type == InodeType.FILE:
                fs.itrunc(ip)
            fs.iunlock(ip)
        return fd

    @_syscall
    def mkdir(self, path: str) -> None:
        _check_path(path)
        with self.fs.log.transaction():
            self.fs.iunlockput(self._create(path, InodeType.DIR, 0, 0))

    @_syscall
    def mknod(self, path: str, major: int, minor: int) -> None:
        _check_path(path)
        with self.fs.log.transaction():
            self.fs.iunlockput(self._create(path, InodeType.DEVICE, major, minor))

    @_syscall
    def chdir(self, path: str) -> None:
        _check_path(path)
        fs = self.fs
        with fs.log.transaction():
            ip = fs.namei(path, self.cwd)
            if ip is None:
                raise SyscallError(errno.ENOENT, "no such directory", path)
            fs.ilock(ip)
            if ip.type != InodeType.DIR:
                fs.iunlockput(ip)
                raise SyscallError(errno.ENOTDIR, "not a directory", path)
            fs.iunlock(ip)
            fs.iput(self.cwd)
        self.cwd = ip

    @_syscall
    def pipe(self) -> Tuple[int, int]:
        """Create a pipe and return its (read, write) descriptors."""
        rf, wf = self.files.pipe()
        fd0 = self._fdalloc(rf)
        fd1 = self._fdalloc(wf) if fd0 is not None else None
        if fd0 is None or fd1 is None:
            if fd0 is not None:
                self._ofile[fd0] = None
            self.files.close(rf)
            self.files.close(wf)
            raise SyscallError(errno.EMFILE, "too many open files")
        return fd0, fd1