import pytest

from minikernel.bio import BufferCache
from minikernel.disk import BlockDevice
from minikernel.file import File, FileTable, FileType
from minikernel.fs import FileSystem
from minikernel.kprintf import KernelPanic
from minikernel.layout import (
    BSIZE,
    DINODE_SIZE,
    DIRENT_SIZE,
    FSMAGIC,
    IPB,
    LOGSIZE,
    NDIRECT,
    ROOTDEV,
    ROOTINO,
    DirEntry,
    DiskInode,
    InodeType,
    Superblock,
    iblock,
)


def make_fs(size=1000, ninodes=200):
    nlog = LOGSIZE + 1
    logstart = 2
    inodestart = logstart + nlog
    bmapstart = inodestart + ninodes // IPB + 1
    nmeta = bmapstart + size // (BSIZE * 8) + 1
    sb = Superblock(FSMAGIC, size, size - nmeta, ninodes, nlog, logstart, inodestart, bmapstart)
    image = bytearray(size * BSIZE)
    raw_sb = sb.to_bytes()
    image[BSIZE:BSIZE + len(raw_sb)] = raw_sb
    rootblock = nmeta
    root = DiskInode(
        type=InodeType.DIR, nlink=1, size=2 * DIRENT_SIZE, addrs=[rootblock] + [0] * NDIRECT
    )
    off = iblock(ROOTINO, sb) * BSIZE + (ROOTINO % IPB) * DINODE_SIZE
    image[off:off + DINODE_SIZE] = root.to_bytes()
    entries = DirEntry(ROOTINO, ".").to_bytes() + DirEntry(ROOTINO, "..").to_bytes()
    image[rootblock * BSIZE:rootblock * BSIZE + len(entries)] = entries
    for b in range(rootblock + 1):
        image[bmapstart * BSIZE + b // 8] |= 1 << (b % 8)
    return FileSystem(BufferCache(BlockDevice(bytes(image))), ROOTDEV)


@pytest.fixture
def fs():
    return make_fs()


@pytest.fixture
def files(fs):
    return FileTable(fs)


def inode_file(fs, files):
    with fs.log.transaction():
        ip = fs.ialloc(InodeType.FILE)
        with fs.locked(ip):
            ip.nlink = 1
            fs.iupdate(ip)
    f = files.alloc()
    f.type = FileType.INODE
    f.ip = ip
    f.readable = f.writable = True
    return f


def test_alloc_dup_close_reference_counts(files):
    f = files.alloc()
    assert f.ref == 1
    assert files.dup(f) is f
    assert f.ref == 2
    files.close(f)
    assert f.ref == 1
    files.close(f)
    assert f.ref == 0
    assert f.type is FileType.NONE


def test_close_unreferenced_file_panics(files):
    with pytest.raises(KernelPanic):
        files.close(File())


def test_dup_unreferenced_file_panics(files):
    with pytest.raises(KernelPanic):
        files.dup(File())


def test_table_full(fs):
    files = FileTable(fs, nfile=2)
    first, second = files.alloc(), files.alloc()
    assert first is not second
    with pytest.raises(OSError):
        files.alloc()
    files.close(first)
    assert files.alloc() is first


def test_pipe_ends(files):
    rf, wf = files.pipe()
    assert rf.readable and not rf.writable
    assert wf.writable and not wf.readable
    data = b"through the pipe"
    assert files.write(wf, data) == len(data)
    assert files.read(rf, 100) == data
    files.close(wf)
    assert files.read(rf, 100) == b""


def test_wrong_direction_fails(files):
    rf, wf = files.pipe()
    with pytest.raises(OSError):
        files.write(rf, b"x")
    with pytest.raises(OSError):
        files.read(wf, 1)


def test_stat_of_pipe_fails(files):
    rf, _ = files.pipe()
    with pytest.raises(OSError):
        files.stat(rf)


def test_inode_write_read_round_trip(fs, files):
    f = inode_file(fs, files)
    data = bytes(range(256)) * 20
    assert files.write(f, data) == len(data)
    assert f.off == len(data)
    f.off = 0
    assert files.read(f, len(data) + 10) == data
    st = files.stat(f)
    assert st.size == len(data)
    assert st.type == InodeType.FILE


def test_close_inode_file_drops_inode_reference(fs, files):
    f = inode_file(fs, files)
    ip = f.ip
    assert ip.ref == 1
    files.close(f)
    assert ip.ref == 0
    assert f.ip is None


def test_device_read_and_write(files):
    written = []
    files.register_device(2, lambda n: b"z" * n, lambda d: written.append(d) or len(d))
    f = files.alloc()
    f.type = FileType.DEVICE
    f.major = 2
    f.readable = f.writable = True
    assert files.read(f, 3) == b"zzz"
    assert files.write(f, b"out") == 3
    assert written == [b"out"]


def test_unregistered_device_fails(files):
    f = files.alloc()
    f.type = FileType.DEVICE
    f.major = 5
    f.readable = True
    with pytest.raises(OSError):
        files.read(f, 1)


def test_register_device_out_of_range(files):
    with pytest.raises(ValueError):
        files.register_device(100, None, None)