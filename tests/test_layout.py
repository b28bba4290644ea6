import pytest

from minikernel.layout import (
    BPB,
    BSIZE,
    DIRENT_SIZE,
    DIRSIZ,
    FSMAGIC,
    FSSIZE,
    IPB,
    LOGSIZE,
    NDIRECT,
    DirEntry,
    DiskInode,
    InodeType,
    Superblock,
    bblock,
    iblock,
    namecmp,
)

SB = Superblock(
    magic=FSMAGIC,
    size=FSSIZE,
    nblocks=1954,
    ninodes=200,
    nlog=LOGSIZE + 1,
    logstart=2,
    inodestart=33,
    bmapstart=46,
)


def test_superblock_round_trip():
    assert Superblock.from_bytes(SB.to_bytes()) == SB


def test_superblock_starts_with_little_endian_magic():
    assert SB.to_bytes()[:4] == FSMAGIC.to_bytes(4, "little")


def test_superblock_reads_prefix_of_block():
    block = SB.to_bytes() + bytes(BSIZE - len(SB.to_bytes()))
    assert Superblock.from_bytes(block) == SB


def test_superblock_short_data_rejected():
    with pytest.raises(ValueError):
        Superblock.from_bytes(b"\x00" * 5)


def test_disk_inode_round_trip():
    addrs = list(range(100, 100 + NDIRECT + 1))
    dip = DiskInode(type=InodeType.FILE, major=0, minor=0, nlink=1, size=5000, addrs=addrs)
    back = DiskInode.from_bytes(dip.to_bytes())
    assert back == dip
    assert back.type == InodeType.FILE


def test_inodes_fill_a_block_exactly():
    assert len(DiskInode().to_bytes()) * IPB == BSIZE


def test_disk_inode_wrong_address_count():
    with pytest.raises(ValueError):
        DiskInode(addrs=[0] * NDIRECT)


def test_free_inode_is_all_zero():
    raw = DiskInode().to_bytes()
    assert raw == bytes(len(raw))
    assert DiskInode.from_bytes(raw).type == 0


def test_dirent_round_trip():
    de = DirEntry(7, "README")
    data = de.to_bytes()
    assert len(data) == DIRENT_SIZE
    assert DirEntry.from_bytes(data) == de


def test_dirent_full_length_name_round_trips():
    de = DirEntry(3, "x" * DIRSIZ)
    assert DirEntry.from_bytes(de.to_bytes()) == de


def test_dirent_long_name_truncated():
    de = DirEntry(3, "a" * (DIRSIZ + 6))
    assert DirEntry.from_bytes(de.to_bytes()).name == "a" * DIRSIZ


def test_iblock_groups_inodes_per_block():
    assert iblock(0, SB) == SB.inodestart
    assert iblock(IPB - 1, SB) == SB.inodestart
    assert iblock(IPB, SB) == SB.inodestart + 1


def test_bblock_groups_bits_per_block():
    assert bblock(0, SB) == SB.bmapstart
    assert bblock(BPB - 1, SB) == SB.bmapstart
    assert bblock(BPB, SB) == SB.bmapstart + 1


def test_namecmp_equal():
    assert namecmp("init", "init") == 0


def test_namecmp_ignores_past_dirsiz():
    assert namecmp("a" * DIRSIZ + "xyz", "a" * DIRSIZ + "qrs") == 0


def test_namecmp_ordering():
    assert namecmp("a", "b") < 0
    assert namecmp("b", "a") > 0
    assert namecmp("ab", "a") > 0
    assert namecmp("a", "ab") < 0


def test_namecmp_accepts_bytes_with_nul():
    assert namecmp(b"cat\0\0\0", "cat") == 0