import pytest

from ext2sim.structs import (
    BLKSIZE,
    EXT2_MAGIC,
    INODE_SIZE,
    S_IFDIR,
    S_IFLNK,
    S_IFREG,
    DirEntry,
    FsError,
    GroupDescriptor,
    Inode,
    SuperBlock,
    ideal_rec_len,
    iter_dir_entries,
    pack_dir_entry,
)


def test_inode_round_trip():
    inode = Inode(mode=S_IFREG | 0o644, uid=3, gid=1, size=5000,
                  links_count=1, blocks=10, atime=11, ctime=12, mtime=13,
                  block=list(range(100, 115)))
    data = inode.to_bytes()
    assert len(data) == INODE_SIZE
    assert Inode.from_bytes(data) == inode


def test_inode_from_short_data_raises():
    with pytest.raises(ValueError):
        Inode.from_bytes(bytes(INODE_SIZE - 1))


def test_inode_wrong_block_count_raises():
    with pytest.raises(ValueError):
        Inode(block=[0] * 3).to_bytes()


@pytest.mark.parametrize(
    "mode, expected",
    [
        (S_IFDIR | 0o755, (True, False, False)),
        (S_IFREG | 0o644, (False, True, False)),
        (S_IFLNK | 0o777, (False, False, True)),
    ],
)
def test_inode_type_checks(mode, expected):
    inode = Inode(mode=mode)
    assert (inode.is_dir(), inode.is_reg(), inode.is_lnk()) == expected


def test_superblock_magic_at_fixed_offset():
    raw = bytearray(BLKSIZE)
    raw[56:58] = b"\x53\xef"
    assert SuperBlock.from_bytes(raw).magic == EXT2_MAGIC


def test_superblock_round_trip_keeps_other_bytes():
    raw = bytearray(BLKSIZE)
    raw[100] = 7
    sb = SuperBlock.from_bytes(raw)
    sb.free_blocks_count = 9
    sb.magic = EXT2_MAGIC
    out = sb.to_bytes()
    assert len(out) == BLKSIZE
    assert out[100] == 7
    again = SuperBlock.from_bytes(out)
    assert again.free_blocks_count == 9
    assert again.magic == EXT2_MAGIC


def test_group_descriptor_round_trip():
    gd = GroupDescriptor(block_bitmap=3, inode_bitmap=4, inode_table=5,
                         free_blocks_count=900, free_inodes_count=100,
                         used_dirs_count=1)
    assert GroupDescriptor.from_bytes(gd.to_bytes() + bytes(40)) == gd


def test_ideal_rec_len_of_dot_entry():
    assert ideal_rec_len(1) == 12


@pytest.mark.parametrize("name_len", range(0, 40))
def test_ideal_rec_len_invariants(name_len):
    value = ideal_rec_len(name_len)
    assert value % 4 == 0
    assert value >= 8 + name_len
    assert value - (8 + name_len) < 4


def test_pack_and_iterate_round_trip():
    block = bytearray(BLKSIZE)
    entries = [
        DirEntry(2, 12, "."),
        DirEntry(2, 12, ".."),
        DirEntry(11, BLKSIZE - 24, "notes.txt"),
    ]
    offset = 0
    for entry in entries:
        pack_dir_entry(block, offset, entry)
        offset += entry.rec_len
    found = list(iter_dir_entries(block))
    assert [e for _, e in found] == entries
    assert [off for off, _ in found] == [0, 12, 24]


def test_iterate_zeroed_block_raises():
    with pytest.raises(FsError):
        list(iter_dir_entries(bytearray(BLKSIZE)))


def test_pack_entry_that_does_not_fit_raises():
    block = bytearray(BLKSIZE)
    with pytest.raises(ValueError):
        pack_dir_entry(block, BLKSIZE - 4, DirEntry(5, 12, "name"))


def test_name_len_counts_encoded_bytes():
    assert DirEntry(5, 12, "é").name_len == 2