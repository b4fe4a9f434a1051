"""Block-level access to an ext2 disk image: inodes, bitmaps, allocation."""

from __future__ import annotations

import os
import time
from pathlib import Path

from .structs import (
    BLKSIZE,
    EXT2_MAGIC,
    FIRST_INO,
    GROUP_DESC_SIZE,
    INODE_SIZE,
    INODES_PER_BLOCK,
    ROOT_INO,
    S_IFDIR,
    DirEntry,
    FsError,
    GroupDescriptor,
    Inode,
    SuperBlock,
    pack_dir_entry,
)

_BITS_PER_BLOCK = BLKSIZE * 8


def test_bit(buf, bit: int) -> bool:
    """Whether the given bit of a bitmap is set."""
    return bool(buf[bit // 8] & (1 << (bit % 8)))


def set_bit(buf: bytearray, bit: int) -> None:
    buf[bit // 8] |= 1 << (bit % 8)


def clear_bit(buf: bytearray, bit: int) -> None:
    buf[bit // 8] &= ~(1 << (bit % 8)) & 0xFF


def format_image(path, nblocks: int, ninodes: int) -> None:
    """Create a single-group ext2 image with an empty root directory."""
    if not 16 <= ninodes <= _BITS_PER_BLOCK:
        raise ValueError(f"inode count must be between 16 and {_BITS_PER_BLOCK}")
    bmap, imap, inode_table = 3, 4, 5
    table_blocks = -(-ninodes // INODES_PER_BLOCK)
    root_block = inode_table + table_blocks
    if not root_block + 1 < nblocks <= _BITS_PER_BLOCK:
        raise ValueError(
            f"block count must be between {root_block + 2} and {_BITS_PER_BLOCK}"
        )

    image = bytearray(nblocks * BLKSIZE)

    def put(blk: int, data: bytes) -> None:
        image[blk * BLKSIZE:blk * BLKSIZE + len(data)] = data

    block_bitmap = bytearray(BLKSIZE)
    for bit in range(root_block):
        set_bit(block_bitmap, bit)
    for bit in range(nblocks - 1, _BITS_PER_BLOCK):
        set_bit(block_bitmap, bit)

    inode_bitmap = bytearray(BLKSIZE)
    for bit in range(FIRST_INO - 1):
        set_bit(inode_bitmap, bit)
    for bit in range(ninodes, _BITS_PER_BLOCK):
        set_bit(inode_bitmap, bit)

    free_blocks = nblocks - 1 - root_block
    free_inodes = ninodes - (FIRST_INO - 1)
    now = int(time.time())

    superblock = SuperBlock(
        inodes_count=ninodes,
        blocks_count=nblocks,
        free_blocks_count=free_blocks,
        free_inodes_count=free_inodes,
        first_data_block=1,
        blocks_per_group=_BITS_PER_BLOCK,
        frags_per_group=_BITS_PER_BLOCK,
        inodes_per_group=ninodes,
        wtime=now,
        max_mnt_count=-1,
        magic=EXT2_MAGIC,
    )
    group = GroupDescriptor(
        block_bitmap=bmap,
        inode_bitmap=imap,
        inode_table=inode_table,
        free_blocks_count=free_blocks,
        free_inodes_count=free_inodes,
        used_dirs_count=1,
    )
    root = Inode(mode=S_IFDIR | 0o755, size=BLKSIZE, links_count=2, blocks=2,
                 atime=now, ctime=now, mtime=now)
    root.block[0] = root_block

    root_dir = bytearray(BLKSIZE)
    pack_dir_entry(root_dir, 0, DirEntry(ROOT_INO, 12, "."))
    pack_dir_entry(root_dir, 12, DirEntry(ROOT_INO, BLKSIZE - 12, ".."))

    put(1, superblock.to_bytes())
    put(2, group.to_bytes())
    put(bmap, block_bitmap)
    put(imap, inode_bitmap)
    offset = inode_table * BLKSIZE + (ROOT_INO - 1) * INODE_SIZE
    image[offset:offset + INODE_SIZE] = root.to_bytes()
    put(root_block, root_dir)

    Path(path).write_bytes(bytes(image))


class Device:
    """An open ext2 image with its superblock and group descriptor in memory."""

    def __init__(self, path):
        self.path = os.fspath(path)
        self._file = open(self.path, "r+b")
        try:
            self.superblock = SuperBlock.from_bytes(self.read_block(1))
            if self.superblock.magic != EXT2_MAGIC:
                raise FsError(
                    f"magic = {self.superblock.magic:x} is not an ext2 filesystem"
                )
            self.group = GroupDescriptor.from_bytes(self.read_block(2))
        except BaseException:
            self._file.close()
            raise

    @property
    def ninodes(self) -> int:
        return self.superblock.inodes_count

    @property
    def nblocks(self) -> int:
        return self.superblock.blocks_count

    @property
    def bmap(self) -> int:
        return self.group.block_bitmap

    @property
    def imap(self) -> int:
        return self.group.inode_bitmap

    @property
    def inode_start(self) -> int:
        return self.group.inode_table

    @property
    def closed(self) -> bool:
        return self._file.closed

    def read_block(self, blk: int) -> bytearray:
        if blk < 0:
            raise FsError(f"invalid block number {blk}")
        self._file.seek(blk * BLKSIZE)
        data = self._file.read(BLKSIZE)
        return bytearray(data.ljust(BLKSIZE, b"\0"))

    def write_block(self, blk: int, data) -> None:
        if len(data) != BLKSIZE:
            raise ValueError(f"a block is {BLKSIZE} bytes, got {len(data)}")
        if blk < 0:
            raise FsError(f"invalid block number {blk}")
        self._file.seek(blk * BLKSIZE)
        self._file.write(bytes(data))

    def _inode_location(self, ino: int) -> tuple[int, int]:
        if not 1 <= ino <= self.ninodes:
            raise FsError(f"inode number #{ino} out of range")
        blk = (ino - 1) // INODES_PER_BLOCK + self.inode_start
        offset = (ino - 1) % INODES_PER_BLOCK * INODE_SIZE
        return blk, offset

    def read_inode(self, ino: int) -> Inode:
        blk, offset = self._inode_location(ino)
        return Inode.from_bytes(self.read_block(blk)[offset:offset + INODE_SIZE])

    def write_inode(self, ino: int, inode: Inode) -> None:
        blk, offset = self._inode_location(ino)
        buf = self.read_block(blk)
        buf[offset:offset + INODE_SIZE] = inode.to_bytes()
        self.write_block(blk, buf)

    def alloc_inode(self) -> int:
        """Take the first free inode number from the inode bitmap."""
        bitmap = self.read_block(self.imap)
        for bit in range(min(self.ninodes, _BITS_PER_BLOCK)):
            if not test_bit(bitmap, bit):
                set_bit(bitmap, bit)
                self.write_block(self.imap, bitmap)
                self.superblock.free_inodes_count -= 1
                self.group.free_inodes_count -= 1
                return bit + 1
        raise FsError("no free inodes")

    def alloc_block(self) -> int:
        """Take the first free block from the block bitmap and zero it."""
        bitmap = self.read_block(self.bmap)
        for bit in range(min(self.nblocks, _BITS_PER_BLOCK)):
            if not test_bit(bitmap, bit):
                set_bit(bitmap, bit)
                self.write_block(self.bmap, bitmap)
                self.write_block(bit + 1, bytes(BLKSIZE))
                self.superblock.free_blocks_count -= 1
                self.group.free_blocks_count -= 1
                return bit + 1
        raise FsError("disk full")

    def free_inode(self, ino: int) -> None:
        if not 1 <= ino <= self.ninodes:
            raise FsError(f"inode number #{ino} out of range")
        bitmap = self.read_block(self.imap)
        clear_bit(bitmap, ino - 1)
        self.write_block(self.imap, bitmap)
        self.superblock.free_inodes_count += 1
        self.group.free_inodes_count += 1

    def free_block(self, blk: int) -> None:
        bitmap = self.read_block(self.bmap)
        if blk < 1 or blk > self.nblocks or not test_bit(bitmap, blk - 1):
            raise FsError(f"block number #{blk} out of range")
        clear_bit(bitmap, blk - 1)
        self.write_block(self.bmap, bitmap)
        self.superblock.free_blocks_count += 1
        self.group.free_blocks_count += 1

    def flush(self) -> None:
        """Write the superblock and group descriptor back to the image."""
        self.write_block(1, self.superblock.to_bytes())
        block = self.read_block(2)
        block[:GROUP_DESC_SIZE] = self.group.to_bytes()
        self.write_block(2, block)
        self._file.flush()

    def close(self) -> None:
        if self._file.closed:
            return
        try:
            self.flush()
        finally:
            self._file.close()

    def __enter__(self) -> "Device":
        return self

    def __exit__(self, *args) -> None:
        self.close()