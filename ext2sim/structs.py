"""On-disk ext2 structures and the definitions shared across the package."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Tuple

BLKSIZE = 1024
INODE_SIZE = 128
INODES_PER_BLOCK = BLKSIZE // INODE_SIZE
EXT2_MAGIC = 0xEF53
ROOT_INO = 2
FIRST_INO = 11

NMINODE = 128
NFD = 16
NPROC = 20
NOFT = NFD * NPROC
NMTABLE = 16

N_DIRECT = 12
ADDRS_PER_BLOCK = BLKSIZE // 4

S_IFMT = 0o170000
S_IFDIR = 0o040000
S_IFREG = 0o100000
S_IFLNK = 0o120000

_NAME_ENCODING = "utf-8"
_NAME_ERRORS = "surrogateescape"


class FsError(Exception):
    """A file system operation failed."""


class PermissionDenied(FsError):
    """The running process lacks the permission an operation needs."""


class OpenMode(IntEnum):
    READ = 0
    WRITE = 1
    READ_WRITE = 2
    APPEND = 3


class UserGroup(IntEnum):
    ROOT = 0
    USER = 1
    OTHER = 2


_INODE = struct.Struct("<HHIIIIIHHIII15IIIII12s")


@dataclass
class Inode:
    """An ext2 inode (128 bytes on disk)."""

    mode: int = 0
    uid: int = 0
    size: int = 0
    atime: int = 0
    ctime: int = 0
    mtime: int = 0
    dtime: int = 0
    gid: int = 0
    links_count: int = 0
    blocks: int = 0
    flags: int = 0
    osd1: int = 0
    block: List[int] = field(default_factory=lambda: [0] * 15)
    generation: int = 0
    file_acl: int = 0
    dir_acl: int = 0
    faddr: int = 0
    osd2: bytes = bytes(12)

    @classmethod
    def from_bytes(cls, data) -> "Inode":
        if len(data) < INODE_SIZE:
            raise ValueError(f"inode needs {INODE_SIZE} bytes, got {len(data)}")
        values = _INODE.unpack_from(bytes(data[:INODE_SIZE]))
        return cls(
            *values[:12],
            block=list(values[12:27]),
            generation=values[27],
            file_acl=values[28],
            dir_acl=values[29],
            faddr=values[30],
            osd2=values[31],
        )

    def to_bytes(self) -> bytes:
        if len(self.block) != 15:
            raise ValueError("an inode holds exactly 15 block pointers")
        return _INODE.pack(
            self.mode, self.uid, self.size, self.atime, self.ctime,
            self.mtime, self.dtime, self.gid, self.links_count, self.blocks,
            self.flags, self.osd1, *self.block, self.generation,
            self.file_acl, self.dir_acl, self.faddr, bytes(self.osd2),
        )

    def is_dir(self) -> bool:
        return self.mode & S_IFMT == S_IFDIR

    def is_reg(self) -> bool:
        return self.mode & S_IFMT == S_IFREG

    def is_lnk(self) -> bool:
        return self.mode & S_IFMT == S_IFLNK


_SUPER = struct.Struct("<13IHhH")


@dataclass
class SuperBlock:
    """The leading fields of an ext2 superblock; other bytes are kept as read."""

    inodes_count: int = 0
    blocks_count: int = 0
    r_blocks_count: int = 0
    free_blocks_count: int = 0
    free_inodes_count: int = 0
    first_data_block: int = 0
    log_block_size: int = 0
    log_frag_size: int = 0
    blocks_per_group: int = 0
    frags_per_group: int = 0
    inodes_per_group: int = 0
    mtime: int = 0
    wtime: int = 0
    mnt_count: int = 0
    max_mnt_count: int = 0
    magic: int = 0
    raw: bytes = field(default=bytes(BLKSIZE), repr=False)

    @classmethod
    def from_bytes(cls, data) -> "SuperBlock":
        if len(data) < _SUPER.size:
            raise ValueError("superblock data too short")
        raw = bytes(data[:BLKSIZE]).ljust(BLKSIZE, b"\0")
        return cls(*_SUPER.unpack_from(raw), raw=raw)

    def to_bytes(self) -> bytes:
        buf = bytearray(bytes(self.raw).ljust(BLKSIZE, b"\0")[:BLKSIZE])
        _SUPER.pack_into(
            buf, 0,
            self.inodes_count, self.blocks_count, self.r_blocks_count,
            self.free_blocks_count, self.free_inodes_count,
            self.first_data_block, self.log_block_size, self.log_frag_size,
            self.blocks_per_group, self.frags_per_group,
            self.inodes_per_group, self.mtime, self.wtime,
            self.mnt_count, self.max_mnt_count, self.magic,
        )
        return bytes(buf)


_GROUP = struct.Struct("<IIIHHHH12s")
GROUP_DESC_SIZE = _GROUP.size


@dataclass
class GroupDescriptor:
    """An ext2 block group descriptor (32 bytes on disk)."""

    block_bitmap: int = 0
    inode_bitmap: int = 0
    inode_table: int = 0
    free_blocks_count: int = 0
    free_inodes_count: int = 0
    used_dirs_count: int = 0
    pad: int = 0
    reserved: bytes = bytes(12)

    @classmethod
    def from_bytes(cls, data) -> "GroupDescriptor":
        if len(data) < _GROUP.size:
            raise ValueError("group descriptor data too short")
        return cls(*_GROUP.unpack_from(bytes(data[:_GROUP.size])))

    def to_bytes(self) -> bytes:
        return _GROUP.pack(
            self.block_bitmap, self.inode_bitmap, self.inode_table,
            self.free_blocks_count, self.free_inodes_count,
            self.used_dirs_count, self.pad, bytes(self.reserved),
        )


_DIRHDR = struct.Struct("<IHBB")
DIR_HEADER_SIZE = _DIRHDR.size


@dataclass
class DirEntry:
    """One entry of a directory data block."""

    inode: int
    rec_len: int
    name: str
    file_type: int = 0

    @property
    def name_bytes(self) -> bytes:
        return self.name.encode(_NAME_ENCODING, _NAME_ERRORS)

    @property
    def name_len(self) -> int:
        return len(self.name_bytes)


def ideal_rec_len(name_len: int) -> int:
    """Smallest 4-aligned record length that holds a name of this length."""
    return 4 * ((11 + name_len) // 4)


def iter_dir_entries(block) -> Iterator[Tuple[int, DirEntry]]:
    """Yield (offset, entry) for each record of a directory block."""
    offset = 0
    size = len(block)
    while offset < size:
        if offset + DIR_HEADER_SIZE > size:
            raise FsError(f"truncated directory entry at offset {offset}")
        ino, rec_len, name_len, file_type = _DIRHDR.unpack_from(block, offset)
        if rec_len < DIR_HEADER_SIZE:
            raise FsError(f"corrupt directory entry at offset {offset}")
        start = offset + DIR_HEADER_SIZE
        name = bytes(block[start:start + name_len]).decode(
            _NAME_ENCODING, _NAME_ERRORS
        )
        yield offset, DirEntry(ino, rec_len, name, file_type)
        offset += rec_len


def pack_dir_entry(block: bytearray, offset: int, entry: DirEntry) -> None:
    """Write a directory entry into a block at the given offset."""
    name = entry.name_bytes
    if len(name) > 255:
        raise ValueError("directory entry name longer than 255 bytes")
    end = offset + DIR_HEADER_SIZE + len(name)
    if offset < 0 or end > len(block):
        raise ValueError("directory entry does not fit in the block")
    _DIRHDR.pack_into(block, offset, entry.inode, entry.rec_len, len(name),
                      entry.file_type)
    block[offset + DIR_HEADER_SIZE:end] = name