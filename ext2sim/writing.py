"""Writing through descriptors and copying files."""

from __future__ import annotations

import struct

from .device import Device
from .files import _entry, close_file, open_file, read_file
from .kernel import Kernel, MInode
from .structs import (
    ADDRS_PER_BLOCK,
    BLKSIZE,
    N_DIRECT,
    FsError,
    OpenMode,
)

_ADDRS = struct.Struct(f"<{ADDRS_PER_BLOCK}I")


def _alloc(device: Device, mip: MInode) -> int:
    blk = device.alloc_block()
    mip.inode.blocks += 2
    mip.dirty = True
    return blk


def _slot(device: Device, mip: MInode, table: int, index: int) -> int:
    """Entry index of an address block, allocating a data block if it is empty."""
    addrs = list(_ADDRS.unpack(device.read_block(table)))
    if addrs[index] == 0:
        addrs[index] = _alloc(device, mip)
        device.write_block(table, _ADDRS.pack(*addrs))
    return addrs[index]


def _physical_block(device: Device, mip: MInode, logical: int) -> int:
    """Physical block for a logical block of the file, allocated on demand."""
    inode = mip.inode
    if logical < N_DIRECT:
        if inode.block[logical] == 0:
            inode.block[logical] = _alloc(device, mip)
        return inode.block[logical]
    logical -= N_DIRECT
    if logical < ADDRS_PER_BLOCK:
        if inode.block[12] == 0:
            inode.block[12] = _alloc(device, mip)
        return _slot(device, mip, inode.block[12], logical)
    logical -= ADDRS_PER_BLOCK
    if logical < ADDRS_PER_BLOCK * ADDRS_PER_BLOCK:
        if inode.block[13] == 0:
            inode.block[13] = _alloc(device, mip)
        outer, inner = divmod(logical, ADDRS_PER_BLOCK)
        iblk = _slot(device, mip, inode.block[13], outer)
        return _slot(device, mip, iblk, inner)
    raise FsError("triple indirect blocks are not supported")


def write_file(kernel: Kernel, fd: int, data) -> int:
    """Write data at the descriptor's offset; returns the number of bytes written."""
    entry = _entry(kernel, fd)
    if entry.mode is OpenMode.READ:
        raise FsError(f"file descriptor {fd} is not opened for writing")
    payload = memoryview(bytes(data))
    mip = entry.minode
    device = kernel.device(mip.dev)
    written = 0
    while written < len(payload):
        logical, start = divmod(entry.offset, BLKSIZE)
        blk = _physical_block(device, mip, logical)
        take = min(BLKSIZE - start, len(payload) - written)
        block = device.read_block(blk)
        block[start:start + take] = payload[written:written + take]
        device.write_block(blk, block)
        written += take
        entry.offset += take
        if entry.offset > mip.inode.size:
            mip.inode.size = entry.offset
            mip.dirty = True
    return written


def copy(kernel: Kernel, source: str, destination: str) -> int:
    """Copy the contents of source into destination; returns bytes copied."""
    if kernel.getino(source) is None:
        raise FsError(f"copy failed: {source} not found")
    source_fd = open_file(kernel, source, OpenMode.READ)
    try:
        dest_fd = open_file(kernel, destination, OpenMode.WRITE)
        try:
            total = 0
            while True:
                chunk = read_file(kernel, source_fd, BLKSIZE)
                if not chunk:
                    break
                total += write_file(kernel, dest_fd, chunk)
            return total
        finally:
            close_file(kernel, dest_fd)
    finally:
        close_file(kernel, source_fd)