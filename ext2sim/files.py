"""Opening, closing, seeking and reading files through descriptors."""

from __future__ import annotations

import struct
import time
from typing import List, Tuple

from .device import Device
from .dirs import create
from .kernel import Kernel, MInode, OpenFile
from .structs import (
    ADDRS_PER_BLOCK,
    BLKSIZE,
    NFD,
    NOFT,
    N_DIRECT,
    FsError,
    Inode,
    OpenMode,
    PermissionDenied,
)

_ADDRS = struct.Struct(f"<{ADDRS_PER_BLOCK}I")


def _to_mode(mode) -> OpenMode:
    try:
        return OpenMode(mode)
    except ValueError:
        raise FsError(f"open mode {mode} is not defined") from None


def _entry(kernel: Kernel, fd: int) -> OpenFile:
    if not 0 <= fd < NFD:
        raise FsError(f"file descriptor {fd} out of range")
    entry = kernel.running.fds[fd]
    if entry is None:
        raise FsError(f"file descriptor {fd} is not in use")
    return entry


def _free_fd(kernel: Kernel) -> int:
    for fd, entry in enumerate(kernel.running.fds):
        if entry is None:
            return fd
    raise FsError("process has too many files open")


def _share(kernel: Kernel, mip: MInode) -> None:
    """Count one more descriptor on every open-file entry of this inode."""
    for other in kernel.open_files:
        if other.minode is mip:
            other.ref_count += 1


def _check_access(kernel: Kernel, mip: MInode, mode: OpenMode, path: str) -> None:
    if mode in (OpenMode.READ, OpenMode.READ_WRITE) and not kernel.may_read(mip):
        raise PermissionDenied(f"read permission for {path} denied")
    if mode is not OpenMode.READ and not kernel.may_write(mip):
        raise PermissionDenied(f"write permission for {path} denied")


def open_file(kernel: Kernel, path: str, mode) -> int:
    """Open a regular file and return a descriptor of the running process.

    Opening for anything but reading creates a missing file; opening for
    writing truncates it. Several readers may share a file, but a writer
    needs it to itself.
    """
    mode = _to_mode(mode)
    found = kernel.getino(path)
    if found is None:
        if mode is OpenMode.READ:
            raise FsError(f"cannot open {path} for reading: it does not exist")
        create(kernel, path)
        found = kernel.getino(path)
        if found is None:
            raise FsError(f"failed to create {path}")
    mip = kernel.iget(*found)
    try:
        if not mip.inode.is_reg():
            raise FsError(f"{path} is not a regular file")
        _check_access(kernel, mip, mode, path)
        shared = mip.mode is not None
        if shared and not (mip.mode is OpenMode.READ and mode is OpenMode.READ):
            raise FsError(f"{path} is currently open for writing")
        if len(kernel.open_files) >= NOFT:
            raise FsError("the open file table is full")
        fd = _free_fd(kernel)
    except BaseException:
        kernel.iput(mip)
        raise

    if shared:
        # the first open already holds the in-memory inode
        kernel.iput(mip)
        previous = next(f for f in kernel.open_files if f.minode is mip)
        entry = OpenFile(mode, mip, 0, previous.ref_count)
        _share(kernel, mip)
    else:
        entry = OpenFile(mode, mip, 0, 1)
    kernel.open_files.append(entry)
    kernel.running.fds[fd] = entry

    if mode is OpenMode.APPEND:
        entry.offset = mip.inode.size
    if mode is OpenMode.WRITE:
        kernel.truncate(mip)

    mip.mode = mode
    now = int(time.time())
    mip.inode.atime = now
    if mode is not OpenMode.READ:
        mip.inode.mtime = now
    mip.dirty = True
    return fd


def close_file(kernel: Kernel, fd: int) -> None:
    """Release a descriptor of the running process."""
    _entry(kernel, fd)
    kernel._close_descriptor(kernel.running, fd)


def lseek(kernel: Kernel, fd: int, position: int) -> int:
    """Move the offset of a descriptor to a position inside the file."""
    entry = _entry(kernel, fd)
    if position < 0 or position >= entry.minode.inode.size:
        raise FsError(f"position {position} is out of range")
    entry.offset = position
    return position


def _addresses(device: Device, blk: int) -> Tuple[int, ...]:
    if blk == 0:
        return (0,) * ADDRS_PER_BLOCK
    return _ADDRS.unpack(device.read_block(blk))


def _physical_block(device: Device, inode: Inode, logical: int) -> int:
    if logical < N_DIRECT:
        return inode.block[logical]
    logical -= N_DIRECT
    if logical < ADDRS_PER_BLOCK:
        return _addresses(device, inode.block[12])[logical]
    logical -= ADDRS_PER_BLOCK
    if logical < ADDRS_PER_BLOCK * ADDRS_PER_BLOCK:
        outer, inner = divmod(logical, ADDRS_PER_BLOCK)
        iblk = _addresses(device, inode.block[13])[outer]
        return _addresses(device, iblk)[inner]
    raise FsError("file size out of bounds: triple indirect blocks are not supported")


def read_file(kernel: Kernel, fd: int, count: int) -> bytes:
    """Read up to count bytes from a descriptor, advancing its offset."""
    entry = _entry(kernel, fd)
    if entry.mode not in (OpenMode.READ, OpenMode.READ_WRITE):
        raise FsError(f"file descriptor {fd} is not opened for reading")
    if count < 0:
        raise FsError("cannot read a negative number of bytes")
    mip = entry.minode
    device = kernel.device(mip.dev)
    available = max(mip.inode.size - entry.offset, 0)
    chunks: List[bytes] = []
    while count and available:
        logical, start = divmod(entry.offset, BLKSIZE)
        blk = _physical_block(device, mip.inode, logical)
        take = min(available, BLKSIZE - start, count)
        if blk == 0:
            chunks.append(bytes(take))
        else:
            chunks.append(bytes(device.read_block(blk)[start:start + take]))
        available -= take
        count -= take
        entry.offset += take
    return b"".join(chunks)


def cat(kernel: Kernel, path: str) -> bytes:
    """The whole contents of the file at path."""
    fd = open_file(kernel, path, OpenMode.READ)
    try:
        chunks = []
        while True:
            chunk = read_file(kernel, fd, BLKSIZE)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)
    finally:
        close_file(kernel, fd)


def dup(kernel: Kernel, fd: int) -> int:
    """Duplicate a descriptor; the copy starts at the same offset."""
    entry = _entry(kernel, fd)
    if len(kernel.open_files) >= NOFT:
        raise FsError("the open file table is full")
    new_fd = _free_fd(kernel)
    copy = OpenFile(entry.mode, entry.minode, entry.offset, entry.ref_count)
    kernel.open_files.append(copy)
    kernel.running.fds[new_fd] = copy
    _share(kernel, entry.minode)
    return new_fd


def fd_table(kernel: Kernel) -> List[Tuple[int, OpenMode, int, int, int]]:
    """(fd, mode, offset, dev, ino) for each open descriptor of the running process."""
    return [
        (fd, entry.mode, entry.offset, entry.minode.dev, entry.minode.ino)
        for fd, entry in enumerate(kernel.running.fds)
        if entry is not None
    ]