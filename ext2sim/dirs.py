"""Creating and removing files and directories, and editing directory blocks."""

from __future__ import annotations

import time
from typing import Tuple

from .kernel import Kernel, MInode
from .structs import (
    BLKSIZE,
    N_DIRECT,
    S_IFDIR,
    S_IFREG,
    DirEntry,
    FsError,
    Inode,
    PermissionDenied,
    ideal_rec_len,
    iter_dir_entries,
    pack_dir_entry,
)

_MAX_NAME = 255


def _split(path: str) -> Tuple[str, str]:
    """Split a path into (parent path, final name) the way dirname/basename do."""
    if not path:
        raise FsError("no path specified")
    stripped = path.rstrip("/") or "/"
    if stripped == "/":
        raise FsError("the root directory has no parent")
    parent, sep, name = stripped.rpartition("/")
    if not sep:
        parent = "."
    else:
        parent = parent.rstrip("/") or "/"
    return parent, name


def _check_name(name: str) -> None:
    if len(name.encode("utf-8", "surrogateescape")) > _MAX_NAME:
        raise FsError(f"name {name!r} is longer than {_MAX_NAME} bytes")


def _get(kernel: Kernel, path: str) -> MInode:
    found = kernel.getino(path)
    if found is None:
        raise FsError(f"{path} does not exist")
    return kernel.iget(*found)


def _check_parent(kernel: Kernel, parent: MInode, parent_path: str, name: str) -> None:
    if not parent.inode.is_dir():
        raise FsError(f"{parent_path} is not a directory")
    if not kernel.may_write(parent):
        raise PermissionDenied(f"no permission to write to {parent_path}")
    if kernel.search(parent, name) is not None:
        raise FsError(f"{name} already exists in {parent_path}")


def _new_inode(kernel: Kernel, mode: int) -> Inode:
    now = int(time.time())
    proc = kernel.running
    return Inode(mode=mode, uid=proc.uid, gid=proc.gid,
                 atime=now, ctime=now, mtime=now)


def create(kernel: Kernel, path: str) -> int:
    """Create an empty regular file; returns its inode number."""
    parent_path, name = _split(path)
    _check_name(name)
    parent = _get(kernel, parent_path)
    try:
        _check_parent(kernel, parent, parent_path, name)
        device = kernel.device(parent.dev)
        ino = device.alloc_inode()
        mip = kernel.iget(parent.dev, ino)
        try:
            inode = _new_inode(kernel, S_IFREG | 0o644)
            inode.links_count = 1
            mip.inode = inode
            mip.dirty = True
            enter_name(kernel, parent, ino, name)
        finally:
            kernel.iput(mip)
        parent.dirty = True
        return ino
    finally:
        kernel.iput(parent)


def make_directory(kernel: Kernel, path: str) -> int:
    """Create an empty directory holding '.' and '..'; returns its inode number."""
    parent_path, name = _split(path)
    _check_name(name)
    parent = _get(kernel, parent_path)
    try:
        _check_parent(kernel, parent, parent_path, name)
        device = kernel.device(parent.dev)
        ino = device.alloc_inode()
        try:
            blk = device.alloc_block()
        except FsError:
            device.free_inode(ino)
            raise
        mip = kernel.iget(parent.dev, ino)
        try:
            inode = _new_inode(kernel, S_IFDIR | 0o755)
            inode.size = BLKSIZE
            inode.links_count = 2
            inode.blocks = 2
            inode.block[0] = blk
            mip.inode = inode
            mip.dirty = True

            block = bytearray(BLKSIZE)
            pack_dir_entry(block, 0, DirEntry(ino, 12, "."))
            pack_dir_entry(block, 12, DirEntry(parent.ino, BLKSIZE - 12, ".."))
            device.write_block(blk, block)

            parent.inode.links_count += 1
            enter_name(kernel, parent, ino, name)
        finally:
            kernel.iput(mip)
        parent.dirty = True
        return ino
    finally:
        kernel.iput(parent)


def enter_name(kernel: Kernel, parent: MInode, ino: int, name: str) -> None:
    """Add a (name, ino) entry to a directory, growing it by a block if needed."""
    _check_name(name)
    device = kernel.device(parent.dev)
    entry = DirEntry(ino, 0, name)
    needed = ideal_rec_len(entry.name_len)
    free_slot = None
    for index, blk in enumerate(parent.inode.block[:N_DIRECT]):
        if blk == 0:
            free_slot = index
            break
        block = device.read_block(blk)
        entries = list(iter_dir_entries(block))
        if not entries:
            continue
        offset, last = entries[-1]
        ideal = ideal_rec_len(last.name_len)
        remaining = last.rec_len - ideal
        if remaining >= needed:
            last.rec_len = ideal
            pack_dir_entry(block, offset, last)
            entry.rec_len = remaining
            pack_dir_entry(block, offset + ideal, entry)
            device.write_block(blk, block)
            return
    if free_slot is None:
        raise FsError(f"directory {parent.ino} is full")

    blk = device.alloc_block()
    parent.inode.blocks += 2
    parent.inode.block[free_slot] = blk
    parent.inode.size += BLKSIZE
    parent.dirty = True
    block = bytearray(BLKSIZE)
    entry.rec_len = BLKSIZE
    pack_dir_entry(block, 0, entry)
    device.write_block(blk, block)


def _is_empty(kernel: Kernel, mip: MInode) -> bool:
    device = kernel.device(mip.dev)
    for blk in mip.inode.block[:N_DIRECT]:
        if blk == 0:
            break
        for _, entry in iter_dir_entries(device.read_block(blk)):
            if entry.inode and entry.name not in (".", ".."):
                return False
    return True


def remove_directory(kernel: Kernel, path: str) -> None:
    """Remove an empty directory that no one else is using."""
    parent_path, name = _split(path)
    if name in (".", ".."):
        raise FsError(f"cannot remove '{name}'")
    parent = _get(kernel, parent_path)
    try:
        if not parent.inode.is_dir():
            raise FsError(f"{parent_path} is not a directory")
        ino = kernel.search(parent, name)
        if ino is None:
            raise FsError(f"no such directory path '{parent_path}/{name}' found")
        child = kernel.iget(parent.dev, ino)
        try:
            if not child.inode.is_dir():
                raise FsError(f"{parent_path}/{name} is not a directory")
            if not kernel.may_write(parent):
                raise PermissionDenied(
                    f"cannot delete another user's directory: '{parent_path}/{name}'"
                )
            if child.ref_count != 1 or child.mounted:
                raise FsError(f"directory '{parent_path}/{name}' is busy")
            if child.inode.links_count > 2 or not _is_empty(kernel, child):
                raise FsError(f"directory '{parent_path}/{name}' is not empty")
            remove_child(kernel, parent, name)
            kernel.free_inode_and_blocks(child)
            child.inode.links_count = 0
            child.inode.dtime = int(time.time())
            child.dirty = True
            parent.inode.links_count -= 1
            parent.dirty = True
        finally:
            kernel.iput(child)
    finally:
        kernel.iput(parent)


def remove_child(kernel: Kernel, parent: MInode, name: str) -> None:
    """Delete the entry called name from a directory's data blocks."""
    device = kernel.device(parent.dev)
    inode = parent.inode
    for index, blk in enumerate(inode.block[:N_DIRECT]):
        if blk == 0:
            break
        block = device.read_block(blk)
        entries = [entry for _, entry in iter_dir_entries(block)]
        position = next(
            (k for k, e in enumerate(entries) if e.inode and e.name == name), None
        )
        if position is None:
            continue
        removed = entries[position]
        if removed.rec_len == BLKSIZE or len(entries) == 1:
            pointers = inode.block[:N_DIRECT]
            del pointers[index]
            pointers.append(0)
            inode.block[:N_DIRECT] = pointers
            inode.blocks -= 2
            inode.size -= BLKSIZE
            device.free_block(blk)
        else:
            kept = entries[:position] + entries[position + 1:]
            rebuilt = bytearray(BLKSIZE)
            offset = 0
            for k, entry in enumerate(kept):
                if k == len(kept) - 1:
                    entry.rec_len = BLKSIZE - offset
                pack_dir_entry(rebuilt, offset, entry)
                offset += entry.rec_len
            device.write_block(blk, rebuilt)
        parent.dirty = True
        return
    raise FsError(f"{name} not found in directory {parent.ino}")