"""Hard links, unlinking and symbolic links."""

from __future__ import annotations

import struct
import time
from contextlib import ExitStack

from .dirs import _check_name, _get, _split, create, enter_name, remove_child
from .kernel import Kernel, MInode
from .structs import S_IFLNK, FsError, PermissionDenied

_TARGET = struct.Struct("<15I")
# the target lives in the 60 bytes of i_block and keeps a terminating NUL
_MAX_TARGET = _TARGET.size - 1
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


def _hold(stack: ExitStack, kernel: Kernel, mip: MInode) -> MInode:
    stack.callback(kernel.iput, mip)
    return mip


def link(kernel: Kernel, old_path: str, new_path: str) -> None:
    """Give the file at old_path a second name, new_path."""
    old_parent_path, old_name = _split(old_path)
    new_parent_path, new_name = _split(new_path)
    _check_name(new_name)
    with ExitStack() as stack:
        old_parent = _hold(stack, kernel, _get(kernel, old_parent_path))
        if not old_parent.inode.is_dir():
            raise FsError(f"{old_parent_path} is not a directory")
        ino = kernel.search(old_parent, old_name)
        if ino is None:
            raise FsError(f"{old_name} does not exist in {old_parent_path}")
        child = _hold(stack, kernel, kernel.iget(old_parent.dev, ino))
        if child.inode.is_dir():
            raise FsError(f"{old_name} is a directory")
        new_parent = _hold(stack, kernel, _get(kernel, new_parent_path))
        if new_parent.dev != child.dev:
            raise FsError(f"{old_name} and {new_path} are not on the same device")
        if not new_parent.inode.is_dir():
            raise FsError(f"{new_parent_path} is not a directory")
        if not kernel.may_write(new_parent):
            raise PermissionDenied(f"no permission to write to {new_parent_path}")
        if kernel.search(new_parent, new_name) is not None:
            raise FsError(f"{new_name} already exists in {new_parent_path}")
        enter_name(kernel, new_parent, child.ino, new_name)
        child.inode.links_count += 1
        child.dirty = True


def unlink(kernel: Kernel, path: str) -> None:
    """Remove a name of a regular file or symlink; free it with its last link."""
    parent_path, name = _split(path)
    found = kernel.getino(path)
    if found is None:
        raise FsError(f"{path} does not exist")
    with ExitStack() as stack:
        child = _hold(stack, kernel, kernel.iget(*found))
        parent = _hold(stack, kernel, _get(kernel, parent_path))
        if not (child.inode.is_reg() or child.inode.is_lnk()):
            raise FsError(f"{path} is not a regular file or a symbolic link")
        if not kernel.may_write(parent):
            raise PermissionDenied(f"no permission to write to {parent_path}")
        remove_child(kernel, parent, name)
        child.inode.links_count -= 1
        child.dirty = True
        if child.inode.links_count <= 0:
            kernel.free_inode_and_blocks(child)
            child.inode.links_count = 0
            child.inode.dtime = int(time.time())


def symlink(kernel: Kernel, old_path: str, new_path: str) -> None:
    """Create new_path as a symbolic link whose target is old_path."""
    target = old_path.encode(_ENCODING, _ERRORS)
    if len(target) > _MAX_TARGET:
        raise FsError(f"link target longer than {_MAX_TARGET} bytes")
    old_parent_path, old_name = _split(old_path)
    with ExitStack() as stack:
        old_parent = _hold(stack, kernel, _get(kernel, old_parent_path))
        if not old_parent.inode.is_dir():
            raise FsError(f"{old_parent_path} is not a directory")
        ino = kernel.search(old_parent, old_name)
        if ino is None:
            raise FsError(f"{old_name} does not exist in {old_parent_path}")
        old = _hold(stack, kernel, kernel.iget(old_parent.dev, ino))
        create(kernel, new_path)
        found = kernel.getino(new_path)
        if found is None:
            raise FsError(f"failed to create new file: {new_path}")
        new = _hold(stack, kernel, kernel.iget(*found))
        new.inode.mode = S_IFLNK | (old.inode.mode & 0o777)
        new.inode.block = list(_TARGET.unpack(target.ljust(_TARGET.size, b"\0")))
        new.inode.size = len(target)
        new.dirty = True


def link_target(mip: MInode) -> str:
    """The path a symbolic link points to."""
    if not mip.inode.is_lnk():
        raise FsError(f"inode {mip.ino} is not a symlink")
    raw = _TARGET.pack(*mip.inode.block)
    return raw[:mip.inode.size].decode(_ENCODING, _ERRORS)


def readlink(kernel: Kernel, path: str) -> str:
    """The target of the symbolic link at path."""
    found = kernel.getino(path)
    if found is None:
        raise FsError(f"{path} not found")
    mip = kernel.iget(*found)
    try:
        if not mip.inode.is_lnk():
            raise FsError(f"{path} is not a symlink")
        return link_target(mip)
    finally:
        kernel.iput(mip)