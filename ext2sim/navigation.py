"""Changing and showing the working directory, and listing directories."""

from __future__ import annotations

import time
from typing import List

from .kernel import Kernel, MInode
from .links import link_target
from .structs import N_DIRECT, ROOT_INO, FsError, iter_dir_entries


def chdir(kernel: Kernel, path: str) -> None:
    """Make the directory at path the running process's working directory."""
    found = kernel.getino(path)
    if found is None:
        raise FsError(f"{path} does not exist")
    mip = kernel.iget(*found)
    if not mip.inode.is_dir():
        kernel.iput(mip)
        raise FsError(f"[ {path} ] Not a directory")
    old = kernel.running.cwd
    kernel.running.cwd = mip
    kernel.iput(old)


def ls_line(mip: MInode, name: str) -> str:
    """One long-format listing line for an inode shown under name."""
    inode = mip.inode
    mode = inode.mode
    if inode.is_dir():
        kind = "d"
    elif inode.is_lnk():
        kind = "l"
    else:
        kind = "-"
    perm = "".join(
        ch if mode & (1 << (8 - i)) else "-" for i, ch in enumerate("rwxrwxrwx")
    )
    date = time.ctime(inode.mtime)[4:24]
    line = (
        f"{kind}{perm}{inode.links_count: 4d}{inode.uid: 4d}{inode.gid: 4d}"
        f"  {date} {inode.size: 8d}    {name}"
    )
    if inode.is_lnk():
        line += f" -> {link_target(mip)}"
    return line


def ls(kernel: Kernel, path: str = "") -> List[str]:
    """Listing lines for every entry of a directory (the cwd by default)."""
    if path:
        found = kernel.getino(path)
        if found is None:
            raise FsError(f"{path} does not exist")
        mip = kernel.iget(*found)
    else:
        cwd = kernel.running.cwd
        if cwd is None:
            raise FsError("process has no working directory")
        mip = kernel.iget(cwd.dev, cwd.ino)
    try:
        if not mip.inode.is_dir():
            raise FsError(f"[ {path} ] Not a directory")
        device = kernel.device(mip.dev)
        lines = []
        for blk in mip.inode.block[:N_DIRECT]:
            if blk == 0:
                break
            for _, entry in iter_dir_entries(device.read_block(blk)):
                if not entry.inode:
                    continue
                child = kernel.iget(mip.dev, entry.inode)
                try:
                    lines.append(ls_line(child, entry.name))
                finally:
                    kernel.iput(child)
        return lines
    finally:
        kernel.iput(mip)


def pwd(kernel: Kernel) -> str:
    """Absolute path of the running process's working directory."""
    root = kernel.root
    mip = kernel.running.cwd
    if mip is None:
        raise FsError("process has no working directory")
    names: List[str] = []
    held: List[MInode] = []
    try:
        while not (mip.dev == root.dev and mip.ino == ROOT_INO):
            if mip.ino == ROOT_INO:
                entry = next((m for m in kernel.mounts if m.dev == mip.dev), None)
                if entry is None:
                    raise FsError("broken mount table")
                child = entry.mount_point
            else:
                child = mip
            parent = kernel.iget(child.dev, kernel.parent_ino(child))
            held.append(parent)
            if parent is child:
                raise FsError(f"directory {child.ino} is its own parent")
            names.append(kernel.find_my_name(parent, child.ino))
            mip = parent
    finally:
        for parent in held:
            kernel.iput(parent)
    return "/" + "/".join(reversed(names))