"""Mounting further disk images on directories of the running system."""

from __future__ import annotations

import os
from typing import List

from .device import Device
from .kernel import Kernel, MountEntry
from .structs import NMTABLE, FsError


def mount(kernel: Kernel, diskname, mountpoint: str) -> MountEntry:
    """Mount the image at diskname on the directory mountpoint."""
    diskname = os.fspath(diskname)
    if any(entry.name == diskname for entry in kernel.mounts):
        raise FsError(f"disk: {diskname} is already mounted")
    if len(kernel.mounts) >= NMTABLE:
        raise FsError("all mount table entries are in use")
    try:
        device = Device(diskname)
    except OSError as exc:
        raise FsError(f"open {diskname} failed") from exc
    try:
        found = kernel.getino(mountpoint)
        if found is None:
            raise FsError(f"mountpoint: {mountpoint} does not exist")
        mip = kernel.iget(*found)
        try:
            if not mip.inode.is_dir():
                raise FsError(f"mountpoint: {mountpoint} is not a directory")
            if mip.mounted:
                raise FsError(f"mountpoint: {mountpoint} is already a mount point")
            if any(proc.cwd is mip for proc in kernel.procs):
                raise FsError(f"mountpoint: {mountpoint} is currently in use")
        except BaseException:
            kernel.iput(mip)
            raise
    except BaseException:
        device.close()
        raise
    dev = kernel._attach_device(device)
    entry = MountEntry(dev, diskname, device, mip)
    mip.mounted = True
    mip.mount = entry
    kernel.mounts.append(entry)
    return entry


def umount(kernel: Kernel, diskname) -> None:
    """Unmount a previously mounted image that nothing is using."""
    diskname = os.fspath(diskname)
    entry = next((m for m in kernel.mounts if m.name == diskname), None)
    if entry is None:
        raise FsError(f"disk: {diskname} not found in mount tables")
    for proc in kernel.procs:
        if proc.cwd is not None and proc.cwd.dev == entry.dev:
            raise FsError(f"disk: {diskname} is currently in use in proc {proc.pid}")
    if any(mip.dev == entry.dev for mip in kernel.minodes.values()):
        raise FsError(f"disk: {diskname} is currently in use")
    point = entry.mount_point
    point.mounted = False
    point.mount = None
    kernel.iput(point)
    kernel.mounts.remove(entry)
    kernel._detach_device(entry.dev).close()


def mount_table(kernel: Kernel) -> List[MountEntry]:
    """The mounted images, in mount order."""
    return list(kernel.mounts)