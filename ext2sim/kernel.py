"""In-memory kernel state: inode cache, processes, open files and mounts."""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .device import Device
from .structs import (
    ADDRS_PER_BLOCK,
    NFD,
    NMINODE,
    NPROC,
    N_DIRECT,
    ROOT_INO,
    DirEntry,
    FsError,
    Inode,
    OpenMode,
    PermissionDenied,
    UserGroup,
    iter_dir_entries,
)

_ADDRS = struct.Struct(f"<{ADDRS_PER_BLOCK}I")


@dataclass(eq=False)
class MountEntry:
    """A disk image mounted on a directory of another device."""

    dev: int
    name: str
    device: Device
    mount_point: "MInode"

    @property
    def ninodes(self) -> int:
        return self.device.ninodes

    @property
    def nblocks(self) -> int:
        return self.device.nblocks

    @property
    def imap(self) -> int:
        return self.device.imap

    @property
    def bmap(self) -> int:
        return self.device.bmap

    @property
    def inode_start(self) -> int:
        return self.device.inode_start


@dataclass(eq=False)
class MInode:
    """An inode held in memory together with its reference count."""

    inode: Inode
    dev: int
    ino: int
    ref_count: int = 1
    dirty: bool = False
    mounted: bool = False
    mode: Optional[OpenMode] = None
    mount: Optional[MountEntry] = None


@dataclass(eq=False)
class OpenFile:
    """An entry of the open file table."""

    mode: OpenMode
    minode: MInode
    offset: int = 0
    ref_count: int = 1


@dataclass(eq=False)
class Proc:
    """A process with its identity, working directory and descriptors."""

    pid: int
    ready: bool = False
    uid: int = 0
    gid: int = 0
    cwd: Optional[MInode] = None
    fds: List[Optional[OpenFile]] = field(default_factory=lambda: [None] * NFD)


class Kernel:
    """The running file system: the root device, mounts and processes."""

    def __init__(self, disk):
        self.devices: Dict[int, Device] = {}
        self._next_dev = 1
        self.minodes: Dict[Tuple[int, int], MInode] = {}
        self.open_files: List[OpenFile] = []
        self.mounts: List[MountEntry] = []
        self.procs = [Proc(pid) for pid in range(NPROC)]
        self._closed = False
        root_dev = self._attach_device(Device(disk))
        try:
            self.root = self.iget(root_dev, ROOT_INO)
            self.running = self.procs[0]
            self.running.ready = True
            self.running.cwd = self.iget(root_dev, ROOT_INO)
        except BaseException:
            self.devices.pop(root_dev).close()
            raise

    def _attach_device(self, device: Device) -> int:
        dev = self._next_dev
        self._next_dev += 1
        self.devices[dev] = device
        return dev

    def _detach_device(self, dev: int) -> Device:
        return self.devices.pop(dev)

    def _mount_for(self, dev: int) -> MountEntry:
        for entry in self.mounts:
            if entry.dev == dev:
                return entry
        raise FsError(f"device {dev} not found in mount table")

    def device(self, dev: int) -> Device:
        try:
            return self.devices[dev]
        except KeyError:
            raise FsError(f"device {dev} not found") from None

    def iget(self, dev: int, ino: int) -> MInode:
        """Return the in-memory inode for (dev, ino), loading it if needed."""
        mip = self.minodes.get((dev, ino))
        if mip is not None:
            mip.ref_count += 1
            return mip
        if len(self.minodes) >= NMINODE:
            raise FsError("no more free minodes")
        mip = MInode(self.device(dev).read_inode(ino), dev, ino)
        self.minodes[(dev, ino)] = mip
        return mip

    def iput(self, mip: Optional[MInode]) -> None:
        """Drop one reference; write the inode back once it is unused."""
        if mip is None:
            return
        if mip.ref_count <= 0:
            raise FsError(f"minode [{mip.dev}, {mip.ino}] is not in use")
        mip.ref_count -= 1
        if mip.ref_count > 0:
            return
        self.minodes.pop((mip.dev, mip.ino), None)
        if mip.dirty:
            self.device(mip.dev).write_inode(mip.ino, mip.inode)
            mip.dirty = False

    def _entries(self, mip: MInode) -> Iterator[DirEntry]:
        if not mip.inode.is_dir():
            return
        device = self.device(mip.dev)
        for blk in mip.inode.block[:N_DIRECT]:
            if blk == 0:
                break
            for _, entry in iter_dir_entries(device.read_block(blk)):
                yield entry

    def search(self, mip: MInode, name: str) -> Optional[int]:
        """Inode number of a name in a directory, or None."""
        for entry in self._entries(mip):
            if entry.inode and entry.name == name:
                return entry.inode
        return None

    def getino(self, pathname: str) -> Optional[Tuple[int, int]]:
        """Resolve a path to (dev, ino), crossing mount points; None if absent."""
        if pathname == "/":
            return self.root.dev, ROOT_INO
        mip = self.root if pathname.startswith("/") else self.running.cwd
        if mip is None:
            raise FsError("process has no working directory")
        mip.ref_count += 1
        dev, ino = mip.dev, mip.ino
        try:
            for name in (part for part in pathname.split("/") if part):
                if name == ".." and mip.dev != self.root.dev and mip.ino == ROOT_INO:
                    point = self._mount_for(mip.dev).mount_point
                    found = self.search(point, "..")
                    if found is None:
                        raise FsError("mount point has no parent entry")
                    dev, ino = point.dev, found
                    upper = self.iget(dev, ino)
                    self.iput(mip)
                    mip = upper
                    continue
                found = self.search(mip, name)
                if found is None:
                    return None
                ino = found
                child = self.iget(dev, ino)
                self.iput(mip)
                mip = child
                if mip.mounted and mip.mount is not None:
                    dev, ino = mip.mount.dev, ROOT_INO
                    lower = self.iget(dev, ino)
                    self.iput(mip)
                    mip = lower
            return dev, ino
        finally:
            self.iput(mip)

    def find_my_name(self, parent: MInode, ino: int) -> str:
        """Name under which inode ino appears in the parent directory."""
        for entry in self._entries(parent):
            if entry.inode == ino:
                return entry.name
        raise FsError(f"inode {ino} not found in directory {parent.ino}")

    def parent_ino(self, mip: MInode) -> int:
        """Inode number of the '..' entry of a directory."""
        block = self.device(mip.dev).read_block(mip.inode.block[0])
        entries = iter_dir_entries(block)
        try:
            next(entries)
            return next(entries)[1].inode
        except StopIteration:
            raise FsError(f"directory {mip.ino} has no parent entry") from None

    def _walk_blocks(self, mip: MInode) -> Iterator[Tuple[int, bool]]:
        """Yield (block, is_data) for each block counted by the inode."""
        inode = mip.inode
        device = self.device(mip.dev)
        remaining = inode.blocks // 2
        for blk in inode.block[:N_DIRECT]:
            if remaining == 0:
                return
            remaining -= 1
            yield blk, True
        if remaining == 0:
            return
        remaining -= 1
        indirect = _ADDRS.unpack(device.read_block(inode.block[12]))
        yield inode.block[12], False
        for blk in indirect:
            if remaining == 0:
                return
            remaining -= 1
            yield blk, True
        if remaining == 0:
            return
        remaining -= 1
        double = _ADDRS.unpack(device.read_block(inode.block[13]))
        yield inode.block[13], False
        for iblk in double:
            if remaining == 0:
                return
            remaining -= 1
            data = _ADDRS.unpack(device.read_block(iblk))
            yield iblk, False
            for blk in data:
                if remaining == 0:
                    return
                remaining -= 1
                yield blk, True

    def block_list(self, mip: MInode) -> List[int]:
        """Data blocks of a file in logical order."""
        return [blk for blk, is_data in self._walk_blocks(mip) if is_data]

    def truncate(self, mip: MInode) -> None:
        """Release every block of the inode and set its size to zero."""
        device = self.device(mip.dev)
        for blk, _ in list(self._walk_blocks(mip)):
            if blk == 0:
                continue
            try:
                device.free_block(blk)
            except FsError:
                # an already free block: keep releasing the rest
                pass
        inode = mip.inode
        inode.block = [0] * 15
        inode.blocks = 0
        inode.size = 0
        now = int(time.time())
        inode.atime = now
        inode.mtime = now
        mip.dirty = True

    def free_inode_and_blocks(self, mip: MInode) -> None:
        self.truncate(mip)
        self.device(mip.dev).free_inode(mip.ino)

    def _permitted(self, mip: MInode, owner: int, group: int, other: int) -> bool:
        proc = self.running
        mode = mip.inode.mode
        return bool(
            proc.uid == 0
            or (mode & owner and proc.uid == mip.inode.uid)
            or (mode & group and proc.gid == mip.inode.gid)
            or mode & other
        )

    def may_write(self, mip: MInode) -> bool:
        return self._permitted(mip, 0o200, 0o020, 0o002)

    def may_read(self, mip: MInode) -> bool:
        return self._permitted(mip, 0o400, 0o040, 0o004)

    def create_process(self, group) -> int:
        """Start a process of the given user group; returns its pid."""
        group = UserGroup(group)
        if group < self.running.gid:
            raise PermissionDenied(
                "cannot create a process with higher permissions than the current one"
            )
        for proc in self.procs:
            if not proc.ready:
                proc.ready = True
                proc.uid = proc.pid
                proc.gid = int(group)
                proc.fds = [None] * NFD
                proc.cwd = self.iget(self.root.dev, ROOT_INO)
                return proc.pid
        raise FsError("all processes are in use")

    def switch_process(self, pid: int) -> None:
        if not 0 <= pid < NPROC or not self.procs[pid].ready:
            raise FsError(f"invalid process ID {pid}")
        self.running = self.procs[pid]

    def _close_descriptor(self, proc: Proc, fd: int) -> None:
        entry = proc.fds[fd]
        if entry is None:
            raise FsError(f"file descriptor {fd} is not in use")
        proc.fds[fd] = None
        for other in self.open_files:
            if other.minode is entry.minode:
                other.ref_count -= 1
        self.open_files.remove(entry)
        if entry.ref_count == 0:
            entry.minode.mode = None
            self.iput(entry.minode)

    def kill_process(self, pid: int) -> None:
        if not 0 < pid < NPROC or not self.procs[pid].ready:
            raise FsError(f"invalid process id {pid}")
        target = self.procs[pid]
        if not (target.gid > self.running.gid or target.uid == self.running.uid):
            raise PermissionDenied(f"incorrect permissions to kill process {pid}")
        for fd, entry in enumerate(target.fds):
            if entry is not None:
                self._close_descriptor(target, fd)
        target.ready = False
        if target.cwd is not None:
            self.iput(target.cwd)
            target.cwd = None
        if target is self.running:
            self.running = self.procs[0]

    def close(self) -> None:
        """Write back every cached inode and close all devices."""
        if self._closed:
            return
        self._closed = True
        try:
            for mip in self.minodes.values():
                if mip.dirty:
                    self.device(mip.dev).write_inode(mip.ino, mip.inode)
                    mip.dirty = False
            self.minodes.clear()
        finally:
            self.mounts.clear()
            for dev in list(self.devices):
                self.devices.pop(dev).close()

    def __enter__(self) -> "Kernel":
        return self

    def __exit__(self, *args) -> None:
        self.close()