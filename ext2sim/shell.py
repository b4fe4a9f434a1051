"""The interactive command shell over a disk image."""

from __future__ import annotations

import argparse
import re
import sys
from typing import Callable, Dict, List, Optional

from .dirs import create, make_directory, remove_directory
from .files import cat, close_file, open_file
from .kernel import Kernel
from .links import link, readlink, symlink, unlink
from .mounts import mount, mount_table, umount
from .navigation import chdir, ls, pwd
from .structs import FsError, OpenMode, UserGroup
from .writing import copy, write_file

PROMPT = (
    "[ ls | cd | pwd | mkdir | creat | rmdir\n"
    "| link | unlink | symlink | readlink | quit |\n"
    "| cat | write | append | cp | mount | umount |\n"
    "| new | switch | kill ] $> "
)

_GROUPS = {
    "": UserGroup.USER,
    "user": UserGroup.USER,
    "other": UserGroup.OTHER,
    "root": UserGroup.ROOT,
}

_WRITE_TEXT = re.compile(r"^\s*\S+\s+\S+ (.+)$")

Handler = Callable[[Kernel, List[str], str], str]


def _arg(args: List[str], index: int) -> str:
    return args[index] if len(args) > index else ""


def _atoi(text: str) -> int:
    match = re.match(r"\s*([+-]?\d+)", text)
    return int(match.group(1)) if match else 0


def _ls(kernel: Kernel, args: List[str], line: str) -> str:
    return "\n".join(ls(kernel, _arg(args, 0)))


def _cd(kernel: Kernel, args: List[str], line: str) -> str:
    chdir(kernel, _arg(args, 0))
    return ""


def _pwd(kernel: Kernel, args: List[str], line: str) -> str:
    return f"CWD = {pwd(kernel)}"


def _mkdir(kernel: Kernel, args: List[str], line: str) -> str:
    path = _arg(args, 0)
    if not path:
        return "Error: No path specified!"
    make_directory(kernel, path)
    return ""


def _creat(kernel: Kernel, args: List[str], line: str) -> str:
    create(kernel, _arg(args, 0))
    return ""


def _rmdir(kernel: Kernel, args: List[str], line: str) -> str:
    remove_directory(kernel, _arg(args, 0))
    return ""


def _link(kernel: Kernel, args: List[str], line: str) -> str:
    link(kernel, _arg(args, 0), _arg(args, 1))
    return ""


def _unlink(kernel: Kernel, args: List[str], line: str) -> str:
    unlink(kernel, _arg(args, 0))
    return ""


def _symlink(kernel: Kernel, args: List[str], line: str) -> str:
    symlink(kernel, _arg(args, 0), _arg(args, 1))
    return ""


def _readlink(kernel: Kernel, args: List[str], line: str) -> str:
    path = _arg(args, 0)
    return f"{path} -> {readlink(kernel, path)}"


def _cat(kernel: Kernel, args: List[str], line: str) -> str:
    return cat(kernel, _arg(args, 0)).decode("utf-8", "replace")


def _write_with(mode: OpenMode) -> Handler:
    def handler(kernel: Kernel, args: List[str], line: str) -> str:
        path = _arg(args, 0)
        match = _WRITE_TEXT.match(line)
        if match is None:
            raise FsError("nothing to write")
        fd = open_file(kernel, path, mode)
        try:
            count = write_file(kernel, fd, match.group(1).encode("utf-8"))
        finally:
            close_file(kernel, fd)
        return f"wrote {count} bytes to {path}"

    return handler


def _cp(kernel: Kernel, args: List[str], line: str) -> str:
    source, destination = _arg(args, 0), _arg(args, 1)
    count = copy(kernel, source, destination)
    return f"{count} bytes copied from {source} to {destination}"


def _mount(kernel: Kernel, args: List[str], line: str) -> str:
    diskname, mountpoint = _arg(args, 0), _arg(args, 1)
    if not diskname:
        rows = ["mounted disks:",
                "    dev     ninodes nblocks imap    bmap    inode_start   name"]
        for entry in mount_table(kernel):
            rows.append(
                f"    {entry.dev:6d}  {entry.ninodes:6d}  {entry.nblocks:6d}  "
                f"{entry.imap:6d}  {entry.bmap:6d}  {entry.inode_start:6d}"
                f"      {entry.name}"
            )
        return "\n".join(rows)
    if not mountpoint:
        return ("must provide mount point for mounting:\n"
                "    mount <diskname> <mountpoint>")
    mount(kernel, diskname, mountpoint)
    return ""


def _umount(kernel: Kernel, args: List[str], line: str) -> str:
    diskname = _arg(args, 0)
    if not diskname:
        return "must provide diskimage to un-mount:\n    umount <diskname>"
    umount(kernel, diskname)
    return f"Successfully unmounted {diskname}"


def _new(kernel: Kernel, args: List[str], line: str) -> str:
    kind = _arg(args, 0)
    group = _GROUPS.get(kind)
    if group is None:
        raise FsError(f"Cannot create process of user type: [ {kind} ]")
    pid = kernel.create_process(group)
    return f"Created new process #p{pid}"


def _switch(kernel: Kernel, args: List[str], line: str) -> str:
    target = _arg(args, 0)
    if not target:
        return ""
    kernel.switch_process(_atoi(target[1:]))
    return f"Successfully switched to process {kernel.running.pid}"


def _kill(kernel: Kernel, args: List[str], line: str) -> str:
    target = _arg(args, 0)
    if not target:
        return ""
    pid = _atoi(target[1:])
    kernel.kill_process(pid)
    return f"Killed process {pid}"


_COMMANDS: Dict[str, Handler] = {
    "ls": _ls,
    "cd": _cd,
    "pwd": _pwd,
    "mkdir": _mkdir,
    "creat": _creat,
    "rmdir": _rmdir,
    "link": _link,
    "unlink": _unlink,
    "symlink": _symlink,
    "readlink": _readlink,
    "cat": _cat,
    "write": _write_with(OpenMode.WRITE),
    "append": _write_with(OpenMode.APPEND),
    "cp": _cp,
    "mount": _mount,
    "umount": _umount,
    "new": _new,
    "switch": _switch,
    "kill": _kill,
}


def run_command(kernel: Kernel, line: str) -> Optional[str]:
    """Run one command line; returns its output, or None for quit."""
    tokens = line.split()
    if not tokens:
        return ""
    cmd, args = tokens[0], tokens[1:3]
    if cmd == "quit":
        return None
    handler = _COMMANDS.get(cmd)
    if handler is None:
        return f"no command, cmd: {cmd}"
    try:
        return handler(kernel, args, line)
    except FsError as exc:
        shown = " ".join([cmd, *args])
        return f"{shown} failed: {exc}"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="ext2sim", description="Interactive shell over an ext2 disk image."
    )
    parser.add_argument("disk", nargs="?", default="mydisk",
                        help="path of the disk image")
    args = parser.parse_args(argv)

    print("checking EXT2 FS ....", end="")
    try:
        kernel = Kernel(args.disk)
    except (OSError, FsError) as exc:
        print(f"open {args.disk} failed: {exc}")
        return 1

    with kernel:
        print("EXT2 FS OK")
        try:
            pid = kernel.create_process(UserGroup.USER)
            print(f"Created user-level process #P{pid}")
        except FsError as exc:
            print(f"Failed to create new user-level process: {exc}")
        while True:
            sys.stdout.write(PROMPT)
            sys.stdout.flush()
            line = sys.stdin.readline()
            if not line:
                print()
                break
            line = line.rstrip("\n")
            if not line.strip():
                continue
            output = run_command(kernel, line)
            if output is None:
                break
            if output:
                print(output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())