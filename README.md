# ext2sim

A small simulated kernel for EXT2 disk images. It keeps an in-memory inode
cache, an open file table, a set of processes and a mount table, and works on
an image file through 1 KiB block reads and writes. It comes with an
interactive shell and can be used as a library.

## Installing

    pip install .

For the tests:

    pip install ".[test]"
    pytest

## The shell

    ext2sim [diskimage]

With no argument it opens `mydisk` in the current directory. The image must
be an EXT2 file system (magic `0xEF53`) with 1 KiB blocks and a single block
group; its superblock is read from block 1 and its group descriptor from
block 2. On start the shell creates one extra process in the `user` group,
while commands run as process 0 (uid 0) until you `switch`.

Commands at the prompt:

| command | what it does |
|---|---|
| `ls [path]` | long listing of a directory (the working directory by default) |
| `cd path` | change the working directory |
| `pwd` | print the working directory |
| `mkdir path` / `rmdir path` | make or remove an empty directory |
| `creat path` | create an empty regular file |
| `link old new` / `unlink path` | hard links |
| `symlink old new` / `readlink path` | symbolic links |
| `cat path` | print a file |
| `write path text` | replace a file's contents with the rest of the line |
| `append path text` | add the rest of the line to the end of a file |
| `cp src dst` | copy a file |
| `mount` | list mounted images |
| `mount disk mountpoint` | mount another image on a directory |
| `umount disk` | unmount an image |
| `new [user\|other\|root]` | create a process (`user` by default) |
| `switch pN` / `kill pN` | switch to or kill process N |
| `quit` | write everything back and leave (end of input does the same) |

A failing command prints `<command> failed: <reason>`; an unknown one prints
`no command, cmd: <name>`.

## As a library

```python
from ext2sim.device import format_image
from ext2sim.kernel import Kernel
from ext2sim.structs import OpenMode
from ext2sim import dirs, files, writing

format_image("disk.img", nblocks=1440, ninodes=184)

with Kernel("disk.img") as kernel:
    dirs.make_directory(kernel, "/docs")
    fd = files.open_file(kernel, "/docs/note", OpenMode.WRITE)
    writing.write_file(kernel, fd, b"hello")
    files.close_file(kernel, fd)

    print(files.cat(kernel, "/docs/note"))
```

The modules:

- `ext2sim.structs` — the on-disk inode, superblock, group descriptor and
  directory entry layouts, `OpenMode`, `UserGroup` and the exceptions.
- `ext2sim.device` — `Device` for block, inode and bitmap access to one
  image, and `format_image` to create a fresh single-group image.
- `ext2sim.kernel` — `Kernel`: inode cache (`iget`/`iput`), path resolution
  across mount points (`getino`), permission checks and processes
  (`create_process`, `switch_process`, `kill_process`).
- `ext2sim.mounts` — `mount`, `umount`, `mount_table`.
- `ext2sim.dirs` — `create`, `make_directory`, `remove_directory`,
  `enter_name`, `remove_child`.
- `ext2sim.links` — `link`, `unlink`, `symlink`, `readlink`, `link_target`.
- `ext2sim.navigation` — `chdir`, `ls`, `ls_line`, `pwd`.
- `ext2sim.files` — `open_file`, `close_file`, `lseek`, `read_file`, `cat`,
  `dup`, `fd_table`.
- `ext2sim.writing` — `write_file`, `copy`.
- `ext2sim.shell` — `run_command` for one command line, and `main`.

Failures are raised as `ext2sim.structs.FsError`; permission problems as its
subclass `PermissionDenied`.

## What it does not do

- Files are limited to direct, single-indirect and double-indirect blocks;
  triple-indirect blocks are not supported.
- Directories use only their 12 direct blocks.
- Symbolic links are not followed when resolving paths, and a link target is
  at most 59 bytes (it is kept inside the inode).
- Only single-group images with 1 KiB blocks are handled, and
  `format_image` makes images of at most 8192 blocks and 8192 inodes.
- `lseek`, `dup` and `fd_table` are available from `ext2sim.files` but have
  no shell command.