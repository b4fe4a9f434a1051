import pytest

from ext2sim.device import format_image
from ext2sim.dirs import create, make_directory
from ext2sim.kernel import Kernel
from ext2sim.links import link, link_target, readlink, symlink, unlink
from ext2sim.structs import S_IFLNK, S_IFMT, FsError, PermissionDenied, UserGroup


@pytest.fixture
def disk(tmp_path):
    path = tmp_path / "disk"
    format_image(path, 256, 64)
    return path


@pytest.fixture
def kernel(disk):
    with Kernel(disk) as k:
        yield k


def _inode(kernel, path):
    mip = kernel.iget(*kernel.getino(path))
    try:
        return mip.inode
    finally:
        kernel.iput(mip)


def test_link_shares_inode(kernel):
    create(kernel, "/a")
    link(kernel, "/a", "/b")
    assert kernel.getino("/b") == kernel.getino("/a")
    assert _inode(kernel, "/a").links_count == 2


def test_link_across_directories(kernel):
    make_directory(kernel, "/d")
    create(kernel, "/d/f")
    link(kernel, "/d/f", "/g")
    assert kernel.getino("/g") == kernel.getino("/d/f")
    assert _inode(kernel, "/g").links_count == 2


def test_link_directory_rejected(kernel):
    make_directory(kernel, "/d")
    with pytest.raises(FsError):
        link(kernel, "/d", "/e")
    assert kernel.getino("/e") is None


def test_link_existing_name_rejected(kernel):
    create(kernel, "/a")
    create(kernel, "/b")
    with pytest.raises(FsError):
        link(kernel, "/a", "/b")
    assert _inode(kernel, "/a").links_count == 1


def test_link_missing_source(kernel):
    with pytest.raises(FsError):
        link(kernel, "/nothing", "/b")


def test_link_into_non_directory(kernel):
    create(kernel, "/a")
    create(kernel, "/f")
    with pytest.raises(FsError):
        link(kernel, "/a", "/f/b")


def test_unlink_keeps_other_link(kernel):
    create(kernel, "/a")
    link(kernel, "/a", "/b")
    unlink(kernel, "/a")
    assert kernel.getino("/a") is None
    assert _inode(kernel, "/b").links_count == 1


def test_unlink_last_link_frees_inode(kernel):
    device = kernel.device(kernel.root.dev)
    before = device.superblock.free_inodes_count
    create(kernel, "/a")
    assert device.superblock.free_inodes_count == before - 1
    unlink(kernel, "/a")
    assert device.superblock.free_inodes_count == before
    assert kernel.getino("/a") is None


def test_unlink_directory_rejected(kernel):
    make_directory(kernel, "/d")
    with pytest.raises(FsError):
        unlink(kernel, "/d")
    assert kernel.getino("/d") is not None and _inode(kernel, "/d").is_dir()


def test_unlink_missing(kernel):
    with pytest.raises(FsError):
        unlink(kernel, "/missing")


def test_symlink_and_readlink(kernel):
    create(kernel, "/a")
    symlink(kernel, "/a", "/s")
    assert readlink(kernel, "/s") == "/a"
    inode = _inode(kernel, "/s")
    assert inode.mode & S_IFMT == S_IFLNK
    assert inode.size == len("/a")
    assert inode.mode & 0o777 == _inode(kernel, "/a").mode & 0o777


def test_symlink_missing_target(kernel):
    with pytest.raises(FsError):
        symlink(kernel, "/missing", "/s")
    assert kernel.getino("/s") is None


def test_symlink_target_too_long(kernel):
    with pytest.raises(FsError):
        symlink(kernel, "/" + "x" * 70, "/s")
    assert kernel.getino("/s") is None


def test_readlink_of_regular_file(kernel):
    create(kernel, "/a")
    with pytest.raises(FsError):
        readlink(kernel, "/a")


def test_readlink_missing(kernel):
    with pytest.raises(FsError):
        readlink(kernel, "/missing")


def test_link_target_of_regular_file(kernel):
    create(kernel, "/a")
    mip = kernel.iget(*kernel.getino("/a"))
    try:
        with pytest.raises(FsError):
            link_target(mip)
    finally:
        kernel.iput(mip)


def test_unlink_symlink_keeps_target(kernel):
    create(kernel, "/a")
    symlink(kernel, "/a", "/s")
    unlink(kernel, "/s")
    assert kernel.getino("/s") is None
    assert _inode(kernel, "/a").links_count == 1


def test_symlink_persists(disk):
    with Kernel(disk) as k:
        create(k, "/a")
        symlink(k, "/a", "/s")
    with Kernel(disk) as k:
        assert readlink(k, "/s") == "/a"


@pytest.mark.parametrize(
    "operation",
    [
        lambda k: unlink(k, "/a"),
        lambda k: link(k, "/a", "/b"),
        lambda k: symlink(k, "/a", "/b"),
    ],
)
def test_user_cannot_change_root_directory(kernel, operation):
    create(kernel, "/a")
    pid = kernel.create_process(UserGroup.USER)
    kernel.switch_process(pid)
    with pytest.raises(PermissionDenied):
        operation(kernel)
    assert kernel.getino("/b") is None
    assert kernel.getino("/a") is not None