import pytest

from ext2sim.device import format_image
from ext2sim.dirs import (
    create,
    enter_name,
    make_directory,
    remove_child,
    remove_directory,
)
from ext2sim.kernel import Kernel
from ext2sim.structs import (
    BLKSIZE,
    FsError,
    PermissionDenied,
    UserGroup,
    iter_dir_entries,
)


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "disk"
    format_image(path, 256, 64)
    return path


@pytest.fixture
def kernel(image):
    k = Kernel(image)
    yield k
    k.close()


def _inode(kernel, path):
    found = kernel.getino(path)
    assert found is not None
    mip = kernel.iget(*found)
    inode = mip.inode
    kernel.iput(mip)
    return inode


def _names(kernel, blk):
    block = kernel.device(kernel.root.dev).read_block(blk)
    return [entry.name for _, entry in iter_dir_entries(block)]


def test_create_makes_regular_file(kernel):
    ino = create(kernel, "/hello")
    assert kernel.search(kernel.root, "hello") == ino
    inode = _inode(kernel, "/hello")
    assert inode.mode == 0o100644
    assert inode.links_count == 1
    assert inode.size == 0
    assert inode.is_reg()


def test_create_existing_name_fails(kernel):
    create(kernel, "file")
    with pytest.raises(FsError):
        create(kernel, "file")


def test_create_in_missing_parent_fails(kernel):
    with pytest.raises(FsError):
        create(kernel, "/nodir/file")


def test_create_with_file_as_parent_fails(kernel):
    create(kernel, "/plain")
    with pytest.raises(FsError):
        create(kernel, "/plain/inner")


def test_make_directory_layout(kernel):
    links_before = kernel.root.inode.links_count
    ino = make_directory(kernel, "/sub")
    assert kernel.root.inode.links_count == links_before + 1
    found = kernel.getino("/sub")
    assert found == (kernel.root.dev, ino)
    mip = kernel.iget(*found)
    try:
        assert mip.inode.mode == 0o40755
        assert mip.inode.size == BLKSIZE
        assert mip.inode.links_count == 2
        assert kernel.search(mip, ".") == ino
        assert kernel.search(mip, "..") == kernel.root.ino
    finally:
        kernel.iput(mip)


def test_nested_directories_and_files(kernel):
    make_directory(kernel, "a")
    make_directory(kernel, "a/b")
    ino = create(kernel, "a/b/c")
    assert kernel.getino("/a/b/c") == (kernel.root.dev, ino)


def test_changes_persist_after_reopen(image):
    with Kernel(image) as k:
        make_directory(k, "/keep")
        ino = create(k, "/keep/file")
    with Kernel(image) as k:
        assert k.getino("/keep/file") == (k.root.dev, ino)


def test_remove_directory_restores_state(kernel):
    device = kernel.device(kernel.root.dev)
    free_inodes = device.superblock.free_inodes_count
    free_blocks = device.superblock.free_blocks_count
    links = kernel.root.inode.links_count
    make_directory(kernel, "/gone")
    assert device.superblock.free_inodes_count == free_inodes - 1
    remove_directory(kernel, "/gone")
    assert kernel.getino("/gone") is None
    assert device.superblock.free_inodes_count == free_inodes
    assert device.superblock.free_blocks_count == free_blocks
    assert kernel.root.inode.links_count == links


def test_remove_nonempty_directory_fails(kernel):
    make_directory(kernel, "/full")
    create(kernel, "/full/item")
    with pytest.raises(FsError):
        remove_directory(kernel, "/full")
    assert kernel.getino("/full/item") is not None


def test_remove_directory_on_file_fails(kernel):
    create(kernel, "/notdir")
    with pytest.raises(FsError):
        remove_directory(kernel, "/notdir")


def test_remove_missing_directory_fails(kernel):
    with pytest.raises(FsError):
        remove_directory(kernel, "/missing")


def test_remove_busy_directory_fails(kernel):
    ino = make_directory(kernel, "/busy")
    held = kernel.iget(kernel.root.dev, ino)
    with pytest.raises(FsError):
        remove_directory(kernel, "/busy")
    kernel.iput(held)
    remove_directory(kernel, "/busy")
    assert kernel.getino("/busy") is None


def test_user_process_cannot_write_root(kernel):
    pid = kernel.create_process(UserGroup.USER)
    kernel.switch_process(pid)
    with pytest.raises(PermissionDenied):
        create(kernel, "/userfile")
    with pytest.raises(PermissionDenied):
        make_directory(kernel, "/userdir")


def test_remove_child_from_middle(kernel):
    for name in ("a", "b", "c"):
        create(kernel, name)
    remove_child(kernel, kernel.root, "b")
    blk = kernel.root.inode.block[0]
    assert _names(kernel, blk) == [".", "..", "a", "c"]
    block = kernel.device(kernel.root.dev).read_block(blk)
    assert sum(e.rec_len for _, e in iter_dir_entries(block)) == BLKSIZE
    assert kernel.search(kernel.root, "b") is None


def test_remove_child_missing_fails(kernel):
    with pytest.raises(FsError):
        remove_child(kernel, kernel.root, "nothing")


def test_enter_name_grows_directory_and_remove_shrinks(kernel):
    names = [f"{i}" + "x" * 199 for i in range(6)]
    for name in names:
        create(kernel, name)
    root = kernel.root.inode
    assert root.block[1] != 0
    assert root.size == 2 * BLKSIZE
    assert root.blocks == 4
    for name in names:
        assert kernel.search(kernel.root, name) is not None
    for name in _names(kernel, root.block[1]):
        remove_child(kernel, kernel.root, name)
    assert root.block[1] == 0
    assert root.size == BLKSIZE
    assert root.blocks == 2


def test_enter_name_adds_searchable_entry(kernel):
    ino = create(kernel, "/target")
    enter_name(kernel, kernel.root, ino, "alias")
    assert kernel.search(kernel.root, "alias") == ino
    assert kernel.search(kernel.root, "target") == ino