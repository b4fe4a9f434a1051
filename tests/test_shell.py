import io

import pytest

from ext2sim.device import format_image
from ext2sim.kernel import Kernel
from ext2sim.shell import main, run_command


@pytest.fixture
def image(tmp_path):
    path = tmp_path / "disk.img"
    format_image(path, 1024, 128)
    return path


@pytest.fixture
def kernel(image):
    with Kernel(image) as k:
        yield k


def test_mkdir_then_ls(kernel):
    assert run_command(kernel, "mkdir docs") == ""
    listing = run_command(kernel, "ls")
    assert any(line.endswith(" docs") for line in listing.splitlines())


def test_cd_and_pwd(kernel):
    run_command(kernel, "mkdir docs")
    assert run_command(kernel, "cd docs") == ""
    assert run_command(kernel, "pwd") == "CWD = /docs"


def test_write_keeps_spaces_and_cat_reads_back(kernel):
    run_command(kernel, "write notes.txt hello world")
    assert run_command(kernel, "cat notes.txt") == "hello world"


def test_append(kernel):
    run_command(kernel, "write notes.txt hello world")
    run_command(kernel, "append notes.txt !")
    assert run_command(kernel, "cat notes.txt") == "hello world!"


def test_write_without_text_fails(kernel):
    assert "failed" in run_command(kernel, "write notes.txt")
    assert kernel.getino("/notes.txt") is None


def test_copy_command(kernel):
    run_command(kernel, "write a.txt data")
    run_command(kernel, "cp a.txt b.txt")
    assert run_command(kernel, "cat b.txt") == "data"


def test_symlink_and_readlink(kernel):
    run_command(kernel, "creat notes.txt")
    run_command(kernel, "symlink notes.txt ln")
    assert run_command(kernel, "readlink ln") == "ln -> notes.txt"


def test_quit_returns_none(kernel):
    assert run_command(kernel, "quit") is None


def test_unknown_command(kernel):
    assert run_command(kernel, "frobnicate x") == "no command, cmd: frobnicate"


def test_mkdir_without_path(kernel):
    assert run_command(kernel, "mkdir") == "Error: No path specified!"


def test_failure_is_reported(kernel):
    out = run_command(kernel, "cat missing")
    assert out.startswith("cat missing failed")


def test_new_and_switch(kernel):
    out = run_command(kernel, "new other")
    assert out.startswith("Created new process #p")
    pid = int(out.rsplit("p", 1)[1])
    assert run_command(kernel, f"switch p{pid}") == (
        f"Successfully switched to process {pid}"
    )
    assert kernel.running.pid == pid


def test_new_rejects_unknown_group(kernel):
    assert "failed" in run_command(kernel, "new wizard")


def test_switch_to_free_process_fails(kernel):
    assert "failed" in run_command(kernel, "switch p7")
    assert kernel.running.pid == 0


def test_mount_needs_mount_point(kernel):
    assert run_command(kernel, "mount other.img").startswith(
        "must provide mount point"
    )


def test_mount_table_empty(kernel):
    assert run_command(kernel, "mount").splitlines()[0] == "mounted disks:"


def test_main_runs_commands_and_persists(image, monkeypatch, capsys):
    monkeypatch.setattr("sys.stdin", io.StringIO("mkdir alpha\nls\nquit\n"))
    assert main([str(image)]) == 0
    assert "alpha" in capsys.readouterr().out
    with Kernel(image) as k:
        assert k.getino("/alpha") is not None


def test_main_stops_at_end_of_input(image, monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("creat f\n"))
    assert main([str(image)]) == 0
    with Kernel(image) as k:
        assert k.getino("/f") is not None


def test_main_missing_disk(tmp_path, capsys):
    assert main([str(tmp_path / "absent.img")]) == 1
    assert "failed" in capsys.readouterr().out