import contextlib
import errno
import os
import resource
import signal
import stat

import pytest

from reproc.errors import ReprocError
from reproc.options import EnvBehavior
from reproc.process import (
    ProcessOptions,
    parse_status,
    path_is_relative,
    path_prepend_cwd,
    process_kill,
    process_pid,
    process_start,
    process_terminate,
    process_wait,
)


@pytest.fixture(autouse=True)
def _bounded_fd_limit():
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    if soft == resource.RLIM_INFINITY or soft > 4096:
        resource.setrlimit(resource.RLIMIT_NOFILE, (4096, hard))
    yield
    resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))


@pytest.fixture
def fds():
    opened = []

    def track(*items):
        opened.extend(items)
        return items

    yield track
    for fd in opened:
        with contextlib.suppress(OSError):
            os.close(fd)


def _options(fds, out=None, **kwargs):
    null_in = os.open(os.devnull, os.O_RDONLY)
    null_out = os.open(os.devnull, os.O_WRONLY)
    exit_read, exit_write = os.pipe()
    fds(null_in, null_out, exit_read, exit_write)
    return ProcessOptions(
        handle_in=null_in,
        handle_out=null_out if out is None else out,
        handle_err=null_out,
        handle_exit=exit_write,
        **kwargs,
    )


def _run_capture(fds, argv, **kwargs):
    read_fd, write_fd = os.pipe()
    fds(read_fd)
    try:
        options = _options(fds, out=write_fd, **kwargs)
        pid = process_start(argv, options)
    finally:
        os.close(write_fd)
    chunks = []
    while True:
        chunk = os.read(read_fd, 4096)
        if not chunk:
            break
        chunks.append(chunk)
    return pid, b"".join(chunks)


def _raw_status(script):
    pid = os.posix_spawnp("sh", ["sh", "-c", script], dict(os.environ))
    _, status = os.waitpid(pid, 0)
    return status


@pytest.mark.parametrize(
    ("path", "expected"),
    [("a/b", True), ("./x", True), ("/a/b", False), ("a", False), ("", False)],
)
def test_path_is_relative(path, expected):
    assert path_is_relative(path) is expected


def test_path_prepend_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert path_prepend_cwd("x/y") == os.getcwd() + "/x/y"


def test_path_prepend_cwd_root(monkeypatch):
    monkeypatch.chdir("/")
    assert path_prepend_cwd("x/y") == "/x/y"


def test_parse_status_exit_code():
    assert parse_status(_raw_status("exit 5")) == 5


def test_parse_status_signal():
    assert parse_status(_raw_status("kill -9 $$")) == 128 + signal.SIGKILL


def test_start_captures_output(fds):
    pid, output = _run_capture(fds, ["sh", "-c", "printf hello"])
    assert output == b"hello"
    assert process_wait(pid, -1) == 0


def test_exit_code_is_reported(fds):
    pid = process_start(["sh", "-c", "exit 3"], _options(fds))
    assert process_pid(pid) == pid
    assert process_wait(pid, -1) == 3


def test_missing_program_raises(fds):
    with pytest.raises(ReprocError) as excinfo:
        process_start(["/nonexistent/definitely-missing"], _options(fds))
    assert excinfo.value.errno == errno.ENOENT


def test_empty_argv_raises(fds):
    with pytest.raises(ReprocError) as excinfo:
        process_start([], _options(fds))
    assert excinfo.value.errno == errno.EINVAL


def test_working_directory(fds, tmp_path):
    pid, output = _run_capture(fds, ["sh", "-c", "pwd"], working_directory=str(tmp_path))
    assert process_wait(pid, -1) == 0
    assert os.path.realpath(output.decode().strip()) == os.path.realpath(tmp_path)


def test_missing_working_directory_raises(fds, tmp_path):
    with pytest.raises(ReprocError) as excinfo:
        process_start(["sh", "-c", "true"], _options(fds, working_directory=str(tmp_path / "nope")))
    assert excinfo.value.errno == errno.ENOENT


def test_relative_program_resolved_against_parent_cwd(fds, tmp_path, monkeypatch):
    (tmp_path / "bin").mkdir()
    (tmp_path / "elsewhere").mkdir()
    script = tmp_path / "bin" / "tool"
    script.write_text("#!/bin/sh\nprintf ran\n")
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    monkeypatch.chdir(tmp_path)
    pid, output = _run_capture(
        fds, ["bin/tool"], working_directory=str(tmp_path / "elsewhere")
    )
    assert output == b"ran"
    assert process_wait(pid, -1) == 0


def test_empty_environment_with_extra(fds):
    pid, output = _run_capture(
        fds,
        ["sh", "-c", 'printf "%s|%s" "$FOO" "$HOME"'],
        env=EnvBehavior.EMPTY,
        env_extra=["FOO=bar"],
    )
    assert process_wait(pid, -1) == 0
    assert output == b"bar|"


def test_extended_environment_keeps_parent(fds, monkeypatch):
    monkeypatch.setenv("REPROC_TEST_PARENT", "inherited")
    pid, output = _run_capture(
        fds,
        ["sh", "-c", 'printf "%s %s" "$REPROC_TEST_PARENT" "$EXTRA"'],
        env_extra=["EXTRA=added"],
    )
    assert process_wait(pid, -1) == 0
    assert output == b"inherited added"


def test_terminate(fds):
    pid = process_start(["sleep", "10"], _options(fds))
    process_terminate(pid)
    assert process_wait(pid, -1) == 128 + signal.SIGTERM


def test_kill(fds):
    pid = process_start(["sleep", "10"], _options(fds))
    process_kill(pid)
    assert process_wait(pid, -1) == 128 + signal.SIGKILL


def test_wait_on_reaped_process_raises(fds):
    pid = process_start(["sh", "-c", "true"], _options(fds))
    assert process_wait(pid, -1) == 0
    with pytest.raises(ReprocError) as excinfo:
        process_wait(pid, -1)
    assert excinfo.value.errno == errno.ECHILD


def test_exit_handle_closes_when_child_exits(fds):
    options = _options(fds)
    exit_read, exit_write = os.pipe()
    fds(exit_read)
    options.handle_exit = exit_write
    try:
        pid = process_start(["sh", "-c", "true"], options)
    finally:
        os.close(exit_write)
    assert os.read(exit_read, 1) == b""
    assert process_wait(pid, -1) == 0


def test_fork_without_argv(fds):
    pid = process_start(None, _options(fds))
    if pid == 0:
        os.execvp("sh", ["sh", "-c", "exit 7"])
    assert pid > 0
    assert process_wait(pid, -1) == 7