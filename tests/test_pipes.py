import errno
import os
import time

import pytest

from reproc.errors import ReprocError
from reproc.pipes import (
    HANDLE_INVALID,
    PIPE_EVENT_IN,
    PIPE_EVENT_OUT,
    PIPE_INVALID,
    PipeEventSource,
    handle_cloexec,
    handle_destroy,
    now,
    pipe_destroy,
    pipe_init,
    pipe_nonblocking,
    pipe_poll,
    pipe_read,
    pipe_write,
    strv_concat,
)


@pytest.fixture
def pipe():
    read_fd, write_fd = pipe_init()
    yield read_fd, write_fd
    pipe_destroy(read_fd)
    pipe_destroy(write_fd)


def _is_open(fd):
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True


def test_pipe_round_trip(pipe):
    read_fd, write_fd = pipe
    assert pipe_write(write_fd, b"hello") == len(b"hello")
    assert pipe_read(read_fd, 100) == b"hello"


def test_pipe_init_sets_cloexec(pipe):
    read_fd, write_fd = pipe
    assert os.get_inheritable(read_fd) is False
    assert os.get_inheritable(write_fd) is False


def test_read_after_writer_closed_raises_epipe(pipe):
    read_fd, write_fd = pipe
    pipe_destroy(write_fd)
    with pytest.raises(ReprocError) as info:
        pipe_read(read_fd, 10)
    assert info.value.errno == errno.EPIPE


def test_nonblocking_read_without_data(pipe):
    read_fd, _ = pipe
    pipe_nonblocking(read_fd, True)
    assert os.get_blocking(read_fd) is False
    with pytest.raises(ReprocError) as info:
        pipe_read(read_fd, 10)
    assert info.value.errno in (errno.EAGAIN, errno.EWOULDBLOCK)
    pipe_nonblocking(read_fd, False)
    assert os.get_blocking(read_fd) is True


def test_write_to_closed_reader_raises_epipe(pipe):
    read_fd, write_fd = pipe
    pipe_destroy(read_fd)
    with pytest.raises(ReprocError) as info:
        pipe_write(write_fd, b"data")
    assert info.value.errno == errno.EPIPE


def test_poll_reports_readable(pipe):
    read_fd, write_fd = pipe
    pipe_write(write_fd, b"x")
    source = PipeEventSource(read_fd, PIPE_EVENT_IN)
    assert pipe_poll([source], 1000) == 1
    assert source.events & PIPE_EVENT_IN


def test_poll_times_out(pipe):
    read_fd, _ = pipe
    source = PipeEventSource(read_fd, PIPE_EVENT_IN, events=PIPE_EVENT_IN)
    assert pipe_poll([source], 0) == 0
    assert source.events == 0


def test_poll_ignores_invalid_pipes(pipe):
    _, write_fd = pipe
    invalid = PipeEventSource(PIPE_INVALID, PIPE_EVENT_IN, events=PIPE_EVENT_IN)
    writable = PipeEventSource(write_fd, PIPE_EVENT_OUT)
    assert pipe_poll([invalid, writable], 0) == 1
    assert invalid.events == 0
    assert writable.events & PIPE_EVENT_OUT


def test_pipe_destroy_closes(pipe):
    read_fd, _ = pipe
    assert pipe_destroy(read_fd) == PIPE_INVALID
    assert not _is_open(read_fd)


def test_destroy_invalid_is_noop():
    assert handle_destroy(HANDLE_INVALID) == HANDLE_INVALID
    assert pipe_destroy(PIPE_INVALID) == PIPE_INVALID


def test_handle_cloexec_toggles(pipe):
    read_fd, _ = pipe
    handle_cloexec(read_fd, False)
    assert os.get_inheritable(read_fd) is True
    handle_cloexec(read_fd, True)
    assert os.get_inheritable(read_fd) is False


def test_handle_cloexec_bad_fd(pipe):
    read_fd, _ = pipe
    pipe_destroy(read_fd)
    with pytest.raises(ReprocError) as info:
        handle_cloexec(read_fd, True)
    assert info.value.errno == errno.EBADF


def test_now_tracks_wall_clock():
    first = now()
    reference = time.time() * 1000
    second = now()
    assert first <= second
    assert abs(second - reference) < 1000


def test_strv_concat_joins_in_order():
    a = ["A=1", "B=2"]
    b = ["C=3"]
    result = strv_concat(a, b)
    assert result == a + b
    assert result is not a


def test_strv_concat_handles_none():
    assert strv_concat(None, ["x"]) == ["x"]
    assert strv_concat(["y"], None) == ["y"]
    assert strv_concat(None, None) == []