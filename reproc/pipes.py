"""Anonymous pipes, file descriptor helpers, the clock and string vectors."""

from __future__ import annotations

import contextlib
import os
import select
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .errors import EPIPE, ReprocError

__all__ = [
    "PIPE_INVALID",
    "HANDLE_INVALID",
    "PIPE_EVENT_IN",
    "PIPE_EVENT_OUT",
    "PipeEventSource",
    "pipe_init",
    "pipe_nonblocking",
    "pipe_read",
    "pipe_write",
    "pipe_poll",
    "pipe_destroy",
    "handle_cloexec",
    "handle_destroy",
    "now",
    "strv_concat",
]

PIPE_INVALID = -1
HANDLE_INVALID = -1

PIPE_EVENT_IN = select.POLLIN
PIPE_EVENT_OUT = select.POLLOUT


@dataclass
class PipeEventSource:
    """A pipe to poll, the events of interest and the events that occurred."""

    pipe: int
    interests: int = 0
    events: int = 0


def handle_cloexec(handle: int, enable: bool) -> None:
    """Set or clear the close-on-exec flag of a file descriptor."""
    try:
        os.set_inheritable(handle, not enable)
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc


def handle_destroy(handle: int) -> int:
    """Close ``handle`` if it is valid and return ``HANDLE_INVALID``."""
    if handle != HANDLE_INVALID:
        with contextlib.suppress(OSError):
            os.close(handle)
    return HANDLE_INVALID


def pipe_init() -> tuple[int, int]:
    """Create an anonymous pipe with close-on-exec set; return (read, write)."""
    try:
        read_fd, write_fd = os.pipe()
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc
    try:
        handle_cloexec(read_fd, True)
        handle_cloexec(write_fd, True)
    except ReprocError:
        pipe_destroy(read_fd)
        pipe_destroy(write_fd)
        raise
    return read_fd, write_fd


def pipe_nonblocking(pipe: int, enable: bool) -> None:
    """Switch a pipe into or out of nonblocking mode."""
    try:
        os.set_blocking(pipe, not enable)
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc


def pipe_read(pipe: int, size: int) -> bytes:
    """Read up to ``size`` bytes; raise with ``EPIPE`` once the writer closed."""
    try:
        data = os.read(pipe, size)
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc
    if not data:
        raise ReprocError(EPIPE)
    return data


def pipe_write(pipe: int, data: bytes) -> int:
    """Write as much of ``data`` as the pipe accepts and return that count."""
    try:
        return os.write(pipe, data)
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc


def pipe_poll(sources: Sequence[PipeEventSource], timeout: int) -> int:
    """Poll the valid pipes of ``sources`` and fill in their ``events``.

    A negative timeout waits forever. Returns how many sources have events.
    """
    masks: dict[int, int] = {}
    for source in sources:
        if source.pipe != PIPE_INVALID:
            masks[source.pipe] = masks.get(source.pipe, 0) | source.interests

    poller = select.poll()
    for fd, mask in masks.items():
        poller.register(fd, mask)

    try:
        ready = dict(poller.poll(timeout))
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc

    for source in sources:
        source.events = ready.get(source.pipe, 0) if source.pipe != PIPE_INVALID else 0

    return sum(1 for source in sources if source.events)


def pipe_destroy(pipe: int) -> int:
    """Close ``pipe`` if it is valid and return ``PIPE_INVALID``."""
    return handle_destroy(pipe)


def now() -> int:
    """Current wall-clock time in milliseconds."""
    return time.time_ns() // 1_000_000


def strv_concat(a: Iterable[str] | None, b: Iterable[str] | None) -> list[str]:
    """Return a new list holding the strings of ``a`` followed by those of ``b``."""
    return [*(a or ()), *(b or ())]