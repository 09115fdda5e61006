"""Set up the file descriptors a child process uses for its standard streams."""

from __future__ import annotations

import errno
import os
from typing import IO, Any

from .errors import EINVAL, EPIPE, ReprocError
from .options import Redirect, RedirectType, Stream
from .pipes import HANDLE_INVALID, PIPE_INVALID, handle_destroy, pipe_destroy, pipe_init, pipe_nonblocking

__all__ = [
    "redirect_parent",
    "redirect_discard",
    "redirect_file",
    "redirect_path",
    "redirect_init",
    "redirect_destroy",
]

_STANDARD_FDS = {Stream.IN: 0, Stream.OUT: 1, Stream.ERR: 2}


def redirect_parent(stream: Stream) -> int:
    """Return the parent's own descriptor for ``stream``.

    Raises with ``EPIPE`` when that stream of the parent is closed.
    """
    fd = _STANDARD_FDS.get(stream)
    if fd is None:
        raise ReprocError(EINVAL, f"invalid stream: {stream!r}")
    try:
        os.fstat(fd)
    except OSError as exc:
        if exc.errno == errno.EBADF:
            raise ReprocError(EPIPE) from exc
        raise ReprocError.from_oserror(exc) from exc
    return fd


def redirect_discard(stream: Stream) -> int:
    """Open the null device for ``stream``."""
    return redirect_path(stream, os.devnull)


def redirect_file(file: IO[Any]) -> int:
    """Return the descriptor underlying an open file object."""
    try:
        return file.fileno()
    except (OSError, ValueError, AttributeError) as exc:
        raise ReprocError(errno.EBADF, "file has no usable descriptor") from exc


def redirect_path(stream: Stream, path: str) -> int:
    """Open ``path`` for reading (stdin) or writing (stdout, stderr), creating it if needed."""
    mode = os.O_RDONLY if stream == Stream.IN else os.O_WRONLY
    try:
        return os.open(path, mode | os.O_CREAT | os.O_CLOEXEC, 0o640)
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc


def _redirect_pipe(stream: Stream, nonblocking: bool) -> tuple[int, int]:
    read_fd, write_fd = pipe_init()
    parent, child = (write_fd, read_fd) if stream == Stream.IN else (read_fd, write_fd)
    try:
        pipe_nonblocking(parent, nonblocking)
    except ReprocError:
        pipe_destroy(read_fd)
        pipe_destroy(write_fd)
        raise
    return parent, child


def redirect_init(
    stream: Stream, redirect: Redirect, nonblocking: bool, out: int
) -> tuple[int, int]:
    """Prepare ``stream`` according to ``redirect``.

    Returns ``(parent, child)``: the parent's end of a pipe (or ``PIPE_INVALID``)
    and the descriptor the child should use. ``out`` is the child's stdout
    descriptor, used when stderr is redirected to stdout.
    """
    kind = redirect.type

    if kind == RedirectType.PIPE:
        return _redirect_pipe(stream, nonblocking)

    if kind == RedirectType.PARENT:
        try:
            child = redirect_parent(stream)
        except ReprocError as exc:
            if exc.error != EPIPE:
                raise
            # The parent's stream is closed: discard instead.
            child = redirect_discard(stream)
        return PIPE_INVALID, child

    if kind == RedirectType.DISCARD:
        return PIPE_INVALID, redirect_discard(stream)

    if kind == RedirectType.HANDLE:
        if redirect.handle is None:
            raise ReprocError(EINVAL, "handle redirect without handle")
        return PIPE_INVALID, redirect.handle

    if kind == RedirectType.FILE:
        if redirect.file is None:
            raise ReprocError(EINVAL, "file redirect without file")
        return PIPE_INVALID, redirect_file(redirect.file)

    if kind == RedirectType.STDOUT:
        if stream != Stream.ERR or out == HANDLE_INVALID:
            raise ReprocError(EINVAL, "only stderr can be redirected to a valid stdout")
        return PIPE_INVALID, out

    if kind == RedirectType.PATH:
        if redirect.path is None:
            raise ReprocError(EINVAL, "path redirect without path")
        return PIPE_INVALID, redirect_path(stream, redirect.path)

    raise ReprocError(EINVAL, f"unresolved redirect type: {kind!r}")


def redirect_destroy(child: int, type: RedirectType) -> int:
    """Close ``child`` if this package opened it for ``type``; return ``HANDLE_INVALID``."""
    if child == HANDLE_INVALID:
        return HANDLE_INVALID

    if type == RedirectType.DEFAULT:
        raise ReprocError(EINVAL, "unresolved redirect type")
    if type == RedirectType.PIPE:
        pipe_destroy(child)
    elif type in (RedirectType.DISCARD, RedirectType.PATH):
        handle_destroy(child)

    return HANDLE_INVALID