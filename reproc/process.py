"""Start, wait for and signal child processes."""

from __future__ import annotations

import contextlib
import errno
import os
import resource
import signal
import struct
from collections.abc import Sequence
from dataclasses import dataclass

from .errors import EINVAL, ReprocError
from .options import EnvBehavior
from .pipes import HANDLE_INVALID, PIPE_INVALID, handle_cloexec, pipe_destroy, pipe_init, strv_concat

__all__ = [
    "PROCESS_INVALID",
    "ProcessOptions",
    "path_is_relative",
    "path_prepend_cwd",
    "parse_status",
    "process_start",
    "process_pid",
    "process_wait",
    "process_terminate",
    "process_kill",
]

PROCESS_INVALID = -1

_SIGNAL_OFFSET = 128
_MAX_FD_LIMIT = 1024 * 1024
_INT_MAX = 2**31 - 1
_ERRNO_FORMAT = "i"


@dataclass
class ProcessOptions:
    """How to start a child: environment, working directory and standard handles.

    The child's stdin, stdout and stderr become ``handle_in``, ``handle_out`` and
    ``handle_err``; ``handle_exit`` is simply inherited by the child.
    """

    env: EnvBehavior = EnvBehavior.EXTEND
    env_extra: Sequence[str] | None = None
    working_directory: str | None = None
    handle_in: int = HANDLE_INVALID
    handle_out: int = HANDLE_INVALID
    handle_err: int = HANDLE_INVALID
    handle_exit: int = HANDLE_INVALID
    show_console_window: bool = False


def path_is_relative(path: str) -> bool:
    """Whether ``path`` is relative and contains a '/' after its first character."""
    return len(path) > 0 and path[0] != "/" and "/" in path[1:]


def path_prepend_cwd(path: str) -> str:
    """Prefix ``path`` with the current working directory."""
    try:
        cwd = os.getcwd()
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc
    if not cwd.endswith("/"):
        cwd += "/"
    return cwd + path


def parse_status(status: int) -> int:
    """Exit code for a normal exit, 128 plus the signal number otherwise."""
    if os.WIFEXITED(status):
        return os.WEXITSTATUS(status)
    return os.WTERMSIG(status) + _SIGNAL_OFFSET


def _max_fd() -> int:
    soft, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
    if soft == resource.RLIM_INFINITY or soft > _INT_MAX:
        return _INT_MAX
    return soft - 1


def _close_fds_except(max_fd: int, keep: set[int]) -> None:
    start = 0
    for fd in sorted(fd for fd in keep if 0 <= fd < max_fd):
        if fd > start:
            os.closerange(start, fd)
        start = fd + 1
    if start < max_fd:
        os.closerange(start, max_fd)


def _reset_signals() -> None:
    for signum in range(1, 32):
        with contextlib.suppress(OSError, ValueError):
            signal.signal(signum, signal.SIG_DFL)
    signal.pthread_sigmask(signal.SIG_SETMASK, ())


def _build_env(options: ProcessOptions) -> dict[str, str]:
    parent = None
    if options.env != EnvBehavior.EMPTY:
        parent = [f"{key}={value}" for key, value in os.environ.items()]
    env: dict[str, str] = {}
    for entry in strv_concat(parent, options.env_extra):
        key, sep, value = entry.partition("=")
        if sep and key:
            env[key] = value
    return env


def _fork() -> int:
    """Fork with all signals blocked so no parent handler runs in the child."""
    old_mask = signal.pthread_sigmask(signal.SIG_SETMASK, signal.valid_signals())
    try:
        pid = os.fork()
    except OSError as exc:
        signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)
        raise ReprocError.from_oserror(exc) from exc
    if pid > 0:
        signal.pthread_sigmask(signal.SIG_SETMASK, old_mask)
    return pid


def _child(
    argv: list[str] | None,
    program: str | None,
    env: dict[str, str],
    options: ProcessOptions,
    error_read: int,
    error_write: int,
) -> None:
    """Set up the forked child; exec ``argv`` or return when there is none."""
    try:
        _reset_signals()

        max_fd = _max_fd()
        if max_fd > _MAX_FD_LIMIT:
            # Refuse to try to close too many file descriptors.
            raise ReprocError(errno.EMFILE)
        _close_fds_except(
            max_fd,
            {
                options.handle_in,
                options.handle_out,
                options.handle_err,
                options.handle_exit,
                error_read,
                error_write,
            },
        )

        redirects = (options.handle_in, options.handle_out, options.handle_err)
        for target, handle in enumerate(redirects):
            os.dup2(handle, target)
            if handle != target:
                handle_cloexec(handle, True)

        handle_cloexec(options.handle_exit, False)

        if options.working_directory is not None:
            os.chdir(options.working_directory)

        if argv is None:
            os.environ.clear()
            os.environ.update(env)
        else:
            os.execvpe(program, argv, env)
    except BaseException as exc:  # noqa: BLE001 - the child must never unwind
        code = exc.errno if isinstance(exc, OSError) and exc.errno else errno.EINVAL
        with contextlib.suppress(OSError):
            os.write(error_write, struct.pack(_ERRNO_FORMAT, code))
        os._exit(1)

    pipe_destroy(error_write)
    pipe_destroy(error_read)


def _read_child_errno(fd: int) -> int:
    size = struct.calcsize(_ERRNO_FORMAT)
    data = b""
    while len(data) < size:
        chunk = os.read(fd, size - len(data))
        if not chunk:
            break
        data += chunk
    if len(data) < size:
        return 0
    return struct.unpack(_ERRNO_FORMAT, data)[0]


def process_start(argv: Sequence[str] | None, options: ProcessOptions) -> int:
    """Start a child process.

    With ``argv`` the child executes it and the child's pid is returned. Without
    ``argv`` the process only forks: the pid is returned in the parent and 0 in
    the child. Errors of the child before ``exec`` are raised in the parent.
    """
    args: list[str] | None = None
    if argv is not None:
        args = list(argv)
        if not args or args[0] is None:
            raise ReprocError(EINVAL, "argv is empty")

    read_fd, write_fd = pipe_init()
    try:
        program = None
        if args is not None:
            if options.working_directory and path_is_relative(args[0]):
                # Resolve relative to the parent's directory even after chdir.
                program = path_prepend_cwd(args[0])
            else:
                program = args[0]

        env = _build_env(options)

        pid = _fork()
        if pid == 0:
            _child(args, program, env, options, read_fd, write_fd)
            read_fd = write_fd = PIPE_INVALID
            return 0

        write_fd = pipe_destroy(write_fd)
        child_errno = _read_child_errno(read_fd)
        if child_errno > 0:
            try:
                os.waitpid(pid, 0)
            except OSError as exc:
                raise ReprocError.from_oserror(exc) from exc
            raise ReprocError(child_errno)
        return pid
    finally:
        pipe_destroy(read_fd)
        pipe_destroy(write_fd)


def process_pid(process: int) -> int:
    """The process id of ``process``."""
    return process


def process_wait(process: int, timeout: int) -> int:
    """Block until ``process`` exits and return its parsed status."""
    del timeout
    try:
        _, status = os.waitpid(process, 0)
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc
    return parse_status(status)


def _send(process: int, signum: int) -> None:
    try:
        os.kill(process, signum)
    except OSError as exc:
        raise ReprocError.from_oserror(exc) from exc


def process_terminate(process: int) -> None:
    """Send ``SIGTERM`` to ``process``."""
    _send(process, signal.SIGTERM)


def process_kill(process: int) -> None:
    """Send ``SIGKILL`` to ``process``."""
    _send(process, signal.SIGKILL)