"""Child process handles: start, poll, read, write, wait and stop."""

from __future__ import annotations

import contextlib
import enum
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .errors import EINVAL, EPIPE, ETIMEDOUT, EWOULDBLOCK, ReprocError, error_string
from .options import (
    DEADLINE,
    INFINITE,
    Options,
    StopAction,
    StopActions,
    StopStep,
    Stream,
    parse_options,
    parse_stop_actions,
)
from .pipes import (
    HANDLE_INVALID,
    PIPE_EVENT_IN,
    PIPE_EVENT_OUT,
    PIPE_INVALID,
    PipeEventSource,
    now,
    pipe_destroy,
    pipe_init,
    pipe_nonblocking,
    pipe_poll,
    pipe_read,
    pipe_write,
)
from .process import (
    PROCESS_INVALID,
    ProcessOptions,
    process_kill,
    process_pid,
    process_start,
    process_terminate,
    process_wait,
)
from .redirect import redirect_destroy, redirect_init

__all__ = [
    "SIGKILL",
    "SIGTERM",
    "Event",
    "EventSource",
    "Process",
    "poll",
    "strerror",
]

_SIGNAL_OFFSET = 128

SIGKILL = _SIGNAL_OFFSET + 9
SIGTERM = _SIGNAL_OFFSET + 15

_NOT_STARTED = -1
_IN_PROGRESS = -2
_IN_CHILD = -3

_READ_SIZE = 4096

_DESTROY_STOP = StopActions(
    first=StopStep(StopAction.WAIT, 100),
    second=StopStep(StopAction.TERMINATE, 100),
    third=StopStep(StopAction.KILL, 100),
)


class Event(enum.IntFlag):
    """Events a process can be polled for."""

    IN = 1 << 0
    OUT = 1 << 1
    ERR = 1 << 2
    EXIT = 1 << 3
    DEADLINE = 1 << 4


# Position of a pipe in a source's group of pipes determines its event.
_PIPE_EVENTS = (Event.IN, Event.OUT, Event.ERR, Event.EXIT)


@dataclass
class EventSource:
    """A process to poll, the events of interest and the events that occurred."""

    process: "Process | None"
    interests: Event = Event(0)
    events: Event = Event(0)


def _expiry(timeout: int, deadline: int) -> int:
    if timeout == INFINITE and deadline == INFINITE:
        return INFINITE
    if deadline == INFINITE:
        return timeout

    current = now()
    if current >= deadline:
        return DEADLINE

    remaining = deadline - current
    if timeout == INFINITE:
        return remaining
    return min(timeout, remaining)


def _find_earliest_deadline(sources: Sequence[EventSource]) -> int:
    earliest = 0
    minimum = INFINITE
    for index, source in enumerate(sources):
        if source.process is None:
            continue
        current = _expiry(INFINITE, source.process._deadline)
        if current == DEADLINE:
            return index
        if minimum == INFINITE or current < minimum:
            earliest = index
            minimum = current
    return earliest


def _pipes_for(source: EventSource) -> list[PipeEventSource]:
    process = source.process
    if process is None:
        return [PipeEventSource(PIPE_INVALID) for _ in _PIPE_EVENTS]

    interests = Event(source.interests)
    wants_exit = (
        bool(interests & Event.EXIT)
        or (bool(interests & Event.OUT) and process._child[Stream.OUT] != PIPE_INVALID)
        or (bool(interests & Event.ERR) and process._child[Stream.ERR] != PIPE_INVALID)
    )

    def pick(wanted: bool, pipe: int) -> int:
        return pipe if wanted else PIPE_INVALID

    return [
        PipeEventSource(pick(bool(interests & Event.IN), process._pipes[Stream.IN]), PIPE_EVENT_OUT),
        PipeEventSource(pick(bool(interests & Event.OUT), process._pipes[Stream.OUT]), PIPE_EVENT_IN),
        PipeEventSource(pick(bool(interests & Event.ERR), process._pipes[Stream.ERR]), PIPE_EVENT_IN),
        PipeEventSource(pick(wants_exit, process._pipe_exit), PIPE_EVENT_IN),
    ]


def poll(sources: Sequence[EventSource], timeout: int = INFINITE) -> int:
    """Wait for events on ``sources`` and fill in their ``events``.

    Returns the number of sources with events, 0 when ``timeout`` expired.
    An expired deadline is reported as ``Event.DEADLINE`` on the source whose
    deadline expired first. Raises with ``EPIPE`` when there is nothing to poll.
    """
    if not sources:
        raise ReprocError(EINVAL, "no event sources")

    earliest = _find_earliest_deadline(sources)
    earliest_process = sources[earliest].process
    deadline = INFINITE if earliest_process is None else earliest_process._deadline
    first = _expiry(timeout, deadline)

    if first == DEADLINE:
        for source in sources:
            source.events = Event(0)
        sources[earliest].events = Event.DEADLINE
        return 1

    groups = [_pipes_for(source) for source in sources]
    pipes = [pipe for group in groups for pipe in group]

    if all(pipe.pipe == PIPE_INVALID for pipe in pipes):
        raise ReprocError(EPIPE)

    ready = pipe_poll(pipes, first)

    for source in sources:
        source.events = Event(0)

    if ready == 0:
        if first != timeout:
            # Deadline expiry is an event, a plain timeout is not.
            sources[earliest].events = Event.DEADLINE
            return 1
        return 0

    for source, group in zip(sources, groups):
        for event, pipe in zip(_PIPE_EVENTS, group):
            if pipe.pipe != PIPE_INVALID and pipe.events > 0:
                source.events |= event

    return sum(1 for source in sources if source.events)


def _setup_input(pipe: int, data: bytes | None) -> int:
    """Write all of ``data`` to the child's stdin pipe and close it."""
    if data is None:
        return pipe

    # Don't block forever when the input is larger than the pipe buffer.
    pipe_nonblocking(pipe, True)
    view = memoryview(data)
    while view:
        written = pipe_write(pipe, view)
        view = view[written:]

    return pipe_destroy(pipe)


class Process:
    """A child process together with the pipes connected to it."""

    def __init__(self) -> None:
        self._handle = PROCESS_INVALID
        self._pipes = {Stream.IN: PIPE_INVALID, Stream.OUT: PIPE_INVALID, Stream.ERR: PIPE_INVALID}
        self._pipe_exit = PIPE_INVALID
        self._child = {Stream.OUT: PIPE_INVALID, Stream.ERR: PIPE_INVALID}
        self._status = _NOT_STARTED
        self._stop = StopActions()
        self._deadline = INFINITE
        self._nonblocking = False

    def _require_usable(self, started: bool = True) -> None:
        if self._status == _IN_CHILD:
            raise ReprocError(EINVAL, "not available in the forked child")
        if started and self._status == _NOT_STARTED:
            raise ReprocError(EINVAL, "process not started")

    def _close_pipes(self) -> None:
        for stream in self._pipes:
            self._pipes[stream] = pipe_destroy(self._pipes[stream])
        self._pipe_exit = pipe_destroy(self._pipe_exit)

    def start(self, argv: Sequence[str] | None, options: Options | None = None) -> int:
        """Start the child process.

        Returns 1 in the parent. With ``options.fork`` and no ``argv`` the
        process only forks and 0 is returned in the child.
        """
        if self._status != _NOT_STARTED:
            raise ReprocError(EINVAL, "process already started")

        options = parse_options(options if options is not None else Options(), argv)
        redirect = options.redirect

        child_in = child_out = child_err = HANDLE_INVALID
        child_exit = PIPE_INVALID
        try:
            self._pipes[Stream.IN], child_in = redirect_init(
                Stream.IN, redirect.in_, options.nonblocking, HANDLE_INVALID
            )
            self._pipes[Stream.OUT], child_out = redirect_init(
                Stream.OUT, redirect.out, options.nonblocking, HANDLE_INVALID
            )
            self._pipes[Stream.ERR], child_err = redirect_init(
                Stream.ERR, redirect.err, options.nonblocking, child_out
            )
            self._pipe_exit, child_exit = pipe_init()
            self._pipes[Stream.IN] = _setup_input(self._pipes[Stream.IN], options.input)

            pid = process_start(
                argv,
                ProcessOptions(
                    env=options.env,
                    env_extra=options.env_extra,
                    working_directory=options.working_directory,
                    handle_in=child_in,
                    handle_out=child_out,
                    handle_err=child_err,
                    handle_exit=child_exit,
                    show_console_window=options.show_console_window,
                ),
            )
        except BaseException:
            self._handle = PROCESS_INVALID
            self._close_pipes()
            raise
        finally:
            # The child endpoints are either copied into the child or unused.
            redirect_destroy(child_in, redirect.in_.type)
            redirect_destroy(child_out, redirect.out.type)
            redirect_destroy(child_err, redirect.err.type)
            pipe_destroy(child_exit)

        if pid == 0:
            # The child already closed the parent's pipe endpoints.
            self._handle = PROCESS_INVALID
            self._pipes = dict.fromkeys(self._pipes, PIPE_INVALID)
            self._pipe_exit = PIPE_INVALID
            self._status = _IN_CHILD
            return 0

        self._handle = pid
        self._stop = options.stop
        if options.deadline != INFINITE:
            self._deadline = now() + options.deadline
        self._nonblocking = options.nonblocking
        self._child = {Stream.OUT: PIPE_INVALID, Stream.ERR: PIPE_INVALID}
        self._status = _IN_PROGRESS
        return 1

    def read(self, stream: Stream, size: int = _READ_SIZE) -> bytes:
        """Read up to ``size`` bytes from the child's stdout or stderr.

        Raises with ``EPIPE`` once the stream is closed.
        """
        self._require_usable(started=False)
        if stream not in (Stream.OUT, Stream.ERR):
            raise ReprocError(EINVAL, "can only read from stdout or stderr")

        if self._pipes[stream] == PIPE_INVALID:
            raise ReprocError(EPIPE)

        if self._child[stream] != PIPE_INVALID:
            # Extra child handles kept open in the parent are closed once the
            # child exits, otherwise reading would block forever.
            source = EventSource(self, Event.OUT if stream == Stream.OUT else Event.ERR)
            try:
                ready = poll([source], 0 if self._nonblocking else INFINITE)
            finally:
                if source.events & Event.EXIT:
                    self._child[stream] = pipe_destroy(self._child[stream])
            if ready == 0:
                raise ReprocError(EWOULDBLOCK)

        try:
            return pipe_read(self._pipes[stream], size)
        except ReprocError as exc:
            if exc.error == EPIPE:
                self._pipes[stream] = pipe_destroy(self._pipes[stream])
            raise

    def write(self, data: bytes | None) -> int:
        """Write ``data`` to the child's stdin and return how many bytes were written."""
        self._require_usable(started=False)
        if data is None:
            return 0

        pipe = self._pipes[Stream.IN]
        if pipe == PIPE_INVALID:
            raise ReprocError(EPIPE)

        try:
            return pipe_write(pipe, data)
        except ReprocError as exc:
            if exc.error == EPIPE:
                self._pipes[Stream.IN] = pipe_destroy(pipe)
            raise

    def close(self, stream: Stream) -> None:
        """Close the parent's end of one of the child's standard streams."""
        self._require_usable(started=False)
        if stream not in self._pipes:
            raise ReprocError(EINVAL, f"invalid stream: {stream!r}")
        self._pipes[stream] = pipe_destroy(self._pipes[stream])

    def wait(self, timeout: int = INFINITE) -> int:
        """Wait for the child to exit and return its exit status.

        ``DEADLINE`` waits until the process deadline. Raises with
        ``ETIMEDOUT`` when the child is still running after ``timeout``.
        """
        self._require_usable()
        if self._status >= 0:
            return self._status

        if timeout == DEADLINE:
            timeout = _expiry(INFINITE, self._deadline)
            if timeout == DEADLINE:
                # Only check whether the process is still running.
                timeout = 0

        if self._pipe_exit == PIPE_INVALID:
            raise ReprocError(EINVAL, "process exit pipe is closed")

        source = PipeEventSource(self._pipe_exit, PIPE_EVENT_IN)
        if pipe_poll([source], timeout) == 0:
            raise ReprocError(ETIMEDOUT)

        status = process_wait(self._handle, timeout)
        self._pipe_exit = pipe_destroy(self._pipe_exit)
        self._status = status
        return status

    def terminate(self) -> None:
        """Ask the child to exit with ``SIGTERM``."""
        self._require_usable()
        if self._status >= 0:
            return
        process_terminate(self._handle)

    def kill(self) -> None:
        """Force the child to exit with ``SIGKILL``."""
        self._require_usable()
        if self._status >= 0:
            return
        process_kill(self._handle)

    def stop(self, stop: StopActions | None = None) -> int:
        """Run up to three stop steps until the child exits; return its status.

        Raises with ``ETIMEDOUT`` when the last executed step timed out.
        """
        self._require_usable()
        stop = parse_stop_actions(stop if stop is not None else StopActions())

        timed_out = False
        for step in (stop.first, stop.second, stop.third):
            if step.action == StopAction.NOOP:
                timed_out = False
                continue
            if step.action == StopAction.TERMINATE:
                self.terminate()
            elif step.action == StopAction.KILL:
                self.kill()
            elif step.action != StopAction.WAIT:
                raise ReprocError(EINVAL, f"invalid stop action: {step.action!r}")

            try:
                return self.wait(step.timeout)
            except ReprocError as exc:
                if exc.error != ETIMEDOUT:
                    raise
                timed_out = True

        if timed_out:
            raise ReprocError(ETIMEDOUT)
        return 0

    def pid(self) -> int:
        """The process id of the child."""
        self._require_usable()
        return process_pid(self._handle)

    def destroy(self) -> None:
        """Stop a running child and release every pipe."""
        if self._status == _IN_PROGRESS:
            with contextlib.suppress(ReprocError):
                self.stop(_DESTROY_STOP)

        self._close_pipes()
        for stream in self._child:
            self._child[stream] = pipe_destroy(self._child[stream])

    def __enter__(self) -> "Process":
        return self

    def __exit__(self, *args: Any) -> None:
        self.destroy()


def strerror(error: int) -> str:
    """Human readable description of an error code."""
    return error_string(error)