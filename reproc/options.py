"""Process options and their validation."""

from __future__ import annotations

import dataclasses
import errno
import enum
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import IO, Any

from .errors import ReprocError

__all__ = [
    "INFINITE",
    "DEADLINE",
    "Stream",
    "RedirectType",
    "StopAction",
    "EnvBehavior",
    "Redirect",
    "StopStep",
    "StopActions",
    "RedirectOptions",
    "Options",
    "parse_stop_actions",
    "parse_options",
]

INFINITE = -1
DEADLINE = -2


class Stream(enum.IntEnum):
    IN = 0
    OUT = 1
    ERR = 2


class RedirectType(enum.IntEnum):
    DEFAULT = 0
    PIPE = 1
    PARENT = 2
    DISCARD = 3
    STDOUT = 4
    HANDLE = 5
    FILE = 6
    PATH = 7


class StopAction(enum.IntEnum):
    NOOP = 0
    WAIT = 1
    TERMINATE = 2
    KILL = 3


class EnvBehavior(enum.IntEnum):
    EXTEND = 0
    EMPTY = 1


@dataclass
class Redirect:
    """Where one standard stream of the child goes."""

    type: RedirectType = RedirectType.DEFAULT
    handle: int | None = None
    file: IO[Any] | None = None
    path: str | None = None

    def is_set(self) -> bool:
        return (
            self.type != RedirectType.DEFAULT
            or self.handle is not None
            or self.file is not None
            or self.path is not None
        )


@dataclass
class StopStep:
    action: StopAction = StopAction.NOOP
    timeout: int = 0


@dataclass
class StopActions:
    first: StopStep = field(default_factory=StopStep)
    second: StopStep = field(default_factory=StopStep)
    third: StopStep = field(default_factory=StopStep)


@dataclass
class RedirectOptions:
    """Per-stream redirects plus shortcuts that apply to several streams."""

    in_: Redirect = field(default_factory=Redirect)
    out: Redirect = field(default_factory=Redirect)
    err: Redirect = field(default_factory=Redirect)
    parent: bool = False
    discard: bool = False
    file: IO[Any] | None = None
    path: str | None = None


@dataclass
class Options:
    env: EnvBehavior = EnvBehavior.EXTEND
    env_extra: Sequence[str] | None = None
    working_directory: str | None = None
    redirect: RedirectOptions = field(default_factory=RedirectOptions)
    input: bytes | None = None
    fork: bool = False
    nonblocking: bool = False
    deadline: int = 0
    stop: StopActions = field(default_factory=StopActions)
    show_console_window: bool = False


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise ReprocError(errno.EINVAL, message)


def _parse_redirect(
    redirect: Redirect,
    stream: Stream,
    parent: bool,
    discard: bool,
    file: IO[Any] | None,
    path: str | None,
) -> Redirect:
    r = dataclasses.replace(redirect)

    if file is not None:
        _require(not r.is_set(), "redirect already set")
        _require(not parent and not discard and path is None, "conflicting redirects")
        r.type = RedirectType.FILE
        r.file = file

    if path is not None:
        _require(not r.is_set(), "redirect already set")
        _require(not parent and not discard and file is None, "conflicting redirects")
        r.type = RedirectType.PATH
        r.path = path

    if r.type == RedirectType.HANDLE or r.handle is not None:
        _require(r.type in (RedirectType.DEFAULT, RedirectType.HANDLE), "handle conflicts with type")
        _require(r.handle is not None, "handle redirect without handle")
        _require(r.file is None and r.path is None, "handle conflicts with file or path")
        r.type = RedirectType.HANDLE

    if r.type == RedirectType.FILE or r.file is not None:
        _require(r.type in (RedirectType.DEFAULT, RedirectType.FILE), "file conflicts with type")
        _require(r.file is not None, "file redirect without file")
        _require(r.handle is None and r.path is None, "file conflicts with handle or path")
        r.type = RedirectType.FILE

    if r.type == RedirectType.PATH or r.path is not None:
        _require(r.type in (RedirectType.DEFAULT, RedirectType.PATH), "path conflicts with type")
        _require(r.path is not None, "path redirect without path")
        _require(r.handle is None and r.file is None, "path conflicts with handle or file")
        r.type = RedirectType.PATH

    if r.type == RedirectType.DEFAULT:
        if parent:
            _require(not discard, "parent and discard are exclusive")
            r.type = RedirectType.PARENT
        elif discard:
            r.type = RedirectType.DISCARD
        else:
            r.type = RedirectType.PARENT if stream == Stream.ERR else RedirectType.PIPE

    return r


def parse_stop_actions(stop: StopActions) -> StopActions:
    """Replace an all-noop stop sequence with wait-for-deadline then terminate."""
    steps = (stop.first, stop.second, stop.third)
    if all(step.action == StopAction.NOOP for step in steps):
        return StopActions(
            first=StopStep(StopAction.WAIT, DEADLINE),
            second=StopStep(StopAction.TERMINATE, INFINITE),
            third=dataclasses.replace(stop.third),
        )
    return StopActions(*(dataclasses.replace(step) for step in steps))


def parse_options(options: Options, argv: Sequence[str] | None) -> Options:
    """Validate ``options`` against ``argv`` and return them with defaults filled in."""
    redirect = options.redirect
    parsed_redirect = dataclasses.replace(
        redirect,
        in_=_parse_redirect(redirect.in_, Stream.IN, redirect.parent, redirect.discard, None, None),
        out=_parse_redirect(
            redirect.out, Stream.OUT, redirect.parent, redirect.discard, redirect.file, redirect.path
        ),
        err=_parse_redirect(
            redirect.err, Stream.ERR, redirect.parent, redirect.discard, redirect.file, redirect.path
        ),
    )

    if options.input is not None:
        _require(parsed_redirect.in_.type == RedirectType.PIPE, "input requires a stdin pipe")

    if options.fork:
        _require(argv is None, "fork does not take argv")
    else:
        _require(argv is not None and len(argv) > 0 and argv[0] is not None, "argv is empty")

    return dataclasses.replace(
        options,
        redirect=parsed_redirect,
        deadline=INFINITE if options.deadline == 0 else options.deadline,
        stop=parse_stop_actions(options.stop),
    )