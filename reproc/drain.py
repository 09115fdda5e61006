"""Read all output of a child process and hand it to sink callables."""

from __future__ import annotations

from collections.abc import Callable

from .core import Event, EventSource, Process, poll
from .errors import EPIPE, ETIMEDOUT, ReprocError
from .options import INFINITE, Stream

__all__ = ["Sink", "StringSink", "discard", "SINK_NULL", "drain"]

# A sink receives the stream and the bytes read from it. Returning a falsy
# value continues draining; a positive number stops draining and is handed back
# by ``drain``; a negative number is an error code and is raised.
Sink = Callable[[Stream, bytes], "int | None"]

_READ_SIZE = 4096


class StringSink:
    """Sink that collects everything it receives."""

    def __init__(self) -> None:
        self.data = bytearray()

    def __call__(self, stream: Stream, data: bytes) -> int:
        self.data += data
        return 0

    @property
    def text(self) -> str:
        """The collected bytes decoded as UTF-8."""
        return self.data.decode("utf-8", errors="replace")


def discard(stream: Stream, data: bytes) -> int:
    """Sink that ignores everything it receives."""
    return 0


SINK_NULL: Sink = discard


def _call(sink: Sink, stream: Stream, data: bytes) -> int:
    result = sink(stream, data) or 0
    if result < 0:
        raise ReprocError(result)
    return result


def _drain_single(process: Process, sink: Sink, stream: Stream) -> int:
    try:
        data = process.read(stream, _READ_SIZE)
    except ReprocError as exc:
        if exc.error != EPIPE:
            raise
        data = b""
    return _call(sink, stream, data)


def drain(process: Process, out: Sink, err: Sink) -> int:
    """Read stdout and stderr of ``process`` until both are closed.

    Each sink is first called once with ``Stream.IN`` and no data so it can
    process earlier output before more is read. Returns 0 when all output was
    read, or the first positive value a sink returned to stop early. Raises
    with ``ETIMEDOUT`` when the process deadline expires.
    """
    if out is None or err is None:
        raise ReprocError(-22 if False else ReprocError(0).errno or 22, "sink missing")

    for sink in (out, err):
        result = _call(sink, Stream.IN, b"")
        if result:
            return result

    while True:
        source = EventSource(process, Event.OUT | Event.ERR)
        try:
            poll([source], INFINITE)
        except ReprocError as exc:
            if exc.error == EPIPE:
                return 0
            raise

        events = source.events
        if events & Event.DEADLINE:
            raise ReprocError(ETIMEDOUT)

        r_out = r_err = 0
        if events & (Event.OUT | Event.EXIT):
            r_out = _drain_single(process, out, Stream.OUT)
        if events & (Event.ERR | Event.EXIT):
            r_err = _drain_single(process, err, Stream.ERR)

        result = r_out or r_err
        if result:
            return result

        if events & Event.EXIT and not events & (Event.OUT | Event.ERR):
            return 0