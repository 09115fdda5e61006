"""Run a child process to completion in one call."""

from __future__ import annotations

import dataclasses
from collections.abc import Sequence

from .core import Process
from .drain import SINK_NULL, Sink, drain
from .errors import EINVAL, ReprocError
from .options import Options

__all__ = ["run", "run_ex"]


def run(argv: Sequence[str], options: Options | None = None) -> int:
    """Run ``argv`` and return its exit status.

    Unless the options discard output or send it to a file or path, the child
    shares the parent's standard streams.
    """
    options = options if options is not None else Options()
    redirect = options.redirect
    if not redirect.discard and redirect.file is None and redirect.path is None:
        redirect = dataclasses.replace(redirect, parent=True)
    options = dataclasses.replace(options, redirect=redirect)
    return run_ex(argv, options, SINK_NULL, SINK_NULL)


def run_ex(
    argv: Sequence[str],
    options: Options | None = None,
    out: Sink = SINK_NULL,
    err: Sink = SINK_NULL,
) -> int:
    """Run ``argv``, feed its output to the sinks, stop it and return its exit status."""
    options = options if options is not None else Options()
    # The caller could not tell whether it runs in the forked child.
    if options.fork:
        raise ReprocError(EINVAL, "fork is not supported when running")

    with Process() as process:
        process.start(argv, options)
        drain(process, out, err)
        return process.stop(options.stop)