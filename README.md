# reproc

A library for starting child processes and talking to them over pipes on
POSIX systems. Each standard stream of the child can go to a pipe, to the
parent's own stream, to an open file, to a path, or nowhere. Processes can
be polled together, read from and written to, and stopped with a sequence
of wait / terminate / kill steps bounded by timeouts and an overall
deadline.

All timeouts and deadlines are in milliseconds. `-1` (`reproc.options.INFINITE`)
means wait forever; `-2` (`reproc.options.DEADLINE`) means wait until the
process deadline.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running a command to completion

`reproc.run.run(argv, options)` starts a command, waits for it and returns
its exit status. Unless the options discard output or send it to a file or
path, the child shares the parent's standard streams.

```python
from reproc.options import Options
from reproc.run import run

status = run(["echo", "hello"], Options())
```

To collect the output, use `run_ex(argv, options, out, err)` with sinks from
`reproc.drain`:

```python
from reproc.drain import StringSink, discard
from reproc.options import Options
from reproc.run import run_ex

out = StringSink()
status = run_ex(["ls", "-l"], Options(), out, discard)
print(out.text)
```

`run_ex` raises `ReprocError` with `EINVAL` when `options.fork` is set.

### Sinks

A sink is a callable taking `(stream, data)`. Returning `0` or `None`
continues; a positive value stops draining and is returned by
`drain`; a negative value is an error code and is raised as `ReprocError`.
`StringSink` collects bytes in its `data` attribute (`text` gives them
decoded as UTF-8); `discard` (also `SINK_NULL`) ignores them.

`reproc.drain.drain(process, out, err)` reads stdout and stderr until both
are closed. Each sink is first called once with `Stream.IN` and no data.
It raises with `ETIMEDOUT` when the process deadline expires.

An exit status is the exit code for a normal exit, or 128 plus the signal
number when the child was killed by a signal (`reproc.core.SIGTERM` and
`reproc.core.SIGKILL` hold those two values).

## Driving a process by hand

`reproc.core.Process` gives full control. It is a context manager; leaving
the block runs `destroy()`, which stops a running child (wait, then
terminate, then kill, 100 ms each) and closes its pipes.

```python
from reproc.core import Process
from reproc.options import Options, Stream

with Process() as process:
    process.start(["cat"], Options())
    process.write(b"some input\n")
    process.close(Stream.IN)
    data = process.read(Stream.OUT, 4096)
    status = process.wait(-1)
```

Methods of `Process`:

- `start(argv, options)` starts the child and returns 1. With
  `options.fork` and `argv=None` it only forks and returns 0 in the child.
- `read(stream, size=4096)` reads from `Stream.OUT` or `Stream.ERR`; raises
  with `EPIPE` once the stream is closed.
- `write(data)` writes to stdin and returns the number of bytes written.
- `close(stream)` closes the parent's end of a stream.
- `wait(timeout)` returns the exit status, raising with `ETIMEDOUT` if the
  child is still running.
- `terminate()` sends `SIGTERM`, `kill()` sends `SIGKILL`.
- `stop(stop)` runs up to three `StopStep`s from a `StopActions`.
- `pid()` returns the child's process id.

`reproc.core.poll(sources, timeout)` waits on several processes. Each
`EventSource` names a process and its `interests` as `Event` flags (`IN`,
`OUT`, `ERR`, `EXIT`); after the call its `events` hold what happened. It
returns the number of sources with events, or 0 on timeout. A source whose
deadline has passed reports `Event.DEADLINE`. With nothing left to poll it
raises with `EPIPE`.

## Options

`reproc.options.Options` fields:

- `env` (`EnvBehavior.EXTEND` or `EnvBehavior.EMPTY`) and `env_extra`, a
  list of `"KEY=VALUE"` strings added to the environment.
- `working_directory`: the child's directory. A relative program path
  containing a `/` is still resolved against the parent's directory.
- `redirect`: a `RedirectOptions` with one `Redirect` per stream (`in_`,
  `out`, `err`) and the shortcuts `parent`, `discard`, `file` and `path`
  (`file` and `path` apply to stdout and stderr). By default stdin and
  stdout are pipes and stderr goes to the parent's stderr.
  `RedirectType.STDOUT` sends stderr to the child's stdout.
- `input`: bytes written to stdin before the child starts; stdin is then
  closed. Requires stdin to be a pipe.
- `fork`, `nonblocking` (parent pipe ends in non-blocking mode).
- `deadline`: milliseconds after start; 0 means none.
- `stop`: the `StopActions` used by `run`. If every step is `NOOP`, it
  becomes "wait until the deadline, then terminate and wait forever".

Conflicting redirects raise `ReprocError` with `EINVAL`.

## Errors

Failures raise `reproc.errors.ReprocError`, a subclass of `OSError`. Its
`errno` is the positive system error number and its `error` property the
negative code comparable with `EINVAL`, `EPIPE`, `ETIMEDOUT`, `ENOMEM` and
`EWOULDBLOCK` in `reproc.errors`. `reproc.core.strerror(error)` describes a
code of either sign.

## Paths

`reproc.pathutil` has helpers for POSIX and Windows style paths:
`path_root` and `path_base` return the length of a path's root (leading
separator, drive or UNC share) and directory part, and
`path_normalize(path, separator, is_win32)` collapses repeated separators
and resolves `.` and `..` segments, raising `ValueError` for an invalid
separator.

## What it does not do

Starting processes works on POSIX systems only; on Windows only the path
helpers are usable. There is no command-line tool.