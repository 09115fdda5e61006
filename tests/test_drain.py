import sys

import pytest

from reproc.core import Process
from reproc.drain import SINK_NULL, StringSink, discard, drain
from reproc.errors import ETIMEDOUT, ReprocError
from reproc.options import Options, Redirect, RedirectOptions, RedirectType, Stream


def _python(code):
    return [sys.executable, "-c", code]


def test_discard_returns_zero():
    assert discard(Stream.OUT, b"data") == 0
    assert SINK_NULL(Stream.ERR, b"") == 0


def test_string_sink_accumulates():
    sink = StringSink()
    assert sink(Stream.OUT, b"ab") == 0
    assert sink(Stream.OUT, b"cd") == 0
    assert bytes(sink.data) == b"abcd"
    assert sink.text == "abcd"


def test_drain_collects_stdout():
    sink = StringSink()
    with Process() as process:
        process.start(_python("print('hello')"))
        assert drain(process, sink, discard) == 0
        assert process.wait() == 0
    assert sink.text.replace("\r\n", "\n") == "hello\n"


def test_drain_large_output():
    sink = StringSink()
    size = 100000
    with Process() as process:
        process.start(_python(f"import sys; sys.stdout.write('x' * {size})"))
        assert drain(process, sink, discard) == 0
    assert len(sink.data) == size
    assert set(sink.data) == {ord("x")}


def test_drain_separates_streams():
    out, err = StringSink(), StringSink()
    options = Options(
        redirect=RedirectOptions(err=Redirect(type=RedirectType.PIPE))
    )
    code = "import sys; sys.stdout.write('out'); sys.stderr.write('err')"
    with Process() as process:
        process.start(_python(code), options)
        assert drain(process, out, err) == 0
    assert out.text == "out"
    assert err.text == "err"


def test_sinks_first_called_with_stdin_and_no_data():
    calls = []

    def record(stream, data):
        calls.append((stream, bytes(data)))
        return 0

    with Process() as process:
        process.start(_python("pass"))
        result = drain(process, record, record)
    assert result == 0
    assert calls[0] == (Stream.IN, b"")
    assert calls[1] == (Stream.IN, b"")


def test_positive_sink_result_stops_drain():
    def stop(stream, data):
        return 7

    with Process() as process:
        process.start(_python("print('x')"))
        assert drain(process, stop, discard) == 7


def test_negative_sink_result_raises():
    def fail(stream, data):
        return ETIMEDOUT

    with Process() as process:
        process.start(_python("print('x')"))
        with pytest.raises(ReprocError) as info:
            drain(process, fail, discard)
    assert info.value.error == ETIMEDOUT


def test_deadline_expiry_raises_timeout():
    options = Options(deadline=200)
    with Process() as process:
        process.start(_python("import time; time.sleep(5)"), options)
        with pytest.raises(ReprocError) as info:
            drain(process, discard, discard)
    assert info.value.error == ETIMEDOUT