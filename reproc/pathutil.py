"""Path helpers: separators, root and base detection, and normalization."""

from __future__ import annotations

import enum
import ntpath
import posixpath
import sys
from dataclasses import dataclass, field

__all__ = [
    "path_is_separator",
    "path_is_win32",
    "path_separator",
    "path_base",
    "path_root",
    "path_normalize",
    "join_string",
]


def join_string(a: str, b: str) -> str:
    """Return ``a`` followed by ``b``."""
    return "".join((a, b))


def path_is_separator(c: str, is_win32: bool) -> bool:
    """Whether ``c`` separates path components ('/' always, '\\' on Windows)."""
    return c == "/" or (is_win32 and c == "\\")


def path_is_win32() -> bool:
    """Whether paths of the running platform follow Windows rules."""
    return sys.platform == "win32"


def path_separator(is_win32: bool) -> str:
    """The preferred separator for the given path style."""
    module = ntpath if is_win32 else posixpath
    return module.sep


def path_base(path: str, is_win32: bool) -> int:
    """Length of the directory part of ``path``, up to and including its last separator."""
    for end in range(len(path), 0, -1):
        if path_is_separator(path[end - 1], is_win32):
            return end
    return 0


def _skip(path: str, start: int, is_win32: bool, separators: bool) -> int:
    """Index of the first character from ``start`` that is (not) a separator."""
    index = start
    while index < len(path) and path_is_separator(path[index], is_win32) == separators:
        index += 1
    return index


def path_root(path: str | None, is_win32: bool) -> int:
    """Length of the root of ``path``: a leading separator, a drive or a UNC share."""
    if not path:
        return 0

    first = path[0]
    if not is_win32:
        return 1 if path_is_separator(first, is_win32) else 0

    first_is_separator = path_is_separator(first, is_win32)
    if len(path) == 1:
        return 1 if first_is_separator else 0

    if first.isascii() and first.isalpha() and path[1] == ":":
        if len(path) > 2 and path_is_separator(path[2], is_win32):
            return 3
        return 2

    if not first_is_separator:
        return 0

    index = _skip(path, 0, is_win32, separators=True)
    if index != 2:
        return 1

    server_end = _skip(path, index, is_win32, separators=False)
    has_server_name = server_end > index
    share_start = _skip(path, server_end, is_win32, separators=True)
    share_end = _skip(path, share_start, is_win32, separators=False)
    has_share_name = share_end > share_start
    index = share_end
    if index < len(path) and path_is_separator(path[index], is_win32):
        index += 1

    if has_server_name and has_share_name:
        return index
    return 1


class _State(enum.Enum):
    SEGMENT = enum.auto()
    SLASH = enum.auto()
    ROOT = enum.auto()


@dataclass
class _Output:
    """Characters of the normalized path, collected from last to first."""

    separator: str
    chars: list[str] = field(default_factory=list)
    separator_appended: bool = False
    dot_count: int = 0
    char_count: int = 0

    def append(self, is_separator: bool, c: str) -> None:
        if not is_separator or not self.separator_appended:
            self.chars.append(self.separator if is_separator else c)
            self.separator_appended = is_separator

    def segment_dots(self) -> int:
        """Number of dots if the current segment is only dots, otherwise -1."""
        return self.dot_count if self.dot_count == self.char_count else -1

    def reset_segment(self) -> None:
        self.dot_count = 0
        self.char_count = 0

    def result(self) -> str:
        return "".join(reversed(self.chars))


def path_normalize(path: str | None, separator: str, is_win32: bool) -> str:
    """Collapse repeated separators and resolve '.' and '..' segments of ``path``.

    Every separator in the result is ``separator``. Raises ``ValueError`` when
    ``separator`` is not a separator of the given path style.
    """
    if not path_is_separator(separator, is_win32):
        raise ValueError(f"invalid path separator: {separator!r}")
    if path is None:
        path = ""

    root_length = path_root(path, is_win32)
    is_absolute = False
    while root_length > 0 and path_is_separator(path[root_length - 1], is_win32):
        root_length -= 1
        is_absolute = True
    if root_length >= 5:
        is_absolute = True

    out = _Output(separator)
    state = _State.SEGMENT
    skip_segments = 0
    segment_ready = False
    dot_slash = False
    from_slash = False
    i = len(path) - 1

    while True:
        if i == root_length - 1:
            if state is _State.SEGMENT:
                dots = out.segment_dots()
                state = _State.ROOT
                if dots < 0 or dots > 2:
                    if skip_segments:
                        skip_segments -= 1
                else:
                    if dots <= 1 and not is_absolute and (
                        out.separator_appended or not out.chars
                    ):
                        if not dot_slash and from_slash:
                            out.append(True, "/")
                        out.append(False, ".")
                    if dots == 2:
                        skip_segments += 1
            if is_absolute:
                state = _State.SLASH
            if state is _State.SLASH:
                out.append(True, "/")
                state = _State.ROOT
            elif state is _State.ROOT:
                for _ in range(skip_segments):
                    out.append(True, "/")
                    out.append(False, ".")
                    out.append(False, ".")
            skip_segments = 0

        if i < 0:
            if root_length >= 5:
                # UNC paths start with two separators.
                out.separator_appended = False
                out.append(True, "/")
            break

        c = path[i]
        i -= 1
        is_separator = path_is_separator(c, is_win32)

        if state is _State.SEGMENT:
            if is_separator:
                dots = out.segment_dots()
                if dots in (1, 2):
                    if not from_slash:
                        dot_slash = True
                    if dots == 2:
                        skip_segments += 1
                elif skip_segments:
                    skip_segments -= 1
                state = _State.SLASH
                continue
            if c == ".":
                out.dot_count += 1
            out.char_count += 1
            if not segment_ready:
                if out.char_count > 2 or out.char_count != out.dot_count:
                    # A real segment: read it again, this time emitting it.
                    segment_ready = True
                    i += out.char_count
                    out.reset_segment()
                continue
            if skip_segments:
                continue
            if not dot_slash and from_slash:
                out.append(True, "/")
            dot_slash = False
            from_slash = False
        elif state is _State.SLASH:
            if not is_separator:
                from_slash = True
                i += 1
                out.reset_segment()
                segment_ready = False
                state = _State.SEGMENT
            continue

        out.append(is_separator, c)

    return out.result()