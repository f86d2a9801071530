"""Doublestar glob matching for push-based retrieval.

Supported syntax (paths are ``/``-separated, relative to the repo root):

    *        any run of characters within one path segment
    **       any number of whole segments, including none
    ?        one character other than ``/``
    [abc]    character class, ``[!abc]`` / ``[^abc]`` negated
    {a,b}    alternatives (may nest)
    \\x      literal x
"""

from __future__ import annotations

import functools
import re

from pearls.errors import ValidationError


def _translate(pattern: str) -> str:
    out: list[str] = []
    i = 0
    n = len(pattern)
    depth = 0  # open {…} groups
    while i < n:
        c = pattern[i]
        if c == "*":
            if pattern.startswith("**", i):
                at_start = i == 0 or pattern[i - 1] == "/"
                j = i + 2
                if at_start and j < n and pattern[j] == "/":
                    # "**/" matches zero or more leading segments
                    out.append("(?:[^/]*/)*")
                    i = j + 1
                    continue
                if at_start and j == n:
                    out.append(".*")
                    i = j
                    continue
                # "**" glued to other characters behaves like "*"
                out.append("[^/]*")
                i = j
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = i + 1
            if end < n and pattern[end] in "!^":
                end += 1
            if end < n and pattern[end] == "]":
                end += 1
            while end < n and pattern[end] != "]":
                end += 1
            if end >= n:
                msg = f"invalid glob pattern {pattern!r}: unclosed '['"
                raise ValidationError(msg)
            body = pattern[i + 1:end]
            if body[:1] in ("!", "^"):
                body = "^" + body[1:]
            out.append("[" + body.replace("\\", "\\\\") + "]")
            i = end
        elif c == "{":
            depth += 1
            out.append("(?:")
        elif c == "," and depth:
            out.append("|")
        elif c == "}" and depth:
            depth -= 1
            out.append(")")
        elif c == "\\":
            if i + 1 >= n:
                msg = f"invalid glob pattern {pattern!r}: trailing escape"
                raise ValidationError(msg)
            i += 1
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(c))
        i += 1
    if depth:
        msg = f"invalid glob pattern {pattern!r}: unclosed '{{'"
        raise ValidationError(msg)
    return "".join(out)


@functools.lru_cache(maxsize=512)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a doublestar pattern to an anchored regex."""
    if not pattern:
        msg = "glob pattern cannot be empty"
        raise ValidationError(msg)
    try:
        return re.compile(r"\A" + _translate(pattern) + r"\Z")
    except re.error as exc:
        msg = f"invalid glob {pattern!r}: {exc}"
        raise ValidationError(msg) from exc


def validate_glob(pattern: str) -> None:
    compile_glob(pattern)


def validate_globs(globs: list[str]) -> None:
    """Raise ValidationError for the first pattern with bad syntax."""
    for g in globs:
        validate_glob(g)


def match_path(path: str, globs: list[str]) -> bool:
    """True if path matches any of globs. Invalid patterns never match."""
    if not path or not globs:
        return False
    path = path.replace("\\", "/").removeprefix("./")
    for g in globs:
        try:
            rx = compile_glob(g)
        except ValidationError:
            continue
        if rx.match(path):
            return True
    return False
