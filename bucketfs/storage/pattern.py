"""Glob pattern compilation for bucket listings.

Patterns are matched against relative object names (namespace prefix
already stripped) and follow doublestar semantics over ``/``-delimited
segments:

- ``*`` matches any run of characters within one segment
- ``?`` matches exactly one non-separator character
- ``**`` as a whole segment matches zero or more segments
- ``[abc]``, ``[a-z]``, ``[!abc]`` / ``[^abc]`` match one non-separator
  character from (or not from) the class
- ``{a,b}`` matches either alternative; groups may nest
- ``\\`` escapes the next character

Patterns are compiled eagerly so that malformed input is rejected with
``StorageValidationError`` before any backend is contacted.

Example:
    ```python
    pattern = compile_pattern("logs/**/*.{gz,zst}")
    pattern.match("logs/2024/01/app.gz")   # True
    pattern.match("logs/app.txt")          # False
    pattern.static_prefix                  # "logs/"
    ```
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re

from .exceptions import StorageValidationError

_META_CHARS = frozenset("*?[{\\")


@dataclass(frozen=True, slots=True)
class GlobPattern:
    """A compiled glob pattern.

    Attributes:
        pattern: The source pattern.
        regex: Anchored regular expression equivalent of the pattern.
        static_prefix: Leading directory portion free of wildcards. Listings
            can be narrowed to it without changing the match result.
    """

    pattern: str
    regex: re.Pattern[str] = field(repr=False)
    static_prefix: str = ""

    def match(self, name: str) -> bool:
        """Whether a relative object name matches the pattern."""
        return self.regex.fullmatch(name) is not None


def _invalid(pattern: str, reason: str, position: int) -> StorageValidationError:
    return StorageValidationError(
        f"Invalid glob pattern {pattern!r}: {reason}",
        metadata={"pattern": pattern, "position": position},
    )


def _static_prefix(pattern: str) -> str:
    end = len(pattern)
    for i, char in enumerate(pattern):
        if char in _META_CHARS:
            end = i
            break
    head = pattern[:end]
    cut = head.rfind("/")
    if cut < 0:
        return ""
    prefix = head[: cut + 1]
    segments = prefix.rstrip("/").split("/")
    # Dot segments would let a listing wander outside the namespace
    if prefix.startswith("/") or any(s in ("", ".", "..") for s in segments):
        return ""
    return prefix


def _translate_class(pattern: str, start: int) -> tuple[str, int]:
    """Translate a ``[...]`` class starting at ``start``; returns (regex, next index)."""
    i = start + 1
    negate = False
    if i < len(pattern) and pattern[i] in "!^":
        negate = True
        i += 1

    parts: list[str] = []
    while i < len(pattern) and pattern[i] != "]":
        char = pattern[i]
        if char == "\\":
            i += 1
            if i >= len(pattern):
                raise _invalid(pattern, "trailing escape inside character class", i - 1)
            parts.append(re.escape(pattern[i]))
        elif char == "-" and parts and i + 1 < len(pattern) and pattern[i + 1] != "]":
            parts.append("-")
        else:
            parts.append(re.escape(char))
        i += 1

    if i >= len(pattern):
        raise _invalid(pattern, "unterminated character class", start)
    if not parts:
        raise _invalid(pattern, "empty character class", start)

    body = "".join(parts)
    if negate:
        return f"[^/{body}]", i + 1
    return f"(?!/)[{body}]", i + 1


def compile_pattern(pattern: str) -> GlobPattern:
    """Compile a glob pattern.

    Args:
        pattern: Glob expression over relative object names.

    Returns:
        The compiled pattern.

    Raises:
        StorageValidationError: On unbalanced ``[`` or ``{``, empty classes,
            invalid ranges, or a trailing ``\\``.
    """
    out: list[str] = []
    groups: list[int] = []
    n = len(pattern)
    i = 0

    def at_segment_start(pos: int) -> bool:
        if pos == 0:
            return True
        prev = pattern[pos - 1]
        return prev == "/" or (bool(groups) and prev in "{,")

    def at_segment_end(pos: int) -> bool:
        if pos >= n:
            return True
        nxt = pattern[pos]
        return nxt == "/" or (bool(groups) and nxt in ",}")

    while i < n:
        char = pattern[i]

        if char == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                run_end = i
                while run_end < n and pattern[run_end] == "*":
                    run_end += 1
                if at_segment_start(i) and at_segment_end(run_end):
                    if run_end < n and pattern[run_end] == "/":
                        out.append("(?:.*/)?")
                        i = run_end + 1
                    else:
                        out.append(".*")
                        i = run_end
                    continue
                out.append("[^/]*")
                i = run_end
                continue
            out.append("[^/]*")
        elif char == "?":
            out.append("[^/]")
        elif char == "[":
            translated, i = _translate_class(pattern, i)
            out.append(translated)
            continue
        elif char == "{":
            groups.append(i)
            out.append("(?:")
        elif char == "," and groups:
            out.append("|")
        elif char == "}" and groups:
            groups.pop()
            out.append(")")
        elif char == "\\":
            if i + 1 >= n:
                raise _invalid(pattern, "trailing escape", i)
            i += 1
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(char))
        i += 1

    if groups:
        raise _invalid(pattern, "unterminated alternation group", groups[-1])

    try:
        regex = re.compile("".join(out), re.DOTALL)
    except re.error as exc:
        raise _invalid(pattern, str(exc), exc.pos or 0) from exc

    return GlobPattern(pattern=pattern, regex=regex, static_prefix=_static_prefix(pattern))
