"""Glob matching shared by every policy check.

Patterns use shell-glob syntax with globstar support:

- ``*`` matches anything inside a single path segment
- ``**`` matches across segments, including none at all
  (``dist/**`` matches ``dist`` itself, ``**/node_modules`` matches
  ``node_modules``)
- ``?`` matches one character, ``[abc]`` / ``[!abc]`` a character class

Matching is always case-insensitive and dot-files are not special.
Wildcards never match a ``.`` or ``..`` segment, so ``dist/**`` does not
cover ``dist/../src``.
"""

import re
from functools import lru_cache
from typing import Iterable

_LEADING_DOT_SLASH = re.compile(r"^(?:\./)+")

# One path segment that is not "." or ".."
_SEGMENT = r"(?!\.\.?(?:/|$))[^/]*"


def normalize_path(text: str) -> str:
    """Strip leading ``./`` so relative spellings compare equal."""
    return _LEADING_DOT_SLASH.sub("", text)


def _translate(pattern: str) -> str:
    i, n = 0, len(pattern)
    out: list[str] = []

    while i < n:
        # Trailing "/**" also matches the directory itself
        if pattern.startswith("/**", i) and i + 3 == n:
            out.append(f"(?:/{_SEGMENT})*")
            break

        c = pattern[i]
        if c == "*":
            j = i
            while j < n and pattern[j] == "*":
                j += 1
            at_segment_start = i == 0 or pattern[i - 1] == "/"
            if j - i > 1:
                if at_segment_start and j < n and pattern[j] == "/":
                    out.append(f"(?:{_SEGMENT}/)*")
                    j += 1
                else:
                    head = _SEGMENT if at_segment_start else "[^/]*"
                    out.append(f"{head}(?:/{_SEGMENT})*")
            else:
                out.append(_SEGMENT if at_segment_start else "[^/]*")
            i = j
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            end = pattern.find("]", i + 1)
            body = pattern[i + 1:end] if end != -1 else ""
            if end == -1 or body in ("", "!", "^"):
                out.append(re.escape(c))
                i += 1
                continue
            if body[0] == "!":
                body = "^" + body[1:]
            out.append("[" + body.replace("\\", "\\\\") + "]")
            i = end + 1
        else:
            out.append(re.escape(c))
            i += 1

    return "".join(out)


@lru_cache(maxsize=1024)
def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob pattern into an anchored, case-insensitive regex."""
    return re.compile(_translate(normalize_path(pattern)), re.IGNORECASE | re.DOTALL)


def matches(text: str, patterns: Iterable[str]) -> bool:
    """Check whether ``text`` matches any of ``patterns``.

    Args:
        text: Candidate string (a path, tool name or action).
        patterns: Glob patterns. An empty collection never matches.

    Returns:
        True if at least one pattern matches the whole candidate.
    """
    candidate = normalize_path(text)
    return any(compile_glob(pattern).fullmatch(candidate) for pattern in patterns)
