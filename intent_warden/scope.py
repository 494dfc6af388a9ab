"""Ownership-scope matching for intent globs.

Glob rules (anchored, full-string):
  **   any sequence, separators included ("dir/**/x" also matches "dir/x")
  *    any sequence within one path segment
  ?    exactly one character

Patterns are ORed; an empty pattern list matches nothing.
"""

from __future__ import annotations

import functools
import re
from typing import Iterable, Optional, Pattern


def normalize_path(path: str) -> str:
    p = str(path).replace("\\", "/")
    p = re.sub(r"/{2,}", "/", p)
    while p.startswith("./"):
        p = p[2:]
    return p.lstrip("/")


@functools.lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> Pattern[str]:
    pat = normalize_path(pattern)
    out: list[str] = []
    i = 0
    n = len(pat)
    while i < n:
        c = pat[i]
        if c == "*":
            if i + 1 < n and pat[i + 1] == "*":
                i += 2
                if i < n and pat[i] == "/":
                    # "**/" may also match zero directories
                    out.append("(?:.*/)?")
                    i += 1
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append(".")
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("^" + "".join(out) + "$")


def is_in_scope(path: str, owned_patterns: Optional[Iterable[str]]) -> bool:
    if not owned_patterns:
        return False
    target = normalize_path(path)
    if not target:
        return False
    for pattern in owned_patterns:
        if not isinstance(pattern, str) or not pattern.strip():
            continue
        if glob_to_regex(pattern.strip()).match(target):
            return True
    return False
