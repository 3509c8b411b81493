# globs.py
# Filter patterns used by `branches:` / `paths:` / `paths-ignore:`.
#
#   *    any run of characters except "/"
#   **   any run of characters, "/" included ("**/" may also match nothing)
#   ?    zero or one of the preceding character
#   +    one or more of the preceding character
#   [..] character class
#   \x   literal x
#
# A leading "!" in a pattern list negates earlier matches (see match_patterns).
from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Pattern


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> Pattern[str]:
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                if i + 2 < n and pattern[i + 2] == "/":
                    out.append("(?:.*/)?")
                    i += 3
                else:
                    out.append(".*")
                    i += 2
                continue
            out.append("[^/]*")
        elif c in "?+":
            # quantifiers only make sense after a literal or class
            if out and not out[-1].endswith(("*", "?", "+")):
                out.append(c)
            else:
                out.append(re.escape(c))
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end].replace("\\", "\\\\")
                out.append(f"[{body}]")
                i = end
        elif c == "\\" and i + 1 < n:
            i += 1
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z", re.DOTALL)


def glob_match(path: str, pattern: str) -> bool:
    return compile_pattern(pattern).match(path) is not None


def match_patterns(value: str, patterns: Iterable[str]) -> bool:
    """
    Evaluate an ordered filter list: a plain pattern that matches turns the
    result on, a "!" pattern that matches turns it back off. Later patterns win.
    """
    matched = False
    for pattern in patterns:
        if pattern.startswith("!"):
            if matched and glob_match(value, pattern[1:]):
                matched = False
        elif not matched and glob_match(value, pattern):
            matched = True
    return matched
