"""Best-effort version comparison for free-form version strings."""

from __future__ import annotations

import re

_TOKEN_RE = re.compile(r"\d+|[A-Za-z]+")


def version_key(version: str) -> list[tuple[int, int | str]]:
    """Split a version into comparable tokens.

    Numeric runs compare numerically, alphabetic runs case-insensitively,
    and a numeric token sorts above an alphabetic one ("1.0" > "1.0rc").
    Separators carry no meaning: "1.2-3" and "1.2.3" are equal.
    """
    key: list[tuple[int, int | str]] = []
    for token in _TOKEN_RE.findall(version):
        if token.isdigit():
            key.append((1, int(token)))
        else:
            key.append((0, token.lower()))
    return key


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` is older than, equal to or newer than ``b``."""
    key_a = version_key(a)
    key_b = version_key(b)
    for left, right in zip(key_a, key_b, strict=False):
        if left != right:
            return -1 if left < right else 1
    if len(key_a) == len(key_b):
        return 0
    # Missing numeric segments count as 0, so "1.0" == "1.0.0". The first
    # non-zero token of the longer tail decides; an alphabetic one is a
    # pre-release tag ("1.0" > "1.0.0rc1").
    longer, sign = (key_a, 1) if len(key_a) > len(key_b) else (key_b, -1)
    for token in longer[min(len(key_a), len(key_b)) :]:
        if token == (1, 0):
            continue
        return sign if token[0] == 1 else -sign
    return 0
