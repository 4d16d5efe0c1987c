"""Pure scoring helpers used by the deduplication engine.

- hash_url: exact identity of a link (byte-equal, query string included)
- normalize_title: lowercase, punctuation stripped, whitespace collapsed
- levenshtein_distance: classic dynamic-programming edit distance
- similarity: 1 - distance / max(len), on normalized titles
"""

from __future__ import annotations

import re
from typing import List

from newsroom.ingestion.url_utils import hash_url

__all__ = ["hash_url", "normalize_title", "levenshtein_distance", "similarity"]

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WS_RE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    if not title:
        return ""
    s = _PUNCT_RE.sub("", title.lower()).replace("_", "")
    return _WS_RE.sub(" ", s).strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance with unit insert/delete/substitute costs.

    Full table, no pruning: titles are short.
    """
    a = a or ""
    b = b or ""
    rows = len(a) + 1
    cols = len(b) + 1
    table: List[List[int]] = [[0] * cols for _ in range(rows)]
    for i in range(rows):
        table[i][0] = i
    for j in range(cols):
        table[0][j] = j
    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            table[i][j] = min(
                table[i - 1][j] + 1,
                table[i][j - 1] + 1,
                table[i - 1][j - 1] + cost,
            )
    return table[rows - 1][cols - 1]


def similarity(a: str, b: str) -> float:
    """Normalized title similarity in [0, 1]. Two empty titles score 1."""
    s1 = normalize_title(a)
    s2 = normalize_title(b)
    if s1 == s2:
        return 1.0
    longest = max(len(s1), len(s2))
    score = 1.0 - levenshtein_distance(s1, s2) / longest
    return max(0.0, min(1.0, score))
