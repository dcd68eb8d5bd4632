"""Fuzzy name ranking for search results.

Scores follow the usual convention of 0.0 for a perfect match and 1.0 for no
match at all. A candidate is kept when its score is at or below the
threshold.

* a case-insensitive substring hit scores by how far into the name it starts;
* otherwise the best :class:`difflib.SequenceMatcher` ratio between the query
  and each name token, and between the query and every same-length window of
  the name, is turned into ``1 - ratio``.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Any, Dict, Iterable, List


DEFAULT_THRESHOLD = 0.4
DEFAULT_LIMIT = 50

_TOKEN_SPLIT = re.compile(r"[\s._\-/]+")


def match_score(query: str, text: str) -> float:
    q = (query or "").lower()
    t = (text or "").lower()
    if not q:
        return 1.0
    if not t:
        return 1.0

    idx = t.find(q)
    if idx >= 0:
        return min(0.2, idx * 0.01)

    best = 0.0
    candidates: List[str] = [t]
    candidates.extend(tok for tok in _TOKEN_SPLIT.split(t) if tok)
    n = len(q)
    if len(t) > n:
        candidates.extend(t[i:i + n] for i in range(len(t) - n + 1))
    for cand in candidates:
        ratio = SequenceMatcher(None, q, cand).ratio()
        if ratio > best:
            best = ratio
            if best >= 1.0:
                break
    return 1.0 - best


def rank(
    query: str,
    items: Iterable[Dict[str, Any]],
    *,
    key: str = "name",
    threshold: float = DEFAULT_THRESHOLD,
    limit: int = DEFAULT_LIMIT,
) -> List[Dict[str, Any]]:
    """Return ``items`` whose ``key`` matches ``query``, best first.

    Ties keep their original order.
    """
    scored = []
    for pos, item in enumerate(items):
        score = match_score(query, str(item.get(key, "")))
        if score <= threshold:
            scored.append((score, pos, item))
    scored.sort(key=lambda s: (s[0], s[1]))
    return [item for _, _, item in scored[:limit]]
