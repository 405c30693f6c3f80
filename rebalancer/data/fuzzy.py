"""
Fuzzy name similarity on a 0..100 scale.

Two independently operated data sources spell the same team differently
("Man Utd" vs "Manchester United FC"), so names are normalised before they
are compared with difflib.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher

_PUNCT = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    if not name:
        return ""
    n = name.lower().strip()
    n = _PUNCT.sub(" ", n)
    n = n.replace("_", " ")
    return _SPACES.sub(" ", n).strip()


def _score(a: str, b: str) -> int:
    if not a and not b:
        return 0
    return int(round(100 * SequenceMatcher(None, a, b).ratio()))


def ratio(a: str, b: str) -> int:
    """Plain similarity of the two normalised strings."""
    return _score(normalize_name(a), normalize_name(b))


def token_set_ratio(a: str, b: str) -> int:
    """
    Order-insensitive similarity that forgives extra tokens on either side.

    The shared tokens are compared against each side's shared+leftover tokens
    and the best of the three pairings wins, so "Arsenal Chelsea" scores 100
    against "Arsenal v Chelsea".
    """
    tokens_a = set(normalize_name(a).split())
    tokens_b = set(normalize_name(b).split())
    if not tokens_a or not tokens_b:
        return 0

    common = " ".join(sorted(tokens_a & tokens_b))
    only_a = " ".join(sorted(tokens_a - tokens_b))
    only_b = " ".join(sorted(tokens_b - tokens_a))

    combined_a = f"{common} {only_a}".strip()
    combined_b = f"{common} {only_b}".strip()

    scores = [_score(combined_a, combined_b)]
    if common:
        scores.append(_score(common, combined_a))
        scores.append(_score(common, combined_b))
    return max(scores)
