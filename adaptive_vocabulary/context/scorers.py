# adaptive_vocabulary/context/scorers.py
# token statistics and the data-only context label used when a caller gives none

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class TokenStatistics:
    token_count: int
    unique_count: int
    type_token_ratio: float
    avg_token_length: float
    max_repetition: int


def token_statistics(tokens: Sequence[str]) -> TokenStatistics:
    if not tokens:
        return TokenStatistics(0, 0, 0.0, 0.0, 0)
    c = Counter(tokens)
    n = len(tokens)
    return TokenStatistics(
        token_count=n,
        unique_count=len(c),
        type_token_ratio=len(c) / n,
        avg_token_length=sum(len(t) for t in tokens) / n,
        max_repetition=c.most_common(1)[0][1],
    )


def derive_context_label(tokens: Sequence[str], empty_label: str = "unknown") -> str:
    """
    Deterministic label from token statistics alone (no vocabulary lists).

    Buckets:
      - lexical variety from type/token ratio: varied / mixed / repetitive
      - token length from the mean surface length: long / medium / short
      - a "_looping" suffix when one token occurs 3+ times
    e.g. "varied_short" or "repetitive_medium_looping".
    """
    stats = token_statistics(tokens)
    if stats.token_count == 0:
        return empty_label

    if stats.type_token_ratio >= 0.8:
        variety = "varied"
    elif stats.type_token_ratio >= 0.5:
        variety = "mixed"
    else:
        variety = "repetitive"

    if stats.avg_token_length >= 7.0:
        length = "long"
    elif stats.avg_token_length >= 4.0:
        length = "medium"
    else:
        length = "short"

    label = f"{variety}_{length}"
    if stats.max_repetition >= 3:
        label += "_looping"
    return label
