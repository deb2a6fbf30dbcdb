# adaptive_vocabulary/core/quality.py
"""
Outcome quality estimation for strategy results.

Four components, each in [0, 1]:
 - entropy:      Shannon entropy of the score distribution / log2(n)
 - stability:    1 / (1 + variance(scores))
 - reliability:  fraction of finite scores
 - distribution: mean finite score clamped to [0, 1]

Weights adapt to the request: longer context favours stability over entropy,
more candidates raise stability and lower reliability, and each strategy
nudges the mix. Weights are floored at 0.1 and normalized to sum to 1.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Union

DEFAULT_CONTEXT_LENGTH = 3
MIN_QUALITY = 0.1

# quality assumed for a strategy that produced no scores at all
BASE_QUALITY: Dict[str, float] = {
    "semantic_only": 0.6,
    "bandit_only": 0.7,
    "hybrid_balanced": 0.75,
    "hybrid_bandit_heavy": 0.7,
    "hybrid_semantic_heavy": 0.65,
}

# (entropy, stability, reliability) weight nudges per strategy
_ADJUSTMENTS: Dict[str, tuple] = {
    "semantic_only": (0.1, -0.05, 0.05),
    "bandit_only": (-0.1, 0.1, 0.05),
    "hybrid_balanced": (0.0, 0.0, 0.0),
    "hybrid_bandit_heavy": (-0.05, 0.05, 0.0),
    "hybrid_semantic_heavy": (0.05, -0.05, 0.0),
}


@dataclass(frozen=True)
class QualityBreakdown:
    entropy: float
    stability: float
    reliability: float
    distribution: float
    weights: Dict[str, float]
    quality: float


def _values(scores: Union[Mapping[str, float], Iterable[float], None]):
    if scores is None:
        return []
    if isinstance(scores, Mapping):
        scores = scores.values()
    out = []
    for s in scores:
        try:
            out.append(float(s))
        except (TypeError, ValueError):
            out.append(math.nan)
    return out


def _weights(context_length: int, n: int, strategy: str) -> Dict[str, float]:
    entropy_w = max(0.2, 0.6 - context_length * 0.04)
    stability_w = min(0.4, 0.15 + math.log2(n + 1) * 0.08)
    reliability_w = max(0.1, 0.25 - n * 0.015)
    de, ds, dr = _ADJUSTMENTS.get(strategy, (0.0, 0.0, 0.0))
    entropy_w += de
    stability_w += ds
    reliability_w += dr
    distribution_w = 1.0 - entropy_w - stability_w - reliability_w

    raw = {
        "entropy": max(0.1, entropy_w),
        "stability": max(0.1, stability_w),
        "reliability": max(0.1, reliability_w),
        "distribution": max(0.1, distribution_w),
    }
    total = sum(raw.values())
    return {k: v / total for k, v in raw.items()}


def quality_breakdown(scores, context_length: Optional[int] = None,
                      strategy: str = "hybrid_balanced") -> Optional[QualityBreakdown]:
    """Component scores and weights; None when there are no scores at all."""
    values = _values(scores)
    if not values:
        return None
    finite = [v for v in values if math.isfinite(v)]
    if not finite:
        return QualityBreakdown(0.0, 0.0, 0.0, 0.0, {}, MIN_QUALITY)

    n = len(values)
    positive = [max(0.0, v) for v in finite]
    mass = sum(positive)
    entropy = 0.0
    if mass > 0 and n > 1:
        h = -sum((p / mass) * math.log2(p / mass) for p in positive if p > 0)
        entropy = min(1.0, h / math.log2(n))

    mean = sum(finite) / len(finite)
    variance = sum((v - mean) ** 2 for v in finite) / len(finite)
    stability = 1.0 / (1.0 + variance)
    reliability = len(finite) / n
    distribution = min(1.0, max(0.0, mean))

    ctx = DEFAULT_CONTEXT_LENGTH if not context_length else int(context_length)
    w = _weights(ctx, n, strategy)
    q = (entropy * w["entropy"] + stability * w["stability"]
         + reliability * w["reliability"] + distribution * w["distribution"])
    return QualityBreakdown(entropy, stability, reliability, distribution, w, min(1.0, max(MIN_QUALITY, q)))


def estimate_quality(scores, context_length: Optional[int] = None, strategy: str = "hybrid_balanced") -> float:
    """Estimated quality in [0.1, 1] of one strategy result."""
    b = quality_breakdown(scores, context_length, strategy)
    if b is None:
        return BASE_QUALITY.get(strategy, 0.5)
    return b.quality
