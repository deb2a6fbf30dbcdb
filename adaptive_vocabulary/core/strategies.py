# adaptive_vocabulary/core/strategies.py
"""
Static strategy registry and the blend that turns two signals into one ranking.

Every strategy is a fixed (bandit, semantic) weight pair. Names outside the
registry resolve to the balanced default, so callers can never end up with
a strategy that does not exist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

Ranked = List[Tuple[str, float]]

DEFAULT_STRATEGY = "hybrid_balanced"
SEMANTIC_ONLY = "semantic_only"
BANDIT_ONLY = "bandit_only"


@dataclass(frozen=True)
class Strategy:
    name: str
    bandit_weight: float
    semantic_weight: float

    @property
    def uses_bandit(self) -> bool:
        return self.bandit_weight > 0

    @property
    def uses_semantic(self) -> bool:
        return self.semantic_weight > 0

    @property
    def is_hybrid(self) -> bool:
        return self.uses_bandit and self.uses_semantic


STRATEGIES: Dict[str, Strategy] = {
    s.name: s for s in (
        Strategy(SEMANTIC_ONLY, 0.0, 1.0),
        Strategy(BANDIT_ONLY, 1.0, 0.0),
        Strategy("hybrid_balanced", 0.5, 0.5),
        Strategy("hybrid_bandit_heavy", 0.7, 0.3),
        Strategy("hybrid_semantic_heavy", 0.3, 0.7),
    )
}


def resolve_strategy(name: Optional[str]) -> Strategy:
    """Registry lookup; unknown or empty names fall back to the balanced strategy."""
    s = STRATEGIES.get(name or "")
    if s is None:
        if name:
            logger.debug("unknown strategy %r, using %s", name, DEFAULT_STRATEGY)
        return STRATEGIES[DEFAULT_STRATEGY]
    return s


def strategy_names() -> List[str]:
    return list(STRATEGIES)


def blend(strategy: Strategy, candidates, semantic: Mapping[str, float],
          bandit: Mapping[str, float]) -> Ranked:
    """Weighted sum per candidate, sorted by score desc then term asc."""
    out = []
    for c in dict.fromkeys(candidates):
        s = (strategy.bandit_weight * float(bandit.get(c, 0.0))
             + strategy.semantic_weight * float(semantic.get(c, 0.0)))
        out.append((c, s))
    out.sort(key=lambda kv: (-kv[1], kv[0]))
    return out
