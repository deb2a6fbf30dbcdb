# adaptive_vocabulary/core/bandit.py
"""
UCBVocabularyBandit - reference term-selection bandit (UCB1).

- select(candidates) picks the arg-max UCB term and records the selection
- update_reward(term, rating) adds a rating clamped to [0, 1]; only terms
  that were selected at least once are updated
- scores(candidates) exposes UCB values without selecting, for blending;
  record_selection(term) counts the term a blend actually returned
- thread-safe (simple lock), state exported as a JSON-friendly dict
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

logger = logging.getLogger(__name__)

EXPLORATION = math.sqrt(2)


@dataclass
class ArmStats:
    rewards: float = 0.0
    selections: int = 0


class UCBVocabularyBandit:
    def __init__(self, exploration: float = EXPLORATION):
        self.exploration = exploration
        self._arms: Dict[str, ArmStats] = {}
        self.total_selections = 0
        self._lock = threading.Lock()

    def _ucb(self, term: str) -> float:
        arm = self._arms.get(term)
        if arm is None or arm.selections <= 0:
            return math.inf
        mean = arm.rewards / arm.selections
        if self.total_selections <= 1:
            return mean
        return mean + self.exploration * math.sqrt(math.log(self.total_selections) / arm.selections)

    def ucb_value(self, term: str) -> float:
        with self._lock:
            return self._ucb(term)

    def scores(self, candidates: Sequence[str]) -> Dict[str, float]:
        with self._lock:
            return {c: self._ucb(c) for c in candidates}

    def select(self, candidates: Sequence[str]) -> Optional[str]:
        if not candidates:
            return None
        with self._lock:
            best, best_val = None, -math.inf
            for c in candidates:
                v = self._ucb(c)
                if v > best_val:
                    best, best_val = c, v
            self._record(best)
        logger.debug("bandit selected %r (ucb=%s)", best, best_val)
        return best

    def record_selection(self, term: str) -> None:
        """Count a selection of term without consulting UCB (the caller chose it)."""
        with self._lock:
            self._record(term)

    def _record(self, term: str) -> None:
        arm = self._arms.setdefault(term, ArmStats())
        arm.selections += 1
        self.total_selections += 1

    def update_reward(self, term: str, rating: float) -> None:
        try:
            r = float(rating)
        except (TypeError, ValueError):
            logger.warning("ignoring non-numeric rating %r for %r", rating, term)
            return
        if not math.isfinite(r):
            return
        r = max(0.0, min(1.0, r))
        with self._lock:
            arm = self._arms.get(term)
            if arm is not None:
                arm.rewards += r

    def arm(self, term: str) -> Optional[ArmStats]:
        a = self._arms.get(term)
        return None if a is None else ArmStats(a.rewards, a.selections)

    # Persistence -----------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "totalSelections": self.total_selections,
                "arms": [[t, a.rewards, a.selections] for t, a in sorted(self._arms.items())],
            }

    def load_dict(self, data: Any) -> None:
        """Load exported state; malformed arms are skipped with a warning."""
        if not isinstance(data, dict):
            logger.warning("bandit state must be an object, got %s", type(data).__name__)
            return
        arms: Dict[str, ArmStats] = {}
        for entry in data.get("arms") or []:
            try:
                term, rewards, selections = entry
                arm = ArmStats(float(rewards), int(selections))
            except (TypeError, ValueError):
                logger.warning("skipping malformed bandit arm %r", entry)
                continue
            if isinstance(term, str) and arm.selections >= 0 and math.isfinite(arm.rewards):
                arms[term] = arm
        total = sum(a.selections for a in arms.values())
        saved = data.get("totalSelections")
        if isinstance(saved, int) and not isinstance(saved, bool) and saved > total:
            total = saved
        with self._lock:
            self._arms = arms
            self.total_selections = total
