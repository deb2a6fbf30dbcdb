# adaptive_vocabulary/core/learning_stats.py
"""
LearningStats
Rolling statistics over user feedback.
 - total feedback count and per-term counts
 - exponential moving average of ratings (quality score)
 - tail buffer of the most recent events for debugging
"""

import threading
import time
from collections import Counter, deque
from typing import Any, Dict, List, Tuple

from adaptive_vocabulary.core.snapshots import coerce_count

INITIAL_QUALITY = 0.5
RECENT_EVENTS = 100


class LearningStats:
    def __init__(self, learning_rate: float = 0.1):
        self.learning_rate = learning_rate
        self.total_feedback = 0
        self.quality_score = INITIAL_QUALITY
        self._terms: Counter = Counter()
        self._recent = deque(maxlen=RECENT_EVENTS)
        self._lock = threading.Lock()

    def record(self, user_id: str, term: str, rating: float, context_label: str = "") -> float:
        """Add one feedback event; returns the updated quality score."""
        ev = {
            "timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
            "user": user_id,
            "term": term,
            "rating": rating,
            "context": context_label or "",
        }
        with self._lock:
            self.total_feedback += 1
            self._terms[term] += 1
            self.quality_score = (1 - self.learning_rate) * self.quality_score + self.learning_rate * rating
            self._recent.append(ev)
            return self.quality_score

    def term_count(self, term: str) -> int:
        return self._terms.get(term, 0)

    def top_terms(self, n: int = 5) -> List[Tuple[str, int]]:
        with self._lock:
            return self._terms.most_common(n)

    def stats(self) -> Dict[str, Any]:
        return {
            "total_feedback": self.total_feedback,
            "quality_score": round(self.quality_score, 4),
            "distinct_terms": len(self._terms),
            "top_terms": self.top_terms(),
        }

    # Persistence -----------------------------------------------------------
    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "totalFeedback": self.total_feedback,
                "qualityScore": self.quality_score,
                "termCounts": [[t, c] for t, c in sorted(self._terms.items())],
                "recent": list(self._recent),
            }

    def load_dict(self, data: Dict[str, Any]) -> None:
        if not isinstance(data, dict):
            return
        terms = Counter()
        for entry in data.get("termCounts") or []:
            if isinstance(entry, (list, tuple)) and len(entry) == 2 and isinstance(entry[0], str) \
                    and isinstance(entry[1], int) and entry[1] > 0:
                terms[entry[0]] = entry[1]
        quality = data.get("qualityScore", INITIAL_QUALITY)
        if not isinstance(quality, (int, float)) or not 0.0 <= quality <= 1.0:
            quality = INITIAL_QUALITY
        with self._lock:
            self._terms = terms
            self.total_feedback = max(coerce_count(data.get("totalFeedback")) or 0, sum(terms.values()))
            self.quality_score = float(quality)
            self._recent = deque((e for e in data.get("recent") or [] if isinstance(e, dict)), maxlen=RECENT_EVENTS)
