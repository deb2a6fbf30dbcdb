# adaptive_vocabulary/core/personalization.py
# Incremental per-user naive Bayes over discrete features.
# ---------------------------------------------------------------------

from __future__ import annotations

import logging
import math
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from adaptive_vocabulary.core.snapshots import ProfileTables, profile_from_snapshot, profile_to_snapshot
from adaptive_vocabulary.utils.config_manager import ClassifierConfig

logger = logging.getLogger(__name__)

FeatureMap = Dict[str, float]


@dataclass(frozen=True)
class Adaptation:
    category: str
    score: float


@dataclass
class UserProfile:
    """Counts for one user. total_interactions always equals sum(class_counts)."""
    user_id: str
    class_counts: Counter = field(default_factory=Counter)
    feature_counts: Dict[str, Counter] = field(default_factory=lambda: defaultdict(Counter))
    total_interactions: int = 0
    vocabulary: Set[str] = field(default_factory=set)  # distinct features, across classes

    def feature_total(self, label: str) -> int:
        return sum(self.feature_counts.get(label, {}).values())


def normalize_features(features: Optional[Mapping[str, Any]]) -> FeatureMap:
    """
    Sorted key -> weight map. Falsy weights are dropped, True becomes 1.0 and
    non-numeric truthy values count as present (1.0).
    """
    if not features:
        return {}
    out = {}
    for key, raw in sorted(((str(k), v) for k, v in features.items()), key=lambda kv: kv[0]):
        if not raw:
            continue
        if isinstance(raw, bool):
            weight = 1.0
        elif isinstance(raw, (int, float)):
            weight = float(raw)
            if not math.isfinite(weight) or weight == 0:
                continue
        else:
            weight = 1.0
        out[key] = weight
    return out


class PersonalizationClassifier:
    """
    One naive Bayes profile per user id, created lazily on first learn().

    score(user, class, features) =
        log(class_count / total)
        + sum_f log((count_f_in_class + 1) / (features_in_class + user_vocabulary_size))

    Updates for one user are serialized by that user's lock; different users
    never contend.
    """

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.cfg = config or ClassifierConfig()
        self._profiles: Dict[str, UserProfile] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    # Training ----------------------------------------------------------
    def learn(self, user_id: str, class_label: str, features: Optional[Mapping[str, Any]]) -> None:
        feats = normalize_features(features)
        with self._lock_for(user_id):
            prof = self._profiles.get(user_id)
            if prof is None:
                prof = self._profiles[user_id] = UserProfile(user_id)
            prof.class_counts[class_label] += 1
            prof.total_interactions += 1
            counts = prof.feature_counts[class_label]
            cap = self.cfg.max_features_per_user
            for key in feats:
                if key not in prof.vocabulary:
                    if len(prof.vocabulary) >= cap:
                        logger.debug("feature vocabulary full for %s, skipping %r", user_id, key)
                        continue
                    prof.vocabulary.add(key)
                counts[key] += 1

    # Queries -------------------------------------------------------------
    def score(self, user_id: str, class_label: str, features: Optional[Mapping[str, Any]]) -> float:
        prof = self._profiles.get(user_id)
        if prof is None:
            return float("-inf")
        with self._lock_for(user_id):
            return self._score_locked(prof, class_label, normalize_features(features))

    @staticmethod
    def _score_locked(prof: UserProfile, class_label: str, feats: FeatureMap) -> float:
        class_count = prof.class_counts.get(class_label, 0)
        if class_count <= 0 or prof.total_interactions <= 0:
            return float("-inf")
        s = math.log(class_count / prof.total_interactions)
        counts = prof.feature_counts.get(class_label, {})
        denom = prof.feature_total(class_label) + len(prof.vocabulary)
        if denom <= 0:
            denom = 1
        for key in feats:
            s += math.log((counts.get(key, 0) + 1) / denom)
        return s

    def adapt(self, user_id: str, features: Optional[Mapping[str, Any]]) -> Adaptation:
        """Most likely class for the user's features, or the default category with score 0."""
        feats = normalize_features(features)
        prof = self._profiles.get(user_id)
        if prof is None or not feats:
            return Adaptation(self.cfg.default_category, 0.0)
        with self._lock_for(user_id):
            best: Optional[Tuple[float, str]] = None
            for label in sorted(prof.class_counts):
                s = self._score_locked(prof, label, feats)
                if best is None or s > best[0]:
                    best = (s, label)
        if best is None or best[0] == float("-inf"):
            return Adaptation(self.cfg.default_category, 0.0)
        return Adaptation(best[1], best[0])

    # Profile management --------------------------------------------------
    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return self._profiles.get(user_id)

    def user_ids(self) -> List[str]:
        return sorted(self._profiles)

    def delete_profile(self, user_id: str) -> bool:
        with self._lock_for(user_id):
            removed = self._profiles.pop(user_id, None) is not None
        with self._registry_lock:
            self._locks.pop(user_id, None)
        return removed

    def clear(self) -> None:
        with self._registry_lock:
            self._profiles.clear()
            self._locks.clear()

    def stats(self) -> Dict[str, Any]:
        return {
            "users": len(self._profiles),
            "interactions": sum(p.total_interactions for p in self._profiles.values()),
        }

    # Persistence ---------------------------------------------------------
    def to_snapshot(self, user_id: str) -> Optional[Dict[str, Any]]:
        prof = self._profiles.get(user_id)
        if prof is None:
            return None
        with self._lock_for(user_id):
            tables = ProfileTables(
                user_id=user_id,
                class_counts=dict(prof.class_counts),
                feature_counts={c: dict(f) for c, f in prof.feature_counts.items() if f},
                total_interactions=prof.total_interactions,
            )
        return profile_to_snapshot(tables)

    def load_snapshot(self, data: Any) -> str:
        """Install a validated profile snapshot; raises SnapshotError when unusable."""
        t = profile_from_snapshot(data)
        prof = UserProfile(t.user_id)
        prof.class_counts = Counter(t.class_counts)
        prof.feature_counts = defaultdict(Counter, {c: Counter(f) for c, f in t.feature_counts.items()})
        prof.total_interactions = t.total_interactions
        for counts in prof.feature_counts.values():
            prof.vocabulary.update(counts)
        with self._lock_for(t.user_id):
            self._profiles[t.user_id] = prof
        if t.repairs:
            logger.warning("profile %s loaded with %d repairs", t.user_id, t.repairs)
        return t.user_id
