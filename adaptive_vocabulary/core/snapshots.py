# adaptive_vocabulary/core/snapshots.py
"""
Versioned snapshot validation for persisted model state.

Snapshots are plain JSON-friendly dicts (tables stored as lists of pairs).
Loading goes through here so the models only ever see clean tables:
 - a missing "version" means a legacy snapshot; it is migrated (dict-shaped
   tables are accepted and converted) and treated as version 1
 - a version newer than SNAPSHOT_VERSION raises SnapshotVersionError
 - malformed [string, int] entries are repaired when the intent is clear
   (integral floats, numeric strings) and dropped with a warning otherwise
 - n-gram prefixes lost to repair are restored, then totals that disagree
   with the tables are recomputed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from adaptive_vocabulary.errors import SnapshotError, SnapshotVersionError

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class NgramTables:
    ngram_frequencies: Dict[str, int] = field(default_factory=dict)
    context_frequencies: Dict[str, int] = field(default_factory=dict)
    continuation_counts: Dict[str, Set[str]] = field(default_factory=dict)
    document_frequencies: Dict[str, int] = field(default_factory=dict)
    context_ngram_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    total_ngrams: int = 0
    total_documents: int = 0
    repairs: int = 0


@dataclass
class ProfileTables:
    user_id: str
    class_counts: Dict[str, int] = field(default_factory=dict)
    feature_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)
    total_interactions: int = 0
    repairs: int = 0


# -------------------------
# Primitive coercion
# -------------------------
def coerce_count(value: Any) -> Optional[int]:
    """Return a non-negative int for count-like values, None when unrecoverable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        if value.is_integer() and value >= 0:
            return int(value)
        return None
    if isinstance(value, str):
        s = value.strip()
        try:
            f = float(s)
        except ValueError:
            return None
        if f.is_integer() and f >= 0:
            return int(f)
    return None


def check_version(data: Dict[str, Any], kind: str) -> int:
    """Validate the snapshot version; returns 0 for legacy (unversioned) snapshots."""
    if "version" not in data:
        logger.info("migrating legacy %s snapshot (no version field)", kind)
        return 0
    version = data["version"]
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise SnapshotError(f"invalid {kind} snapshot version: {version!r}")
    if version > SNAPSHOT_VERSION:
        raise SnapshotVersionError(version, SNAPSHOT_VERSION)
    return version


class _Repairs:
    """Counts and logs repairs for one snapshot."""

    def __init__(self, kind: str):
        self.kind = kind
        self.count = 0

    def note(self, msg: str, *args) -> None:
        self.count += 1
        logger.warning("%s snapshot: " + msg, self.kind, *args)


def _entries(raw: Any, table: str, rep: _Repairs) -> List[Any]:
    """Legacy snapshots may store tables as dicts; everything else must be a list."""
    if raw is None:
        return []
    if isinstance(raw, dict):
        return [[k, v] for k, v in raw.items()]
    if isinstance(raw, list):
        return raw
    rep.note("table %s has type %s, dropped", table, type(raw).__name__)
    return []


def _count_pairs(raw: Any, table: str, rep: _Repairs) -> Dict[str, int]:
    out: Dict[str, int] = {}
    for entry in _entries(raw, table, rep):
        if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not isinstance(entry[0], str):
            rep.note("dropping malformed %s entry %r", table, entry)
            continue
        key, value = entry
        count = coerce_count(value)
        if count is None:
            rep.note("dropping %s entry %r with non-count value %r", table, key, value)
            continue
        if not isinstance(value, int) or isinstance(value, bool):
            rep.note("repaired %s entry %r: %r -> %d", table, key, value, count)
        if count == 0:
            continue
        out[key] = out.get(key, 0) + count
    return out


def _set_pairs(raw: Any, table: str, rep: _Repairs) -> Dict[str, Set[str]]:
    out: Dict[str, Set[str]] = {}
    for entry in _entries(raw, table, rep):
        if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not isinstance(entry[0], str):
            rep.note("dropping malformed %s entry %r", table, entry)
            continue
        key, members = entry
        if not isinstance(members, (list, tuple, set)):
            rep.note("dropping %s entry %r with non-list members", table, key)
            continue
        clean = {m for m in members if isinstance(m, str)}
        if len(clean) != len(list(members)):
            rep.note("dropped non-string members from %s entry %r", table, key)
        if clean:
            out.setdefault(key, set()).update(clean)
    return out


def _nested_pairs(raw: Any, table: str, rep: _Repairs) -> Dict[str, Dict[str, int]]:
    out: Dict[str, Dict[str, int]] = {}
    for entry in _entries(raw, table, rep):
        if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not isinstance(entry[0], str):
            rep.note("dropping malformed %s entry %r", table, entry)
            continue
        key, inner = entry
        counts = _count_pairs(inner, f"{table}[{key}]", rep)
        if counts:
            out[key] = counts
    return out


def _restore_prefixes(freq: Dict[str, int], rep: _Repairs) -> None:
    """
    Every n-gram of order > 1 needs its (n-1)-token prefix in the table, at
    least as often as all of its extensions together. Missing or short
    prefixes are raised, highest order first so restored entries cascade.
    """
    by_order: Dict[int, List[str]] = {}
    for key in freq:
        by_order.setdefault(len(key.split(" ")), []).append(key)
    top = max(by_order) if by_order else 0
    for n in range(top, 1, -1):
        needed: Dict[str, int] = {}
        for key in by_order.get(n, []):
            prefix = key.rsplit(" ", 1)[0]
            needed[prefix] = needed.get(prefix, 0) + freq[key]
        for prefix, count in sorted(needed.items()):
            have = freq.get(prefix, 0)
            if have >= count:
                continue
            if have == 0:
                by_order.setdefault(n - 1, []).append(prefix)
            rep.note("prefix %r count raised from %d to %d", prefix, have, count)
            freq[prefix] = count


def _sorted_pairs(d: Dict[str, Any]) -> List[List[Any]]:
    return [[k, d[k]] for k in sorted(d)]


# -------------------------
# N-gram snapshots
# -------------------------
def ngram_to_snapshot(tables: NgramTables) -> Dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "ngramFrequencies": _sorted_pairs(tables.ngram_frequencies),
        "contextFrequencies": _sorted_pairs(tables.context_frequencies),
        "continuationCounts": [[k, sorted(v)] for k, v in sorted(tables.continuation_counts.items())],
        "documentFreqs": _sorted_pairs(tables.document_frequencies),
        "contextNgramFrequencies": [
            [label, _sorted_pairs(counts)] for label, counts in sorted(tables.context_ngram_counts.items())
        ],
        "totalNgrams": int(tables.total_ngrams),
        "totalDocuments": int(tables.total_documents),
    }


def ngram_from_snapshot(data: Any) -> NgramTables:
    if not isinstance(data, dict):
        raise SnapshotError(f"n-gram snapshot must be an object, got {type(data).__name__}")
    check_version(data, "ngram")
    rep = _Repairs("ngram")

    t = NgramTables(
        ngram_frequencies=_count_pairs(data.get("ngramFrequencies"), "ngramFrequencies", rep),
        context_frequencies=_count_pairs(data.get("contextFrequencies"), "contextFrequencies", rep),
        continuation_counts=_set_pairs(data.get("continuationCounts"), "continuationCounts", rep),
        document_frequencies=_count_pairs(data.get("documentFreqs"), "documentFreqs", rep),
        context_ngram_counts=_nested_pairs(data.get("contextNgramFrequencies"), "contextNgramFrequencies", rep),
    )
    _restore_prefixes(t.ngram_frequencies, rep)

    expected_ngrams = sum(t.ngram_frequencies.values())
    total = coerce_count(data.get("totalNgrams"))
    if total != expected_ngrams:
        rep.note("totalNgrams %r recomputed as %d", data.get("totalNgrams"), expected_ngrams)
        total = expected_ngrams
    t.total_ngrams = total

    floor_docs = max([sum(t.context_frequencies.values())] + list(t.document_frequencies.values()))
    docs = coerce_count(data.get("totalDocuments"))
    if docs is None or docs < floor_docs:
        rep.note("totalDocuments %r recomputed as %d", data.get("totalDocuments"), floor_docs)
        docs = floor_docs
    t.total_documents = docs

    t.repairs = rep.count
    return t


# -------------------------
# Profile snapshots
# -------------------------
def profile_to_snapshot(tables: ProfileTables) -> Dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "userId": tables.user_id,
        "classCounts": _sorted_pairs(tables.class_counts),
        "featureCounts": [[c, _sorted_pairs(f)] for c, f in sorted(tables.feature_counts.items())],
        "totalInteractions": int(tables.total_interactions),
    }


def profile_from_snapshot(data: Any) -> ProfileTables:
    if not isinstance(data, dict):
        raise SnapshotError(f"profile snapshot must be an object, got {type(data).__name__}")
    check_version(data, "profile")
    user_id = data.get("userId")
    if not isinstance(user_id, str) or not user_id:
        raise SnapshotError(f"profile snapshot has no usable userId: {user_id!r}")
    rep = _Repairs(f"profile[{user_id}]")

    classes = _count_pairs(data.get("classCounts"), "classCounts", rep)
    features = _nested_pairs(data.get("featureCounts"), "featureCounts", rep)

    # every feature class needs a class count at least as large as its biggest feature count
    for label, counts in features.items():
        needed = max(counts.values())
        if classes.get(label, 0) < needed:
            rep.note("class %r count raised to %d to cover its feature counts", label, needed)
            classes[label] = needed

    total = sum(classes.values())
    if coerce_count(data.get("totalInteractions")) != total:
        rep.note("totalInteractions %r recomputed as %d", data.get("totalInteractions"), total)

    return ProfileTables(
        user_id=user_id,
        class_counts=classes,
        feature_counts=features,
        total_interactions=total,
        repairs=rep.count,
    )
