# adaptive_vocabulary/core/distributional_space.py
"""
DistributionalSpace - co-occurrence statistics and lightweight term vectors.

Features:
 - co-occurrence matrix from learned n-grams (sliding window) or from an
   external weighted relationship source
 - per-term vectors ranked by a hybrid PPMI / pair TF-IDF score
 - hybrid similarity (cosine, inverse L1 distance, length heuristic), memoized
 - data-driven similarity threshold and similarity ranking

Design notes:
 - vectors are a derived cache: a rebuild builds a fresh table and publishes
   it (with a fresh similarity cache) in a single reference swap, so readers
   never see a half-built table
 - a rebuild can be bounded by a timeout or cancelled through an Event; the
   partial build is kept and the next call resumes it if the matrix has not
   changed in between
 - each partner term owns a slot chosen by a stable hash of its text, so
   vectors of different terms share a coordinate system and related terms
   land on the same dimensions
"""

from __future__ import annotations

import hashlib
import logging
import math
import threading
import time
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from adaptive_vocabulary.utils.cache_utils import LRUCache
from adaptive_vocabulary.utils.config_manager import SpaceConfig
from adaptive_vocabulary.utils.logger_utils import Log

logger = logging.getLogger(__name__)

Vec = np.ndarray
Pair = Tuple[str, str]
Ranked = List[Tuple[str, float]]

_DIVERSIFY_DIMS = 3
_DIVERSIFY_SCALE = 0.05


@dataclass(frozen=True)
class RebuildReport:
    complete: bool
    processed: int
    total: int
    elapsed_ms: float
    dimensions: int


@dataclass
class _PendingBuild:
    matrix_version: int
    dimensions: int
    terms: List[str]
    neighbors: Dict[str, Dict[str, float]]
    term_totals: Dict[str, float]
    grand_total: float
    position: int = 0
    vectors: Dict[str, Vec] = field(default_factory=dict)


def pair_key(t1: str, t2: str) -> Pair:
    return (t1, t2) if t1 <= t2 else (t2, t1)


def _stable_hash(text: str) -> int:
    return int.from_bytes(hashlib.blake2b(text.encode("utf-8"), digest_size=8).digest(), "big")


def _slot(term: str, dims: int) -> int:
    return _stable_hash(term) % dims


class DistributionalSpace:
    def __init__(self, config: Optional[SpaceConfig] = None, source: Optional[Any] = None):
        """
        Args:
            config: SpaceConfig (dimensions, window, cache size, timeouts).
            source: object exposing ngram_items() -> [(ngram_text, count)], usually the NgramModel.
        """
        self.cfg = config or SpaceConfig()
        self.source = source
        self._lock = threading.Lock()          # guards the matrix
        self._build_lock = threading.Lock()    # one rebuild at a time
        self._cooc: Dict[Pair, float] = {}
        self._neighbors: Dict[str, Dict[str, float]] = {}
        self._term_totals: Dict[str, float] = {}
        self._grand_total = 0.0
        self.matrix_version = 0
        self.vector_version = -1
        self._pending: Optional[_PendingBuild] = None
        # published state: (vectors, similarity cache), replaced as one reference
        self._published: Tuple[Dict[str, Vec], LRUCache] = ({}, LRUCache(self.cfg.cache_size))

    # -------------------------
    # co-occurrence matrix
    # -------------------------
    def build_cooccurrence(self, window_size: Optional[int] = None,
                           ngrams: Optional[Iterable[Tuple[str, int]]] = None) -> int:
        """
        Rebuild the matrix from n-grams: every pair of distinct terms less than
        `window_size` positions apart accumulates the n-gram's count.
        Returns the number of distinct pairs.
        """
        window = window_size or self.cfg.window_size
        if ngrams is None:
            if self.source is None:
                raise ValueError("no n-gram source configured and no ngrams given")
            ngrams = self.source.ngram_items()

        cooc: Dict[Pair, float] = defaultdict(float)
        for text, freq in ngrams:
            terms = text.split()
            for i in range(len(terms)):
                for j in range(i + 1, min(i + window, len(terms))):
                    if terms[i] != terms[j]:
                        cooc[pair_key(terms[i], terms[j])] += float(freq)
        self._install_matrix(cooc)
        return len(cooc)

    def seed_relationships(self, relations: Mapping[str, Iterable[Any]]) -> int:
        """
        Rebuild the matrix from an external relationship source:
        term -> [{"relatedTerm": str, "weight": float}, ...] (or (term, weight) tuples).
        Malformed entries are skipped with a warning.
        """
        cooc: Dict[Pair, float] = defaultdict(float)
        for term, related in relations.items():
            for entry in related or ():
                if isinstance(entry, Mapping):
                    other, weight = entry.get("relatedTerm"), entry.get("weight", 1.0)
                elif isinstance(entry, (list, tuple)) and len(entry) == 2:
                    other, weight = entry
                else:
                    logger.warning("skipping malformed relationship for %r: %r", term, entry)
                    continue
                try:
                    weight = float(weight)
                except (TypeError, ValueError):
                    logger.warning("skipping relationship %r -> %r with weight %r", term, other, weight)
                    continue
                if not isinstance(other, str) or not other or other == term or not math.isfinite(weight) or weight <= 0:
                    continue
                cooc[pair_key(term, other)] += weight
        self._install_matrix(cooc)
        return len(cooc)

    def _install_matrix(self, cooc: Dict[Pair, float]) -> None:
        neighbors: Dict[str, Dict[str, float]] = defaultdict(dict)
        totals: Counter = Counter()
        for (a, b), w in cooc.items():
            neighbors[a][b] = w
            neighbors[b][a] = w
            totals[a] += w
            totals[b] += w
        with self._lock:
            self._cooc = dict(cooc)
            self._neighbors = dict(neighbors)
            self._term_totals = dict(totals)
            self._grand_total = float(sum(cooc.values()))
            self.matrix_version += 1
            self._pending = None
        logger.debug("co-occurrence matrix installed: %d terms, %d pairs", len(totals), len(cooc))

    def cooccurrence(self, t1: str, t2: str) -> float:
        return self._cooc.get(pair_key(t1, t2), 0.0)

    # -------------------------
    # scoring helpers
    # -------------------------
    @staticmethod
    def _ppmi(w: float, total1: float, total2: float, grand_total: float) -> float:
        if w <= 0 or total1 <= 0 or total2 <= 0 or grand_total <= 0:
            return 0.0
        # each pair adds its weight to both marginals, hence 2 * grand_total
        p1 = total1 / (2.0 * grand_total)
        p2 = total2 / (2.0 * grand_total)
        joint = w / grand_total
        return max(0.0, math.log2(joint / (p1 * p2)))

    @staticmethod
    def _pair_tfidf(w: float, target_total: float, partner_total: float, vocab: int) -> float:
        if target_total <= 0:
            return 0.0
        tf = w / target_total
        idf = math.log(1.0 + vocab / (1.0 + partner_total))
        return max(0.0, tf * idf)

    def hybrid_score(self, t1: str, t2: str) -> float:
        """0.7 * PPMI + 0.3 * pair TF-IDF for t2 as a context of t1 (0 when they never co-occur)."""
        with self._lock:
            w = self._cooc.get(pair_key(t1, t2), 0.0)
            totals, grand, vocab = self._term_totals, self._grand_total, len(self._term_totals)
        return self._hybrid(w, totals.get(t1, 0.0), totals.get(t2, 0.0), grand, vocab)

    def _hybrid(self, w: float, total1: float, total2: float, grand: float, vocab: int) -> float:
        return (self.cfg.ppmi_weight * self._ppmi(w, total1, total2, grand)
                + self.cfg.tfidf_weight * self._pair_tfidf(w, total1, total2, vocab))

    # -------------------------
    # vectors
    # -------------------------
    def _term_vector(self, term: str, job: _PendingBuild) -> Vec:
        dims = job.dimensions
        vocab = len(job.term_totals)
        t_total = job.term_totals.get(term, 0.0)
        scored = []
        for partner, w in job.neighbors.get(term, {}).items():
            s = self._hybrid(w, t_total, job.term_totals.get(partner, 0.0), job.grand_total, vocab)
            if s > 0:
                scored.append((s, partner, w))
        scored.sort(key=lambda x: (-x[0], x[1]))
        scored = scored[:dims]

        vec = np.zeros(dims, dtype=float)
        for rank, (s, partner, w) in enumerate(scored):
            diversity = 1.0 + 0.1 * (rank + 1) / dims
            vec[_slot(partner, dims)] += s * math.log1p(w) * diversity
        if scored:
            peak = float(vec.max())
            own = _slot(term, dims)
            vec[own] = max(vec[own], peak)
            if len(scored) == 1:
                # single partner: add a few small hash-seeded dims so the vector is not one-hot
                for k in range(_DIVERSIFY_DIMS):
                    h = _stable_hash(f"{term}#{k}")
                    vec[h % dims] += _DIVERSIFY_SCALE * peak * (0.5 + (h >> 16) % 1000 / 2000.0)

        vec = np.nan_to_num(vec, nan=0.0, posinf=0.0, neginf=0.0)
        vec[vec < 0] = 0.0
        norm = float(np.linalg.norm(vec))
        if norm > 0:
            vec = vec / norm
        return vec

    def generate_vectors(self, dimensions: Optional[int] = None, timeout: Optional[float] = None,
                         cancel_event: Optional[threading.Event] = None) -> RebuildReport:
        """
        Build vectors for every term in the matrix and publish them atomically.

        Stops early when `timeout` seconds pass (default: config rebuild_timeout)
        or `cancel_event` is set; the partial build is kept and resumed by the
        next call as long as the matrix and dimensions are unchanged.
        """
        dims = int(dimensions or self.cfg.dimensions)
        if dims < 1:
            raise ValueError("dimensions must be >= 1")
        limit = self.cfg.rebuild_timeout if timeout is None else timeout
        t0 = time.monotonic()
        deadline = t0 + limit if limit else None

        with self._build_lock:
            with self._lock:
                job = self._pending
                if job is None or job.matrix_version != self.matrix_version or job.dimensions != dims:
                    job = _PendingBuild(
                        matrix_version=self.matrix_version,
                        dimensions=dims,
                        terms=sorted(self._term_totals),
                        neighbors={t: dict(p) for t, p in self._neighbors.items()},
                        term_totals=dict(self._term_totals),
                        grand_total=self._grand_total,
                    )
                    self._pending = job
                elif job.position:
                    logger.info("resuming vector rebuild at %d/%d terms", job.position, len(job.terms))

            total = len(job.terms)
            while job.position < total:
                if cancel_event is not None and cancel_event.is_set():
                    break
                if deadline is not None and time.monotonic() >= deadline:
                    break
                term = job.terms[job.position]
                job.vectors[term] = self._term_vector(term, job)
                job.position += 1

            elapsed = (time.monotonic() - t0) * 1000.0
            if job.position < total:
                logger.warning("vector rebuild interrupted at %d/%d terms; will resume", job.position, total)
                return RebuildReport(False, job.position, total, elapsed, dims)

            with self._lock:
                if self._pending is job:
                    self._pending = None
                self._published = (job.vectors, LRUCache(self.cfg.cache_size))
                self.vector_version = job.matrix_version
        Log.metric("vectors_published", total)
        return RebuildReport(True, total, total, elapsed, dims)

    def rebuild(self, window_size: Optional[int] = None, dimensions: Optional[int] = None,
                timeout: Optional[float] = None, cancel_event: Optional[threading.Event] = None) -> RebuildReport:
        """Recompute the matrix from the n-gram source (only when stale) and regenerate vectors."""
        if self._pending is None or self._pending.matrix_version != self.matrix_version:
            self.build_cooccurrence(window_size)
        with Log.time_block("rebuild_vectors"):
            return self.generate_vectors(dimensions, timeout, cancel_event)

    @property
    def rebuild_pending(self) -> bool:
        return self._pending is not None

    def vector(self, term: str) -> Optional[Vec]:
        v = self._published[0].get(term)
        return None if v is None else v.copy()

    def has_vector(self, term: str) -> bool:
        return term in self._published[0]

    def terms(self) -> List[str]:
        return sorted(self._published[0])

    # -------------------------
    # similarity queries
    # -------------------------
    def similarity(self, t1: str, t2: str) -> float:
        """Hybrid similarity in [0, 1]; 0 when either term has no vector."""
        vectors, cache = self._published
        v1, v2 = vectors.get(t1), vectors.get(t2)
        if v1 is None or v2 is None:
            return 0.0
        if t1 == t2:
            return 1.0
        key = pair_key(t1, t2)
        hit = cache.get(key)
        if hit is not None:
            return hit
        a, b = vectors[key[0]], vectors[key[1]]
        na, nb = float(np.linalg.norm(a)), float(np.linalg.norm(b))
        cos = float(np.dot(a, b) / (na * nb)) if na > 0 and nb > 0 else 0.0
        cos = min(1.0, max(0.0, cos))
        l1 = float(np.abs(a - b).sum())
        length = 1.0 / (1.0 + 0.1 * abs(len(key[0]) - len(key[1])))
        sim = 0.6 * cos + 0.3 / (1.0 + l1) + 0.1 * length
        sim = min(1.0, max(0.0, sim)) if math.isfinite(sim) else 0.0
        cache.put(key, sim)
        return sim

    def dynamic_threshold(self, candidates: Sequence[str]) -> float:
        """
        Similarity cutoff from the data: the mean similarity of each candidate
        to every other known term, then (median + Q3) / 2 clamped to [0.3, 0.8].
        """
        known = list(self._published[0])
        means = []
        for c in dict.fromkeys(candidates):
            if not self.has_vector(c):
                continue
            sims = [self.similarity(c, o) for o in known if o != c]
            if sims:
                m = sum(sims) / len(sims)
                if m > 0:
                    means.append(m)
        if not means:
            return 0.5
        median, q3 = np.percentile(means, [50, 75])
        return float(min(0.8, max(0.3, (median + q3) / 2.0)))

    def rank_by_similarity(self, input_terms: Sequence[str], candidates: Sequence[str],
                           k: Optional[int] = None) -> Ranked:
        """Average similarity of each candidate to the input terms, best first (ties by term)."""
        inputs = [t for t in input_terms if t]
        scored = []
        for c in dict.fromkeys(candidates):
            avg = sum(self.similarity(c, t) for t in inputs) / len(inputs) if inputs else 0.0
            scored.append((c, avg))
        scored.sort(key=lambda kv: (-kv[1], kv[0]))
        return scored if k is None else scored[:k]

    def find_similar_terms(self, target: str, candidates: Optional[Sequence[str]] = None,
                           threshold: Optional[float] = None, k: int = 10) -> Ranked:
        pool = [c for c in (candidates if candidates is not None else self.terms()) if c != target]
        if not pool or not self.has_vector(target):
            return []
        cutoff = self.dynamic_threshold(pool) if threshold is None else threshold
        ranked = self.rank_by_similarity([target], pool)
        return [(t, s) for t, s in ranked if s >= cutoff][:k]

    def select_semantic_vocabulary(self, input_terms: Sequence[str], candidates: Sequence[str],
                                   max_results: int = 5) -> Ranked:
        """Ranked candidates that clear the dynamic threshold."""
        ranked = self.rank_by_similarity(input_terms, candidates)
        cutoff = self.dynamic_threshold(candidates)
        return [(t, s) for t, s in ranked if s >= cutoff][:max_results]

    # -------------------------
    # Introspection
    # -------------------------
    def stats(self) -> Dict[str, Any]:
        vectors = self._published[0]
        pending = self._pending
        return {
            "terms": len(self._term_totals),
            "pairs": len(self._cooc),
            "vectors": len(vectors),
            "matrix_version": self.matrix_version,
            "vector_version": self.vector_version,
            "rebuild_pending": None if pending is None else f"{pending.position}/{len(pending.terms)}",
            "cached_similarities": len(self._published[1]),
        }
