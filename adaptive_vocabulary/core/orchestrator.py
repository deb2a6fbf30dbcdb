# adaptive_vocabulary/core/orchestrator.py
"""
AdaptiveOrchestrator - picks and runs vocabulary selection strategies.

Flow of select_vocabulary():
 1. a caller-requested strategy runs directly (unknown names -> balanced)
 2. otherwise, if the candidate set is large and diverse enough and an
    experiment slot is free, run an A/B comparison and execute the winner
 3. otherwise run the strategy with the best trailing-window quality
    (at least 3 samples), or the current default
 4. every executed strategy is scored with estimate_quality and recorded

Signals:
 - semantic: distributional similarity to the context terms; when the space
   has no vectors for the request, the n-gram contextual fit is used instead
 - bandit: scaled UCB values and their arg-max (1.0) from a scoring bandit, or
   the pick of a plain bandit; the term actually returned is recorded as the
   bandit selection, so a later rating lands on that arm

record_feedback() closes the loop: bandit reward, n-gram pattern learning,
per-user personalization and rolling learning statistics.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from adaptive_vocabulary.core.ab_testing import ABTestFramework, NamedAlgorithm
from adaptive_vocabulary.core.distributional_space import DistributionalSpace
from adaptive_vocabulary.core.learning_stats import LearningStats
from adaptive_vocabulary.core.ngram_model import NgramModel
from adaptive_vocabulary.core.personalization import PersonalizationClassifier
from adaptive_vocabulary.core.protocols import ABFrameworkProtocol, BanditProtocol, ComparisonReport, ScoringBandit
from adaptive_vocabulary.core.quality import estimate_quality
from adaptive_vocabulary.core.strategies import (
    BANDIT_ONLY,
    DEFAULT_STRATEGY,
    SEMANTIC_ONLY,
    STRATEGIES,
    Strategy,
    blend,
    resolve_strategy,
)
from adaptive_vocabulary.errors import ABTestError
from adaptive_vocabulary.utils.config_manager import OrchestratorConfig
from adaptive_vocabulary.utils.logger_utils import Log

logger = logging.getLogger(__name__)

Ranked = List[Tuple[str, float]]


@dataclass(frozen=True)
class SelectionOptions:
    strategy: Optional[str] = None
    max_results: Optional[int] = None
    enable_ab: Optional[bool] = None
    request_id: Optional[str] = None
    record: bool = True

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "SelectionOptions":
        """Build from a plain dict, skipping unknown keys with a warning."""
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for k, v in options.items():
            if k not in known:
                logger.warning("ignoring unknown selection option %r", k)
                continue
            kwargs[k] = v
        return cls(**kwargs)


@dataclass
class SelectionResult:
    selected_term: Optional[str]
    scores: Ranked
    strategy_used: str
    confidence: float
    request_id: str
    quality: float = 0.0
    processing_time_ms: float = 0.0
    semantic_source: str = "none"
    ab_test: Optional[ComparisonReport] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "selectedTerm": self.selected_term,
            "perCandidateScores": [[t, s] for t, s in self.scores],
            "strategyUsed": self.strategy_used,
            "confidence": self.confidence,
            "requestId": self.request_id,
            "quality": self.quality,
            "processingTimeMs": self.processing_time_ms,
            "abTest": self.ab_test,
        }


@dataclass(frozen=True)
class PerformanceRecord:
    strategy: str
    quality: float
    processing_time_ms: float
    timestamp: float
    selected_term: Optional[str]
    confidence: float


@dataclass(frozen=True)
class FeedbackOutcome:
    user_id: str
    term: str
    rating: float
    context_label: str
    context_confidence: float
    learned_label: str
    category: str
    quality_score: float


@dataclass
class _Execution:
    strategy: Strategy
    ranked: Ranked
    selected: Optional[str]
    confidence: float
    semantic_source: str = "none"


def vocabulary_diversity(candidates: Sequence[str]) -> float:
    """min(1, distinct lengths / n + std(length) / mean(length)); 0 for fewer than 2 candidates."""
    n = len(candidates)
    if n < 2:
        return 0.0
    lengths = [len(c) for c in candidates]
    avg = sum(lengths) / n
    if avg <= 0:
        return 0.0
    std = math.sqrt(sum((x - avg) ** 2 for x in lengths) / n)
    return min(1.0, len(set(lengths)) / n + std / avg)


def feedback_features(term: str, rating: float, context_tokens: Sequence[str]) -> Dict[str, float]:
    feats = {term: 1.0, "is_rated_positive": 1.0 if rating >= 0.5 else 0.0}
    for tok in context_tokens:
        feats[f"keyword_{tok}"] = 1.0
    return feats


class AdaptiveOrchestrator:
    def __init__(self,
                 ngram: NgramModel,
                 space: DistributionalSpace,
                 classifier: PersonalizationClassifier,
                 bandit: Optional[BanditProtocol] = None,
                 ab_framework: Optional[ABFrameworkProtocol] = None,
                 config: Optional[OrchestratorConfig] = None,
                 stats: Optional[LearningStats] = None):
        self.cfg = config or OrchestratorConfig()
        self.ngram = ngram
        self.space = space
        self.classifier = classifier
        self.bandit = bandit
        self.ab = ab_framework or ABTestFramework(
            min_sample_size=self.cfg.min_sample_size,
            significance_level=self.cfg.significance_level,
            workers=self.cfg.ab_workers,
        )
        self.stats = stats or LearningStats(self.cfg.learning_rate)
        self.current_strategy = resolve_strategy(self.cfg.default_strategy).name
        self._history: deque = deque(maxlen=self.cfg.history_size)
        self._history_lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(max(1, self.cfg.max_concurrent_experiments))
        self.running_experiments: Dict[str, Dict[str, Any]] = {}
        self._exp_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Strategy bookkeeping
    # ------------------------------------------------------------------
    def set_strategy(self, name: str) -> str:
        self.current_strategy = resolve_strategy(name).name
        return self.current_strategy

    def record_outcome(self, strategy: str, quality: float, processing_time_ms: float = 0.0,
                       selected_term: Optional[str] = None, confidence: float = 0.5) -> PerformanceRecord:
        rec = PerformanceRecord(
            strategy=resolve_strategy(strategy).name,
            quality=float(quality),
            processing_time_ms=float(processing_time_ms),
            timestamp=time.time(),
            selected_term=selected_term,
            confidence=float(confidence),
        )
        with self._history_lock:
            self._history.append(rec)
        return rec

    @property
    def performance_history(self) -> List[PerformanceRecord]:
        with self._history_lock:
            return list(self._history)

    def optimal_strategy(self) -> str:
        """Best mean quality over the trailing window among strategies with enough samples."""
        with self._history_lock:
            window = list(self._history)[-self.cfg.trailing_window:]
        grouped: Dict[str, List[float]] = defaultdict(list)
        for rec in window:
            grouped[rec.strategy].append(rec.quality)
        best, best_q = self.current_strategy, 0.0
        for name in sorted(grouped):
            qs = grouped[name]
            if len(qs) < self.cfg.min_strategy_samples:
                continue
            avg = sum(qs) / len(qs)
            if avg > best_q:
                best, best_q = name, avg
        return best

    def performance_report(self) -> Dict[str, Any]:
        grouped: Dict[str, List[PerformanceRecord]] = defaultdict(list)
        for rec in self.performance_history:
            grouped[rec.strategy].append(rec)
        per_strategy = {
            name: {
                "samples": len(recs),
                "avg_quality": round(sum(r.quality for r in recs) / len(recs), 4),
                "avg_time_ms": round(sum(r.processing_time_ms for r in recs) / len(recs), 3),
            }
            for name, recs in sorted(grouped.items())
        }
        with self._exp_lock:
            running = len(self.running_experiments)
        return {
            "current_strategy": self.current_strategy,
            "optimal_strategy": self.optimal_strategy(),
            "strategies": per_strategy,
            "running_experiments": running,
            "ab_tests": self.ab.summary() if hasattr(self.ab, "summary") else {},
            "learning": self.stats.stats(),
        }

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------
    def _semantic_scores(self, context_tokens: Sequence[str], candidates: Sequence[str]) -> Tuple[Dict[str, float], str]:
        inputs = [t for t in context_tokens if self.space.has_vector(t)]
        if inputs and any(self.space.has_vector(c) for c in candidates):
            return dict(self.space.rank_by_similarity(inputs, candidates)), "distributional"
        return {c: self.ngram.contextual_fit(context_tokens, c) for c in candidates}, "ngram"

    def _bandit_scores(self, candidates: Sequence[str], pick: bool) -> Tuple[Dict[str, float], Optional[str]]:
        """
        Scaled UCB values plus the bandit's preferred term. Only a bandit
        without scores() is asked to select here, and only when pick is set.
        """
        if self.bandit is None:
            return {}, None
        if isinstance(self.bandit, ScoringBandit):
            ucb = self.bandit.scores(candidates)
            chosen = max(candidates, key=lambda c: ucb.get(c, -math.inf)) if ucb else None
        else:
            ucb = {}
            chosen = self.bandit.select(candidates) if pick else None

        finite = [v for v in ucb.values() if math.isfinite(v)]
        peak = max(finite) if finite else 0.0
        scale = peak * 2.0 if peak > 0 else 1.0
        out = {}
        for c in candidates:
            if c not in ucb:
                continue
            v = ucb[c]
            if not math.isfinite(v):
                v = peak * 1.5 if peak > 0 else 1.0
            out[c] = min(1.0, max(0.0, v / scale))
        if chosen is not None:
            out[chosen] = 1.0
        return out, chosen

    def _record_bandit_selection(self, selected: Optional[str], chosen: Optional[str]) -> None:
        # the returned term is the arm a later rating is credited to
        if selected is None or self.bandit is None:
            return
        if isinstance(self.bandit, ScoringBandit):
            self.bandit.record_selection(selected)
        elif selected != chosen:
            self.bandit.select([selected])

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def _execute(self, name: str, context_tokens: Sequence[str], candidates: Sequence[str],
                 select: bool = True) -> _Execution:
        strategy = resolve_strategy(name)
        if strategy.uses_bandit and self.bandit is None:
            strategy = STRATEGIES[SEMANTIC_ONLY]

        semantic, source = ({}, "none")
        if strategy.uses_semantic:
            semantic, source = self._semantic_scores(context_tokens, candidates)
        bandit, chosen = ({}, None)
        if strategy.uses_bandit:
            bandit, chosen = self._bandit_scores(candidates, select)

        ranked = blend(strategy, candidates, semantic, bandit)
        if strategy.name == BANDIT_ONLY:
            selected = chosen if chosen is not None else (ranked[0][0] if ranked else None)
            confidence = 0.9
        elif strategy.is_hybrid:
            selected = ranked[0][0] if ranked else None
            confidence = sum(s for _, s in ranked) / len(ranked) if ranked else 0.0
        else:
            selected = ranked[0][0] if ranked else None
            confidence = 0.8 if any(s > 0 for _, s in ranked) else 0.3
        if select and strategy.uses_bandit:
            self._record_bandit_selection(selected, chosen)
        return _Execution(strategy, ranked, selected, min(1.0, max(0.0, confidence)), source)

    def execute_strategy(self, name: str, context_tokens: Sequence[str], candidates: Sequence[str]) -> SelectionResult:
        """Run one strategy without A/B or history bookkeeping."""
        ex = self._execute(name, list(context_tokens), list(dict.fromkeys(candidates)))
        return SelectionResult(ex.selected, ex.ranked, ex.strategy.name, ex.confidence,
                               request_id=uuid.uuid4().hex[:12], semantic_source=ex.semantic_source)

    # ------------------------------------------------------------------
    # A/B comparison
    # ------------------------------------------------------------------
    def should_run_ab_test(self, candidates: Sequence[str], enable: Optional[bool] = None) -> bool:
        """Eligibility only; slot availability is checked when the test starts."""
        enabled = self.cfg.enable_ab if enable is None else enable
        if not enabled or len(candidates) < self.cfg.min_sample_size:
            return False
        return vocabulary_diversity(candidates) > self.cfg.diversity_threshold

    def _ab_algorithm(self, name: str, context_tokens: Sequence[str]) -> NamedAlgorithm:
        def run(case: Dict[str, Any]) -> Dict[str, float]:
            ex = self._execute(name, context_tokens, [case["target_term"]], select=False)
            return dict(ex.ranked)
        return NamedAlgorithm(name, run)

    def _run_ab(self, request_id: str, context_tokens: List[str], candidates: List[str]) -> Tuple[str, Optional[ComparisonReport]]:
        test_id = f"vocab_test_{request_id}"
        cases = [
            {"context_tokens": context_tokens, "target_term": c, "context_length": len(context_tokens)}
            for c in candidates
        ]
        with self._exp_lock:
            self.running_experiments[test_id] = {
                "start": time.time(),
                "context_tokens": list(context_tokens),
                "candidates": len(candidates),
            }
        try:
            report = self.ab.run_comparison(
                test_id,
                self._ab_algorithm(SEMANTIC_ONLY, context_tokens),
                self._ab_algorithm(DEFAULT_STRATEGY, context_tokens),
                cases,
            )
        except ABTestError as e:
            logger.warning("A/B test %s failed, using %s: %s", test_id, DEFAULT_STRATEGY, e)
            return DEFAULT_STRATEGY, None
        finally:
            with self._exp_lock:
                self.running_experiments.pop(test_id, None)

        qa = report["algorithmA"]["metrics"]["averageQuality"]
        qb = report["algorithmB"]["metrics"]["averageQuality"]
        if not report["isSignificant"] and self.cfg.ab_require_significance:
            winner = self.optimal_strategy()
        else:
            winner = SEMANTIC_ONLY if qa > qb else DEFAULT_STRATEGY
        Log.metric("ab_winner", winner)
        return winner, report

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def select_vocabulary(self, context_tokens: Sequence[str], candidates: Sequence[str],
                          options: Union[SelectionOptions, Mapping[str, Any], None] = None) -> SelectionResult:
        if options is None:
            opts = SelectionOptions()
        elif isinstance(options, SelectionOptions):
            opts = options
        else:
            opts = SelectionOptions.from_mapping(options)

        t0 = time.perf_counter()
        ctx = [t for t in context_tokens if t]
        cands = list(dict.fromkeys(c for c in candidates if c))
        request_id = opts.request_id or uuid.uuid4().hex[:12]
        if not cands:
            return SelectionResult(None, [], self.current_strategy, 0.0, request_id)

        report: Optional[ComparisonReport] = None
        if opts.strategy is not None:
            name = resolve_strategy(opts.strategy).name
        elif self.should_run_ab_test(cands, opts.enable_ab):
            if self._slots.acquire(blocking=False):
                try:
                    name, report = self._run_ab(request_id, ctx, cands)
                finally:
                    self._slots.release()
            else:
                logger.debug("experiment cap reached, running directly")
                name = self.optimal_strategy()
        else:
            name = self.optimal_strategy()

        ex = self._execute(name, ctx, cands)
        quality = estimate_quality(dict(ex.ranked), len(ctx), ex.strategy.name)
        elapsed = (time.perf_counter() - t0) * 1000.0
        if opts.record:
            self.record_outcome(ex.strategy.name, quality, elapsed, ex.selected, ex.confidence)

        limit = opts.max_results or self.cfg.max_results
        return SelectionResult(
            selected_term=ex.selected,
            scores=ex.ranked[:limit] if limit else ex.ranked,
            strategy_used=ex.strategy.name,
            confidence=ex.confidence,
            request_id=request_id,
            quality=quality,
            processing_time_ms=elapsed,
            semantic_source=ex.semantic_source,
            ab_test=report,
        )

    def record_feedback(self, user_id: str, term: str, rating: float, context_text: str) -> FeedbackOutcome:
        """
        Propagate a rating: bandit reward, context re-prediction + n-gram
        learning, personalization update and learning statistics.
        """
        try:
            r = float(rating)
        except (TypeError, ValueError):
            r = 0.0
        r = min(1.0, max(0.0, r)) if math.isfinite(r) else 0.0

        if self.bandit is not None:
            self.bandit.update_reward(term, r)

        unknown = self.ngram.cfg.unknown_label
        prediction = self.ngram.predict_context(context_text)
        learned = self.ngram.learn(context_text, None if prediction.label == unknown else prediction.label)

        category = prediction.label if prediction.label != unknown else learned
        if category == unknown:
            category = self.classifier.cfg.default_category
        tokens = self.ngram.tokenize(context_text)
        self.classifier.learn(user_id, category, feedback_features(term, r, tokens))

        quality = self.stats.record(user_id, term, r, category)
        logger.debug("feedback %s/%s rating=%.2f label=%s", user_id, term, r, category)
        return FeedbackOutcome(
            user_id=user_id,
            term=term,
            rating=r,
            context_label=prediction.label,
            context_confidence=prediction.confidence,
            learned_label=learned,
            category=category,
            quality_score=quality,
        )
