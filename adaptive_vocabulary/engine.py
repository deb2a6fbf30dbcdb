# adaptive_vocabulary/engine.py
"""
LearningEngine - owns one instance of every component and wires them together.

 - learn(text, label) feeds the n-gram model and triggers periodic vector rebuilds
 - select_vocabulary(context, candidates) delegates to the orchestrator
 - record_feedback(user, term, rating, context) propagates a rating everywhere
 - process_text(text, user) runs the full analysis pipeline for one message
 - persistence follows the durability policy: "async" schedules the write on a
   single background worker and returns SCHEDULED, "sync" writes before
   returning and reports OK / FAILED. Snapshots are built by whichever thread
   performs the write. In-memory state stays authoritative whatever the
   storage does.
"""

from __future__ import annotations

import functools
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from adaptive_vocabulary.core.bandit import UCBVocabularyBandit
from adaptive_vocabulary.core.distributional_space import DistributionalSpace, RebuildReport
from adaptive_vocabulary.core.learning_stats import LearningStats
from adaptive_vocabulary.core.ngram_model import ContextPrediction, NgramModel
from adaptive_vocabulary.core.orchestrator import (
    AdaptiveOrchestrator,
    FeedbackOutcome,
    SelectionOptions,
    SelectionResult,
)
from adaptive_vocabulary.core.personalization import Adaptation, PersonalizationClassifier
from adaptive_vocabulary.core.protocols import ABFrameworkProtocol, BanditProtocol, Tokenizer
from adaptive_vocabulary.errors import PersistenceError, SnapshotError
from adaptive_vocabulary.utils.config_manager import EngineConfig
from adaptive_vocabulary.utils.logger_utils import Log
from adaptive_vocabulary.utils.model_store import ModelStore

logger = logging.getLogger(__name__)

# (store kind, snapshot builder); builders run where the write runs
Payload = Tuple[str, Callable[[], Any]]


class PersistStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    SCHEDULED = "scheduled"
    SKIPPED = "skipped"


@dataclass
class LearnResult:
    label: str
    persist: PersistStatus
    rebuild: Optional[RebuildReport] = None


@dataclass
class FeedbackResult:
    outcome: FeedbackOutcome
    persist: PersistStatus


@dataclass
class ProcessResult:
    tokens: List[str]
    context: ContextPrediction
    adaptation: Adaptation
    selection: SelectionResult
    tfidf: Dict[str, float]


@dataclass
class LoadReport:
    ngram: str = "missing"  # loaded / missing / rejected / failed
    profiles: int = 0
    skipped_profiles: int = 0
    bandit: bool = False
    stats: bool = False
    errors: List[str] = field(default_factory=list)


class LearningEngine:
    def __init__(self,
                 config: Optional[EngineConfig] = None,
                 store: Optional[ModelStore] = None,
                 tokenizer: Optional[Tokenizer] = None,
                 bandit: Optional[BanditProtocol] = None,
                 ab_framework: Optional[ABFrameworkProtocol] = None):
        self.cfg = config or EngineConfig()
        self.ngram = NgramModel(self.cfg.ngram, tokenizer)
        self.space = DistributionalSpace(self.cfg.space, source=self.ngram)
        self.classifier = PersonalizationClassifier(self.cfg.classifier)
        self.bandit = bandit if bandit is not None else UCBVocabularyBandit()
        self.stats = LearningStats(self.cfg.orchestrator.learning_rate)
        self.orchestrator = AdaptiveOrchestrator(
            self.ngram, self.space, self.classifier,
            bandit=self.bandit,
            ab_framework=ab_framework,
            config=self.cfg.orchestrator,
            stats=self.stats,
        )
        self.store = store if store is not None else ModelStore(self.cfg.persistence.data_dir)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: List[Future] = []
        self._lock = threading.Lock()
        self._learns_since_rebuild = 0

    # ------------------------------------------------------------------
    # Learning
    # ------------------------------------------------------------------
    def learn(self, text: str, context_label: Optional[str] = None,
              durability: Optional[str] = None) -> LearnResult:
        tokens = self.ngram.tokenize(text)
        if not tokens:
            return LearnResult(self.ngram.cfg.unknown_label, PersistStatus.SKIPPED)
        label = self.ngram.learn(text, context_label)
        rebuild = self._maybe_rebuild()
        status = self._persist([("ngram", self.ngram.to_snapshot)], durability)
        return LearnResult(label, status, rebuild)

    def learn_lines(self, lines: Sequence[str], context_label: Optional[str] = None) -> int:
        """Bulk learning (e.g. a dialogue log): one document per line, one rebuild and one save at the end."""
        n = self.ngram.learn_many(lines, context_label)
        if n:
            self.rebuild_space()
            self._persist([("ngram", self.ngram.to_snapshot)], "sync")
        return n

    def _maybe_rebuild(self) -> Optional[RebuildReport]:
        every = self.cfg.space.rebuild_every
        if every <= 0:
            return None
        with self._lock:
            self._learns_since_rebuild += 1
            due = self._learns_since_rebuild >= every
        if not due:
            return None
        return self.rebuild_space()

    def rebuild_space(self, timeout: Optional[float] = None,
                      cancel_event: Optional[threading.Event] = None) -> RebuildReport:
        report = self.space.rebuild(timeout=timeout, cancel_event=cancel_event)
        if report.complete:
            with self._lock:
                self._learns_since_rebuild = 0
        return report

    # ------------------------------------------------------------------
    # Selection + feedback
    # ------------------------------------------------------------------
    def _context_tokens(self, context: Union[str, Sequence[str]]) -> List[str]:
        if isinstance(context, str):
            return self.ngram.tokenize(context)
        return [t for t in context if t]

    def select_vocabulary(self, context: Union[str, Sequence[str]], candidates: Sequence[str],
                          options: Union[SelectionOptions, Dict[str, Any], None] = None) -> SelectionResult:
        return self.orchestrator.select_vocabulary(self._context_tokens(context), candidates, options)

    def record_feedback(self, user_id: str, term: str, rating: float, context_text: str,
                        durability: Optional[str] = None) -> FeedbackResult:
        outcome = self.orchestrator.record_feedback(user_id, term, rating, context_text)
        self._maybe_rebuild()
        payloads: List[Payload] = [
            ("ngram", self.ngram.to_snapshot),
            ("profile", functools.partial(self.classifier.to_snapshot, user_id)),
        ]
        if hasattr(self.bandit, "to_dict"):
            payloads.append(("bandit", self.bandit.to_dict))
        payloads.append(("stats", self.stats.to_dict))
        return FeedbackResult(outcome, self._persist(payloads, durability))

    def process_text(self, text: str, user_id: Optional[str] = None,
                     candidates: Optional[Sequence[str]] = None) -> ProcessResult:
        """
        Analyse one message: context prediction, personal adaptation, a
        vocabulary pick among `candidates` (default: the message's own terms)
        and per-term TF-IDF weights.
        """
        with Log.time_block("process_text"):
            tokens = self.ngram.tokenize(text)
            context = self.ngram.predict_context(text)
            if user_id:
                adaptation = self.classifier.adapt(user_id, {f"keyword_{t}": 1 for t in tokens})
            else:
                adaptation = Adaptation(self.classifier.cfg.default_category, 0.0)
            pool = list(candidates) if candidates is not None else list(dict.fromkeys(tokens))
            selection = self.orchestrator.select_vocabulary(tokens, pool)
            tfidf = {t: self.ngram.tfidf(t, tokens) for t in dict.fromkeys(tokens)}
        return ProcessResult(tokens, context, adaptation, selection, tfidf)

    def delete_profile(self, user_id: str) -> PersistStatus:
        self.classifier.delete_profile(user_id)
        try:
            self.store.delete_profile(user_id)
        except PersistenceError as e:
            logger.error("could not delete stored profile %s: %s", user_id, e)
            return PersistStatus.FAILED
        return PersistStatus.OK

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _write(self, payloads: Sequence[Payload]) -> None:
        """Build each snapshot and hand it to the store; runs on the caller or the persist worker."""
        writers: Dict[str, Callable[[Any], None]] = {
            "ngram": self.store.save_ngram,
            "profile": self.store.save_profile,
            "bandit": self.store.save_bandit,
            "stats": self.store.save_stats,
        }
        for kind, build in payloads:
            data = build()
            if data is not None:
                writers[kind](data)

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="persist")
            return self._executor

    def _persist(self, payloads: Sequence[Payload], durability: Optional[str] = None,
                 force: bool = False) -> PersistStatus:
        if not (self.cfg.persistence.autosave or force):
            return PersistStatus.SKIPPED
        mode = durability or self.cfg.persistence.durability
        if mode == "sync":
            try:
                self._write(payloads)
            except PersistenceError as e:
                logger.error("persist failed: %s", e)
                return PersistStatus.FAILED
            return PersistStatus.OK

        fut = self._get_executor().submit(self._write, list(payloads))
        fut.add_done_callback(_log_async_failure)
        with self._lock:
            self._futures = [f for f in self._futures if not f.done()] + [fut]
        return PersistStatus.SCHEDULED

    def flush(self, timeout: Optional[float] = None) -> PersistStatus:
        """Wait for scheduled writes; FAILED if any of them failed or did not finish in time."""
        with self._lock:
            pending = list(self._futures)
        if not pending:
            return PersistStatus.OK
        done, not_done = wait(pending, timeout=timeout)
        with self._lock:
            self._futures = [f for f in self._futures if f not in done]
        if not_done or any(f.exception() is not None for f in done):
            return PersistStatus.FAILED
        return PersistStatus.OK

    def save(self) -> PersistStatus:
        """Write every component synchronously."""
        payloads: List[Payload] = [("ngram", self.ngram.to_snapshot)]
        for uid in self.classifier.user_ids():
            payloads.append(("profile", functools.partial(self.classifier.to_snapshot, uid)))
        if hasattr(self.bandit, "to_dict"):
            payloads.append(("bandit", self.bandit.to_dict))
        payloads.append(("stats", self.stats.to_dict))
        self.flush()
        return self._persist(payloads, "sync", force=True)

    def load(self, rebuild: bool = True) -> LoadReport:
        """
        Restore state from the store. Unusable snapshots are skipped and
        reported; nothing here raises for bad data.
        """
        rep = LoadReport()
        try:
            data = self.store.load_ngram()
        except PersistenceError as e:
            rep.ngram = "failed"
            rep.errors.append(str(e))
            data = None
        if data is not None:
            try:
                self.ngram.load_snapshot(data)
                rep.ngram = "loaded"
            except SnapshotError as e:
                logger.error("n-gram snapshot rejected: %s", e)
                rep.ngram = "rejected"
                rep.errors.append(str(e))

        try:
            profiles = self.store.load_profiles()
        except PersistenceError as e:
            rep.errors.append(str(e))
            profiles = []
        for snap in profiles:
            try:
                self.classifier.load_snapshot(snap)
                rep.profiles += 1
            except SnapshotError as e:
                logger.warning("profile snapshot skipped: %s", e)
                rep.skipped_profiles += 1

        try:
            bandit_state = self.store.load_bandit()
            if bandit_state is not None and hasattr(self.bandit, "load_dict"):
                self.bandit.load_dict(bandit_state)
                rep.bandit = True
            stats_state = self.store.load_stats()
            if stats_state is not None:
                self.stats.load_dict(stats_state)
                rep.stats = True
        except PersistenceError as e:
            rep.errors.append(str(e))

        if rebuild and rep.ngram == "loaded":
            self.rebuild_space()
        return rep

    # ------------------------------------------------------------------
    # Introspection + lifecycle
    # ------------------------------------------------------------------
    def stats_report(self) -> Dict[str, Any]:
        return {
            "ngram": self.ngram.stats(),
            "space": self.space.stats(),
            "personalization": self.classifier.stats(),
            "orchestrator": self.orchestrator.performance_report(),
        }

    def close(self) -> None:
        self.flush()
        with self._lock:
            ex, self._executor = self._executor, None
        if ex is not None:
            ex.shutdown(wait=True)

    def __enter__(self) -> "LearningEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _log_async_failure(fut: Future) -> None:
    exc = fut.exception()
    if exc is not None:
        logger.error("background persist failed: %s", exc)
