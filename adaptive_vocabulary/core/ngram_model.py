# adaptive_vocabulary/core/ngram_model.py
# variable-order n-gram model with Kneser-Ney smoothing, TF-IDF and context prediction.

from __future__ import annotations

import logging
import math
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from adaptive_vocabulary.context.scorers import derive_context_label
from adaptive_vocabulary.context.tokenizer import WhitespaceTokenizer, normalize_text
from adaptive_vocabulary.core.protocols import Tokenizer
from adaptive_vocabulary.core.snapshots import NgramTables, ngram_from_snapshot, ngram_to_snapshot
from adaptive_vocabulary.utils.config_manager import NgramConfig

logger = logging.getLogger(__name__)

NgramLike = Union[str, Sequence[str]]

REVERSE_PREFIX = "_reverse_"
EPSILON = 1e-10


@dataclass(frozen=True)
class ContextPrediction:
    label: str
    confidence: float


def _clamp01(x: float) -> float:
    if not math.isfinite(x):
        return 0.0
    return min(1.0, max(0.0, x))


class NgramModel:
    """
    Streaming n-gram model.

    Tables (all keyed by space-joined n-gram text):
      - ngram frequencies for every order 1..max_order
      - continuation sets: prefix -> next tokens, "_reverse_<suffix>" -> previous tokens
      - document frequencies per unique token (one learn() call = one document)
      - context label frequencies, plus per-label n-gram counts used to tell labels apart

    Smoothed probabilities use interpolated Kneser-Ney, computed iteratively
    from the unigram continuation probability upwards so each order's value
    can be inspected (see kneser_ney_chain).
    """

    def __init__(self, config: Optional[NgramConfig] = None, tokenizer: Optional[Tokenizer] = None) -> None:
        self.cfg = config or NgramConfig()
        self.tokenizer = tokenizer or WhitespaceTokenizer(lowercase=self.cfg.lowercase)
        self._lock = threading.RLock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._ngram_freq: Counter = Counter()
            self._context_freq: Counter = Counter()
            self._continuations: Dict[str, Set[str]] = defaultdict(set)
            self._doc_freq: Counter = Counter()
            self._context_ngrams: Dict[str, Counter] = defaultdict(Counter)
            self._reverse_total = 0
            self.total_ngrams = 0
            self.total_documents = 0
            self.revision = 0

    @property
    def max_order(self) -> int:
        return self.cfg.max_order

    @property
    def discount(self) -> float:
        return self.cfg.discount

    # ------------------------------------------------------------------
    # Tokenization
    # ------------------------------------------------------------------
    def tokenize(self, text: str) -> List[str]:
        if not text:
            return []
        out = []
        for tok in self.tokenizer.tokenize(normalize_text(text, self.cfg.keep_punctuation)):
            surface = tok if isinstance(tok, str) else tok.surface
            if not surface:
                continue
            out.append(surface.lower() if self.cfg.lowercase else surface)
        return out

    @staticmethod
    def _as_tokens(ngram: NgramLike) -> List[str]:
        if isinstance(ngram, str):
            return ngram.split()
        return [t for t in ngram if t]

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------
    def learn(self, text: str, context_label: Optional[str] = None) -> str:
        """
        Learn one document. Returns the context label applied; when no label
        is given one is derived from token statistics. Empty text is a no-op
        returning the unknown sentinel.
        """
        tokens = self.tokenize(text)
        if not tokens:
            return self.cfg.unknown_label
        label = context_label or derive_context_label(tokens, self.cfg.unknown_label)
        self.learn_tokens(tokens, label)
        return label

    def learn_tokens(self, tokens: Sequence[str], label: str) -> None:
        if not tokens:
            return
        with self._lock:
            label_counts = self._context_ngrams[label]
            for n in range(1, self.max_order + 1):
                for i in range(len(tokens) - n + 1):
                    gram = tokens[i:i + n]
                    key = " ".join(gram)
                    self._ngram_freq[key] += 1
                    label_counts[key] += 1
                    self.total_ngrams += 1
                    if n > 1:
                        self._continuations[" ".join(gram[:-1])].add(gram[-1])
                        rev = self._continuations[REVERSE_PREFIX + " ".join(gram[1:])]
                        if gram[0] not in rev:
                            rev.add(gram[0])
                            self._reverse_total += 1
            for tok in set(tokens):
                self._doc_freq[tok] += 1
            self._context_freq[label] += 1
            self.total_documents += 1
            self.revision += 1

    def learn_many(self, lines: Iterable[str], context_label: Optional[str] = None) -> int:
        """Learn one document per line; returns how many lines had tokens."""
        n = 0
        for line in lines:
            tokens = self.tokenize(line)
            if tokens:
                self.learn_tokens(tokens, context_label or derive_context_label(tokens, self.cfg.unknown_label))
                n += 1
        return n

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def frequency(self, ngram: NgramLike) -> int:
        return self._ngram_freq.get(" ".join(self._as_tokens(ngram)), 0)

    def context_frequency(self, label: str) -> int:
        return self._context_freq.get(label, 0)

    def document_frequency(self, term: str) -> int:
        return self._doc_freq.get(term, 0)

    def continuations(self, prefix: NgramLike) -> Set[str]:
        return set(self._continuations.get(" ".join(self._as_tokens(prefix)), ()))

    def _unigram_kn(self, token: str) -> float:
        if self._reverse_total <= 0:
            return EPSILON
        left = len(self._continuations.get(REVERSE_PREFIX + token, ()))
        return _clamp01(left / self._reverse_total)

    def kneser_ney_chain(self, ngram: NgramLike, order: Optional[int] = None) -> List[float]:
        """
        Kneser-Ney estimates for the trailing 1..order tokens of `ngram`,
        lowest order first. The last element is the full-order probability.
        """
        toks = self._as_tokens(ngram)
        if not toks:
            return []
        k = len(toks) if order is None else max(1, min(int(order), len(toks)))
        toks = toks[-k:]
        d = self.discount
        with self._lock:
            p = self._unigram_kn(toks[-1])
            chain = [p]
            for j in range(2, k + 1):
                gram = toks[-j:]
                prefix = " ".join(gram[:-1])
                c_prefix = self._ngram_freq.get(prefix, 0)
                if c_prefix == 0:
                    # unseen history, back off to the lower order as is
                    chain.append(p)
                    continue
                c = self._ngram_freq.get(" ".join(gram), 0)
                lam = d * len(self._continuations.get(prefix, ())) / c_prefix
                p = _clamp01(max(c - d, 0.0) / c_prefix + lam * p)
                chain.append(p)
        return chain

    def kneser_ney(self, ngram: NgramLike, order: Optional[int] = None) -> float:
        """Smoothed probability in [0, 1] of the last token given the preceding ones."""
        chain = self.kneser_ney_chain(ngram, order)
        return chain[-1] if chain else 0.0

    def tfidf(self, ngram: NgramLike, tokens: Sequence[str]) -> float:
        """
        Term frequency of the exact n-gram inside `tokens` (normalized by the
        number of windows) times ln(total_documents / document_frequency).
        Document frequencies exist for single tokens only, so longer n-grams score 0.
        """
        gram = self._as_tokens(ngram)
        tokens = list(tokens)
        n = len(gram)
        if n == 0 or not tokens:
            return 0.0
        occurrences = sum(1 for i in range(len(tokens) - n + 1) if tokens[i:i + n] == gram)
        if occurrences == 0:
            return 0.0
        tf = occurrences / max(1, len(tokens) - n + 1)
        df = self._doc_freq.get(" ".join(gram), 0)
        if df <= 0 or self.total_documents <= 0:
            return 0.0
        return max(0.0, tf * math.log(self.total_documents / df))

    def contextual_fit(self, context_tokens: Sequence[str], term: str) -> float:
        """Best KN probability of `term` following any trailing n-gram of the context."""
        ctx = [t for t in context_tokens if t][-(self.max_order - 1):] if self.max_order > 1 else []
        if not ctx:
            return self.kneser_ney([term], 1)
        best = 0.0
        for n in range(1, len(ctx) + 1):
            best = max(best, self.kneser_ney(ctx[-n:] + [term], n + 1))
        return best

    def predict_context(self, text: str) -> ContextPrediction:
        tokens = self.tokenize(text)
        with self._lock:
            if not self._context_freq:
                return ContextPrediction(self.cfg.unknown_label, 0.0)

            # label-independent part of every window: (order weight, key, KN * TF-IDF)
            windows: List[Tuple[int, str, float]] = []
            total_weight = 0
            for n in range(1, self.max_order + 1):
                for i in range(len(tokens) - n + 1):
                    gram = tokens[i:i + n]
                    total_weight += n
                    base = self.kneser_ney(gram, n) * self.tfidf(gram, tokens)
                    if base > 0:
                        windows.append((n, " ".join(gram), base))

            legacy = not self._context_ngrams
            best_label, best_score = None, 0.0
            for label in sorted(self._context_freq):
                freq = self._context_freq[label]
                weight = math.log(1 + freq)
                counts = self._context_ngrams.get(label, {})
                s = 0.0
                for n, key, base in windows:
                    if legacy:
                        affinity = 1.0
                    else:
                        seen = self._ngram_freq.get(key, 0)
                        affinity = counts.get(key, 0) / seen if seen else 0.0
                    s += n * base * weight * affinity
                s = s / total_weight if total_weight else 0.0
                if math.isfinite(s) and s > best_score:
                    best_label, best_score = label, s

            if best_label is not None:
                return ContextPrediction(best_label, min(0.95, best_score / (1 + best_score)))

            label, freq = min(self._context_freq.items(), key=lambda kv: (-kv[1], kv[0]))
            conf = min(0.5, freq / self.total_documents) if self.total_documents else 0.0
            return ContextPrediction(label, conf)

    # ------------------------------------------------------------------
    # Introspection helpers
    # ------------------------------------------------------------------
    def ngram_items(self) -> List[Tuple[str, int]]:
        """Copy of (n-gram text, count) pairs for derived structures."""
        with self._lock:
            return list(self._ngram_freq.items())

    def labels(self) -> List[str]:
        return sorted(self._context_freq)

    def vocabulary(self) -> List[str]:
        return sorted(self._doc_freq)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "vocabulary": len(self._doc_freq),
                "ngrams": len(self._ngram_freq),
                "total_ngrams": self.total_ngrams,
                "total_documents": self.total_documents,
                "labels": dict(self._context_freq),
            }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def tables(self) -> NgramTables:
        with self._lock:
            return NgramTables(
                ngram_frequencies=dict(self._ngram_freq),
                context_frequencies=dict(self._context_freq),
                continuation_counts={k: set(v) for k, v in self._continuations.items() if v},
                document_frequencies=dict(self._doc_freq),
                context_ngram_counts={k: dict(v) for k, v in self._context_ngrams.items() if v},
                total_ngrams=self.total_ngrams,
                total_documents=self.total_documents,
            )

    def to_snapshot(self) -> Dict[str, Any]:
        return ngram_to_snapshot(self.tables())

    def load_snapshot(self, data: Any) -> int:
        """
        Replace all tables with a validated snapshot. Raises SnapshotError /
        SnapshotVersionError when it cannot be used; returns the repair count.
        """
        t = ngram_from_snapshot(data)
        with self._lock:
            self._ngram_freq = Counter(t.ngram_frequencies)
            self._context_freq = Counter(t.context_frequencies)
            self._continuations = defaultdict(set, {k: set(v) for k, v in t.continuation_counts.items()})
            self._doc_freq = Counter(t.document_frequencies)
            self._context_ngrams = defaultdict(Counter, {k: Counter(v) for k, v in t.context_ngram_counts.items()})
            self._reverse_total = sum(len(v) for k, v in self._continuations.items() if k.startswith(REVERSE_PREFIX))
            self.total_ngrams = t.total_ngrams
            self.total_documents = t.total_documents
            self.revision += 1
        if t.repairs:
            logger.warning("n-gram snapshot loaded with %d repairs", t.repairs)
        return t.repairs

    @classmethod
    def from_snapshot(cls, data: Any, config: Optional[NgramConfig] = None,
                      tokenizer: Optional[Tokenizer] = None) -> "NgramModel":
        m = cls(config, tokenizer)
        m.load_snapshot(data)
        return m

