# adaptive_vocabulary/core/protocols.py
"""
Protocol interfaces for the collaborators the core talks to.

The core never depends on concrete tokenizers, bandits, A/B frameworks or
storage backends; it depends on these small Protocols so any of them can be
swapped (or mocked in tests). Keep this file stable.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from typing_extensions import TypedDict

from adaptive_vocabulary.context.tokenizer import Token


# Typed structures used across components ------------------------------------

class NgramSnapshot(TypedDict, total=False):
    """
    Logical n-gram snapshot exchanged with the persistence collaborator.
    Every table is a list of pairs so the shape survives JSON round-trips.
    """
    version: int
    ngramFrequencies: List[List[Any]]
    contextFrequencies: List[List[Any]]
    continuationCounts: List[List[Any]]
    documentFreqs: List[List[Any]]
    contextNgramFrequencies: List[List[Any]]
    totalNgrams: int
    totalDocuments: int


class ProfileSnapshot(TypedDict, total=False):
    version: int
    userId: str
    classCounts: List[List[Any]]
    featureCounts: List[List[Any]]
    totalInteractions: int


class AlgorithmMetrics(TypedDict, total=False):
    averageQuality: float
    successRate: float
    stdDev: float
    sampleSize: int
    errorCount: int
    averageProcessingMs: float


class AlgorithmReport(TypedDict):
    name: str
    metrics: AlgorithmMetrics


class ComparisonReport(TypedDict, total=False):
    testId: str
    algorithmA: AlgorithmReport
    algorithmB: AlgorithmReport
    isSignificant: bool
    tStatistic: float
    pValue: float
    confidenceInterval: List[float]
    winner: str


# Protocols ------------------------------------------------------------------

@runtime_checkable
class Tokenizer(Protocol):
    """Splits raw text into ordered tokens ({surface, part-of-speech})."""

    def tokenize(self, text: str) -> List[Token]:
        ...


@runtime_checkable
class BanditProtocol(Protocol):
    """Term-selection collaborator. The core treats its exploration policy as opaque."""

    def select(self, candidates: Sequence[str]) -> Optional[str]:
        ...

    def update_reward(self, term: str, rating: float) -> None:
        ...


@runtime_checkable
class ScoringBandit(BanditProtocol, Protocol):
    """
    Richer bandit that exposes per-candidate scores without selecting and
    lets the caller record which term was actually returned.
    """

    def scores(self, candidates: Sequence[str]) -> Dict[str, float]:
        ...

    def record_selection(self, term: str) -> None:
        ...


# an algorithm under comparison maps one test case to per-candidate scores
Algorithm = Callable[[Dict[str, Any]], Dict[str, float]]


@runtime_checkable
class ABFrameworkProtocol(Protocol):
    def run_comparison(self,
                       test_id: str,
                       algorithm_a: Algorithm,
                       algorithm_b: Algorithm,
                       test_cases: Sequence[Dict[str, Any]]) -> ComparisonReport:
        ...


@runtime_checkable
class PersistenceProtocol(Protocol):
    """Storage collaborator for logical snapshots."""

    def save_ngram(self, snapshot: NgramSnapshot) -> None:
        ...

    def load_ngram(self) -> Optional[Dict[str, Any]]:
        ...

    def save_profile(self, snapshot: ProfileSnapshot) -> None:
        ...

    def load_profiles(self) -> List[Dict[str, Any]]:
        ...

    def delete_profile(self, user_id: str) -> None:
        ...
