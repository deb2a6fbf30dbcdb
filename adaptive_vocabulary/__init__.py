"""
adaptive_vocabulary

Adaptive statistical language learning for a dialogue assistant: an n-gram
model, a distributional term space, per-user personalization and an
orchestrator that picks vocabulary and learns from feedback.
"""

from .engine import LearningEngine, PersistStatus
from .errors import (
    VocabularyEngineError,
    SnapshotError,
    SnapshotVersionError,
    PersistenceError,
    ABTestError,
)

__all__ = [
    "LearningEngine",
    "PersistStatus",
    "VocabularyEngineError",
    "SnapshotError",
    "SnapshotVersionError",
    "PersistenceError",
    "ABTestError",
]

__version__ = "0.1.0"
