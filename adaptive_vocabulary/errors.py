# adaptive_vocabulary/errors.py
"""
Exception hierarchy for the learning engine.

Only a few conditions are raised at all: corrupted or unsupported snapshots,
storage failures and A/B comparisons that cannot run. Everything else
(unknown users, unseen labels, zero denominators) resolves to a documented
neutral value instead of an exception.
"""

from __future__ import annotations


class VocabularyEngineError(Exception):
    """Base class for every error raised by adaptive_vocabulary."""


class SnapshotError(VocabularyEngineError):
    """A persisted snapshot has a shape that cannot be repaired."""


class SnapshotVersionError(SnapshotError):
    """A snapshot was written by a newer, unsupported schema version."""

    def __init__(self, found: int, supported: int):
        super().__init__(f"snapshot version {found} is newer than supported version {supported}")
        self.found = found
        self.supported = supported


class PersistenceError(VocabularyEngineError):
    """Reading from or writing to the storage collaborator failed."""

    def __init__(self, path: str, cause: BaseException):
        super().__init__(f"persistence failed for {path}: {cause}")
        self.path = path
        self.cause = cause


class ABTestError(VocabularyEngineError):
    """An A/B comparison could not be run (e.g. too few test cases)."""
