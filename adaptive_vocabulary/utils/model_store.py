# model_store.py - JSON persistence layer for the learning engine

# handles saving and loading logical snapshots:
# - n-gram model tables (ngram_model.json)
# - one file per user profile (profiles/<user>.json)
# - bandit arms and learning statistics (bandit.json, learning_stats.json)
# writes go to a temp file first and are moved into place with os.replace

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import tempfile
from typing import Any, Dict, List, Optional

from adaptive_vocabulary.errors import PersistenceError

logger = logging.getLogger(__name__)

NGRAM_FILE = "ngram_model.json"
BANDIT_FILE = "bandit.json"
STATS_FILE = "learning_stats.json"
PROFILE_DIR = "profiles"

_unsafe = re.compile(r"[^A-Za-z0-9_.-]")


def _profile_filename(user_id: str) -> str:
    # keep file names portable; the real id lives inside the snapshot
    safe = _unsafe.sub("_", user_id)[:80] or "_"
    digest = hashlib.blake2b(user_id.encode("utf-8"), digest_size=8).hexdigest()
    return f"{safe}-{digest}.json"


class ModelStore:
    """File-backed persistence collaborator. Every failure raises PersistenceError."""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = data_dir

    def _path(self, *parts: str) -> str:
        return os.path.join(self.data_dir, *parts)

    # Helper Functions ---------------
    def _write_json(self, path: str, payload: Any) -> None:
        dirname = os.path.dirname(path) or "."
        try:
            os.makedirs(dirname, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", suffix=".json", dir=dirname)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, ensure_ascii=False)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(path, e) from e

    def _read_json(self, path: str) -> Optional[Any]:
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh)
        except OSError as e:
            raise PersistenceError(path, e) from e
        except ValueError as e:
            # corrupt content
            logger.warning("corrupted JSON in %s, ignoring: %s", path, e)
            return None

    # N-gram model -------------------------
    def save_ngram(self, snapshot: Dict[str, Any]) -> None:
        self._write_json(self._path(NGRAM_FILE), snapshot)

    def load_ngram(self) -> Optional[Dict[str, Any]]:
        return self._read_json(self._path(NGRAM_FILE))

    # Profiles -------------------------
    def save_profile(self, snapshot: Dict[str, Any]) -> None:
        self._write_json(self._path(PROFILE_DIR, _profile_filename(snapshot["userId"])), snapshot)

    def load_profiles(self) -> List[Dict[str, Any]]:
        folder = self._path(PROFILE_DIR)
        if not os.path.isdir(folder):
            return []
        out = []
        for name in sorted(os.listdir(folder)):
            if not name.endswith(".json") or name.startswith(".tmp_"):
                continue
            data = self._read_json(os.path.join(folder, name))
            if data is not None:
                out.append(data)
        return out

    def delete_profile(self, user_id: str) -> None:
        path = self._path(PROFILE_DIR, _profile_filename(user_id))
        try:
            if os.path.exists(path):
                os.unlink(path)
        except OSError as e:
            raise PersistenceError(path, e) from e

    # Bandit + learning statistics -------------------------
    def save_bandit(self, state: Dict[str, Any]) -> None:
        self._write_json(self._path(BANDIT_FILE), state)

    def load_bandit(self) -> Optional[Dict[str, Any]]:
        return self._read_json(self._path(BANDIT_FILE))

    def save_stats(self, state: Dict[str, Any]) -> None:
        self._write_json(self._path(STATS_FILE), state)

    def load_stats(self) -> Optional[Dict[str, Any]]:
        return self._read_json(self._path(STATS_FILE))
