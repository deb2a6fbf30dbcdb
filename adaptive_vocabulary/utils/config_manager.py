# config_manager.py - typed engine settings plus a JSON-backed config manager
"""
Settings are grouped per component in frozen dataclasses (one per core
module) and aggregated in EngineConfig. `Config` loads overrides from a JSON
file shaped like:

    {"ngram": {"max_order": 4}, "orchestrator": {"enable_ab": false}}

Unknown sections/keys are ignored with a warning and a malformed file falls
back to defaults, so a bad config never stops the engine from starting.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NgramConfig:
    max_order: int = 3
    discount: float = 0.75
    lowercase: bool = True
    keep_punctuation: str = "'-"  # symbols that survive normalization
    unknown_label: str = "unknown"

    def __post_init__(self):
        if self.max_order < 1:
            raise ValueError("max_order must be >= 1")
        if not 0.0 < self.discount < 1.0:
            raise ValueError("discount must be in (0, 1)")


@dataclass(frozen=True)
class SpaceConfig:
    dimensions: int = 50
    window_size: int = 5
    cache_size: int = 10000
    ppmi_weight: float = 0.7
    tfidf_weight: float = 0.3
    rebuild_timeout: Optional[float] = 30.0  # seconds, None = unbounded
    rebuild_every: int = 50  # learn() calls between automatic rebuilds, 0 disables

    def __post_init__(self):
        if self.dimensions < 1:
            raise ValueError("dimensions must be >= 1")
        if self.window_size < 1:
            raise ValueError("window_size must be >= 1")


@dataclass(frozen=True)
class ClassifierConfig:
    max_features_per_user: int = 5000
    default_category: str = "general"


@dataclass(frozen=True)
class OrchestratorConfig:
    default_strategy: str = "hybrid_balanced"
    enable_ab: bool = True
    min_sample_size: int = 50
    diversity_threshold: float = 0.5
    max_concurrent_experiments: int = 3
    ab_require_significance: bool = False
    significance_level: float = 0.05
    ab_workers: int = 2
    history_size: int = 100
    trailing_window: int = 10
    min_strategy_samples: int = 3
    max_results: int = 5
    learning_rate: float = 0.1


@dataclass(frozen=True)
class PersistenceConfig:
    data_dir: str = "data"
    durability: str = "async"  # "async" (fire-and-forget) or "sync" (awaited)
    autosave: bool = True

    def __post_init__(self):
        if self.durability not in ("async", "sync"):
            raise ValueError("durability must be 'async' or 'sync'")


@dataclass(frozen=True)
class EngineConfig:
    ngram: NgramConfig = field(default_factory=NgramConfig)
    space: SpaceConfig = field(default_factory=SpaceConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EngineConfig":
        """Build a config from nested dicts, skipping unknown keys with a warning."""
        cfg = cls()
        if not data:
            return cfg
        sections = {f.name: f for f in fields(cls)}
        updates = {}
        for name, values in data.items():
            if name not in sections:
                logger.warning("ignoring unknown config section %r", name)
                continue
            if not isinstance(values, dict):
                logger.warning("config section %r must be an object, got %s", name, type(values).__name__)
                continue
            current = getattr(cfg, name)
            known = {f.name for f in fields(current)}
            kwargs = {}
            for k, v in values.items():
                if k not in known:
                    logger.warning("ignoring unknown config key %s.%s", name, k)
                    continue
                kwargs[k] = v
            try:
                updates[name] = replace(current, **kwargs)
            except (TypeError, ValueError) as e:
                logger.warning("invalid values in config section %r, using defaults: %s", name, e)
        return replace(cfg, **updates)


class Config:
    """JSON config manager. Holds raw overrides and exposes a typed EngineConfig."""

    def __init__(self, path: str = "config.json", create: bool = False):
        self.path = path
        self.data: Dict[str, Dict[str, Any]] = EngineConfig().to_dict()
        self._load(create)

    def _load(self, create: bool) -> None:
        if os.path.exists(self.path):
            try:
                with open(self.path, "r", encoding="utf8") as f:
                    raw = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("could not read config %s, using defaults: %s", self.path, e)
                return
            if not isinstance(raw, dict):
                logger.warning("config %s is not a JSON object, using defaults", self.path)
                return
            self.data = EngineConfig.from_dict(raw).to_dict()
        elif create:
            self.save()

    @property
    def engine(self) -> EngineConfig:
        return EngineConfig.from_dict(self.data)

    def save(self) -> None:
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        with open(self.path, "w", encoding="utf8") as f:
            json.dump(self.data, f, indent=2)

    def get(self, dotted: str) -> Any:
        section, _, key = dotted.partition(".")
        return self.data[section][key]

    def set(self, dotted: str, val: Any) -> bool:
        """Set `section.key`, coercing to the type of the current value. Returns False for unknown keys."""
        section, _, key = dotted.partition(".")
        if section not in self.data or key not in self.data[section]:
            logger.warning("no such option: %s", dotted)
            return False
        cur = self.data[section][key]
        if isinstance(cur, bool) and isinstance(val, str):
            val = val.strip().lower() in ("1", "true", "yes", "on")
        elif cur is not None and not isinstance(val, type(cur)):
            val = type(cur)(val)
        # raises ValueError for out-of-range values
        replace(getattr(self.engine, section), **{key: val})
        self.data[section] = dict(self.data[section], **{key: val})
        return True
