# tests/test_config.py
import json

import pytest

from adaptive_vocabulary.utils.config_manager import (
    Config,
    EngineConfig,
    NgramConfig,
    PersistenceConfig,
    SpaceConfig,
)


def test_defaults():
    cfg = EngineConfig()
    assert cfg.ngram.max_order == 3
    assert cfg.ngram.discount == 0.75
    assert cfg.space.dimensions == 50
    assert cfg.classifier.default_category == "general"
    assert cfg.orchestrator.default_strategy == "hybrid_balanced"
    assert cfg.orchestrator.ab_require_significance is False
    assert cfg.persistence.durability == "async"


@pytest.mark.parametrize("factory", [
    lambda: NgramConfig(max_order=0),
    lambda: NgramConfig(discount=1.0),
    lambda: SpaceConfig(dimensions=0),
    lambda: PersistenceConfig(durability="eventually"),
])
def test_invalid_values_raise(factory):
    with pytest.raises(ValueError):
        factory()


def test_from_dict_ignores_unknown_and_invalid():
    cfg = EngineConfig.from_dict({
        "ngram": {"max_order": 4, "colour": "blue"},
        "space": {"dimensions": -5},
        "mystery": {"x": 1},
        "orchestrator": "not a section",
    })
    assert cfg.ngram.max_order == 4
    assert cfg.space.dimensions == 50
    assert cfg.orchestrator == EngineConfig().orchestrator


def test_config_file_round_trip(tmp_path):
    path = tmp_path / "config.json"
    c = Config(str(path), create=True)
    assert path.exists()
    assert c.set("orchestrator.enable_ab", "false")
    assert c.set("ngram.max_order", "4")
    c.save()

    again = Config(str(path))
    assert again.get("orchestrator.enable_ab") is False
    assert again.engine.ngram.max_order == 4


def test_set_rejects_unknown_and_invalid(tmp_path):
    c = Config(str(tmp_path / "config.json"))
    assert c.set("ngram.nope", 1) is False
    assert c.set("nope.max_order", 1) is False
    with pytest.raises(ValueError):
        c.set("ngram.discount", 2.0)
    assert c.get("ngram.discount") == 0.75


def test_malformed_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{broken")
    assert Config(str(path)).engine == EngineConfig()
    path.write_text(json.dumps([1, 2, 3]))
    assert Config(str(path)).engine == EngineConfig()
