# tests/test_engine.py
import json
import os
import threading
from unittest.mock import MagicMock

import pytest

from adaptive_vocabulary.engine import LearningEngine, PersistStatus
from adaptive_vocabulary.errors import PersistenceError
from adaptive_vocabulary.utils.config_manager import EngineConfig, PersistenceConfig, SpaceConfig
from adaptive_vocabulary.utils.model_store import NGRAM_FILE, ModelStore


def make_config(tmp_path, durability="sync", autosave=True, **space):
    return EngineConfig(
        space=SpaceConfig(**space),
        persistence=PersistenceConfig(data_dir=str(tmp_path), durability=durability, autosave=autosave),
    )


@pytest.fixture
def engine(tmp_path):
    e = LearningEngine(make_config(tmp_path))
    yield e
    e.close()


def test_learn_sync_writes_snapshot(engine, tmp_path):
    res = engine.learn("i love pizza with cheese", "food")
    assert res.label == "food"
    assert res.persist is PersistStatus.OK
    with open(tmp_path / NGRAM_FILE, encoding="utf-8") as fh:
        assert json.load(fh)["contextFrequencies"] == [["food", 1]]


def test_learn_empty_text_is_skipped(engine, tmp_path):
    res = engine.learn("   ")
    assert res.label == "unknown"
    assert res.persist is PersistStatus.SKIPPED
    assert not (tmp_path / NGRAM_FILE).exists()


def test_learn_async_is_scheduled_then_flushed(tmp_path):
    with LearningEngine(make_config(tmp_path, durability="async")) as e:
        res = e.learn("hello world", "greeting")
        assert res.persist is PersistStatus.SCHEDULED
        assert e.flush(timeout=5) is PersistStatus.OK
        assert (tmp_path / NGRAM_FILE).exists()


def test_per_call_durability_overrides_config(tmp_path):
    with LearningEngine(make_config(tmp_path, durability="async")) as e:
        assert e.learn("hello world", "greeting", durability="sync").persist is PersistStatus.OK


def test_autosave_off_skips_persistence(tmp_path):
    with LearningEngine(make_config(tmp_path, autosave=False)) as e:
        assert e.learn("hello world", "greeting").persist is PersistStatus.SKIPPED
        assert not (tmp_path / NGRAM_FILE).exists()
        assert e.save() is PersistStatus.OK
        assert (tmp_path / NGRAM_FILE).exists()


def test_persistence_failure_is_reported_and_state_kept(tmp_path):
    store = MagicMock(spec=ModelStore)
    store.save_ngram.side_effect = PersistenceError("ngram_model.json", OSError("disk full"))
    with LearningEngine(make_config(tmp_path), store=store) as e:
        res = e.learn("hello world", "greeting")
        assert res.persist is PersistStatus.FAILED
        assert e.ngram.context_frequency("greeting") == 1


def test_async_failure_shows_up_in_flush(tmp_path):
    store = MagicMock(spec=ModelStore)
    store.save_ngram.side_effect = PersistenceError("ngram_model.json", OSError("disk full"))
    with LearningEngine(make_config(tmp_path, durability="async"), store=store) as e:
        assert e.learn("hello world", "greeting").persist is PersistStatus.SCHEDULED
        assert e.flush(timeout=5) is PersistStatus.FAILED


def test_periodic_rebuild(tmp_path):
    with LearningEngine(make_config(tmp_path, rebuild_every=2)) as e:
        assert e.learn("x y", "pair").rebuild is None
        res = e.learn("x y z", "pair")
        assert res.rebuild is not None and res.rebuild.complete
        assert e.space.has_vector("x")


def test_record_feedback_persists_everything(engine, tmp_path):
    engine.learn("i love pizza with cheese", "food")
    engine.learn("the weather is sunny today", "weather")
    res = engine.record_feedback("alice", "pizza", 0.9, "i love pizza with cheese")
    assert res.persist is PersistStatus.OK
    assert res.outcome.category == "food"
    assert len(os.listdir(tmp_path / "profiles")) == 1
    assert (tmp_path / "bandit.json").exists()
    assert (tmp_path / "learning_stats.json").exists()


def test_save_and_load_round_trip(tmp_path):
    cfg = make_config(tmp_path)
    with LearningEngine(cfg) as first:
        first.learn("i love pizza with cheese", "food")
        first.learn("the weather is sunny today", "weather")
        first.select_vocabulary("i love", ["pizza", "sunny"], {"strategy": "bandit_only"})
        first.record_feedback("alice", "pizza", 1.0, "i love pizza")
        assert first.save() is PersistStatus.OK
        tables = first.ngram.tables()
        profile = first.classifier.to_snapshot("alice")
        bandit = first.bandit.to_dict()

    with LearningEngine(cfg) as second:
        report = second.load()
        assert report.ngram == "loaded"
        assert report.profiles == 1 and report.skipped_profiles == 0
        assert report.bandit and report.stats
        assert second.ngram.tables() == tables
        assert second.classifier.to_snapshot("alice") == profile
        assert second.bandit.to_dict() == bandit
        assert second.stats.total_feedback == 1
        assert second.space.has_vector("pizza")


def test_load_rejects_newer_snapshot_and_skips_bad_profiles(tmp_path):
    os.makedirs(tmp_path / "profiles")
    with open(tmp_path / NGRAM_FILE, "w", encoding="utf-8") as fh:
        json.dump({"version": 99, "ngramFrequencies": []}, fh)
    with open(tmp_path / "profiles" / "broken.json", "w", encoding="utf-8") as fh:
        json.dump({"classCounts": []}, fh)

    with LearningEngine(make_config(tmp_path)) as e:
        report = e.load()
        assert report.ngram == "rejected"
        assert report.skipped_profiles == 1
        assert report.errors
        assert e.ngram.total_documents == 0


def test_load_from_empty_directory(engine):
    report = engine.load()
    assert report.ngram == "missing"
    assert report.profiles == 0


def test_process_text(engine):
    engine.learn("i love pizza with cheese", "food")
    engine.learn("the weather is sunny today", "weather")
    engine.record_feedback("alice", "pizza", 1.0, "i love pizza with cheese")

    res = engine.process_text("i love pizza with cheese", user_id="alice")
    assert res.context.label == "food"
    assert res.adaptation.category == "food"
    assert res.selection.selected_term in res.tokens
    assert set(res.tfidf) == set(res.tokens)
    assert all(v >= 0 for v in res.tfidf.values())


def test_process_text_without_user(engine):
    res = engine.process_text("hello there", candidates=["hi", "hey"])
    assert res.adaptation.category == "general"
    assert res.selection.selected_term in ("hi", "hey")


def test_delete_profile(engine, tmp_path):
    engine.learn("i love pizza", "food")
    engine.record_feedback("alice", "pizza", 1.0, "i love pizza")
    assert engine.delete_profile("alice") is PersistStatus.OK
    assert engine.classifier.get_profile("alice") is None
    assert os.listdir(tmp_path / "profiles") == []


def test_learn_lines_and_stats(engine):
    n = engine.learn_lines(["good morning", "", "good night"], "greeting")
    assert n == 2
    report = engine.stats_report()
    assert report["ngram"]["total_documents"] == 2
    assert report["space"]["vectors"] == 3
    assert report["orchestrator"]["current_strategy"] == "hybrid_balanced"


def test_async_snapshot_is_built_on_persist_worker(tmp_path, monkeypatch):
    with LearningEngine(make_config(tmp_path, durability="async")) as e:
        built_on = []
        original = e.ngram.to_snapshot

        def tracking():
            built_on.append(threading.current_thread().name)
            return original()

        monkeypatch.setattr(e.ngram, "to_snapshot", tracking)
        assert e.learn("hello world", "greeting").persist is PersistStatus.SCHEDULED
        assert e.flush(timeout=5) is PersistStatus.OK
        assert built_on and all(name.startswith("persist") for name in built_on)
        assert (tmp_path / NGRAM_FILE).exists()
