# tests/test_cli.py - end-to-end checks of the command line front end
import os

import pytest

from adaptive_vocabulary.cli import build_parser, main
from adaptive_vocabulary.utils.model_store import NGRAM_FILE


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path / "state")


@pytest.fixture
def dialogue(tmp_path):
    p = tmp_path / "dialogue.txt"
    p.write_text("i love pizza with cheese\n\nthe pizza here is great\n", encoding="utf-8")
    return str(p)


def run(data_dir, *args):
    return main(["--data-dir", data_dir, *args])


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_learn_then_predict(data_dir, dialogue, capsys):
    assert run(data_dir, "learn", dialogue, "--context", "food") == 0
    assert "Learned 2 document(s)" in capsys.readouterr().out
    assert os.path.exists(os.path.join(data_dir, NGRAM_FILE))

    assert run(data_dir, "predict", "i love pizza") == 0
    assert "food" in capsys.readouterr().out


def test_learn_missing_file(data_dir, tmp_path, capsys):
    assert run(data_dir, "learn", str(tmp_path / "missing.txt")) == 1
    assert "Cannot read" in capsys.readouterr().out


def test_select_and_feedback(data_dir, dialogue, capsys):
    run(data_dir, "learn", dialogue, "--context", "food")
    capsys.readouterr()

    assert run(data_dir, "select", "--context", "i love", "pizza", "cheese") == 0
    out = capsys.readouterr().out
    assert "selected:" in out

    assert run(data_dir, "feedback", "alice", "pizza", "0.9", "i love pizza") == 0
    assert "alice" in capsys.readouterr().out
    assert len(os.listdir(os.path.join(data_dir, "profiles"))) == 1


def test_stats(data_dir, dialogue, capsys):
    run(data_dir, "learn", dialogue)
    capsys.readouterr()
    assert run(data_dir, "stats") == 0
    out = capsys.readouterr().out
    assert "ngram" in out
    assert "total_documents" in out
