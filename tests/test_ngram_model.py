# tests/test_ngram_model.py
import math
import random

import pytest

from adaptive_vocabulary.context.tokenizer import Token
from adaptive_vocabulary.core.ngram_model import NgramModel
from adaptive_vocabulary.utils.config_manager import NgramConfig


@pytest.fixture
def model():
    return NgramModel(NgramConfig(max_order=3, discount=0.75))


def test_learn_counts_every_order(model):
    label = model.learn("a b c a b", "ctx1")
    assert label == "ctx1"
    # 5 unigrams + 4 bigrams + 3 trigrams
    assert model.total_ngrams == 12
    assert model.frequency("a b") == 2
    assert model.frequency(["c", "a", "b"]) == 1
    assert model.continuations("a") == {"b"}
    assert model.continuations("a b") == {"c"}
    assert model.total_documents == 1
    assert model.document_frequency("a") == 1  # once per document


def test_kneser_ney_scenario_is_finite(model):
    model.learn("a b c a b", "ctx1")
    p = model.kneser_ney("a b c", 3)
    assert math.isfinite(p)
    assert 0.0 <= p <= 1.0


def test_kneser_ney_bigram_by_hand(model):
    model.learn("a b c a b", "ctx1")
    # reverse continuation sets: b<-{a}, c<-{b}, a<-{c}, "b c"<-{a}, "c a"<-{b}, "a b"<-{c} => 6
    assert model.kneser_ney("b", 1) == pytest.approx(1 / 6)
    # (2 - .75)/2 + (.75 * 1/2) * 1/6
    assert model.kneser_ney("a b", 2) == pytest.approx(0.6875)


def test_kneser_ney_bounds_for_seen_and_unseen(model):
    model.learn("the cat sat on the mat", "story")
    model.learn("the dog sat on the rug", "story")
    for gram in ["the cat", "the cat sat", "zebra", "zebra unicorn", "on the zebra", "mat rug dog"]:
        p = model.kneser_ney(gram)
        assert math.isfinite(p)
        assert 0.0 <= p <= 1.0


def test_kneser_ney_empty_model_uses_epsilon(model):
    assert model.kneser_ney("anything", 1) == pytest.approx(1e-10)


def test_kneser_ney_chain_backs_off_on_unseen_prefix(model):
    model.learn("a b c", "x")
    chain = model.kneser_ney_chain("zz qq c", 3)
    assert len(chain) == 3
    # neither "qq" nor "zz qq" were seen, so every order keeps the unigram value
    assert chain[0] == chain[1] == chain[2]


def test_tfidf_scenario():
    m = NgramModel()
    m.learn("apple banana apple", "fruit")
    m.learn("banana orange", "fruit")
    tokens = ["apple", "banana", "apple"]
    apple = m.tfidf("apple", tokens)
    banana = m.tfidf("banana", tokens)
    assert apple == pytest.approx(2 / 3 * math.log(2))
    assert apple > 0
    assert banana < apple


def test_tfidf_zero_when_term_absent(model):
    model.learn("apple banana", "fruit")
    assert model.tfidf("cherry", ["apple", "banana"]) == 0.0
    assert model.tfidf("apple", []) == 0.0


def test_tfidf_zero_for_multi_token_ngrams(model):
    model.learn("apple banana", "fruit")
    model.learn("kiwi", "fruit")
    # document frequencies are tracked per token only
    assert model.tfidf("apple banana", ["apple", "banana"]) == 0.0


def test_predict_context_verbatim_document():
    m = NgramModel()
    m.learn("the weather is sunny and warm today", "weather")
    m.learn("i would love a pizza with extra cheese", "food")
    pred = m.predict_context("i would love a pizza with extra cheese")
    assert pred.label == "food"
    assert 0.0 < pred.confidence <= 0.95
    assert m.predict_context("the weather is sunny and warm today").label == "weather"


def test_predict_context_without_labels(model):
    pred = model.predict_context("hello there")
    assert pred.label == "unknown"
    assert pred.confidence == 0.0


def test_predict_context_falls_back_to_most_frequent_label(model):
    model.learn("a b", "x")
    model.learn("a b", "x")
    model.learn("c d", "y")
    pred = model.predict_context("never seen words")
    assert pred.label == "x"
    assert pred.confidence == pytest.approx(0.5)  # min(0.5, 2/3)


def test_learn_empty_text_is_noop(model):
    assert model.learn("", "ignored") == "unknown"
    assert model.learn("   !!  ", None) == "unknown"
    assert model.total_documents == 0
    assert model.labels() == []


def test_learn_derives_label_when_missing(model):
    assert model.learn("the cat sat") == "varied_short"
    assert model.learn("go go go go") == "repetitive_short_looping"
    assert model.context_frequency("varied_short") == 1


def test_learn_many_skips_blank_lines(model):
    n = model.learn_many(["hello world", "", "   ", "good morning"], "greeting")
    assert n == 2
    assert model.context_frequency("greeting") == 2


def test_contextual_fit_prefers_seen_continuation(model):
    model.learn("good morning everyone", "greeting")
    model.learn("good night everyone", "greeting")
    seen = model.contextual_fit(["good"], "morning")
    unseen = model.contextual_fit(["good"], "banana")
    assert seen > unseen
    assert 0.0 <= unseen <= 1.0


def test_custom_tokenizer_is_used():
    class DashTokenizer:
        def tokenize(self, text):
            return [Token(p, "NOUN") for p in text.split("-") if p]

    m = NgramModel(tokenizer=DashTokenizer())
    m.learn("alpha-beta-alpha", "x")
    assert m.frequency("alpha beta") == 1
    assert m.vocabulary() == ["alpha", "beta"]


def test_snapshot_round_trip_reproduces_tables(model):
    model.learn("a b c a b", "ctx1")
    model.learn("b c d", "ctx2")
    restored = NgramModel.from_snapshot(model.to_snapshot())
    assert restored.tables() == model.tables()
    assert restored.kneser_ney("a b c") == pytest.approx(model.kneser_ney("a b c"))
    assert restored.predict_context("b c d") == model.predict_context("b c d")


def test_legacy_snapshot_without_label_counts_still_predicts(model):
    model.learn("red green blue", "colours")
    model.learn("one two three", "numbers")
    snap = model.to_snapshot()
    del snap["version"]
    del snap["contextNgramFrequencies"]
    legacy = NgramModel.from_snapshot(snap)
    assert legacy.labels() == ["colours", "numbers"]
    assert legacy.predict_context("red green blue").label in ("colours", "numbers")


def test_reset_clears_everything(model):
    model.learn("a b c", "x")
    model.reset()
    assert model.stats() == {"vocabulary": 0, "ngrams": 0, "total_ngrams": 0, "total_documents": 0, "labels": {}}


def prefixes_cover_extensions(freq):
    """Each order > 1 n-gram's prefix is present at least as often as the n-gram."""
    return all(
        freq.get(key.rsplit(" ", 1)[0], 0) >= count
        for key, count in freq.items() if " " in key
    )


@pytest.mark.parametrize("seed", range(6))
def test_every_ngram_keeps_its_prefix(seed):
    rng = random.Random(seed)
    words = ["red", "green", "blue", "cyan", "black"]
    m = NgramModel(NgramConfig(max_order=rng.randint(2, 4)))
    for _ in range(25):
        m.learn(" ".join(rng.choice(words) for _ in range(rng.randint(1, 8))), rng.choice(["x", "y"]))
        assert prefixes_cover_extensions(m.tables().ngram_frequencies)
    restored = NgramModel.from_snapshot(m.to_snapshot())
    assert prefixes_cover_extensions(restored.tables().ngram_frequencies)


def test_tokenize_strips_symbols_outside_keep_set():
    assert NgramModel().tokenize("  Don't   #tag c++ well-known ") == ["don't", "tag", "c", "well-known"]
    hashtags = NgramModel(NgramConfig(keep_punctuation="#+"))
    assert hashtags.tokenize("#tag c++ don't") == ["#tag", "c++", "dont"]
