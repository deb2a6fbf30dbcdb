# tests/test_ab_testing.py
import math

import pytest

from adaptive_vocabulary.core.ab_testing import ABTestFramework, NamedAlgorithm, two_sided_p_value
from adaptive_vocabulary.core.protocols import ABFrameworkProtocol
from adaptive_vocabulary.errors import ABTestError


def quality_of(scores, case):
    return scores["q"]


def make_cases(n):
    return [{"target_term": f"t{i}", "i": i} for i in range(n)]


@pytest.fixture
def framework():
    return ABTestFramework(min_sample_size=6, quality_fn=quality_of)


def test_satisfies_protocol(framework):
    assert isinstance(framework, ABFrameworkProtocol)


def test_too_few_cases_raise(framework):
    with pytest.raises(ABTestError):
        framework.run_comparison("t", lambda c: {"q": 1}, lambda c: {"q": 0}, make_cases(5))


def test_better_algorithm_wins(framework):
    a = NamedAlgorithm("semantic_only", lambda c: {"q": 0.8 + 0.01 * (c["i"] % 3)})
    b = NamedAlgorithm("hybrid_balanced", lambda c: {"q": 0.3 + 0.01 * (c["i"] % 3)})
    report = framework.run_comparison("exp1", a, b, make_cases(12))

    assert report["testId"] == "exp1"
    assert report["algorithmA"]["name"] == "semantic_only"
    assert report["algorithmA"]["metrics"]["averageQuality"] == pytest.approx(0.81)
    assert report["algorithmB"]["metrics"]["averageQuality"] == pytest.approx(0.31)
    assert report["algorithmA"]["metrics"]["successRate"] == 1.0
    assert report["algorithmB"]["metrics"]["successRate"] == 0.0
    assert report["algorithmA"]["metrics"]["sampleSize"] == 12
    assert report["isSignificant"] is True
    assert report["tStatistic"] > 0
    lo, hi = report["confidenceInterval"]
    assert lo < 0.5 < hi
    assert report["winner"] == "A"
    assert framework.get_result("exp1") is report


def test_identical_algorithms_are_not_significant(framework):
    def same(case):
        return {"q": 0.5 + 0.1 * (case["i"] % 2)}

    report = framework.run_comparison("same", same, same, make_cases(10))
    assert report["tStatistic"] == 0.0
    assert report["pValue"] == 1.0
    assert report["isSignificant"] is False
    assert report["winner"] == "B"
    assert report["algorithmA"]["name"] == "same"


def test_failing_cases_are_counted(framework):
    def flaky(case):
        if case["i"] % 2:
            raise RuntimeError("boom")
        return {"q": 0.7}

    report = framework.run_comparison("flaky", flaky, lambda c: {"q": 0.7}, make_cases(8))
    assert report["algorithmA"]["metrics"]["errorCount"] == 4
    assert report["algorithmA"]["metrics"]["sampleSize"] == 4


def test_algorithm_failing_everything_raises(framework):
    def broken(case):
        raise RuntimeError("always")

    with pytest.raises(ABTestError):
        framework.run_comparison("broken", broken, lambda c: {"q": 0.5}, make_cases(6))


def test_default_quality_function():
    fw = ABTestFramework(min_sample_size=2)
    report = fw.run_comparison("dq", lambda c: {"a": 0.9, "b": 0.1}, lambda c: {},
                               [{"context_length": 3}, {"context_length": 3}])
    qa = report["algorithmA"]["metrics"]["averageQuality"]
    assert 0.1 <= qa <= 1.0
    # no scores: base quality of the default strategy
    assert report["algorithmB"]["metrics"]["averageQuality"] == pytest.approx(0.75)


def test_welch_zero_variance_different_means():
    fw = ABTestFramework()
    a = {"averageQuality": 0.9, "stdDev": 0.0, "sampleSize": 10}
    b = {"averageQuality": 0.4, "stdDev": 0.0, "sampleSize": 10}
    stats = fw.welch_test(a, b)
    assert math.isinf(stats["tStatistic"]) and stats["tStatistic"] > 0
    assert stats["pValue"] == 0.0


def test_p_value_matches_t_table():
    # two-sided 5% critical values of Student's t
    assert two_sided_p_value(2.228, 10) == pytest.approx(0.05, abs=5e-4)
    assert two_sided_p_value(-2.571, 5) == pytest.approx(0.05, abs=5e-4)
    assert two_sided_p_value(1.96, 1e6) == pytest.approx(0.05, abs=5e-4)
    assert two_sided_p_value(0.0, 5) == 1.0


def test_small_samples_detect_real_difference():
    fw = ABTestFramework()
    # t = 0.15 / sqrt(2 * 0.01 / 6) = 2.598, Welch df = 10
    a = {"averageQuality": 0.65, "stdDev": 0.1, "sampleSize": 6}
    b = {"averageQuality": 0.5, "stdDev": 0.1, "sampleSize": 6}
    stats = fw.welch_test(a, b)
    assert stats["tStatistic"] == pytest.approx(2.598, abs=1e-3)
    assert stats["degreesOfFreedom"] == pytest.approx(10.0)
    # between the 5% (2.228) and 2% (2.764) critical values
    assert 0.02 < stats["pValue"] < 0.05
    lo, hi = stats["confidenceInterval"]
    # 0.15 +/- 2.228 * 0.0577
    assert lo == pytest.approx(0.15 - 2.228 * math.sqrt(0.02 / 6), abs=1e-3)
    assert hi == pytest.approx(0.15 + 2.228 * math.sqrt(0.02 / 6), abs=1e-3)


def test_results_are_bounded_and_summarised():
    fw = ABTestFramework(min_sample_size=2, quality_fn=quality_of, keep_results=2)
    for i in range(3):
        fw.run_comparison(f"t{i}", lambda c: {"q": 0.9}, lambda c: {"q": 0.1}, make_cases(2))
    assert fw.get_result("t0") is None
    assert fw.get_result("t2") is not None
    s = fw.summary()
    assert s["tests"] == 2
    assert s["significant"] == 2
