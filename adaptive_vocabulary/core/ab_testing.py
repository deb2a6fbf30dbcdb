# adaptive_vocabulary/core/ab_testing.py
"""
ABTestFramework - runs two algorithms over the same test cases and compares
their mean outcome quality with a Welch t-test.

Each algorithm maps one test case to per-candidate scores; each result is
scored with estimate_quality (or a caller-supplied quality function). Both
batches run in parallel threads.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from scipy.stats import t as student_t

from adaptive_vocabulary.core.protocols import Algorithm, ComparisonReport
from adaptive_vocabulary.core.quality import estimate_quality
from adaptive_vocabulary.errors import ABTestError
from adaptive_vocabulary.utils.threaded_runner import run_parallel

logger = logging.getLogger(__name__)

QualityFn = Callable[[Dict[str, float], Dict[str, Any]], float]

SUCCESS_THRESHOLD = 0.5


@dataclass(frozen=True)
class NamedAlgorithm:
    name: str
    fn: Algorithm

    def __call__(self, case: Dict[str, Any]) -> Dict[str, float]:
        return self.fn(case)


def _name_of(algo: Union[NamedAlgorithm, Algorithm], default: str) -> str:
    return getattr(algo, "name", None) or getattr(algo, "__name__", None) or default


def default_quality(scores: Dict[str, float], case: Dict[str, Any]) -> float:
    return estimate_quality(scores, case.get("context_length"), case.get("strategy", "hybrid_balanced"))


def two_sided_p_value(t: float, df: float) -> float:
    """Two-sided p-value of a t statistic under Student's t with df degrees of freedom."""
    if math.isinf(t):
        return 0.0
    return float(min(1.0, 2.0 * student_t.sf(abs(t), df)))


class ABTestFramework:
    def __init__(self, min_sample_size: int = 50, significance_level: float = 0.05,
                 workers: int = 2, quality_fn: Optional[QualityFn] = None, keep_results: int = 50):
        self.min_sample_size = max(2, int(min_sample_size))
        self.significance_level = significance_level
        self.workers = workers
        self.quality_fn = quality_fn or default_quality
        self._results: "OrderedDict[str, ComparisonReport]" = OrderedDict()
        self._keep = keep_results
        self._lock = threading.Lock()

    # -------------------------
    # batches
    # -------------------------
    def _run_batch(self, algo, cases: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
        qualities: List[float] = []
        times: List[float] = []
        errors = 0
        for case in cases:
            t0 = time.perf_counter()
            try:
                scores = algo(case)
            except Exception as e:  # counted in errorCount
                errors += 1
                logger.warning("A/B case failed for %s: %s", _name_of(algo, "algorithm"), e)
                continue
            times.append((time.perf_counter() - t0) * 1000.0)
            qualities.append(float(self.quality_fn(scores or {}, case)))
        n = len(qualities)
        if n == 0:
            raise ABTestError(f"algorithm {_name_of(algo, 'algorithm')} produced no results")
        mean = sum(qualities) / n
        var = sum((q - mean) ** 2 for q in qualities) / n
        return {
            "averageQuality": mean,
            "successRate": sum(1 for q in qualities if q > SUCCESS_THRESHOLD) / n,
            "stdDev": math.sqrt(var),
            "sampleSize": n,
            "errorCount": errors,
            "averageProcessingMs": sum(times) / n,
        }

    # -------------------------
    # statistics
    # -------------------------
    def welch_test(self, a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
        mean_a, mean_b = a["averageQuality"], b["averageQuality"]
        sd_a, sd_b = a["stdDev"], b["stdDev"]
        n_a, n_b = a["sampleSize"], b["sampleSize"]
        va, vb = sd_a * sd_a / n_a, sd_b * sd_b / n_b
        pooled = math.sqrt(va + vb)
        diff = mean_a - mean_b
        if pooled == 0:
            t = 0.0 if diff == 0 else math.copysign(math.inf, diff)
            df = float(n_a + n_b - 2)
        else:
            t = diff / pooled
            denom = (va * va / (n_a - 1) if n_a > 1 else 0.0) + (vb * vb / (n_b - 1) if n_b > 1 else 0.0)
            df = (pooled ** 4) / denom if denom > 0 else float(n_a + n_b - 2)
        df = max(1.0, df)
        p = 1.0 if t == 0 else two_sided_p_value(t, df)
        margin = float(student_t.ppf(1.0 - self.significance_level / 2.0, df)) * pooled
        return {
            "tStatistic": t,
            "degreesOfFreedom": df,
            "pValue": p,
            "confidenceInterval": [diff - margin, diff + margin],
            "effectSize": abs(diff),
        }

    # -------------------------
    # Public API
    # -------------------------
    def run_comparison(self, test_id: str, algorithm_a: Union[NamedAlgorithm, Algorithm],
                       algorithm_b: Union[NamedAlgorithm, Algorithm],
                       test_cases: Sequence[Dict[str, Any]]) -> ComparisonReport:
        """
        Run both algorithms over identical test cases. Raises ABTestError when
        there are fewer cases than min_sample_size or an algorithm fails every case.
        """
        cases = list(test_cases)
        if len(cases) < self.min_sample_size:
            raise ABTestError(f"not enough test cases: {len(cases)} < {self.min_sample_size}")

        metrics_a, metrics_b = run_parallel(
            [lambda: self._run_batch(algorithm_a, cases), lambda: self._run_batch(algorithm_b, cases)],
            max_workers=self.workers,
        )
        stats = self.welch_test(metrics_a, metrics_b)
        report: ComparisonReport = {
            "testId": test_id,
            "algorithmA": {"name": _name_of(algorithm_a, "A"), "metrics": metrics_a},
            "algorithmB": {"name": _name_of(algorithm_b, "B"), "metrics": metrics_b},
            "isSignificant": stats["pValue"] < self.significance_level,
            "tStatistic": stats["tStatistic"],
            "pValue": stats["pValue"],
            "confidenceInterval": stats["confidenceInterval"],
            "winner": "A" if metrics_a["averageQuality"] > metrics_b["averageQuality"] else "B",
        }
        with self._lock:
            self._results[test_id] = report
            while len(self._results) > self._keep:
                self._results.popitem(last=False)
        logger.info("A/B %s: A=%.4f B=%.4f p=%.4f", test_id,
                    metrics_a["averageQuality"], metrics_b["averageQuality"], stats["pValue"])
        return report

    def get_result(self, test_id: str) -> Optional[ComparisonReport]:
        return self._results.get(test_id)

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            results = list(self._results.values())
        significant = sum(1 for r in results if r.get("isSignificant"))
        return {
            "tests": len(results),
            "significant": significant,
            "significance_rate": significant / len(results) if results else 0.0,
        }
