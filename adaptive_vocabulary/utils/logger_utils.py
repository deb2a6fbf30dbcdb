# logger_utils.py - logging setup plus small helpers for performance metrics

import logging
import os
import time
from typing import Optional

# Directory where log files go when file logging is enabled
LOG_DIR = "logs"

# Path to the default log file, can be overriden
DEFAULT_LOG_PATH = os.path.join(LOG_DIR, "adaptive_vocabulary.log")

LOG_FORMAT = "[%(asctime)s] %(levelname)-7s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_metrics_logger = logging.getLogger("adaptive_vocabulary.metrics")


def configure_logging(level: str = "INFO", path: Optional[str] = None, to_file: bool = False) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.
    Calling it twice replaces the handlers instead of stacking them.
    """
    root = logging.getLogger("adaptive_vocabulary")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(fmt)
    root.addHandler(console)

    if to_file or path:
        path = path or DEFAULT_LOG_PATH
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setFormatter(fmt)
        root.addHandler(fh)
    return root


class Log:
    """Static helpers for recording metrics and timing code blocks."""

    @staticmethod
    def metric(tag, value, unit=""):
        """
        Record a metric (timings, counts, quality scores).
        Example: rebuild_vectors done: 0.123s
        """
        _metrics_logger.info("%s: %s%s", tag, value, unit)

    @staticmethod
    def time_block(label):
        """
        Helper for measuring execution time of a code block.
        To use:
            with Log.time_block("rebuild_vectors"):
                space.generate_vectors()
        The elapsed time is available as `.elapsed` after the block.
        """
        return _Timer(label)


class _Timer:
    """Context manager used internally to measure time for a code block."""

    def __init__(self, label):
        self.label = label
        self.start = time.perf_counter()
        self.elapsed = 0.0

    def __enter__(self):
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed = time.perf_counter() - self.start
        Log.metric(f"{self.label} done", round(self.elapsed, 3), "s")
        return False
