# threaded_runner.py - wrapper to run functions in threads and collect their results.

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional


def run_parallel(tasks: Iterable[Callable], max_workers: int = 4, timeout: Optional[float] = None) -> List:
    """
    Run callables (no-arg functions) in small thread pool and return results in submission order.
    Each task should be a zero-argument lambda or function. Exceptions raised by a task propagate.
    """
    tasks = list(tasks)
    if not tasks:
        return []
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tasks)))) as ex:
        futs = [ex.submit(t) for t in tasks]
        return [f.result(timeout=timeout) for f in futs]
