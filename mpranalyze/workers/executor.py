"""
Parallel executor for per-enhancer model fits.

Maps a task function over enhancers with a thread pool. Every task owns
one slot of a pre-allocated, position-indexed result list, so workers
never contend on output. Collecting all futures is the single barrier
before downstream testing.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed, Future
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Type

from ..config import settings

logger = logging.getLogger(__name__)


def resolve_n_jobs(n_jobs: Optional[int] = None) -> int:
    """Number of workers: explicit value, else ``settings.n_jobs``."""
    n_jobs = settings.n_jobs if n_jobs is None else int(n_jobs)
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be >= 1, got {n_jobs}")
    return n_jobs


def run_parallel(
    func: Callable[[Any], Any],
    items: Sequence[Any],
    n_jobs: Optional[int] = None,
    isolate: Tuple[Type[BaseException], ...] = (),
    on_error: Optional[Callable[[Any, BaseException], Any]] = None,
    label: str = "tasks",
) -> List[Any]:
    """
    Apply ``func`` to every item, preserving input order.

    Args:
        func: Task function, called once per item
        items: Task inputs
        n_jobs: Worker count (1 runs serially in the calling thread)
        isolate: Exception types that are converted per item by ``on_error``
            instead of propagating
        on_error: Called as ``on_error(item, exc)``; its return value fills
            the item's result slot
        label: Name used in log messages

    Returns:
        List of results, one per item, in input order
    """
    n_jobs = resolve_n_jobs(n_jobs)
    results: List[Any] = [None] * len(items)
    n_isolated = 0

    def _run(index: int):
        item = items[index]
        try:
            return func(item), False
        except isolate as e:
            if on_error is None:
                raise
            logger.debug(f"Task {index} ({label}) failed: {e}")
            return on_error(item, e), True

    logger.info(f"Running {len(items)} {label} with {n_jobs} worker(s)")

    if n_jobs == 1 or len(items) <= 1:
        for i in range(len(items)):
            results[i], failed = _run(i)
            n_isolated += failed
    else:
        with ThreadPoolExecutor(max_workers=n_jobs) as executor:
            futures: Dict[Future, int] = {executor.submit(_run, i): i for i in range(len(items))}
            for future in as_completed(futures):
                results[futures[future]], failed = future.result()
                n_isolated += failed

    if n_isolated:
        logger.warning(f"{n_isolated} of {len(items)} {label} failed")

    return results
