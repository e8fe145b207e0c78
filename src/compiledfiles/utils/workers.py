"""
Optional thread fan-out for per-unit parsing.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional, Sequence, TypeVar

T = TypeVar('T')
R = TypeVar('R')


def run_indexed(func: Callable[[T], R], items: Sequence[T], workers: Optional[int] = None) -> list[R]:
    """Apply func to every item, optionally on a thread pool.

    Results are returned in the order of items regardless of which worker
    finishes first, so callers can merge deterministically.

    Args:
        func: Function applied to each item; must not touch shared mutable state
        items: Work items in discovery order
        workers: Thread count; None or 1 runs inline

    Returns:
        List of results, one per item, in item order
    """
    if not workers or workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="compiledfiles") as executor:
        return list(executor.map(func, items))
