"""
Cell Worker Pool
================
Output cells of matmul, convolution and element-wise polynomial evaluation
have no data dependencies on each other, so they are scheduled as
independent tasks. Ordering only matters inside a cell, and each task runs
its own chain sequentially.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from .errors import FHETensorError

logger = logging.getLogger(__name__)

Position = Tuple[int, int]
T = TypeVar('T')

DEFAULT_MAX_WORKERS = 4


def resolve_workers(max_workers: Optional[int], task_count: int) -> int:
    """Bound the pool by the task count and available CPUs"""
    if max_workers is None:
        max_workers = min(DEFAULT_MAX_WORKERS, os.cpu_count() or 1)
    return max(1, min(max_workers, task_count))


def _collect(position: Position,
             call: Callable[[], T],
             results: Dict[Position, T],
             failures: List[Tuple[Position, FHETensorError]]):
    try:
        results[position] = call()
    except FHETensorError as e:
        failures.append((position, e))
    except (ValueError, RuntimeError) as e:
        # TenSEAL/SEAL failures surface as ValueError or RuntimeError
        error = FHETensorError(f"Scheme operation failed: {e}", position)
        error.__cause__ = e
        failures.append((position, error))


def map_cells(compute: Callable[[Position], T],
              positions: List[Position],
              max_workers: Optional[int] = None) -> Dict[Position, T]:
    """
    Compute every position, then report failures.

    A failing cell does not stop the others. Once all tasks finish, the
    first failing cell in row-major order re-raises with its position.
    ValueError and RuntimeError raised by the scheme inside a cell are
    wrapped in FHETensorError, with the original as __cause__.

    Args:
        compute: Task run once per position
        positions: Output positions in row-major order
        max_workers: Pool size (None = min(4, cpu count))

    Returns:
        Mapping position -> result
    """
    workers = resolve_workers(max_workers, len(positions))
    results: Dict[Position, T] = {}
    failures: List[Tuple[Position, FHETensorError]] = []

    if workers == 1:
        for position in positions:
            _collect(position, lambda p=position: compute(p), results, failures)
    else:
        with ThreadPoolExecutor(max_workers=workers,
                                thread_name_prefix="fhe-cell") as pool:
            futures = {position: pool.submit(compute, position) for position in positions}
            for position in positions:
                _collect(position, futures[position].result, results, failures)

    if failures:
        for position, error in failures:
            logger.error("Cell %s failed: %s", position, error)
        position, error = failures[0]
        if error.position is None:
            error.at(position)
        raise error

    return results
