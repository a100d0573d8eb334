"""
Optimal bipartite assignment (Kuhn-Munkres / Hungarian algorithm).

O(n^2 m) shortest-augmenting-path formulation with row/column
potentials. Integer cost matrices are solved exactly, which the matcher
relies on for lexicographic tie-breaking. The solve checks a cancel
token and an optional deadline between augmentation steps and raises
ComputationTimeout without returning a partial assignment.
"""

from typing import Any, Callable, List, Optional, Sequence, Tuple, TypeVar
import concurrent.futures
import logging
import threading
import time

import numpy as np

from planrev_core.errors import ComputationTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

CancelToken = threading.Event


def _check(cancel: Optional[CancelToken], deadline: Optional[float]) -> None:
    if cancel is not None and cancel.is_set():
        raise ComputationTimeout("Assignment solve cancelled")
    if deadline is not None and time.monotonic() > deadline:
        raise ComputationTimeout("Assignment solve exceeded its time bound")


def solve_assignment(
    cost: Any,
    cancel: Optional[CancelToken] = None,
    deadline: Optional[float] = None,
) -> List[Tuple[int, int]]:
    """
    Minimum-cost assignment of rows to columns.

    Every row of the smaller side is assigned exactly once.

    Args:
        cost: 2-D array-like (n x m)
        cancel: Event checked during the solve
        deadline: time.monotonic() value after which the solve aborts

    Returns:
        (row, col) pairs sorted by row

    Raises:
        ComputationTimeout: on cancellation or deadline
    """
    matrix = np.asarray(cost)
    if matrix.ndim != 2:
        raise ValueError(f"cost matrix must be 2-D, got shape {matrix.shape}")
    n, m = matrix.shape
    if n == 0 or m == 0:
        return []

    transposed = n > m
    if transposed:
        matrix = matrix.T
        n, m = m, n

    # Python numbers keep integer matrices exact
    a = matrix.tolist()
    inf = float("inf")
    u = [0] * (n + 1)
    v = [0] * (m + 1)
    p = [0] * (m + 1)       # p[j] = row assigned to column j (1-based, 0 = free)
    way = [0] * (m + 1)

    for i in range(1, n + 1):
        _check(cancel, deadline)
        p[0] = i
        j0 = 0
        minv = [inf] * (m + 1)
        used = [False] * (m + 1)
        while True:
            used[j0] = True
            i0 = p[j0]
            row = a[i0 - 1]
            delta = inf
            j1 = 0
            for j in range(1, m + 1):
                if used[j]:
                    continue
                cur = row[j - 1] - u[i0] - v[j]
                if cur < minv[j]:
                    minv[j] = cur
                    way[j] = j0
                if minv[j] < delta:
                    delta = minv[j]
                    j1 = j
            for j in range(m + 1):
                if used[j]:
                    u[p[j]] += delta
                    v[j] -= delta
                else:
                    minv[j] -= delta
            j0 = j1
            if p[j0] == 0:
                break
            _check(cancel, deadline)
        # augment along the alternating path
        while True:
            j1 = way[j0]
            p[j0] = p[j1]
            j0 = j1
            if j0 == 0:
                break

    pairs = [(p[j] - 1, j - 1) for j in range(1, m + 1) if p[j] != 0]
    if transposed:
        pairs = [(c, r) for r, c in pairs]
    return sorted(pairs)


def maximize_assignment(
    weights: Any,
    cancel: Optional[CancelToken] = None,
    deadline: Optional[float] = None,
) -> List[Tuple[int, int]]:
    """Maximum-weight assignment (minimum cost on the negated matrix)."""
    return solve_assignment(-np.asarray(weights), cancel, deadline)


def total_weight(weights: Any, pairs: Sequence[Tuple[int, int]]) -> float:
    matrix = np.asarray(weights)
    return float(sum(matrix[r, c] for r, c in pairs))


def run_bounded(
    func: Callable[[CancelToken], T],
    timeout: Optional[float] = None,
    cancel: Optional[CancelToken] = None,
) -> T:
    """
    Run func(cancel) in a worker thread bounded by timeout.

    On timeout the cancel token is set so the worker stops at its next
    check, and ComputationTimeout is raised. Nothing partial is returned.
    """
    token = cancel if cancel is not None else threading.Event()
    if timeout is None:
        return func(token)

    with concurrent.futures.ThreadPoolExecutor(max_workers=1) as executor:
        future = executor.submit(func, token)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            token.set()
            logger.warning(f"Assignment solve timed out after {timeout:.2f}s")
            raise ComputationTimeout(f"Assignment solve exceeded {timeout:.2f}s") from None
