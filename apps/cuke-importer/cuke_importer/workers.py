"""Bounded best-effort fan-out over a thread pool."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Sequence

Task = tuple[str, Callable[[], bool]]


def run_all(tasks: Sequence[Task], max_workers: int, logger: Any, *, event: str) -> list[bool]:
    """Run every task on a pool of ``max_workers`` threads and wait for all.

    A task that raises is logged under ``event`` and reported as ``False``;
    its siblings keep running. Outcomes follow submission order.
    """

    outcomes: list[bool] = []
    if not tasks:
        return outcomes
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        futures = [(name, pool.submit(task)) for name, task in tasks]
        for name, future in futures:
            try:
                outcomes.append(bool(future.result()))
            except Exception:
                logger.exception(event, task=name)
                outcomes.append(False)
    return outcomes
