"""
Worker-pool runner for independent analysis tasks.

Tasks are fanned out to a process or thread pool and collected as they
complete. Results are returned in task order, so completion order never
changes the output.
"""

import logging
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from typing import Callable, List, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ErrorHandler = Callable[[T, BaseException], R]

EXECUTORS = {
    "process": ProcessPoolExecutor,
    "thread": ThreadPoolExecutor,
}


def run_tasks(
    func: Callable[[T], R],
    tasks: Sequence[T],
    max_workers: int = 1,
    executor: str = "process",
    on_error: ErrorHandler = None,
) -> List[R]:
    """Apply ``func`` to every task, in parallel when ``max_workers > 1``.

    ``func`` and the tasks must be picklable for the process executor, so
    ``func`` should be a module-level function.

    Args:
        func: Function applied to each task.
        tasks: Task payloads.
        max_workers: Pool size; 1 runs serially in the calling process.
        executor: "process" or "thread".
        on_error: Converts an exception raised by one task into that task's
            result. Without it the first exception propagates.

    Returns:
        List of results aligned with ``tasks``.

    Raises:
        ValueError: If ``executor`` is unknown.
    """
    if executor not in EXECUTORS:
        raise ValueError(f"Unknown executor '{executor}'. Available: {list(EXECUTORS)}")

    results: List[R] = [None] * len(tasks)
    if max_workers <= 1 or len(tasks) <= 1:
        for i, task in enumerate(tasks):
            results[i] = _run_one(func, task, on_error)
        return results

    logger.info(f"Running {len(tasks)} tasks on {max_workers} {executor} workers")
    with EXECUTORS[executor](max_workers=max_workers) as pool:
        futures = {pool.submit(func, task): i for i, task in enumerate(tasks)}
        completed = 0
        for future in as_completed(futures):
            i = futures[future]
            try:
                results[i] = future.result()
            except Exception as exc:
                if on_error is None:
                    raise
                logger.error(f"Task {tasks[i]!r} generated an exception: {exc}")
                results[i] = on_error(tasks[i], exc)
            completed += 1
            logger.debug(f"Completed {completed}/{len(tasks)} tasks")

    return results


def _run_one(func: Callable[[T], R], task: T, on_error: ErrorHandler) -> R:
    try:
        return func(task)
    except Exception as exc:
        if on_error is None:
            raise
        logger.error(f"Task {task!r} generated an exception: {exc}")
        return on_error(task, exc)
