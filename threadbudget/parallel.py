"""Run joblib workers inside a shared native thread budget.

``n_jobs`` workers each running multi-threaded BLAS/OpenMP code would use
``n_jobs * native_threads`` cores. ``run_parallel`` splits one total budget
across the workers instead.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from typing import Any

from joblib import Parallel, delayed, parallel_config
from tqdm import tqdm

from ._threading import available_cpus, clamp_threads_hard
from .context import CoordinationContext, get_default_context

logger = logging.getLogger(__name__)

PROCESS_BACKENDS = {"loky", "multiprocessing"}

# Per-process worker state (one per loky worker)
_worker_initialized: bool = False


def resolve_n_jobs(n_jobs: int) -> int:
    """Resolve n_jobs to a concrete positive worker count.

    Negative values map to the available CPU count; zero is treated as 1.
    """
    if n_jobs < 0:
        return available_cpus()
    return max(1, n_jobs)


def split_budget(total_threads: int, n_workers: int) -> int:
    """Native threads each worker may use so the total stays within budget."""
    return max(1, total_threads // max(1, n_workers))


def _init_worker(threads: int) -> None:
    """One-time worker initialization: bound env-configured pools before heavy imports."""
    global _worker_initialized
    if _worker_initialized:
        return
    clamp_threads_hard(threads)
    _worker_initialized = True


def _budgeted_call(func: Callable[[Any], Any], item: Any, threads: int) -> Any:
    """Worker entry point for process backends."""
    _init_worker(threads)
    with get_default_context().thread_budget(threads):
        return func(item)


@contextmanager
def _tqdm_joblib(tqdm_bar):
    """Context manager to patch joblib to update a tqdm progress bar on task completion."""
    original_print_progress = Parallel.print_progress

    def _patched_print_progress(self):
        tqdm_bar.n = self.n_completed_tasks
        tqdm_bar.refresh()

    Parallel.print_progress = _patched_print_progress
    try:
        yield
    finally:
        Parallel.print_progress = original_print_progress


def run_parallel(
    func: Callable[[Any], Any],
    items: Iterable[Any],
    n_jobs: int = -1,
    total_threads: int | None = None,
    backend: str = "loky",
    progress: bool = False,
    desc: str = "Running",
    context: CoordinationContext | None = None,
) -> list[Any]:
    """
    Apply ``func`` to every item with joblib, sharing one native thread budget.

    Args:
        func: Callable taking one item (must be picklable for process backends)
        items: Work items
        n_jobs: Worker count; negative means one per available CPU
        total_threads: Native threads for all workers together
            (default: available CPUs)
        backend: joblib backend; process backends scope each worker,
            thread backends share one scope in the calling process
        progress: Show a tqdm progress bar
        desc: Progress bar label
        context: Coordination context for thread backends (default context
            if omitted)

    Returns:
        Results in item order
    """
    items = list(items)
    workers = min(resolve_n_jobs(n_jobs), max(1, len(items)))
    total = total_threads if total_threads is not None else available_cpus()
    per_worker = split_budget(total, workers)

    logger.info(
        f"Running {len(items)} task(s) on {workers} {backend} worker(s), "
        f"{per_worker} native thread(s) each"
    )

    # joblib runs n_jobs=1 in the calling process whatever the backend
    if backend in PROCESS_BACKENDS and workers > 1:
        tasks = [delayed(_budgeted_call)(func, item, per_worker) for item in items]
        with parallel_config(backend=backend, inner_max_num_threads=per_worker):
            return _run(tasks, workers, progress, desc)

    tasks = [delayed(func)(item) for item in items]
    with (context or get_default_context()).thread_budget(per_worker):
        with parallel_config(backend=backend):
            return _run(tasks, workers, progress, desc)


def _run(tasks: list, workers: int, progress: bool, desc: str) -> list[Any]:
    if not progress:
        return Parallel(n_jobs=workers)(tasks)
    with tqdm(total=len(tasks), desc=desc, unit="tasks") as pbar:
        with _tqdm_joblib(pbar):
            return Parallel(n_jobs=workers)(tasks)
