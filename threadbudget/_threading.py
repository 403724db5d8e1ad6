"""Thread-count environment variables for native runtimes.

Native libraries (OpenMP, OpenBLAS, MKL, BLIS, ...) read these variables once
when they initialise their thread pools.  They are read here once at import
to seed runtimes that cannot be queried, and written before spawning workers
so children start inside the parent's budget.
"""

import logging
import os
from collections.abc import Mapping

from .constants import VENDOR_THREAD_VARS
from .types import Vendor

logger = logging.getLogger(__name__)

# Every variable that bounds a native thread pool.
THREAD_VARS: tuple[str, ...] = (
    "OMP_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
    "MKL_NUM_THREADS",
    "BLIS_NUM_THREADS",
    "FLEXIBLAS_NUM_THREADS",
    "VECLIB_MAXIMUM_THREADS",  # macOS Accelerate
    "NUMEXPR_NUM_THREADS",
    "NUMBA_NUM_THREADS",
)

# Companion settings applied only when clamping to a single thread.
SERIAL_VARS: dict[str, str] = {
    "OMP_DYNAMIC": "FALSE",
    "KMP_BLOCKTIME": "0",
}


def parse_thread_count(value: str | None) -> int | None:
    """Parse a thread-count variable; ``OMP_NUM_THREADS`` may hold a nesting list like ``4,2``."""
    if not value:
        return None
    head = value.split(",", 1)[0].strip()
    try:
        count = int(head)
    except ValueError:
        logger.debug(f"Ignoring non-numeric thread count {value!r}")
        return None
    return count if count > 0 else None


def read_thread_env(environ: Mapping[str, str] | None = None) -> dict[Vendor, int]:
    """Map each vendor to the first usable thread count found in its variables."""
    if environ is None:
        environ = os.environ
    seeds: dict[Vendor, int] = {}
    for vendor, names in VENDOR_THREAD_VARS.items():
        for name in names:
            count = parse_thread_count(environ.get(name))
            if count is not None:
                seeds[vendor] = count
                break
    return seeds


def thread_vars(limit: int = 1) -> dict[str, str]:
    """Variables (and values) that bound every known runtime to ``limit`` threads."""
    if limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit}")
    values = {var: str(limit) for var in THREAD_VARS}
    if limit == 1:
        values.update(SERIAL_VARS)
    return values


def thread_env(limit: int, base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy of ``base`` (default: the current environment) bounded to ``limit`` threads."""
    env = dict(os.environ if base is None else base)
    env.update(thread_vars(limit))
    return env


def available_cpus() -> int:
    """CPUs this process may run on (affinity-aware where supported)."""
    try:
        return len(os.sched_getaffinity(0)) or 1
    except AttributeError:
        return os.cpu_count() or 1


def clamp_threads_hard(limit: int = 1) -> None:
    """Set thread limits using direct assignment; for worker processes.

    Overwrites any existing values so the worker starts inside its budget.
    """
    for var, value in thread_vars(limit).items():
        os.environ[var] = value


# Read once at import, before any scope can change the live runtimes.
INITIAL_ENV_LIMITS: dict[Vendor, int] = read_thread_env()
