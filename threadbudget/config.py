"""Runtime configuration for a coordination context."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from ._threading import parse_thread_count
from .constants import MODES, STRICT, WARN

logger = logging.getLogger(__name__)

# Environment variables read by CoordinatorConfig.from_env()
ENV_STRICT = "THREADBUDGET_STRICT"
ENV_FORK_MODE = "THREADBUDGET_FORK_MODE"
ENV_DEFAULT_LIMIT = "THREADBUDGET_DEFAULT_LIMIT"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class CoordinatorConfig:
    """
    Policy knobs for a coordination context.

    ``default_limit`` has no built-in value: whether a process should be
    serial or parallel by default is left to whoever configures it.
    """

    strict: bool = False  # raise ConfigurationConflict on fatal findings
    fork_mode: str = WARN  # "warn" or "strict"
    default_limit: int | None = None  # used by thread_budget() without a limit

    def __post_init__(self):
        if self.fork_mode not in MODES:
            raise ValueError(f"fork_mode must be one of {MODES}, got {self.fork_mode!r}")
        if self.default_limit is not None and self.default_limit < 1:
            raise ValueError(f"default_limit must be positive, got {self.default_limit}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CoordinatorConfig":
        if environ is None:
            environ = os.environ

        strict = environ.get(ENV_STRICT, "").strip().lower() in _TRUE_VALUES

        fork_mode = environ.get(ENV_FORK_MODE, "").strip().lower() or (STRICT if strict else WARN)
        if fork_mode not in MODES:
            logger.warning(f"Ignoring {ENV_FORK_MODE}={fork_mode!r}; expected one of {MODES}")
            fork_mode = WARN

        raw_limit = environ.get(ENV_DEFAULT_LIMIT)
        default_limit = parse_thread_count(raw_limit)
        if raw_limit and default_limit is None:
            logger.warning(f"Ignoring {ENV_DEFAULT_LIMIT}={raw_limit!r}; expected a positive integer")

        return cls(strict=strict, fork_mode=fork_mode, default_limit=default_limit)
