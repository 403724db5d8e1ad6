"""A complete coordination context: registry, detector, coordinator and fork guard."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from typing import Any

from .classifier import RuntimeClassifier
from .config import CoordinatorConfig
from .conflicts import ConflictDetector
from .coordinator import CoordinatorState, ThreadBudgetCoordinator
from .fork_guard import ForkGuard
from .registry import RuntimeRegistry
from .scanner import ModuleScanner
from .types import ApiKind, Finding, ScopeHandle, Snapshot

logger = logging.getLogger(__name__)


class CoordinationContext:
    """
    Wires the components around one ``CoordinatorState``.

    Contexts are independent of each other; the package-level functions use
    a lazily created default one.
    """

    def __init__(
        self,
        config: CoordinatorConfig | None = None,
        scanner: ModuleScanner | None = None,
        classifier: RuntimeClassifier | None = None,
        detector: ConflictDetector | None = None,
    ):
        self.config = config or CoordinatorConfig()
        self.state = CoordinatorState()
        self.registry = RuntimeRegistry(scanner=scanner, classifier=classifier, lock=self.state.lock)
        self.detector = detector or ConflictDetector(strict=self.config.strict)
        self.coordinator = ThreadBudgetCoordinator(self.registry, self.detector, self.state)
        self.fork_guard = ForkGuard(self.registry, self.state, mode=self.config.fork_mode)

    def refresh(self) -> Snapshot:
        return self.registry.refresh()

    def list_runtimes(self) -> Snapshot:
        """Snapshot of the detected runtimes (scans on first use)."""
        self.registry.ensure_refreshed()
        return self.registry.current()

    def check_conflicts(self) -> list[Finding]:
        """Detection findings, rule findings, then control failures, in that order."""
        snapshot = self.list_runtimes()
        return [
            *snapshot.findings,
            *self.detector.detect(snapshot),
            *self.coordinator.findings(),
        ]

    def enter_scope(
        self, requested_limit: int, overrides: Mapping[Any, int] | None = None
    ) -> ScopeHandle:
        return self.coordinator.enter_scope(requested_limit, overrides)

    def exit_scope(self, handle: ScopeHandle) -> None:
        self.coordinator.exit_scope(handle)

    def thread_budget(
        self, limit: int | None = None, overrides: Mapping[Any, int] | None = None
    ):
        """Scope context manager; ``limit`` falls back to ``config.default_limit``."""
        if limit is None:
            limit = self.config.default_limit
        if limit is None:
            raise ValueError("No thread limit given and no default_limit configured")
        return self.coordinator.limit(limit, overrides)

    @contextmanager
    def sequential_blas_under_openmp(self):
        """Run BLAS single-threaded, e.g. inside an OpenMP parallel region.

        Every other runtime keeps its current limit. OpenBLAS built on the
        OpenMP threading layer already serialises itself under an active
        parallel region, so it is left alone too.
        """
        overrides = {
            info: (
                1
                if info.api_kind == ApiKind.LINEAR_ALGEBRA and info.threading_layer != "openmp"
                else info.current_limit
            )
            for info in self.list_runtimes()
            if info.controllable and not info.degraded
        }
        with self.coordinator.limit(1, overrides) as handle:
            yield handle


_default_context: CoordinationContext | None = None
_default_lock = threading.Lock()


def get_default_context() -> CoordinationContext:
    """Process-wide default context, configured from the environment on first use."""
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = CoordinationContext(config=CoordinatorConfig.from_env())
        return _default_context


def set_default_context(context: CoordinationContext | None) -> None:
    """Replace (or with ``None`` reset) the default context."""
    global _default_context
    with _default_lock:
        _default_context = context
