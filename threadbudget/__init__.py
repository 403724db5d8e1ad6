"""Coordinate thread budgets across the native runtimes loaded in a process."""

from collections.abc import Mapping
from typing import Any

from threadbudget.config import CoordinatorConfig
from threadbudget.context import CoordinationContext, get_default_context, set_default_context
from threadbudget.errors import (
    ClassificationAmbiguous,
    ConfigurationConflict,
    ControlSymbolFailure,
    DuplicationBlocked,
    ScanUnsupported,
    ScopeOrderError,
    ThreadBudgetError,
)
from threadbudget.types import ApiKind, Finding, RuntimeInfo, ScopeHandle, Severity, Snapshot, Vendor


def refresh() -> Snapshot:
    """Re-scan the process; call after loading or unloading native libraries."""
    return get_default_context().refresh()


def list_runtimes() -> Snapshot:
    return get_default_context().list_runtimes()


def check_conflicts() -> list[Finding]:
    return get_default_context().check_conflicts()


def enter_scope(requested_limit: int, overrides: Mapping[Any, int] | None = None) -> ScopeHandle:
    return get_default_context().enter_scope(requested_limit, overrides)


def exit_scope(handle: ScopeHandle) -> None:
    get_default_context().exit_scope(handle)


def thread_budget(limit: int | None = None, overrides: Mapping[Any, int] | None = None):
    """``with thread_budget(2): ...`` limits every controllable runtime to 2 threads."""
    return get_default_context().thread_budget(limit, overrides)


__all__ = [
    "ApiKind",
    "ClassificationAmbiguous",
    "ConfigurationConflict",
    "ControlSymbolFailure",
    "CoordinationContext",
    "CoordinatorConfig",
    "DuplicationBlocked",
    "Finding",
    "RuntimeInfo",
    "ScanUnsupported",
    "ScopeHandle",
    "ScopeOrderError",
    "Severity",
    "Snapshot",
    "ThreadBudgetError",
    "Vendor",
    "check_conflicts",
    "enter_scope",
    "exit_scope",
    "get_default_context",
    "list_runtimes",
    "refresh",
    "set_default_context",
    "thread_budget",
]
