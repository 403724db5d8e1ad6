"""Scoped, nesting-aware thread limits across every controllable runtime."""

import itertools
import logging
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from typing import Any

from .conflicts import ConflictDetector
from .constants import CONTROL_FAILURE_RULE
from .errors import ControlSymbolFailure, ScopeOrderError
from .registry import RuntimeRegistry
from .types import (
    Finding,
    RuntimeInfo,
    RuntimeRecord,
    ScopeEntry,
    ScopeHandle,
    Severity,
    ThreadBudgetScope,
)

logger = logging.getLogger(__name__)


def check_limit(value: Any, name: str = "limit") -> int:
    """Validate a thread count: a positive ``int`` (``bool`` rejected)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be a positive integer, got {value!r}")
    if value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value


class CoordinatorState:
    """
    Mutable coordination state: the scope stack and its lock.

    One instance is shared by everything that must agree on the current
    limits (the coordinator and the fork guard). Independent instances do
    not interact, which is what tests use.
    """

    def __init__(self):
        self.lock = threading.RLock()
        self.frames: list[ThreadBudgetScope] = []
        self.findings: list[Finding] = []
        self._scope_ids = itertools.count(1)

    @property
    def depth(self) -> int:
        """Scopes entered and not yet exited; deferred frames do not count."""
        return sum(1 for frame in self.frames if not frame.exited)

    def next_scope_id(self) -> int:
        return next(self._scope_ids)


class ThreadBudgetCoordinator:
    """
    Bound native thread usage with nested scopes, restored innermost first.

    ``enter_scope(n)`` limits every controllable runtime to
    ``min(n, native_max)``; inside an enclosing scope the limit can only get
    narrower unless ``overrides`` names the runtime explicitly.
    ``exit_scope`` restores the values captured on entry. Read-only runtimes
    are never touched.
    """

    def __init__(
        self,
        registry: RuntimeRegistry,
        detector: ConflictDetector | None = None,
        state: CoordinatorState | None = None,
    ):
        self.registry = registry
        self.detector = detector or ConflictDetector()
        self.state = state or CoordinatorState()

    @property
    def depth(self) -> int:
        """Current nesting depth (number of active scopes)."""
        return self.state.depth

    def enter_scope(
        self,
        requested_limit: int,
        overrides: Mapping[Any, int] | None = None,
    ) -> ScopeHandle:
        """
        Push a scope limiting every controllable runtime.

        Args:
            requested_limit: Thread budget for this scope
            overrides: Explicit per-runtime limits keyed by ``RuntimeInfo``,
                ``RuntimeRecord``, ``(path, base_address)`` or path; these
                bypass the enclosing scope's bound

        Raises:
            ConfigurationConflict: strict detector and a fatal finding exists;
                nothing has been changed when this is raised
        """
        requested_limit = check_limit(requested_limit, "requested_limit")

        with self.state.lock:
            self.registry.ensure_refreshed()
            records = self.registry.records()
            override_limits = self._resolve_overrides(overrides or {}, records)
            self.detector.raise_for_fatal(self.registry.current())

            frame = ThreadBudgetScope(
                scope_id=self.state.next_scope_id(),
                depth=len(self.state.frames),
                requested_limit=requested_limit,
                thread_id=threading.get_ident(),
            )

            for record in records:
                if not record.controllable or record.degraded:
                    continue

                overridden = record.identity in override_limits
                if overridden:
                    target = effective = override_limits[record.identity]
                else:
                    target = min(requested_limit, record.native_max)
                    enclosing = self._enclosing_limit(record.identity)
                    effective = target if enclosing is None else min(target, enclosing)

                previous = record.current_limit
                if not self._apply(record, effective):
                    continue
                frame.entries.append(
                    ScopeEntry(
                        record=record,
                        previous_limit=previous,
                        target_limit=target,
                        effective_limit=effective,
                        overridden=overridden,
                    )
                )

            self.state.frames.append(frame)

        logger.debug(
            f"Entered scope {frame.scope_id} at depth {frame.depth}: "
            f"limit {requested_limit}, {len(frame.entries)} runtime(s) limited"
        )
        return self._handle(frame)

    def exit_scope(self, handle: ScopeHandle) -> None:
        """
        Exit a scope, restoring every runtime it changed.

        Limits are always restored innermost first. A scope exited while
        inner scopes are still open (typically from another thread) is
        marked exited and released as soon as those inner scopes exit.

        Raises:
            ScopeOrderError: ``handle`` is not the innermost active scope
                (it is still released later), was already exited, or is
                not active at all
        """
        self._exit(handle, strict=True)

    @contextmanager
    def limit(self, limit: int, overrides: Mapping[Any, int] | None = None):
        """Context manager (or decorator) form of ``enter_scope``/``exit_scope``.

        Blocks left out of order by different threads do not raise; each
        scope is released once every scope entered after it has exited.
        """
        handle = self.enter_scope(limit, overrides)
        try:
            yield handle
        finally:
            self._exit(handle, strict=False)

    def active_scopes(self) -> tuple[ScopeHandle, ...]:
        """Handles of all active scopes, outermost first."""
        with self.state.lock:
            return tuple(self._handle(frame) for frame in self.state.frames if not frame.exited)

    def findings(self) -> list[Finding]:
        """Control failures recorded so far."""
        with self.state.lock:
            return list(self.state.findings)

    def _handle(self, frame: ThreadBudgetScope) -> ScopeHandle:
        return ScopeHandle(
            scope_id=frame.scope_id,
            depth=frame.depth,
            requested_limit=frame.requested_limit,
            limits=tuple((e.record.path, e.effective_limit) for e in frame.entries),
            owner=self.state,
        )

    def _exit(self, handle: ScopeHandle, strict: bool) -> None:
        with self.state.lock:
            if handle.owner is not self.state:
                raise ScopeOrderError(f"Scope {handle.scope_id} belongs to another coordination context")

            frames = self.state.frames
            frame = next((f for f in frames if f.scope_id == handle.scope_id), None)
            if frame is None:
                raise ScopeOrderError(f"Scope {handle.scope_id} is not active")
            if frame.exited:
                raise ScopeOrderError(f"Scope {handle.scope_id} was already exited")

            frame.exited = True
            if frames[-1] is not frame:
                inner = frames[-1].scope_id
                logger.debug(f"Scope {frame.scope_id} deferred until scope {inner} exits")
                if strict:
                    raise ScopeOrderError(
                        f"Scope {handle.scope_id} exited before inner scope {inner}; "
                        f"it is released when the inner scopes exit"
                    )
                return
            self._unwind()

    def _unwind(self) -> None:
        """Pop exited frames off the top of the stack, restoring each one."""
        frames = self.state.frames
        while frames and frames[-1].exited:
            frame = frames[-1]
            try:
                for entry in reversed(frame.entries):
                    self._restore(entry)
            finally:
                frames.pop()
            logger.debug(f"Exited scope {frame.scope_id} at depth {frame.depth}")

    def _enclosing_limit(self, identity: tuple[str, int]) -> int | None:
        for frame in reversed(self.state.frames):
            limit = frame.effective_limit_for(identity)
            if limit is not None:
                return limit
        return None

    def _resolve_overrides(
        self,
        overrides: Mapping[Any, int],
        records: tuple[RuntimeRecord, ...],
    ) -> dict[tuple[str, int], int]:
        resolved: dict[tuple[str, int], int] = {}
        for key, value in overrides.items():
            value = check_limit(value, f"override for {key!r}")
            if isinstance(key, (RuntimeInfo, RuntimeRecord)):
                matches = [r for r in records if r.identity == key.identity]
            elif isinstance(key, tuple):
                matches = [r for r in records if r.identity == key]
            elif isinstance(key, str):
                matches = [r for r in records if r.path == key]
            else:
                raise TypeError(f"Unsupported override key {key!r}")

            if not matches:
                logger.warning(f"Override for {key!r} matches no loaded runtime")
            for record in matches:
                if not record.controllable or record.degraded:
                    state = "degraded" if record.degraded else "read-only"
                    logger.warning(f"Override for {key!r} ignored: {record.path} is {state}")
                    continue
                resolved[record.identity] = value
        return resolved

    def _apply(self, record: RuntimeRecord, limit: int) -> bool:
        """Set a record's thread count; on failure degrade it and return False."""
        try:
            record.control.set_threads(limit)
        except Exception as e:
            self._degrade(record, e)
            return False
        record.current_limit = limit
        return True

    def _restore(self, entry: ScopeEntry) -> None:
        record = entry.record
        if record.degraded:
            return
        if not self._apply(record, entry.previous_limit):
            return
        # A refresh during the scope publishes new record objects for the same runtime
        live = self.registry.lookup(record.identity)
        if live is not None and live is not record and not live.degraded:
            live.current_limit = entry.previous_limit

    def _degrade(self, record: RuntimeRecord, cause: Exception) -> None:
        record.degraded = True
        failure = ControlSymbolFailure(record.path, cause)
        self.state.findings.append(
            Finding(
                rule_id=CONTROL_FAILURE_RULE,
                severity=Severity.WARNING,
                involved=(record.info(),),
                message=str(failure),
            )
        )
        logger.warning(f"{failure}; runtime skipped from now on")
