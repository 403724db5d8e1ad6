"""Pre-fork check for runtimes whose thread pools do not survive fork()."""

import logging
import os

from .constants import FORK_UNSAFE_RULE, MODES, STRICT, WARN
from .coordinator import CoordinatorState
from .errors import DuplicationBlocked
from .registry import RuntimeRegistry
from .types import Finding, Severity

logger = logging.getLogger(__name__)


class ForkGuard:
    """
    Flags (``warn``) or vetoes (``strict``) process duplication while a
    fork-unsafe runtime has more than one thread configured.

    The check holds the coordination lock so no scope can change limits
    between the check and the fork. It only reads records that already
    exist: no threads are started and nothing is loaded.
    """

    def __init__(
        self,
        registry: RuntimeRegistry,
        state: CoordinatorState,
        mode: str = WARN,
    ):
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
        self.registry = registry
        self.state = state
        self.mode = mode
        self.enabled = True
        self._installed = False
        self._forking = False
        self._findings: list[Finding] = []

    @property
    def installed(self) -> bool:
        return self._installed

    def findings(self) -> list[Finding]:
        """Warnings from the most recent check."""
        with self.state.lock:
            return list(self._findings)

    def check(self) -> list[Finding]:
        """
        Inspect the registry for unsafe pools.

        Returns:
            Findings for every fork-unsafe runtime with ``current_limit > 1``

        Raises:
            DuplicationBlocked: in strict mode, when any such runtime exists
        """
        with self.state.lock:
            findings = [
                Finding(
                    rule_id=FORK_UNSAFE_RULE,
                    severity=Severity.WARNING,
                    involved=(info,),
                    message=(
                        f"{info.vendor.value} runtime {info.path} is not fork-safe and "
                        f"has {info.current_limit} threads configured"
                    ),
                )
                for info in self.registry.current()
                if not info.fork_safe and info.current_limit > 1
            ]
            if findings and self.mode == STRICT:
                raise DuplicationBlocked(findings)
            for finding in findings:
                logger.warning(finding.message)
            self._findings = findings
            return findings

    def fork(self) -> int:
        """``os.fork()`` preceded by ``check()``, atomically under the coordination lock."""
        with self.state.lock:
            self.check()
            self._forking = True
            try:
                return os.fork()
            finally:
                self._forking = False

    def install(self) -> bool:
        """
        Run ``check()`` before every ``os.fork()`` in this process.

        ``os.register_at_fork`` hooks cannot stop a fork, so a strict veto
        raised there is only logged; use ``fork()`` to enforce it. Returns
        False where the hook is unavailable (no fork checking).
        """
        if self._installed:
            return True
        if not hasattr(os, "register_at_fork"):
            logger.info("os.register_at_fork unavailable; fork checking disabled")
            return False
        os.register_at_fork(before=self._before_fork)
        self._installed = True
        return True

    def _before_fork(self) -> None:
        if not self.enabled or self._forking:
            return
        try:
            self.check()
        except DuplicationBlocked as e:
            logger.error(f"{e} (fork was not started through ForkGuard.fork and cannot be stopped)")
