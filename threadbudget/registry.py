"""Holds the latest classification of loaded runtimes."""

import logging
import threading
from contextlib import AbstractContextManager
from dataclasses import dataclass

from .classifier import RuntimeClassifier
from .constants import SCAN_UNSUPPORTED_RULE
from .scanner import ModuleScanner
from .types import Finding, RuntimeRecord, Severity, Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Publication:
    records: tuple[RuntimeRecord, ...] = ()
    findings: tuple[Finding, ...] = ()
    generation: int = 0


class RuntimeRegistry:
    """
    Published set of classified runtimes.

    ``refresh()`` rebuilds the set and swaps it in with a single attribute
    assignment, so readers never see a partial result and never wait for a
    refresh in progress. Refreshes run under ``lock``; a coordination
    context passes its coordination lock so no scope changes limits while
    records are being rebuilt. Nothing refreshes implicitly: call ``refresh()``
    after loading or unloading native libraries.
    """

    def __init__(
        self,
        scanner: ModuleScanner | None = None,
        classifier: RuntimeClassifier | None = None,
        lock: AbstractContextManager | None = None,
    ):
        self.scanner = scanner or ModuleScanner()
        self.classifier = classifier or RuntimeClassifier()
        self._lock = lock or threading.RLock()
        self._published = _Publication()
        self._refreshed = False

    @property
    def refreshed(self) -> bool:
        """Whether ``refresh()`` has run at least once."""
        return self._refreshed

    def refresh(self) -> Snapshot:
        """Re-scan and re-classify the process, then publish the result."""
        with self._lock:
            result = self.scanner.scan()
            findings: list[Finding] = []
            if result.error is not None:
                findings.append(
                    Finding(
                        rule_id=SCAN_UNSUPPORTED_RULE,
                        severity=Severity.INFO,
                        involved=(),
                        message=f"Runtime detection disabled: {result.error}",
                    )
                )

            records, classify_findings = self.classifier.classify(result)
            findings.extend(classify_findings)

            self._published = _Publication(
                records=tuple(records),
                findings=tuple(findings),
                generation=self._published.generation + 1,
            )
            self._refreshed = True

        logger.debug(
            f"Registry refreshed: {len(records)} runtime(s) "
            f"from {len(result)} module(s)"
        )
        return self.current()

    def ensure_refreshed(self) -> None:
        """Populate the registry on first use."""
        if not self._refreshed:
            self.refresh()

    def records(self) -> tuple[RuntimeRecord, ...]:
        """Live records of the current publication, in discovery order."""
        return self._published.records

    def lookup(self, identity: tuple[str, int]) -> RuntimeRecord | None:
        for record in self._published.records:
            if record.identity == identity:
                return record
        return None

    def current(self) -> Snapshot:
        """Immutable copy of the latest publication."""
        published = self._published
        return Snapshot(
            runtimes=tuple(record.info() for record in published.records),
            findings=published.findings,
            generation=published.generation,
        )
