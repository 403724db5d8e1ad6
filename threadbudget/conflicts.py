"""Compatibility rules evaluated over a registry snapshot."""

import logging
from collections.abc import Iterable
from itertools import combinations

from .constants import CONFLICT_RULES
from .errors import ConfigurationConflict
from .types import ConflictRule, Finding, RuntimeInfo, Severity, Snapshot

logger = logging.getLogger(__name__)


class ConflictDetector:
    """
    Evaluate conflict rules against the runtimes in a snapshot.

    Rules are visited in table order; within a rule, records (or unordered
    record pairs) are visited in discovery order, so identical snapshots
    always produce identical findings.

    With ``strict=True``, ``raise_for_fatal`` turns any fatal finding into a
    ``ConfigurationConflict``; the coordinator calls it before entering a
    scope.
    """

    def __init__(self, rules: Iterable[ConflictRule] = CONFLICT_RULES, strict: bool = False):
        self.rules: list[ConflictRule] = list(rules)
        self.strict = strict

    def add_rule(self, rule: ConflictRule) -> None:
        self.rules.append(rule)

    def detect(self, snapshot: Snapshot) -> list[Finding]:
        findings: list[Finding] = []
        runtimes = snapshot.runtimes

        for rule in self.rules:
            if rule.second is None:
                for info in runtimes:
                    if rule.first.matches(info):
                        findings.append(self._finding(rule, (info,)))
                continue

            for a, b in combinations(runtimes, 2):
                involved = self._match_pair(rule, a, b)
                if involved is not None:
                    findings.append(self._finding(rule, involved))

        return findings

    def raise_for_fatal(self, snapshot: Snapshot) -> None:
        """Raise ``ConfigurationConflict`` if strict and any fatal finding exists."""
        if not self.strict:
            return
        fatal = [f for f in self.detect(snapshot) if f.severity == Severity.FATAL]
        if fatal:
            raise ConfigurationConflict(fatal)

    def _match_pair(
        self, rule: ConflictRule, a: RuntimeInfo, b: RuntimeInfo
    ) -> tuple[RuntimeInfo, RuntimeInfo] | None:
        if rule.first.matches(a) and rule.second.matches(b):
            return (a, b)
        if rule.first.matches(b) and rule.second.matches(a):
            return (b, a)
        return None

    def _finding(self, rule: ConflictRule, involved: tuple[RuntimeInfo, ...]) -> Finding:
        finding = Finding(
            rule_id=rule.rule_id,
            severity=rule.severity,
            involved=involved,
            message=rule.render(involved),
        )
        if rule.severity == Severity.FATAL:
            logger.warning(finding.message)
        return finding
