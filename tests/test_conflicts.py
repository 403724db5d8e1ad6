"""Tests for conflict detection."""

import pytest

from conftest import (
    GOMP_PATH,
    INTEL_OMP_PATH,
    LLVM_OMP_PATH,
    MKL_PATH,
    OPENBLAS_PATH,
    TBB_PATH,
    FakeThreadPool,
    make_context,
    mkl_library,
    openblas_library,
    openmp_library,
    tbb_library,
)
from threadbudget.conflicts import ConflictDetector
from threadbudget.errors import ConfigurationConflict
from threadbudget.types import ConflictRule, RuntimeMatcher, Severity, Vendor


def _snapshot(*paths):
    factories = {
        GOMP_PATH: lambda: openmp_library(FakeThreadPool()),
        LLVM_OMP_PATH: lambda: openmp_library(FakeThreadPool()),
        INTEL_OMP_PATH: lambda: openmp_library(FakeThreadPool()),
        OPENBLAS_PATH: lambda: openblas_library(FakeThreadPool()),
        MKL_PATH: lambda: mkl_library(FakeThreadPool()),
        TBB_PATH: tbb_library,
    }
    return make_context({path: factories[path]() for path in paths}).refresh()


class TestOpenMPRules:
    """Tests for the OpenMP vendor pair rules."""

    def test_intel_and_llvm_is_fatal(self) -> None:
        findings = ConflictDetector().detect(_snapshot(INTEL_OMP_PATH, LLVM_OMP_PATH))

        assert len(findings) == 1
        assert findings[0].rule_id == "openmp-intel-llvm"
        assert findings[0].severity == Severity.FATAL
        assert findings[0].involved_paths == (INTEL_OMP_PATH, LLVM_OMP_PATH)

    def test_pair_orientation_follows_rule(self) -> None:
        """The first matcher's runtime is listed first whatever the load order."""
        findings = ConflictDetector().detect(_snapshot(LLVM_OMP_PATH, INTEL_OMP_PATH))

        assert findings[0].involved_paths == (INTEL_OMP_PATH, LLVM_OMP_PATH)
        assert INTEL_OMP_PATH in findings[0].message

    def test_gnu_and_llvm_is_warning(self) -> None:
        findings = ConflictDetector().detect(_snapshot(GOMP_PATH, LLVM_OMP_PATH))

        assert [(f.rule_id, f.severity) for f in findings] == [
            ("openmp-gnu-llvm", Severity.WARNING)
        ]

    def test_three_openmp_runtimes(self) -> None:
        findings = ConflictDetector().detect(
            _snapshot(GOMP_PATH, LLVM_OMP_PATH, INTEL_OMP_PATH)
        )

        assert [f.rule_id for f in findings] == [
            "openmp-intel-llvm",
            "openmp-gnu-llvm",
            "openmp-gnu-intel",
        ]

    def test_single_runtime_has_no_findings(self) -> None:
        assert ConflictDetector().detect(_snapshot(GOMP_PATH)) == []

    def test_detection_is_deterministic(self) -> None:
        snapshot = _snapshot(GOMP_PATH, LLVM_OMP_PATH, INTEL_OMP_PATH, OPENBLAS_PATH, MKL_PATH)
        detector = ConflictDetector()

        assert detector.detect(snapshot) == detector.detect(snapshot)


class TestOtherRules:
    """Tests for BLAS and configurability rules."""

    def test_multiple_blas(self) -> None:
        findings = ConflictDetector().detect(_snapshot(OPENBLAS_PATH, MKL_PATH))

        assert len(findings) == 1
        assert findings[0].rule_id == "multiple-blas"
        assert findings[0].involved_paths == (OPENBLAS_PATH, MKL_PATH)
        assert "openblas" in findings[0].message and "mkl" in findings[0].message

    def test_not_configurable(self) -> None:
        findings = ConflictDetector().detect(_snapshot(GOMP_PATH, TBB_PATH))

        assert len(findings) == 1
        assert findings[0].rule_id == "not-configurable"
        assert findings[0].severity == Severity.INFO
        assert findings[0].involved_paths == (TBB_PATH,)

    def test_custom_rule(self) -> None:
        detector = ConflictDetector(rules=[])
        detector.add_rule(
            ConflictRule(
                rule_id="no-gnu",
                first=RuntimeMatcher(vendors=frozenset({Vendor.GNU})),
                severity=Severity.WARNING,
                message="{first_vendor} at {first}",
            )
        )

        findings = detector.detect(_snapshot(GOMP_PATH, OPENBLAS_PATH))

        assert [f.message for f in findings] == [f"gnu at {GOMP_PATH}"]

    def test_finding_to_dict(self) -> None:
        finding = ConflictDetector().detect(_snapshot(GOMP_PATH, TBB_PATH))[0]

        assert finding.to_dict() == {
            "rule_id": "not-configurable",
            "severity": "info",
            "involved_paths": [TBB_PATH],
            "message": finding.message,
        }


class TestStrict:
    """Tests for raise_for_fatal()."""

    def test_strict_raises_on_fatal(self) -> None:
        snapshot = _snapshot(INTEL_OMP_PATH, LLVM_OMP_PATH)

        with pytest.raises(ConfigurationConflict) as exc_info:
            ConflictDetector(strict=True).raise_for_fatal(snapshot)

        assert [f.rule_id for f in exc_info.value.findings] == ["openmp-intel-llvm"]

    def test_non_strict_never_raises(self) -> None:
        ConflictDetector(strict=False).raise_for_fatal(_snapshot(INTEL_OMP_PATH, LLVM_OMP_PATH))

    def test_strict_ignores_warnings(self) -> None:
        ConflictDetector(strict=True).raise_for_fatal(_snapshot(GOMP_PATH, LLVM_OMP_PATH))
