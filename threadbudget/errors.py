"""Exceptions raised (or recorded as findings) by threadbudget."""


class ThreadBudgetError(Exception):
    """Base class for all threadbudget errors."""


class ScanUnsupported(ThreadBudgetError):
    """Loaded-module introspection is not available on this platform.

    Never raised to callers: the scanner returns an empty result carrying
    this error and the registry reports it as an ``info`` finding.
    """


class ClassificationAmbiguous(ThreadBudgetError):
    """A module matched more than one runtime signature."""

    def __init__(self, path: str, candidates: list[str]):
        self.path = path
        self.candidates = candidates
        super().__init__(f"{path} matches several signatures: {', '.join(candidates)}")


class ConfigurationConflict(ThreadBudgetError):
    """Strict mode found a fatal conflict before a scope could be entered."""

    def __init__(self, findings):
        self.findings = list(findings)
        messages = "; ".join(f.message for f in self.findings)
        super().__init__(f"Fatal runtime conflict: {messages}")


class ControlSymbolFailure(ThreadBudgetError):
    """A resolved get/set-thread-count entry point failed when called."""

    def __init__(self, path: str, cause: BaseException):
        self.path = path
        self.cause = cause
        super().__init__(f"Thread control call failed for {path}: {cause}")


class DuplicationBlocked(ThreadBudgetError):
    """Strict fork guard vetoed a process duplication."""

    def __init__(self, findings):
        self.findings = list(findings)
        paths = ", ".join(p for f in self.findings for p in f.involved_paths)
        super().__init__(f"Fork blocked: fork-unsafe runtimes have active thread pools ({paths})")


class ScopeOrderError(ThreadBudgetError, RuntimeError):
    """A scope was exited out of LIFO order or more than once."""
