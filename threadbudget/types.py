"""Type definitions for threadbudget."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, NamedTuple

from .errors import ScanUnsupported


class Vendor(str, Enum):
    """Build or implementation behind a detected runtime."""

    GNU = "gnu"  # libgomp
    LLVM = "llvm"  # libomp
    INTEL = "intel"  # libiomp
    MSVC = "msvc"  # vcomp
    OPENBLAS = "openblas"
    MKL = "mkl"
    BLIS = "blis"
    FLEXIBLAS = "flexiblas"
    REFERENCE = "reference"  # netlib BLAS, no threading
    TBB = "tbb"
    UNKNOWN = "unknown"


class ApiKind(str, Enum):
    """Category of concurrency API a runtime implements."""

    PARALLEL_LOOP = "parallel_loop"
    LINEAR_ALGEBRA = "linear_algebra"
    OTHER = "other"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    FATAL = "fatal"


class LoadedModule(NamedTuple):
    """A native thread-pool library mapped into the process, with its threadpoolctl controller."""

    path: str
    base_address: int
    controller: Any = None


@dataclass
class ScanResult:
    """Ordered modules found by a scan, plus the reason if scanning was unavailable."""

    modules: tuple[LoadedModule, ...] = ()
    error: ScanUnsupported | None = None

    def __iter__(self) -> Iterator[LoadedModule]:
        return iter(self.modules)

    def __len__(self) -> int:
        return len(self.modules)

    @property
    def supported(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RuntimeSignature:
    """
    Static description of one known (vendor, api_kind) runtime.

    A module matches when its filename starts with one of ``prefixes`` and at
    least one of ``check_symbols`` resolves. ``getters`` and ``setters`` are
    paired by position so symbol affixes stay consistent (e.g. OpenBLAS
    ``64_`` builds). Fallback signatures only apply when no specific
    signature matched the same module.
    """

    vendor: Vendor
    api_kind: ApiKind
    prefixes: tuple[str, ...]
    check_symbols: tuple[str, ...]
    getters: tuple[str, ...] = ()
    setters: tuple[str, ...] = ()
    max_symbol: str | None = None
    fallback: bool = False

    @property
    def name(self) -> str:
        return f"{self.vendor.value}/{self.api_kind.value}"


@dataclass(frozen=True)
class Controllable:
    """Resolved thread-count entry points of a runtime."""

    get_threads: Callable[[], int] = field(repr=False)
    set_threads: Callable[[int], Any] = field(repr=False)
    getter_name: str = ""
    setter_name: str = ""


@dataclass(frozen=True)
class ReadOnly:
    """Runtime was detected but exposes no usable control symbols."""

    reason: str = "no thread control symbols"


@dataclass(eq=False)
class RuntimeRecord:
    """
    One classified native concurrency backend.

    Everything except ``current_limit`` and ``degraded`` is fixed at
    classification time; those two are written only by the coordinator
    while it holds the coordination lock.
    """

    path: str
    base_address: int
    vendor: Vendor
    api_kind: ApiKind
    fork_safe: bool
    control: Controllable | ReadOnly
    native_max: int
    current_limit: int
    prefix: str = ""
    version: str | None = None
    threading_layer: str | None = None
    degraded: bool = False

    @property
    def identity(self) -> tuple[str, int]:
        return (self.path, self.base_address)

    @property
    def controllable(self) -> bool:
        return isinstance(self.control, Controllable)

    def info(self) -> RuntimeInfo:
        """Immutable view of this record's current state."""
        return RuntimeInfo(
            path=self.path,
            base_address=self.base_address,
            vendor=self.vendor,
            api_kind=self.api_kind,
            fork_safe=self.fork_safe,
            controllable=self.controllable,
            current_limit=self.current_limit,
            native_max=self.native_max,
            prefix=self.prefix,
            version=self.version,
            threading_layer=self.threading_layer,
            degraded=self.degraded,
        )


@dataclass(frozen=True)
class RuntimeInfo:
    """Read-only copy of a RuntimeRecord, as handed out in snapshots."""

    path: str
    base_address: int
    vendor: Vendor
    api_kind: ApiKind
    fork_safe: bool
    controllable: bool
    current_limit: int
    native_max: int
    prefix: str = ""
    version: str | None = None
    threading_layer: str | None = None
    degraded: bool = False

    @property
    def identity(self) -> tuple[str, int]:
        return (self.path, self.base_address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "vendor": self.vendor.value,
            "api_kind": self.api_kind.value,
            "fork_safe": self.fork_safe,
            "controllable": self.controllable,
            "current_limit": self.current_limit,
            "native_max": self.native_max,
        }


@dataclass(frozen=True)
class Finding:
    """A diagnostic produced by detection, conflict rules, the coordinator or the fork guard."""

    rule_id: str
    severity: Severity
    involved: tuple[RuntimeInfo, ...]
    message: str

    @property
    def involved_paths(self) -> tuple[str, ...]:
        return tuple(info.path for info in self.involved)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "involved_paths": list(self.involved_paths),
            "message": self.message,
        }


@dataclass(frozen=True)
class RuntimeMatcher:
    """Predicate over a RuntimeInfo; ``None`` fields match anything."""

    vendors: frozenset[Vendor] | None = None
    api_kinds: frozenset[ApiKind] | None = None
    controllable: bool | None = None
    exclude_vendors: frozenset[Vendor] = frozenset()

    def matches(self, info: RuntimeInfo) -> bool:
        if self.vendors is not None and info.vendor not in self.vendors:
            return False
        if self.api_kinds is not None and info.api_kind not in self.api_kinds:
            return False
        if self.controllable is not None and info.controllable != self.controllable:
            return False
        return info.vendor not in self.exclude_vendors


@dataclass(frozen=True)
class ConflictRule:
    """
    A compatibility rule.

    With ``second`` set the rule fires once per unordered pair of records
    matching ``first`` and ``second`` (in either orientation); without it
    the rule fires once per record matching ``first``. The message template
    may use ``{first}``, ``{second}``, ``{first_vendor}`` and
    ``{second_vendor}``.
    """

    rule_id: str
    first: RuntimeMatcher
    severity: Severity
    message: str
    second: RuntimeMatcher | None = None

    def render(self, involved: tuple[RuntimeInfo, ...]) -> str:
        first = involved[0]
        second = involved[1] if len(involved) > 1 else first
        return self.message.format(
            first=first.path,
            second=second.path,
            first_vendor=first.vendor.value,
            second_vendor=second.vendor.value,
        )


@dataclass(frozen=True)
class Snapshot:
    """Immutable copy of the registry contents at one point in time."""

    runtimes: tuple[RuntimeInfo, ...] = ()
    findings: tuple[Finding, ...] = ()
    generation: int = 0

    def __iter__(self) -> Iterator[RuntimeInfo]:
        return iter(self.runtimes)

    def __len__(self) -> int:
        return len(self.runtimes)

    def select(
        self,
        vendor: Vendor | None = None,
        api_kind: ApiKind | None = None,
    ) -> tuple[RuntimeInfo, ...]:
        """Runtimes matching the given vendor and/or api kind."""
        return tuple(
            info
            for info in self.runtimes
            if (vendor is None or info.vendor == vendor)
            and (api_kind is None or info.api_kind == api_kind)
        )

    def to_list(self) -> list[dict[str, Any]]:
        return [info.to_dict() for info in self.runtimes]


@dataclass
class ScopeEntry:
    """Per-record bookkeeping of one scope frame."""

    record: RuntimeRecord
    previous_limit: int
    target_limit: int
    effective_limit: int
    overridden: bool = False


@dataclass
class ThreadBudgetScope:
    """One frame of the coordinator's scope stack."""

    scope_id: int
    depth: int
    requested_limit: int
    thread_id: int
    entries: list[ScopeEntry] = field(default_factory=list)
    # set when exit_scope ran while inner scopes were still open
    exited: bool = False

    def effective_limit_for(self, identity: tuple[str, int]) -> int | None:
        for entry in self.entries:
            if entry.record.identity == identity:
                return entry.effective_limit
        return None


@dataclass(frozen=True)
class ScopeHandle:
    """Returned by ``enter_scope``; pass it back to ``exit_scope``."""

    scope_id: int
    depth: int
    requested_limit: int
    limits: tuple[tuple[str, int], ...] = ()
    owner: Any = field(default=None, compare=False, repr=False)

    @property
    def effective_limits(self) -> dict[str, int]:
        """Effective limit per runtime path for this scope."""
        return dict(self.limits)
