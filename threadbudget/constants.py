"""Static tables used throughout threadbudget.

Signatures, fork safety and conflict rules are plain data so new vendors can
be added here without touching the scanning, classification or coordination
code.
"""

import itertools

from .types import ApiKind, ConflictRule, RuntimeMatcher, RuntimeSignature, Severity, Vendor

# OpenBLAS ships symbol-prefixed (scipy wheels) and ILP64-suffixed builds.
_OPENBLAS_AFFIXES = list(itertools.product(("", "scipy_"), ("", "64_", "_64")))


def _openblas_symbols(name: str) -> tuple[str, ...]:
    return tuple(f"{prefix}{name}{suffix}" for prefix, suffix in _OPENBLAS_AFFIXES)


_OPENMP_SYMBOLS = {
    "check_symbols": ("omp_get_max_threads", "omp_get_num_threads"),
    "getters": ("omp_get_max_threads",),
    "setters": ("omp_set_num_threads",),
    "max_symbol": "omp_get_num_procs",
}

# Order matters only for reporting; ambiguity is decided by symbols.
RUNTIME_SIGNATURES: tuple[RuntimeSignature, ...] = (
    RuntimeSignature(Vendor.GNU, ApiKind.PARALLEL_LOOP, prefixes=("libgomp",), **_OPENMP_SYMBOLS),
    RuntimeSignature(Vendor.LLVM, ApiKind.PARALLEL_LOOP, prefixes=("libomp",), **_OPENMP_SYMBOLS),
    RuntimeSignature(Vendor.INTEL, ApiKind.PARALLEL_LOOP, prefixes=("libiomp",), **_OPENMP_SYMBOLS),
    RuntimeSignature(Vendor.MSVC, ApiKind.PARALLEL_LOOP, prefixes=("vcomp",), **_OPENMP_SYMBOLS),
    RuntimeSignature(
        Vendor.OPENBLAS,
        ApiKind.LINEAR_ALGEBRA,
        prefixes=("libopenblas", "libblas", "libscipy_openblas"),
        check_symbols=_openblas_symbols("openblas_get_num_threads"),
        getters=_openblas_symbols("openblas_get_num_threads"),
        setters=_openblas_symbols("openblas_set_num_threads"),
    ),
    RuntimeSignature(
        Vendor.MKL,
        ApiKind.LINEAR_ALGEBRA,
        prefixes=("libmkl_rt", "mkl_rt", "libblas"),
        check_symbols=("MKL_Get_Max_Threads", "MKL_Set_Num_Threads"),
        getters=("MKL_Get_Max_Threads",),
        setters=("MKL_Set_Num_Threads",),
    ),
    RuntimeSignature(
        Vendor.BLIS,
        ApiKind.LINEAR_ALGEBRA,
        prefixes=("libblis", "libblas"),
        check_symbols=("bli_thread_get_num_threads", "bli_thread_set_num_threads"),
        getters=("bli_thread_get_num_threads",),
        setters=("bli_thread_set_num_threads",),
    ),
    RuntimeSignature(
        Vendor.FLEXIBLAS,
        ApiKind.LINEAR_ALGEBRA,
        prefixes=("libflexiblas",),
        check_symbols=("flexiblas_get_num_threads", "flexiblas_set_num_threads"),
        getters=("flexiblas_get_num_threads",),
        setters=("flexiblas_set_num_threads",),
    ),
    RuntimeSignature(
        Vendor.REFERENCE,
        ApiKind.LINEAR_ALGEBRA,
        prefixes=("libblas", "libcblas", "librefblas"),
        check_symbols=("dgemm_", "cblas_dgemm"),
        fallback=True,
    ),
    # TBB has no C entry point for its global thread count.
    RuntimeSignature(
        Vendor.TBB,
        ApiKind.OTHER,
        prefixes=("libtbb",),
        check_symbols=("TBB_runtime_interface_version", "TBB_runtime_version"),
    ),
)

# Vendors whose libraries threadpoolctl finds and controls itself; the rest
# of the signature table gets a controller from threadbudget.controllers.
THREADPOOLCTL_VENDORS = frozenset(
    {
        Vendor.GNU,
        Vendor.LLVM,
        Vendor.INTEL,
        Vendor.MSVC,
        Vendor.OPENBLAS,
        Vendor.MKL,
        Vendor.BLIS,
        Vendor.FLEXIBLAS,
    }
)

# Whether a runtime's pool survives fork() in the child without re-init.
# libgomp keeps dead worker threads after fork and hangs on the next
# parallel region; LLVM/Intel OpenMP and OpenBLAS register atfork handlers.
FORK_SAFETY: dict[tuple[Vendor, ApiKind], bool] = {
    (Vendor.GNU, ApiKind.PARALLEL_LOOP): False,
    (Vendor.LLVM, ApiKind.PARALLEL_LOOP): True,
    (Vendor.INTEL, ApiKind.PARALLEL_LOOP): True,
    (Vendor.MSVC, ApiKind.PARALLEL_LOOP): True,
    (Vendor.OPENBLAS, ApiKind.LINEAR_ALGEBRA): True,
    (Vendor.MKL, ApiKind.LINEAR_ALGEBRA): True,
    (Vendor.BLIS, ApiKind.LINEAR_ALGEBRA): False,
    (Vendor.FLEXIBLAS, ApiKind.LINEAR_ALGEBRA): True,
    (Vendor.REFERENCE, ApiKind.LINEAR_ALGEBRA): True,
    (Vendor.TBB, ApiKind.OTHER): False,
}

# Unknown combinations are treated as unsafe.
DEFAULT_FORK_SAFE = False

# Environment variables each vendor reads at start-up, in priority order.
VENDOR_THREAD_VARS: dict[Vendor, tuple[str, ...]] = {
    Vendor.GNU: ("OMP_NUM_THREADS",),
    Vendor.LLVM: ("OMP_NUM_THREADS",),
    Vendor.INTEL: ("OMP_NUM_THREADS",),
    Vendor.MSVC: ("OMP_NUM_THREADS",),
    Vendor.OPENBLAS: ("OPENBLAS_NUM_THREADS", "GOTO_NUM_THREADS", "OMP_NUM_THREADS"),
    Vendor.MKL: ("MKL_NUM_THREADS", "OMP_NUM_THREADS"),
    Vendor.BLIS: ("BLIS_NUM_THREADS", "OMP_NUM_THREADS"),
    Vendor.FLEXIBLAS: ("FLEXIBLAS_NUM_THREADS", "OMP_NUM_THREADS"),
    Vendor.TBB: ("TBB_NUM_THREADS",),
}

_OPENMP = frozenset({ApiKind.PARALLEL_LOOP})
_BLAS = frozenset({ApiKind.LINEAR_ALGEBRA})

CONFLICT_RULES: tuple[ConflictRule, ...] = (
    ConflictRule(
        rule_id="openmp-intel-llvm",
        first=RuntimeMatcher(vendors=frozenset({Vendor.INTEL}), api_kinds=_OPENMP),
        second=RuntimeMatcher(vendors=frozenset({Vendor.LLVM}), api_kinds=_OPENMP),
        severity=Severity.FATAL,
        message=(
            "Intel OpenMP ({first}) and LLVM OpenMP ({second}) are loaded together; "
            "they share symbol names and are known to crash or deadlock"
        ),
    ),
    ConflictRule(
        rule_id="openmp-gnu-llvm",
        first=RuntimeMatcher(vendors=frozenset({Vendor.GNU}), api_kinds=_OPENMP),
        second=RuntimeMatcher(vendors=frozenset({Vendor.LLVM}), api_kinds=_OPENMP),
        severity=Severity.WARNING,
        message=(
            "GNU OpenMP ({first}) and LLVM OpenMP ({second}) run separate thread pools; "
            "nested parallel calls will oversubscribe"
        ),
    ),
    ConflictRule(
        rule_id="openmp-gnu-intel",
        first=RuntimeMatcher(vendors=frozenset({Vendor.GNU}), api_kinds=_OPENMP),
        second=RuntimeMatcher(vendors=frozenset({Vendor.INTEL}), api_kinds=_OPENMP),
        severity=Severity.INFO,
        message="GNU OpenMP ({first}) and Intel OpenMP ({second}) are both loaded",
    ),
    ConflictRule(
        rule_id="openmp-msvc-mixed",
        first=RuntimeMatcher(vendors=frozenset({Vendor.MSVC}), api_kinds=_OPENMP),
        second=RuntimeMatcher(api_kinds=_OPENMP, exclude_vendors=frozenset({Vendor.MSVC})),
        severity=Severity.WARNING,
        message="MSVC OpenMP ({first}) is mixed with {second_vendor} OpenMP ({second})",
    ),
    ConflictRule(
        rule_id="multiple-blas",
        first=RuntimeMatcher(api_kinds=_BLAS),
        second=RuntimeMatcher(api_kinds=_BLAS),
        severity=Severity.WARNING,
        message=(
            "Two linear algebra runtimes are loaded ({first_vendor}: {first}, "
            "{second_vendor}: {second}); each keeps its own thread pool"
        ),
    ),
    ConflictRule(
        rule_id="not-configurable",
        first=RuntimeMatcher(controllable=False),
        severity=Severity.INFO,
        message="{first_vendor} runtime {first} is present but not configurable",
    ),
)

# Rule ids for findings raised outside the rule table.
SCAN_UNSUPPORTED_RULE = "scan-unsupported"
AMBIGUOUS_RULE = "classification-ambiguous"
CONTROL_FAILURE_RULE = "control-symbol-failure"
FORK_UNSAFE_RULE = "fork-unsafe-pool"

# Fork guard / strictness modes
WARN = "warn"
STRICT = "strict"
MODES = (WARN, STRICT)
