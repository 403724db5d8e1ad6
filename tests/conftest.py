"""Pytest configuration and fixtures for threadbudget tests.

Native runtimes are replaced by ``FakeLibrary`` objects whose attributes act
as exported symbols, wrapped in ``FakeController`` the way threadpoolctl
wraps a ``ctypes.CDLL`` in a ``LibController``. ``FakeScanner`` stands in for
the threadpoolctl-backed scanner, so tests never depend on what the
interpreter happens to have loaded.
"""

import pytest

from threadbudget.classifier import RuntimeClassifier
from threadbudget.config import CoordinatorConfig
from threadbudget.constants import RUNTIME_SIGNATURES
from threadbudget.context import CoordinationContext
from threadbudget.types import LoadedModule, ScanResult

GOMP_PATH = "/usr/lib/libgomp.so.1"
LLVM_OMP_PATH = "/opt/llvm/lib/libomp.so"
INTEL_OMP_PATH = "/opt/intel/lib/libiomp5.so"
OPENBLAS_PATH = "/usr/lib/libopenblas.so.0"
MKL_PATH = "/opt/intel/lib/libmkl_rt.so.2"
TBB_PATH = "/usr/lib/libtbb.so.12"
LIBC_PATH = "/usr/lib/libc.so.6"

# Every getter/setter pair a real controller could use
_KNOWN_PAIRS = [
    pair
    for signature in RUNTIME_SIGNATURES
    for pair in zip(signature.getters, signature.setters)
]


class FakeLibrary:
    """Stand-in for a ctypes.CDLL: attribute lookup resolves exported symbols."""

    def __init__(self, **symbols):
        self._symbols = symbols

    def __getattr__(self, name):
        try:
            return self._symbols[name]
        except KeyError:
            raise AttributeError(name) from None


class FakeController:
    """Stand-in for a threadpoolctl LibController around a FakeLibrary.

    Like threadpoolctl, missing symbols make ``get_num_threads`` and
    ``set_num_threads`` return None instead of raising.
    """

    internal_api = "fake"

    def __init__(
        self,
        dynlib,
        filepath=None,
        getter=None,
        setter=None,
        version=None,
        threading_layer=None,
    ):
        self.dynlib = dynlib
        self.filepath = filepath
        self.version = version
        self.threading_layer = threading_layer
        self._pair = (getter, setter) if getter else None

    def _symbols(self):
        pairs = [self._pair] if self._pair else _KNOWN_PAIRS
        for getter, setter in pairs:
            func = getattr(self.dynlib, getter, None)
            if func is not None:
                return func, getattr(self.dynlib, setter, None)
        return None, None

    @property
    def num_threads(self):
        return self.get_num_threads()

    def get_num_threads(self):
        getter, _ = self._symbols()
        return None if getter is None else getter()

    def set_num_threads(self, num_threads):
        _, setter = self._symbols()
        return None if setter is None else setter(num_threads)


class FakeThreadPool:
    """Mutable thread count of a fake native runtime."""

    def __init__(self, threads: int = 8):
        self.threads = threads
        self.history: list[int] = []
        self.fail_on_set = False

    def get(self) -> int:
        return self.threads

    def set(self, n: int) -> None:
        if self.fail_on_set:
            raise RuntimeError("vendor library bug")
        self.history.append(n)
        self.threads = n


def openmp_library(pool: FakeThreadPool, procs: int = 8) -> FakeLibrary:
    return FakeLibrary(
        omp_get_max_threads=pool.get,
        omp_get_num_threads=lambda: 1,
        omp_set_num_threads=pool.set,
        omp_get_num_procs=lambda: procs,
    )


def openblas_library(
    pool: FakeThreadPool,
    prefix: str = "",
    suffix: str = "",
    version: str = "0.3.21",
    threading_layer: str = "pthreads",
) -> FakeController:
    """OpenBLAS as threadpoolctl reports it, with version and threading layer."""
    lib = FakeLibrary(
        **{
            f"{prefix}openblas_get_num_threads{suffix}": pool.get,
            f"{prefix}openblas_set_num_threads{suffix}": pool.set,
            "dgemm_": lambda: None,
        }
    )
    return FakeController(lib, version=version, threading_layer=threading_layer)


def mkl_library(pool: FakeThreadPool) -> FakeLibrary:
    return FakeLibrary(MKL_Get_Max_Threads=pool.get, MKL_Set_Num_Threads=pool.set)


def tbb_library() -> FakeLibrary:
    return FakeLibrary(TBB_runtime_interface_version=lambda: 12050)


def make_modules(libraries: dict) -> tuple[LoadedModule, ...]:
    """``LoadedModule`` per path, in order, each carrying a controller for its library."""
    modules = []
    for i, (path, lib) in enumerate(libraries.items()):
        controller = lib if isinstance(lib, FakeController) else FakeController(lib)
        controller.filepath = path
        modules.append(LoadedModule(path, 0x1000 * (i + 1), controller))
    return tuple(modules)


class FakeScanner:
    """Scanner returning a fixed module list; ``on_scan`` runs during each scan."""

    def __init__(self, libraries: dict, error=None, on_scan=None):
        self.modules = make_modules(libraries)
        self.error = error
        self.on_scan = on_scan
        self.calls = 0

    def scan(self) -> ScanResult:
        self.calls += 1
        if self.on_scan is not None:
            self.on_scan()
        return ScanResult(modules=self.modules, error=self.error)


def make_classifier(cpu_count: int = 8, env_limits=None) -> RuntimeClassifier:
    return RuntimeClassifier(
        cpu_count=lambda: cpu_count,
        env_limits=env_limits or {},
    )


def make_context(
    libraries: dict,
    cpu_count: int = 8,
    env_limits=None,
    config: CoordinatorConfig | None = None,
) -> CoordinationContext:
    """Context whose scanner reports ``libraries`` in order."""
    return CoordinationContext(
        config=config,
        scanner=FakeScanner(libraries),
        classifier=make_classifier(cpu_count, env_limits),
    )


@pytest.fixture
def gomp_pool():
    return FakeThreadPool(threads=8)


@pytest.fixture
def blas_pool():
    return FakeThreadPool(threads=8)


@pytest.fixture
def context(gomp_pool, blas_pool):
    """GNU OpenMP + OpenBLAS (both controllable) and TBB (read-only) on 8 CPUs."""
    return make_context(
        {
            GOMP_PATH: openmp_library(gomp_pool),
            OPENBLAS_PATH: openblas_library(blas_pool),
            TBB_PATH: tbb_library(),
        }
    )
