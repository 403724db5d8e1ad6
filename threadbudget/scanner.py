"""Enumerate native thread-pool libraries mapped into the current process.

threadpoolctl walks the loaded libraries and builds one controller per
recognised runtime. It does not report where a library is mapped, so on
Linux the base address is read from ``/proc/self/maps``; elsewhere it is 0
and the path alone identifies the library.
"""

import logging
import sys
from collections.abc import Callable
from typing import Any

from threadpoolctl import ThreadpoolController

from .controllers import register_default_controllers
from .errors import ScanUnsupported
from .types import LoadedModule, ScanResult

logger = logging.getLogger(__name__)

MAPS_PATH = "/proc/self/maps"

_UNSUPPORTED_PLATFORMS = ("emscripten", "wasi")


def read_base_addresses(maps_path: str = MAPS_PATH) -> dict[str, int]:
    """Lowest mapped address of every file listed in a ``/proc/<pid>/maps`` table."""
    bases: dict[str, int] = {}
    try:
        with open(maps_path) as f:
            for line in f:
                # start-end perms offset dev inode path
                fields = line.split(maxsplit=5)
                if len(fields) < 6:
                    continue
                path = fields[5].strip()
                if not path.startswith("/"):
                    continue
                start = int(fields[0].split("-", 1)[0], 16)
                bases[path] = min(start, bases.get(path, start))
    except OSError as e:
        logger.debug(f"Could not read {maps_path}: {e}")
    return bases


class ModuleScanner:
    """
    Lists the native thread-pool libraries loaded in the process.

    Scanning never raises: when the platform offers no introspection the
    result is empty and carries a ``ScanUnsupported`` error instead.

    Args:
        platform: Platform name (defaults to ``sys.platform``)
        controller_factory: Callable returning an object with a
            ``lib_controllers`` list, normally ``ThreadpoolController``
        maps_path: Memory map table used for base addresses on Linux
    """

    def __init__(
        self,
        platform: str | None = None,
        controller_factory: Callable[[], Any] | None = None,
        maps_path: str = MAPS_PATH,
    ):
        self.platform = platform or sys.platform
        self._controller_factory = controller_factory or ThreadpoolController
        self.maps_path = maps_path
        register_default_controllers()

    def scan(self) -> ScanResult:
        if self.platform in _UNSUPPORTED_PLATFORMS or "pyodide" in sys.modules:
            error = ScanUnsupported(f"no loaded-module introspection on {self.platform}")
            logger.warning(f"Native module introspection unavailable: {error}")
            return ScanResult(modules=(), error=error)

        try:
            lib_controllers = self._controller_factory().lib_controllers
        except Exception as e:
            logger.warning(f"Native module introspection failed: {e}")
            return ScanResult(modules=(), error=ScanUnsupported(str(e)))

        bases = read_base_addresses(self.maps_path) if self.platform.startswith("linux") else {}

        seen: set[tuple[str, int]] = set()
        ordered: list[LoadedModule] = []
        for controller in lib_controllers:
            module = LoadedModule(controller.filepath, bases.get(controller.filepath, 0), controller)
            identity = (module.path, module.base_address)
            if identity in seen:
                continue
            seen.add(identity)
            ordered.append(module)
        logger.debug(f"Scanned {len(ordered)} native thread-pool libraries")
        return ScanResult(modules=tuple(ordered))


def scan() -> ScanResult:
    """Scan the current process with the default threadpoolctl controller."""
    return ModuleScanner().scan()
