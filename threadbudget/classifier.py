"""Classify threadpoolctl-discovered libraries as known concurrency runtimes."""

import logging
import os
from collections.abc import Callable, Iterable
from typing import Any

from ._threading import INITIAL_ENV_LIMITS, available_cpus
from .constants import AMBIGUOUS_RULE, DEFAULT_FORK_SAFE, FORK_SAFETY, RUNTIME_SIGNATURES
from .controllers import register_signature
from .errors import ClassificationAmbiguous
from .types import (
    ApiKind,
    Controllable,
    Finding,
    LoadedModule,
    ReadOnly,
    RuntimeRecord,
    RuntimeSignature,
    Severity,
    Vendor,
)

logger = logging.getLogger(__name__)


def _normalize_count(value: Any) -> int:
    # BLIS and FlexiBLAS report -1 for "default", which is sequential
    count = int(value)
    return count if count > 0 else 1


def _symbol(lib: Any, name: str) -> Callable | None:
    return getattr(lib, name, None)


def _first_symbol(lib: Any, names: Iterable[str]) -> Callable | None:
    for name in names:
        func = _symbol(lib, name)
        if func is not None:
            return func
    return None


class RuntimeClassifier:
    """
    Match scanned libraries against the static signature table.

    Each scanned module carries the threadpoolctl controller that found it;
    symbols are checked on the controller's ``dynlib`` and thread counts are
    read and written through the controller.

    Args:
        signatures: Signature table (defaults to ``RUNTIME_SIGNATURES``)
        fork_safety: ``(vendor, api_kind) -> bool`` table
        env_limits: Per-vendor thread counts read from the environment,
            used to seed runtimes whose thread count cannot be queried
        cpu_count: Callable returning the CPUs available to the process
    """

    def __init__(
        self,
        signatures: Iterable[RuntimeSignature] = RUNTIME_SIGNATURES,
        fork_safety: dict[tuple[Vendor, ApiKind], bool] | None = None,
        env_limits: dict[Vendor, int] | None = None,
        cpu_count: Callable[[], int] | None = None,
    ):
        self.signatures: list[RuntimeSignature] = list(signatures)
        self.fork_safety = dict(FORK_SAFETY if fork_safety is None else fork_safety)
        self.env_limits = dict(INITIAL_ENV_LIMITS if env_limits is None else env_limits)
        self._cpu_count = cpu_count or available_cpus

    def register_signature(self, signature: RuntimeSignature) -> None:
        """Add a signature for a runtime the built-in table does not know.

        A matching threadpoolctl controller is registered too, so the next
        scan reports libraries with the new prefixes.
        """
        self.signatures.append(signature)
        register_signature(signature)

    def classify(
        self, modules: Iterable[LoadedModule]
    ) -> tuple[list[RuntimeRecord], list[Finding]]:
        """
        Classify modules in discovery order.

        Returns:
            Tuple of (records, findings). Findings report ambiguous matches.
        """
        records: list[RuntimeRecord] = []
        findings: list[Finding] = []
        seen: set[tuple[str, int]] = set()

        for module in modules:
            identity = (module.path, module.base_address)
            if identity in seen or module.controller is None:
                continue

            candidates = self._candidate_signatures(module.path)
            if not candidates:
                logger.debug(f"No signature for {module.path}")
                continue

            confirmed = self._confirm(module.controller.dynlib, candidates)
            if not confirmed:
                continue

            if len(confirmed) > 1:
                error = ClassificationAmbiguous(module.path, [s.name for s in confirmed])
                record = self._unclassified(module, error)
                findings.append(
                    Finding(
                        rule_id=AMBIGUOUS_RULE,
                        severity=Severity.INFO,
                        involved=(record.info(),),
                        message=str(error),
                    )
                )
                logger.info(str(error))
            else:
                record = self._build_record(module, confirmed[0], candidates[confirmed[0]])
                logger.debug(
                    f"Classified {module.path} as {confirmed[0].name} "
                    f"({'controllable' if record.controllable else 'read-only'})"
                )

            seen.add(identity)
            records.append(record)

        return records, findings

    def _candidate_signatures(self, path: str) -> dict[RuntimeSignature, str]:
        """Signatures whose filename prefix matches, mapped to the matching prefix."""
        filename = os.path.basename(path).lower()
        candidates: dict[RuntimeSignature, str] = {}
        for signature in self.signatures:
            for prefix in signature.prefixes:
                if filename.startswith(prefix.lower()):
                    candidates[signature] = prefix
                    break
        return candidates

    def _confirm(self, lib: Any, candidates: Iterable[RuntimeSignature]) -> list[RuntimeSignature]:
        matched = [
            s for s in candidates if _first_symbol(lib, s.check_symbols) is not None
        ]
        specific = [s for s in matched if not s.fallback]
        return specific or matched

    def _fork_safe(self, vendor: Vendor, api_kind: ApiKind) -> bool:
        return self.fork_safety.get((vendor, api_kind), DEFAULT_FORK_SAFE)

    def _resolve_control(self, controller: Any, signature: RuntimeSignature) -> Controllable | ReadOnly:
        lib = controller.dynlib
        for getter_name, setter_name in zip(signature.getters, signature.setters):
            if _symbol(lib, getter_name) is None:
                continue
            if _symbol(lib, setter_name) is None:
                return ReadOnly(reason=f"{getter_name} found without {setter_name}")

            def get_threads(controller=controller) -> int:
                return _normalize_count(controller.get_num_threads())

            return Controllable(
                get_threads=get_threads,
                set_threads=controller.set_num_threads,
                getter_name=getter_name,
                setter_name=setter_name,
            )
        return ReadOnly()

    def _native_max(self, module: LoadedModule, signature: RuntimeSignature) -> int:
        func = _symbol(module.controller.dynlib, signature.max_symbol) if signature.max_symbol else None
        if func is not None:
            try:
                count = int(func())
            except Exception as e:
                logger.warning(f"{signature.max_symbol} failed for {module.path}: {e}")
            else:
                if count > 0:
                    return count
        return self._cpu_count()

    def _build_record(
        self,
        module: LoadedModule,
        signature: RuntimeSignature,
        prefix: str,
    ) -> RuntimeRecord:
        controller = module.controller
        control = self._resolve_control(controller, signature)
        native_max = self._native_max(module, signature)

        current_limit = None
        if isinstance(control, Controllable):
            try:
                current_limit = control.get_threads()
            except Exception as e:
                logger.warning(f"Thread getter {control.getter_name} failed for {module.path}: {e}")
                control = ReadOnly(reason=f"{control.getter_name} failed: {e}")
        if current_limit is None:
            current_limit = self.env_limits.get(signature.vendor, native_max)

        # threadpoolctl reads these when it builds the controller
        version = getattr(controller, "version", None)
        threading_layer = getattr(controller, "threading_layer", None)

        return RuntimeRecord(
            path=module.path,
            base_address=module.base_address,
            vendor=signature.vendor,
            api_kind=signature.api_kind,
            fork_safe=self._fork_safe(signature.vendor, signature.api_kind),
            control=control,
            native_max=native_max,
            current_limit=current_limit,
            prefix=prefix,
            version=str(version) if version else None,
            threading_layer=threading_layer,
        )

    def _unclassified(self, module: LoadedModule, error: ClassificationAmbiguous) -> RuntimeRecord:
        native_max = self._cpu_count()
        return RuntimeRecord(
            path=module.path,
            base_address=module.base_address,
            vendor=Vendor.UNKNOWN,
            api_kind=ApiKind.OTHER,
            fork_safe=self._fork_safe(Vendor.UNKNOWN, ApiKind.OTHER),
            control=ReadOnly(reason=f"ambiguous: {', '.join(error.candidates)}"),
            native_max=native_max,
            current_limit=native_max,
        )
