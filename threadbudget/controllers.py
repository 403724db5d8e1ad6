"""threadpoolctl controllers for runtimes threadpoolctl does not ship.

threadpoolctl already finds and controls the OpenMP runtimes, OpenBLAS, MKL,
BLIS and FlexiBLAS. Every other signature (TBB, reference BLAS, or one added
with ``register_signature``) gets a generic ``LibController`` subclass so that
``ThreadpoolController`` lists those libraries too.
"""

import logging

from threadpoolctl import LibController, register

from .constants import RUNTIME_SIGNATURES, THREADPOOLCTL_VENDORS
from .types import ApiKind, RuntimeSignature, Vendor

logger = logging.getLogger(__name__)

_USER_APIS = {
    ApiKind.PARALLEL_LOOP: "openmp",
    ApiKind.LINEAR_ALGEBRA: "blas",
}

_registered: dict[RuntimeSignature, type] = {}


class SignatureController(LibController):
    """Controller driven by the getter/setter symbols of a RuntimeSignature."""

    signature: RuntimeSignature

    def _paired_symbols(self):
        for getter_name, setter_name in zip(self.signature.getters, self.signature.setters):
            getter = getattr(self.dynlib, getter_name, None)
            if getter is not None:
                return getter, getattr(self.dynlib, setter_name, None)
        return None, None

    def get_num_threads(self):
        getter, _ = self._paired_symbols()
        if getter is None:
            return None
        return getter()

    def set_num_threads(self, num_threads):
        _, setter = self._paired_symbols()
        # read-only runtimes ignore limits
        if setter is None:
            return None
        return setter(num_threads)

    def get_version(self):
        return None


def _internal_api(signature: RuntimeSignature) -> str:
    if signature.vendor is Vendor.UNKNOWN:
        return signature.prefixes[0].removeprefix("lib")
    return signature.vendor.value


def controller_class(signature: RuntimeSignature) -> type:
    """Build the LibController subclass threadpoolctl uses to find ``signature``."""
    name = "".join(part.capitalize() for part in _internal_api(signature).split("_"))
    return type(
        f"{name}Controller",
        (SignatureController,),
        {
            "signature": signature,
            "user_api": _USER_APIS.get(signature.api_kind, _internal_api(signature)),
            "internal_api": _internal_api(signature),
            "filename_prefixes": signature.prefixes,
            "check_symbols": signature.check_symbols,
        },
    )


def register_signature(signature: RuntimeSignature) -> None:
    """Register a controller for ``signature`` with threadpoolctl, once."""
    if signature.vendor in THREADPOOLCTL_VENDORS or signature in _registered:
        return
    controller = controller_class(signature)
    register(controller)
    _registered[signature] = controller
    logger.debug(f"Registered {controller.__name__} for {signature.name}")


def register_default_controllers() -> None:
    for signature in RUNTIME_SIGNATURES:
        register_signature(signature)
