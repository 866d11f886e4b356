import logging
from types import ModuleType
from typing import Any

from ..config import get_config
from ..errors import BackendError, NDArrayError
from . import ndarray_backend_numpy, ndarray_backend_reference
from .contract import validate_backend

logger = logging.getLogger(__name__)

_BACKENDS: dict[str, ModuleType] = {
    "reference": ndarray_backend_reference,
    "cpu_numpy": ndarray_backend_numpy,
}


class Device:
    """A backend device; wraps the module implementing the kernel contract.

    Kernel attributes are forwarded to the module, so ``device.Array`` and
    ``device.copy`` resolve to the backend's own definitions. Use :meth:`run`
    to invoke a kernel with failures reported as :class:`BackendError`.
    """

    def __init__(self, name: str, module: ModuleType) -> None:
        self.name = name
        self.module = module

    def __repr__(self) -> str:
        return f"{self.name}()"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Device) and self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __getattr__(self, name: str) -> Any:
        if name == "module":
            raise AttributeError(name)
        return getattr(self.module, name)

    def run(self, kernel: str, *args: Any, **kwargs: Any) -> Any:
        """Invoke ``kernel`` on this device's backend.

        Raises
        ------
        BackendError
            Wrapping any exception the backend raises.
        """
        try:
            return getattr(self.module, kernel)(*args, **kwargs)
        except NDArrayError:
            raise
        except Exception as exc:
            raise BackendError(
                f"{self.name}: kernel {kernel!r} failed: {exc}"
            ) from exc

    def allocate(self, size: int, dtype: str) -> Any:
        """Allocate a flat buffer of ``size`` elements."""
        return self.run("Array", size, dtype)

    def synchronize(self) -> None:
        """Block until every kernel queued on this device has completed."""
        self.run("synchronize")


def register_backend(name: str, module: ModuleType) -> Device:
    """Register ``module`` as the backend for device ``name``.

    The module is checked against the kernel contract first; an existing
    registration under the same name is replaced.
    """
    validate_backend(module)
    _BACKENDS[name] = module
    logger.info("Registered backend %r (%s)", name, module.__name__)
    return Device(name, module)


def get_device(name: str) -> Device:
    """Look up the device registered under ``name``."""
    try:
        return Device(name, _BACKENDS[name])
    except KeyError:
        raise BackendError(
            f"Unknown device {name!r}; registered: {sorted(_BACKENDS)}"
        ) from None


def reference() -> Device:
    return get_device("reference")


def cpu_numpy() -> Device:
    return get_device("cpu_numpy")


def default_device() -> Device:
    return get_device(get_config().default_device)


def all_devices() -> list[Device]:
    """Return one device per registered backend."""
    return [Device(name, module) for name, module in _BACKENDS.items()]
