"""
ndview (strided N-dimensional views over device buffers)

This package separates array view logic (shape, strides, offset) from flat
buffer compute kernels, bridged by an explicit compaction step.
"""

from importlib.metadata import PackageNotFoundError as _PkgNotFoundError
from importlib.metadata import version as _pkg_version

from .backend import (
    Device,
    NDArray,
    all_devices,
    array,
    cpu_numpy,
    default_device,
    empty,
    full,
    get_device,
    ones,
    reference,
    register_backend,
    zeros,
)
from .config import config_context, get_config, set_config, setup_logging
from .errors import (
    BackendError,
    BoundsError,
    BroadcastError,
    DeviceMismatchError,
    DTypeError,
    InvalidAxesError,
    NDArrayError,
    ShapeError,
)

__all__ = [
    "__version__",
    "BackendError",
    "BoundsError",
    "BroadcastError",
    "Device",
    "DeviceMismatchError",
    "DTypeError",
    "InvalidAxesError",
    "NDArray",
    "NDArrayError",
    "ShapeError",
    "all_devices",
    "array",
    "config_context",
    "cpu_numpy",
    "default_device",
    "empty",
    "full",
    "get_config",
    "get_device",
    "ones",
    "reference",
    "register_backend",
    "set_config",
    "setup_logging",
    "zeros",
]

try:
    __version__ = _pkg_version("ndview")
except _PkgNotFoundError:
    # Fallback for editable installs before metadata is written
    __version__ = "0.1.0"
