"""Strided array views, the compaction engine, the dispatcher and backends."""

from .device import (
    Device,
    all_devices,
    cpu_numpy,
    default_device,
    get_device,
    reference,
    register_backend,
)
from .ndarray import NDArray, array, empty, full, ones, zeros

__all__ = [
    "Device",
    "NDArray",
    "all_devices",
    "array",
    "cpu_numpy",
    "default_device",
    "empty",
    "full",
    "get_device",
    "ones",
    "reference",
    "register_backend",
    "zeros",
]
