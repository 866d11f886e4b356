"""Operation dispatcher: the only path from logical ops to backend kernels.

Every public function follows the same steps:

1. validate the op tag, devices, dtypes and shapes (nothing is allocated yet);
2. broadcast operands to a common shape with zero-copy views;
3. compact any operand a kernel cannot consume directly;
4. allocate a fresh output buffer and run the kernel;
5. synchronize the device and return the output view.

Writes into existing storage (:func:`assign`, :func:`fill`) refuse targets
in which two elements share a buffer address, such as views with a
zero-stride (broadcast) dimension.
"""

import logging
import math
import numbers
from typing import TYPE_CHECKING, Iterable, Sequence, Union

import numpy as np

from ..errors import (
    BroadcastError,
    DeviceMismatchError,
    DTypeError,
    InvalidAxesError,
    ShapeError,
)
from . import compaction
from .contract import EWISE_BINOPS, EWISE_UNOPS, FLOAT_UNOPS, REDUCE_OPS

if TYPE_CHECKING:
    from .ndarray import NDArray

logger = logging.getLogger(__name__)

Axis = Union[int, Sequence[int], None]


def broadcast_shapes(*shapes: tuple[int, ...]) -> tuple[int, ...]:
    """Common shape of ``shapes`` under trailing-axis alignment.

    Raises
    ------
    BroadcastError
        If two non-1 sizes meet on the same axis.
    """
    ndim = max((len(s) for s in shapes), default=0)
    result = []
    for axis in range(-ndim, 0):
        sizes = {s[axis] for s in shapes if len(s) >= -axis}
        sizes.discard(1)
        if len(sizes) > 1:
            raise BroadcastError(f"Shapes {shapes} cannot be broadcast together")
        result.append(sizes.pop() if sizes else 1)
    return tuple(result)


def normalize_axes(axis: Axis, ndim: int) -> tuple[int, ...]:
    """Convert ``axis`` (None, int or sequence) to sorted non-negative axes."""
    if axis is None:
        return tuple(range(ndim))
    axes = (axis,) if isinstance(axis, numbers.Integral) else tuple(axis)
    normalized = []
    for a in axes:
        if not isinstance(a, numbers.Integral) or not -ndim <= a < ndim:
            raise InvalidAxesError(f"Axis {a!r} is out of range for {ndim} dims")
        normalized.append(int(a) % ndim)
    if len(set(normalized)) != len(normalized):
        raise InvalidAxesError(f"Repeated axis in {axis!r}")
    return tuple(sorted(normalized))


def _check_op(op: str, valid: Iterable[str], kind: str) -> None:
    if op not in valid:
        raise ValueError(f"Unknown {kind} op {op!r}; expected one of {sorted(valid)}")


def _check_compatible(a: "NDArray", b: "NDArray") -> None:
    if a.device != b.device:
        raise DeviceMismatchError(
            f"Operands live on different devices: {a.device} and {b.device}"
        )
    if a.dtype != b.dtype:
        raise DTypeError(f"Operand dtypes differ: {a.dtype} and {b.dtype}")


def _check_scalar(value: object, dtype: str) -> Union[int, float]:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise DTypeError(f"Scalar operand must be a real number, got {value!r}")
    if isinstance(value, np.generic):
        value = value.item()
    if not dtype.startswith("int"):
        return value
    # integer kernels only see in-range ints
    if isinstance(value, float) and not value.is_integer():
        raise DTypeError(f"Scalar {value!r} is not integral for a {dtype} array")
    info = np.iinfo(dtype)
    if not info.min <= value <= info.max:
        raise DTypeError(f"Scalar {value!r} is out of range for {dtype}")
    return int(value)


def _write_addresses(view: "NDArray") -> np.ndarray | None:
    """Buffer addresses written through ``view``, or None if it is compact.

    Raises
    ------
    BroadcastError
        If two elements of the view share an address, as with broadcast
        (zero-stride) dimensions or self-overlapping strides.
    """
    if view.size and 0 in view.strides:
        raise BroadcastError(
            f"Cannot write through a broadcast view (shape={view.shape}, "
            f"strides={view.strides})"
        )
    if view.is_compact():
        return None
    index = compaction.linear_addresses(view.shape, view.strides, view.offset)
    if np.unique(index).size != index.size:
        raise BroadcastError(
            f"Cannot write through an overlapping view (shape={view.shape}, "
            f"strides={view.strides})"
        )
    return index


def _kernel_ready(view: "NDArray") -> "NDArray":
    return view if view.is_compact() else compaction.compact(view)


def _finish(out: "NDArray") -> "NDArray":
    out.device.synchronize()
    return out


def ewise(op: str, a: "NDArray", b: "NDArray") -> "NDArray":
    """Elementwise ``a <op> b`` after broadcasting both operands."""
    _check_op(op, EWISE_BINOPS, "elementwise")
    _check_compatible(a, b)
    shape = broadcast_shapes(a.shape, b.shape)
    logger.debug("ewise %s: %s x %s -> %s on %s", op, a.shape, b.shape, shape, a.device)

    lhs = _kernel_ready(a.broadcast_to(shape))
    rhs = _kernel_ready(b.broadcast_to(shape))
    out = a.make(shape, device=a.device, dtype=a.dtype)
    a.device.run("ewise_binop", op, lhs.buffer, rhs.buffer, out.buffer)
    return _finish(out)


def scalar(op: str, a: "NDArray", value: Union[int, float]) -> "NDArray":
    """Elementwise ``a <op> value`` for a Python or NumPy real scalar."""
    _check_op(op, EWISE_BINOPS, "elementwise")
    value = _check_scalar(value, a.dtype)
    logger.debug("scalar %s: %s with %r on %s", op, a.shape, value, a.device)

    src = _kernel_ready(a)
    out = a.make(a.shape, device=a.device, dtype=a.dtype)
    a.device.run("scalar_binop", op, src.buffer, value, out.buffer)
    return _finish(out)


def unary(op: str, a: "NDArray") -> "NDArray":
    """Elementwise ``<op>(a)``."""
    _check_op(op, EWISE_UNOPS, "unary")
    if op in FLOAT_UNOPS and a.dtype.startswith("int"):
        raise DTypeError(f"{op!r} needs a floating-point array, got {a.dtype}")
    logger.debug("unary %s: %s on %s", op, a.shape, a.device)

    src = _kernel_ready(a)
    out = a.make(a.shape, device=a.device, dtype=a.dtype)
    a.device.run("ewise_unop", op, src.buffer, out.buffer)
    return _finish(out)


def matmul(a: "NDArray", b: "NDArray") -> "NDArray":
    """Matrix product of two 2-D arrays."""
    _check_compatible(a, b)
    if a.ndim != 2 or b.ndim != 2:
        raise ShapeError(f"matmul needs two 2-D operands, got {a.shape} and {b.shape}")
    m, k = a.shape
    k2, n = b.shape
    if k != k2:
        raise ShapeError(f"matmul inner dimensions differ: {a.shape} @ {b.shape}")
    logger.debug("matmul: (%d, %d) @ (%d, %d) on %s", m, k, k2, n, a.device)

    lhs = _kernel_ready(a)
    rhs = _kernel_ready(b)
    out = a.make((m, n), device=a.device, dtype=a.dtype)
    a.device.run("matmul", lhs.buffer, rhs.buffer, out.buffer, m, k, n)
    return _finish(out)


def reduce(
    op: str, a: "NDArray", axis: Axis = None, keepdims: bool = False
) -> "NDArray":
    """Reduce ``a`` over ``axis`` (None for all axes, or several axes at once).

    The reduced axes are permuted to the end so that each output element
    folds one contiguous block of the compacted input.
    """
    _check_op(op, REDUCE_OPS, "reduce")
    axes = normalize_axes(axis, a.ndim)
    kept = tuple(i for i in range(a.ndim) if i not in axes)
    reduce_size = math.prod(a.shape[i] for i in axes)
    if reduce_size == 0 and op in ("max", "min"):
        raise ShapeError(f"Cannot reduce an empty extent with {op!r}")
    if keepdims:
        out_shape = tuple(1 if i in axes else s for i, s in enumerate(a.shape))
    else:
        out_shape = tuple(a.shape[i] for i in kept)
    logger.debug(
        "reduce %s: %s over axes %s -> %s on %s", op, a.shape, axes, out_shape, a.device
    )

    src = _kernel_ready(a.permute(kept + axes))
    out = a.make(out_shape, device=a.device, dtype=a.dtype)
    a.device.run("reduce", op, src.buffer, out.buffer, reduce_size)
    return _finish(out)


def assign(view: "NDArray", other: "NDArray") -> None:
    """Write the values of ``other`` into the elements addressed by ``view``.

    ``other`` is broadcast to ``view.shape``; failing that, an ``other`` with
    the same number of elements is taken in row-major order.
    """
    index = _write_addresses(view)
    _check_compatible(view, other)
    try:
        source = other.broadcast_to(view.shape)
    except BroadcastError:
        if other.size != view.size:
            raise
        source = other
    logger.debug("assign: %s into %s on %s", other.shape, view.shape, view.device)

    if source.buffer is view.buffer:
        # always copy so reads cannot observe the writes
        source = compaction.compact(source)
    else:
        source = _kernel_ready(source)
    if index is None:
        view.device.run("copy", source.buffer, view.buffer)
    else:
        view.device.run("copy", source.buffer, view.buffer, dst_index=index)
    view.device.synchronize()


def fill(view: "NDArray", value: Union[int, float]) -> None:
    """Set every element addressed by ``view`` to ``value``."""
    index = _write_addresses(view)
    value = _check_scalar(value, view.dtype)
    logger.debug("fill: %s with %r on %s", view.shape, value, view.device)

    if index is None:
        view.device.run("fill", view.buffer, value)
    else:
        view.device.run("fill", view.buffer, value, index=index)
    view.device.synchronize()
