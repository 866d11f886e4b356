import logging
import math
import operator
from typing import Any, Sequence, Union

import numpy as np

from ..config import get_config
from ..errors import (
    BoundsError,
    BroadcastError,
    DeviceMismatchError,
    DTypeError,
    InvalidAxesError,
    ShapeError,
)
from . import compaction, dispatch
from .contract import check_dtype
from .device import Device, default_device

logger = logging.getLogger(__name__)

Scalar = Union[int, float]
Range = Union[tuple[int, int, int], slice]
Index = Union[int, slice, tuple[Union[int, slice], ...]]


class NDArray:
    """Strided view over a flat, device-resident buffer.

    An NDArray is metadata only: ``shape``, ``strides``, ``offset`` and
    ``device``, plus a shared reference to the backend buffer. Views created
    by :meth:`permute`, :meth:`slice`, :meth:`broadcast_to` and
    :meth:`reshape` share that buffer and never copy data. Arithmetic,
    reductions and matrix multiplication go through
    :mod:`ndview.backend.dispatch`, which compacts operands as needed and
    returns arrays over fresh buffers.
    """

    _shape: tuple[int, ...]
    _strides: tuple[int, ...]
    _offset: int
    _device: Device
    _handle: Any

    def __init__(
        self, other: Any, device: Device | None = None, dtype: str | None = None
    ) -> None:
        """Construct an NDArray from another NDArray, NumPy array, or array-like.

        Parameters
        ----------
        other : NDArray | numpy.ndarray | array_like
            Source to create from. Data are always copied into a new buffer.
        device : Device | None, optional
            Target device. If omitted and ``other`` is an NDArray, the other's
            device is used; otherwise the configured default device is used.
        dtype : str | None, optional
            Element type. If omitted and ``other`` is an NDArray, its dtype is
            kept; otherwise the configured default dtype is used.
        """
        if isinstance(other, NDArray):
            # create a copy of existing NDArray
            if device is None:
                device = other.device
            source = other.to(device)
            if dtype is not None and dtype != source.dtype:
                self._init(NDArray(source.numpy(), device=device, dtype=dtype))
            else:
                self._init(compaction.compact(source))
        elif isinstance(other, np.ndarray):
            # create copy from numpy array
            device = device if device is not None else default_device()
            dtype = dtype if dtype is not None else get_config().default_dtype
            array = self.make(other.shape, device=device, dtype=dtype)
            array.device.run("from_numpy", np.ascontiguousarray(other), array._handle)
            array.device.synchronize()
            self._init(array)
        else:
            # see if we can create a numpy array from input
            array = NDArray(np.array(other), device=device, dtype=dtype)
            self._init(array)

    def _init(self, other: "NDArray") -> None:
        """Initialize this instance by taking metadata and handle from ``other``."""
        self._shape = other._shape
        self._strides = other._strides
        self._offset = other._offset
        self._device = other._device
        self._handle = other._handle

    @staticmethod
    def compact_strides(shape: tuple[int, ...]) -> tuple[int, ...]:
        """Compute compact (row-major) strides for a shape.

        Parameters
        ----------
        shape : tuple of int
            Target shape.

        Returns
        -------
        tuple of int
            Strides in elements for a compact layout.
        """
        stride = 1
        strides = []
        for i in range(len(shape) - 1, -1, -1):
            strides.append(stride)
            stride *= shape[i]
        return tuple(reversed(strides))

    @staticmethod
    def make(
        shape: tuple[int, ...],
        strides: tuple[int, ...] | None = None,
        device: Device | None = None,
        handle: Any = None,
        offset: int = 0,
        dtype: str | None = None,
    ) -> "NDArray":
        """Create a new NDArray with explicit metadata and optional existing storage.

        Parameters
        ----------
        shape : tuple of int
            Desired logical shape.
        strides : tuple of int | None, optional
            Strides in elements. If None, compact strides are computed.
        device : Device | None, optional
            Target device. Defaults to the configured default device.
        handle : Any, optional
            Existing backend buffer of ``device``. If None, new storage of
            ``prod(shape)`` elements is allocated.
        offset : int, optional
            Element offset into ``handle`` storage. Defaults to 0.
        dtype : str | None, optional
            Element type of new storage. Ignored when ``handle`` is given
            unless it disagrees with the buffer.

        Returns
        -------
        NDArray
            A new NDArray with the specified layout and storage.

        Raises
        ------
        ShapeError
            If ``shape`` and ``strides`` differ in length or a size is negative.
        DeviceMismatchError
            If ``handle`` does not belong to ``device``.
        BoundsError
            If some element of the view would address outside the buffer.
        """
        shape = tuple(operator.index(s) for s in shape)
        strides = (
            NDArray.compact_strides(shape)
            if strides is None
            else tuple(operator.index(s) for s in strides)
        )
        if len(shape) != len(strides):
            raise ShapeError(f"shape {shape} and strides {strides} differ in rank")
        if any(s < 0 for s in shape):
            raise ShapeError(f"Negative dimension in shape {shape}")
        device = device if device is not None else default_device()

        if handle is None:
            dtype = check_dtype(dtype if dtype is not None else get_config().default_dtype)
            handle = device.allocate(math.prod(shape), dtype)
        else:
            if not isinstance(handle, device.Array):
                raise DeviceMismatchError(
                    f"Buffer {type(handle).__module__}.{type(handle).__name__} "
                    f"does not belong to device {device}"
                )
            if dtype is not None and dtype != handle.dtype:
                raise DTypeError(
                    f"Requested dtype {dtype} but buffer holds {handle.dtype}"
                )
        NDArray._check_bounds(shape, strides, offset, handle.size)

        array = NDArray.__new__(NDArray)
        array._shape = shape
        array._strides = strides
        array._offset = offset
        array._device = device
        array._handle = handle
        return array

    @staticmethod
    def _check_bounds(
        shape: tuple[int, ...], strides: tuple[int, ...], offset: int, size: int
    ) -> None:
        if math.prod(shape) == 0:
            return
        low = offset + sum((n - 1) * s for n, s in zip(shape, strides) if s < 0)
        high = offset + sum((n - 1) * s for n, s in zip(shape, strides) if s > 0)
        if low < 0 or high >= size:
            raise BoundsError(
                f"View shape={shape} strides={strides} offset={offset} addresses "
                f"[{low}, {high}] outside a buffer of {size} elements"
            )

    ### Properties and string representations
    @property
    def shape(self) -> tuple[int, ...]:
        """tuple[int, ...]: Logical shape of the array."""
        return self._shape

    @property
    def strides(self) -> tuple[int, ...]:
        """tuple[int, ...]: Strides in elements for each dimension."""
        return self._strides

    @property
    def offset(self) -> int:
        """int: Element offset of the first logical element in the buffer."""
        return self._offset

    @property
    def device(self) -> Device:
        """Device: The device on which this array's storage resides."""
        return self._device

    @property
    def buffer(self) -> Any:
        """The backend buffer shared by every view derived from this array."""
        return self._handle

    @property
    def dtype(self) -> str:
        """str: Element type name of the underlying buffer."""
        return self._handle.dtype

    @property
    def ndim(self) -> int:
        """int: Number of dimensions."""
        return len(self._shape)

    @property
    def size(self) -> int:
        """int: Total number of elements as the product of ``shape``."""
        return math.prod(self._shape)

    def __repr__(self) -> str:
        """Return an unambiguous string representation."""
        return (
            "NDArray("
            + self.numpy().__str__()
            + f", dtype={self.dtype}, device={self.device})"
        )

    def __str__(self) -> str:
        """Return a readable string representation of the array contents."""
        return self.numpy().__str__()

    ### Basic array manipulation
    def fill(self, value: Scalar) -> None:
        """Fill every element addressed by this view with a scalar, in place.

        Raises
        ------
        BroadcastError
            If the view has a broadcast (zero-stride) dimension.
        """
        dispatch.fill(self, value)

    def to(self, device: Device) -> "NDArray":
        """Move or copy the array to another device.

        Parameters
        ----------
        device : Device
            Target device.

        Returns
        -------
        NDArray
            ``self`` if already on ``device``; otherwise a new NDArray on ``device``.
        """
        if self.device == device:
            return self
        else:
            logger.debug("transferring %s from %s to %s", self.shape, self.device, device)
            return NDArray(self.numpy(), device=device, dtype=self.dtype)

    def numpy(self) -> np.ndarray:
        """Copy the logical contents to a new host NumPy array."""
        compact = self.compact()
        flat = compact.device.run("to_numpy", compact._handle)
        return np.array(flat, copy=True).reshape(self.shape)

    def tolist(self) -> Any:
        """Return the contents as (nested) Python lists."""
        return self.numpy().tolist()

    def is_contiguous(self) -> bool:
        """Return whether the strides are the row-major strides of ``shape``."""
        return self._strides == self.compact_strides(self._shape)

    def is_compact(self) -> bool:
        """Return whether kernels can consume the buffer directly.

        The array is compact if it is contiguous, starts at offset 0, and the
        underlying storage size equals ``prod(shape)``.
        """
        return (
            self.is_contiguous()
            and self._offset == 0
            and math.prod(self.shape) == self._handle.size
        )

    def compact(self) -> "NDArray":
        """Return a compact copy if needed, otherwise return ``self``.

        Returns
        -------
        NDArray
            A compact array with identical contents.
        """
        if self.is_compact():
            return self
        else:
            return compaction.compact(self)

    def as_strided(self, shape: tuple[int, ...], strides: tuple[int, ...]) -> "NDArray":
        """Create a new view with given shape and strides (no data copy).

        Raises
        ------
        ShapeError
            If ``shape`` and ``strides`` differ in length.
        BoundsError
            If the view would address outside the buffer.
        """
        return NDArray.make(
            shape,
            strides=strides,
            device=self.device,
            handle=self._handle,
            offset=self._offset,
        )

    @property
    def flat(self) -> "NDArray":
        """NDArray: A view of the array flattened to 1-D."""
        return self.reshape((self.size,))

    def _infer_shape(self, new_shape: Sequence[int]) -> tuple[int, ...]:
        new_shape = tuple(operator.index(s) for s in new_shape)
        unknown = [i for i, s in enumerate(new_shape) if s == -1]
        if len(unknown) > 1:
            raise ShapeError(f"Only one dimension can be -1, got {new_shape}")
        if unknown:
            known = math.prod(s for s in new_shape if s != -1)
            if known == 0 or self.size % known != 0:
                raise ShapeError(f"Cannot reshape size {self.size} into {new_shape}")
            i = unknown[0]
            new_shape = new_shape[:i] + (self.size // known,) + new_shape[i + 1 :]
        return new_shape

    def reshape(self, new_shape: Sequence[int]) -> "NDArray":
        """Reshape to ``new_shape`` without copying memory.

        One entry of ``new_shape`` may be ``-1`` and is inferred.

        Raises
        ------
        ShapeError
            If the size changes, or if the array is not contiguous and the
            ``auto_compact_reshape`` option is off.
        """
        new_shape = self._infer_shape(new_shape)
        if math.prod(self.shape) != math.prod(new_shape):
            raise ShapeError(
                f"Cannot reshape {self.shape} ({self.size} elements) into {new_shape}"
            )
        if not self.is_contiguous():
            if not get_config().auto_compact_reshape:
                raise ShapeError(
                    "Array must be contiguous to reshape; call compact() first"
                )
            return self.compact().reshape(new_shape)

        return NDArray.make(
            new_shape,
            NDArray.compact_strides(new_shape),
            self.device,
            self._handle,
            self._offset,
        )

    def permute(self, new_axes: Sequence[int]) -> "NDArray":
        """Permute dimensions according to ``new_axes`` without copying memory.

        Parameters
        ----------
        new_axes : sequence of int
            A permutation of ``range(ndim)`` describing the new axis order.

        Returns
        -------
        NDArray
            A view with permuted shape/strides sharing the same storage.

        Raises
        ------
        InvalidAxesError
            If ``new_axes`` is not a permutation of all axes.
        """
        try:
            new_axes = tuple(operator.index(a) for a in new_axes)
        except TypeError:
            raise InvalidAxesError(f"Axes must be integers, got {new_axes!r}") from None
        if sorted(new_axes) != list(range(self.ndim)):
            raise InvalidAxesError(
                f"{new_axes} is not a permutation of the {self.ndim} axes"
            )

        new_shape = tuple(self.shape[i] for i in new_axes)
        new_strides = tuple(self.strides[i] for i in new_axes)

        return NDArray.make(
            new_shape,
            new_strides,
            self.device,
            self._handle,
            self._offset,
        )

    def broadcast_to(self, new_shape: Sequence[int]) -> "NDArray":
        """Broadcast to ``new_shape`` by adjusting strides (no copy).

        Shapes are aligned from the trailing axis. Leading axes that are new
        and axes of size 1 that grow get stride 0; every other axis must match.

        Raises
        ------
        BroadcastError
            If a non-singleton dimension is changed or ``new_shape`` has fewer
            dimensions than the array.
        """
        new_shape = tuple(new_shape)
        if len(new_shape) < self.ndim:
            raise BroadcastError(
                f"Cannot broadcast {self.shape} to lower-rank shape {new_shape}"
            )

        lead = len(new_shape) - self.ndim
        new_strides = [0] * lead
        for old, new, stride in zip(self.shape, new_shape[lead:], self.strides):
            if old == new:
                new_strides.append(stride)
            elif old == 1:
                new_strides.append(0)
            else:
                raise BroadcastError(f"Cannot broadcast {self.shape} to {new_shape}")

        return NDArray.make(
            new_shape,
            tuple(new_strides),
            self.device,
            self._handle,
            self._offset,
        )

    ### Get and set elements

    def process_slice(self, sl: slice, dim: int) -> tuple[int, int, int]:
        """Normalize a Python slice to explicit ``(start, stop, step)``.

        ``None`` fields take their defaults and negative bounds count from the
        end, clamped to the dimension like Python sequences.

        Raises
        ------
        BoundsError
            If the step is not positive.
        """
        if sl.step is not None and sl.step <= 0:
            raise BoundsError("Only positive slice steps are supported")
        start, stop, step = sl.indices(self.shape[dim])
        return start, max(start, stop), step

    def process_index(self, idx: Any, dim: int) -> tuple[int, int, int]:
        """Turn an integer index into the length-1 range it selects."""
        size = self.shape[dim]
        i = operator.index(idx)
        if i < 0:
            i += size
        if not 0 <= i < size:
            raise BoundsError(f"Index {idx} is out of bounds for axis {dim} of size {size}")
        return i, i + 1, 1

    def __getitem__(self, idxs: Index) -> "NDArray":
        """Return a strided view per the given index/slice specification.

        Integers select a single position but keep the dimension; axes not
        mentioned are taken whole.

        Raises
        ------
        BoundsError
            If an index is out of range or there are more indices than axes.
        """
        # handle singleton as tuple, everything as ranges
        if not isinstance(idxs, tuple):
            idxs = (idxs,)
        if len(idxs) > self.ndim:
            raise BoundsError(
                f"Too many indices ({len(idxs)}) for an array with {self.ndim} dims"
            )
        ranges = [
            self.process_slice(s, i)
            if isinstance(s, slice)
            else self.process_index(s, i)
            for i, s in enumerate(idxs)
        ]
        ranges.extend((0, n, 1) for n in self.shape[len(idxs) :])
        return self.slice(ranges)

    def __setitem__(self, idxs: Index, other: Union["NDArray", Scalar]) -> None:
        """Assign, in place, to the strided view specified by ``idxs``.

        Parameters
        ----------
        idxs : int | slice | tuple[int | slice, ...]
            Indexing specification producing the output view (same semantics
            as ``__getitem__``).
        other : NDArray | float
            Source data. An NDArray is broadcast to the view's shape (or taken
            in row-major order when sizes match); a scalar fills the view.
        """
        view = self.__getitem__(idxs)
        if isinstance(other, NDArray):
            dispatch.assign(view, other)
        else:
            dispatch.fill(view, other)

    def slice(self, ranges: Sequence[Range]) -> "NDArray":
        """Select a half-open ``(start, stop, step)`` range on every axis (no copy).

        Parameters
        ----------
        ranges : sequence of (start, stop, step) or slice
            One range per axis with ``0 <= start <= stop <= shape[k]`` and
            ``step > 0``. ``slice`` objects may leave fields as None.

        Returns
        -------
        NDArray
            A view with ``shape[k] = ceil((stop - start) / step)``, strides
            scaled by the steps and the offset moved to the range starts.

        Raises
        ------
        BoundsError
            If a range leaves its axis, has a non-positive step, or the number
            of ranges differs from ``ndim``.
        """
        ranges = tuple(ranges)
        if len(ranges) != self.ndim:
            raise BoundsError(
                f"Need one range per dimension: got {len(ranges)} for {self.ndim}"
            )

        new_shape = []
        new_strides = []
        new_offset = self._offset
        for dim, (rng, size, stride) in enumerate(zip(ranges, self.shape, self.strides)):
            if isinstance(rng, slice):
                start = 0 if rng.start is None else rng.start
                stop = size if rng.stop is None else rng.stop
                step = 1 if rng.step is None else rng.step
            else:
                start, stop, step = rng
            if step <= 0 or not 0 <= start <= stop <= size:
                raise BoundsError(
                    f"Range ({start}, {stop}, {step}) is invalid for axis {dim} "
                    f"of size {size}"
                )
            new_shape.append((stop - start + step - 1) // step)
            new_strides.append(stride * step)
            new_offset += start * stride

        return NDArray.make(
            tuple(new_shape),
            tuple(new_strides),
            self.device,
            self._handle,
            new_offset,
        )

    ### Element-wise and scalar operations

    def ewise_or_scalar(self, other: Union["NDArray", Scalar], op: str) -> "NDArray":
        """Dispatch ``self <op> other`` as an elementwise or scalar kernel."""
        if isinstance(other, NDArray):
            return dispatch.ewise(op, self, other)
        else:
            return dispatch.scalar(op, self, other)

    def __add__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise addition."""
        return self.ewise_or_scalar(other, "add")

    __radd__ = __add__

    def __sub__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise subtraction."""
        return self.ewise_or_scalar(other, "sub")

    def __rsub__(self, other: Scalar) -> "NDArray":
        """Elementwise reverse subtraction."""
        return (-self) + other

    def __mul__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise multiplication."""
        return self.ewise_or_scalar(other, "mul")

    __rmul__ = __mul__

    def __truediv__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise true division."""
        return self.ewise_or_scalar(other, "div")

    def __neg__(self) -> "NDArray":
        """Elementwise negation."""
        return dispatch.unary("neg", self)

    def __abs__(self) -> "NDArray":
        """Elementwise absolute value."""
        return dispatch.unary("abs", self)

    abs = __abs__

    def __pow__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise exponentiation."""
        return self.ewise_or_scalar(other, "power")

    def maximum(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise maximum."""
        return self.ewise_or_scalar(other, "maximum")

    def minimum(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise minimum."""
        return self.ewise_or_scalar(other, "minimum")

    def log(self) -> "NDArray":
        """Elementwise natural logarithm."""
        return dispatch.unary("log", self)

    def exp(self) -> "NDArray":
        """Elementwise exponential."""
        return dispatch.unary("exp", self)

    def tanh(self) -> "NDArray":
        """Elementwise hyperbolic tangent."""
        return dispatch.unary("tanh", self)

    def sqrt(self) -> "NDArray":
        """Elementwise square root."""
        return dispatch.unary("sqrt", self)

    ### Binary operations
    def __eq__(self, other: Union["NDArray", Scalar]) -> "NDArray":  # type: ignore[override]
        """Elementwise equality returning a 1/0 mask."""
        return self.ewise_or_scalar(other, "eq")

    def __ne__(self, other: Union["NDArray", Scalar]) -> "NDArray":  # type: ignore[override]
        """Elementwise inequality returning a 1/0 mask."""
        return self.ewise_or_scalar(other, "ne")

    def __ge__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise greater-or-equal returning a 1/0 mask."""
        return self.ewise_or_scalar(other, "ge")

    def __gt__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise greater-than returning a 1/0 mask."""
        return self.ewise_or_scalar(other, "gt")

    def __lt__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise less-than returning a 1/0 mask."""
        return self.ewise_or_scalar(other, "lt")

    def __le__(self, other: Union["NDArray", Scalar]) -> "NDArray":
        """Elementwise less-or-equal returning a 1/0 mask."""
        return self.ewise_or_scalar(other, "le")

    ### Matrix multiplication
    def __matmul__(self, other: "NDArray") -> "NDArray":
        """Matrix multiplication of two 2D arrays.

        Raises
        ------
        ShapeError
            If either operand is not 2-D or the inner dimensions differ.
        """
        return dispatch.matmul(self, other)

    ### Reductions, i.e., sum/max over all elements or over given axes
    def sum(
        self, axis: int | Sequence[int] | None = None, keepdims: bool = False
    ) -> "NDArray":
        """Sum of array elements over the given axis or axes.

        Parameters
        ----------
        axis : int | sequence of int | None, optional
            Axis or axes to reduce over. If None, sum over all elements.
        keepdims : bool, optional
            If True, keep the reduced dimensions with size 1.

        Returns
        -------
        NDArray
            The reduced array.
        """
        return dispatch.reduce("sum", self, axis, keepdims=keepdims)

    def max(
        self, axis: int | Sequence[int] | None = None, keepdims: bool = False
    ) -> "NDArray":
        """Maximum of array elements over the given axis or axes.

        Raises
        ------
        ShapeError
            If a reduced extent is empty.
        """
        return dispatch.reduce("max", self, axis, keepdims=keepdims)

    def min(
        self, axis: int | Sequence[int] | None = None, keepdims: bool = False
    ) -> "NDArray":
        """Minimum of array elements over the given axis or axes."""
        return dispatch.reduce("min", self, axis, keepdims=keepdims)

    def prod(
        self, axis: int | Sequence[int] | None = None, keepdims: bool = False
    ) -> "NDArray":
        """Product of array elements over the given axis or axes."""
        return dispatch.reduce("prod", self, axis, keepdims=keepdims)


def empty(
    shape: Sequence[int], device: Device | None = None, dtype: str | None = None
) -> NDArray:
    """Allocate an uninitialized compact array."""
    return NDArray.make(tuple(shape), device=device, dtype=dtype)


def full(
    shape: Sequence[int],
    fill_value: Scalar,
    device: Device | None = None,
    dtype: str | None = None,
) -> NDArray:
    """Allocate a compact array with every element set to ``fill_value``."""
    arr = empty(shape, device=device, dtype=dtype)
    arr.fill(fill_value)
    return arr


def zeros(
    shape: Sequence[int], device: Device | None = None, dtype: str | None = None
) -> NDArray:
    return full(shape, 0, device=device, dtype=dtype)


def ones(
    shape: Sequence[int], device: Device | None = None, dtype: str | None = None
) -> NDArray:
    return full(shape, 1, device=device, dtype=dtype)


def array(a: Any, dtype: str | None = None, device: Device | None = None) -> NDArray:
    """Convenience methods to match numpy a bit more closely."""
    if dtype is not None:
        check_dtype(dtype)
    return NDArray(a, device=device, dtype=dtype)
