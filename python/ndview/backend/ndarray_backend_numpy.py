import numpy as np

__device_name__ = "cpu_numpy"

_BINOPS = {
    "add": np.add,
    "sub": np.subtract,
    "mul": np.multiply,
    "div": np.true_divide,
    "power": np.power,
    "maximum": np.maximum,
    "minimum": np.minimum,
    "eq": np.equal,
    "ne": np.not_equal,
    "lt": np.less,
    "le": np.less_equal,
    "gt": np.greater,
    "ge": np.greater_equal,
}

_UNOPS = {
    "neg": np.negative,
    "abs": np.abs,
    "log": np.log,
    "exp": np.exp,
    "tanh": np.tanh,
    "sqrt": np.sqrt,
}

_REDUCERS = {
    "sum": np.sum,
    "max": np.max,
    "min": np.min,
    "prod": np.prod,
}


def _int_divide(x: np.ndarray, y: np.ndarray | int) -> np.ndarray:
    # truncate toward zero; a zero divisor gives 0
    y = np.asarray(y, dtype=x.dtype)
    safe = np.where(y == 0, 1, y).astype(x.dtype)
    q = x // safe
    q = q + ((x - q * safe != 0) & ((x < 0) != (safe < 0))).astype(x.dtype)
    return np.where(y == 0, 0, q).astype(x.dtype)


def _int_power(x: np.ndarray, y: np.ndarray | int) -> np.ndarray:
    # a negative exponent gives the truncated real result
    y = np.asarray(y, dtype=x.dtype)
    negative = y < 0
    result = np.power(x, np.where(negative, 0, y).astype(x.dtype))
    odd = (y % 2) != 0
    recip = np.where(x == 1, 1, np.where(x == -1, np.where(odd, -1, 1), 0))
    return np.where(negative, recip, result).astype(x.dtype)


_INT_BINOPS = {**_BINOPS, "div": _int_divide, "power": _int_power}


def _binop(op: str, dtype: np.dtype):
    return _INT_BINOPS[op] if dtype.kind == "i" else _BINOPS[op]


class Array:
    def __init__(self, size: int, dtype: str = "float32"):
        # use numpy array as buffer to store the data
        self.buffer = np.empty(size, dtype=np.dtype(dtype))

    @property
    def size(self) -> int:
        return self.buffer.size

    @property
    def dtype(self) -> str:
        return self.buffer.dtype.name

    def ptr(self) -> int:
        return self.buffer.ctypes.data


def to_numpy(a: Array) -> np.ndarray:
    """Return the flat host array backing ``a`` (no copy)."""
    return a.buffer


def from_numpy(numpy_array: np.ndarray, out: Array) -> None:
    """Copy values from an arbitrary NumPy array into ``out.buffer``.

    Parameters
    ----------
    numpy_array : numpy.ndarray
        Input array. Its flattened size must match ``out.size``.
    out : Array
        Destination storage whose buffer will be overwritten.

    Notes
    -----
    Values are copied in row-major (C-order) via ``numpy_array.flat`` and cast
    to the element type of ``out``. NumPy raises ``ValueError`` if sizes are
    incompatible.
    """
    out.buffer[:] = numpy_array.flat


def synchronize() -> None:
    """NumPy kernels run eagerly; nothing is ever queued."""


def fill(out: Array, val: float, index: np.ndarray | None = None) -> None:
    """Fill ``out.buffer`` with a scalar value.

    Parameters
    ----------
    out : Array
        Destination storage to fill.
    val : float
        Scalar value to write.
    index : numpy.ndarray | None, optional
        Flat addresses to write. If None, every element is written.
    """
    if index is None:
        out.buffer.fill(val)
    else:
        out.buffer[index] = val


def copy(
    src: Array,
    dst: Array,
    src_index: np.ndarray | None = None,
    dst_index: np.ndarray | None = None,
) -> None:
    """Copy elements between flat buffers, optionally gathering or scattering.

    Parameters
    ----------
    src : Array
        Source storage.
    dst : Array
        Destination storage.
    src_index : numpy.ndarray | None, optional
        Flat addresses read from ``src`` in order. If None, all of ``src``.
    dst_index : numpy.ndarray | None, optional
        Flat addresses written in ``dst`` in order. If None, all of ``dst``.
    """
    values = src.buffer if src_index is None else src.buffer[src_index]
    if dst_index is None:
        dst.buffer[:] = values
    else:
        dst.buffer[dst_index] = values


def ewise_binop(op: str, a: Array, b: Array, out: Array) -> None:
    """Elementwise binary operation ``out = a <op> b`` for compact buffers.

    Parameters
    ----------
    op : str
        Operator tag from ``contract.EWISE_BINOPS``.
    a : Array
        First input (compact).
    b : Array
        Second input (compact). Must have the same size as ``a``.
    out : Array
        Output (compact). Comparisons store ``1`` or ``0``.

    Notes
    -----
    Integer ``div`` truncates toward zero and gives 0 for a zero divisor;
    integer ``power`` with a negative exponent gives the truncated real
    result. Other integer arithmetic wraps.
    """
    with np.errstate(all="ignore"):
        out.buffer[:] = _binop(op, a.buffer.dtype)(a.buffer, b.buffer)


def scalar_binop(op: str, a: Array, val: float, out: Array) -> None:
    """Elementwise binary operation with a scalar ``out = a <op> val``."""
    with np.errstate(all="ignore"):
        out.buffer[:] = _binop(op, a.buffer.dtype)(a.buffer, val)


def ewise_unop(op: str, a: Array, out: Array) -> None:
    """Elementwise unary operation ``out = <op>(a)`` for compact buffers.

    Notes
    -----
    See :func:`numpy.log` and :func:`numpy.sqrt` for behavior outside their
    domains (``-inf`` or ``nan``). Integer ``neg`` and ``abs`` wrap.
    """
    with np.errstate(all="ignore"):
        out.buffer[:] = _UNOPS[op](a.buffer)


def matmul(a: Array, b: Array, out: Array, m: int, k: int, n: int) -> None:
    """Matrix multiplication ``out = (A @ B).ravel()`` with compact buffers.

    Parameters
    ----------
    a : Array
        Left matrix storage containing ``A`` flattened with shape ``(m, k)``.
    b : Array
        Right matrix storage containing ``B`` flattened with shape ``(k, n)``.
    out : Array
        Output storage for ``C = A @ B`` flattened with shape ``(m * n,)``.
    m : int
        Number of rows of ``A`` and ``C``.
    k : int
        Shared inner dimension of ``A`` and ``B``.
    n : int
        Number of columns of ``B`` and ``C``.
    """
    out.buffer[:] = (a.buffer.reshape(m, k) @ b.buffer.reshape(k, n)).reshape(-1)


def reduce(op: str, a: Array, out: Array, reduce_size: int) -> None:
    """Reduce each contiguous block of ``reduce_size`` elements to one value.

    Parameters
    ----------
    op : str
        Reduction tag from ``contract.REDUCE_OPS``.
    a : Array
        Input (compact), conceptually reshaped to ``(out.size, reduce_size)``.
    out : Array
        Output (compact) receiving one value per block.
    reduce_size : int
        Number of input elements folded into each output element.
    """
    out.buffer[:] = _REDUCERS[op](a.buffer.reshape(out.size, reduce_size), axis=1)
