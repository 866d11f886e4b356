"""Reference backend: one Python loop per kernel over ``array.array`` storage.

Slow, but it is the numeric ground truth the vectorized backends are tested
against. Every kernel computes in Python floats or ints and converts on store:
floats round to the buffer precision and ints wrap to the buffer width. Float
reductions and matmul accumulate in double precision. ``exp``, ``log`` and
``tanh`` round a double-precision result, so float32 results may differ from
vectorized float32 routines by a few units in the last place.
"""

import array
import math
import operator
from typing import Any, Callable, Iterable, Sequence

import numpy as np

__device_name__ = "reference"

_TYPECODES = {"float32": "f", "float64": "d", "int32": "i", "int64": "q"}


def _div(x: Any, y: Any) -> float:
    try:
        return x / y
    except ZeroDivisionError:
        if x == 0 or math.isnan(x):
            return math.nan
        return math.copysign(math.inf, x) * math.copysign(1.0, y)


def _power(x: Any, y: Any) -> Any:
    if isinstance(x, int) and isinstance(y, int) and y >= 0:
        return x**y
    try:
        return math.pow(x, y)
    except ValueError:
        return math.nan
    except OverflowError:
        return math.inf


def _int_div(x: int, y: int) -> int:
    if y == 0:
        return 0
    q = abs(x) // abs(y)
    return q if (x < 0) == (y < 0) else -q


def _int_power(x: int, y: int) -> int:
    if y >= 0:
        # residue mod 2**64 keeps the wrapped result for every int dtype
        return pow(x, y, 1 << 64)
    if x == 1:
        return 1
    if x == -1:
        return -1 if y % 2 else 1
    return 0


def _maximum(x: Any, y: Any) -> Any:
    if x != x or y != y:
        return math.nan
    return x if x >= y else y


def _minimum(x: Any, y: Any) -> Any:
    if x != x or y != y:
        return math.nan
    return x if x <= y else y


def _log(x: Any) -> float:
    if x > 0:
        return math.log(x)
    return -math.inf if x == 0 else math.nan


def _exp(x: Any) -> float:
    try:
        return math.exp(x)
    except OverflowError:
        return math.inf


def _sqrt(x: Any) -> float:
    return math.sqrt(x) if x >= 0 else math.nan


_BINOPS: dict[str, Callable[[Any, Any], Any]] = {
    "add": operator.add,
    "sub": operator.sub,
    "mul": operator.mul,
    "div": _div,
    "power": _power,
    "maximum": _maximum,
    "minimum": _minimum,
    "eq": lambda x, y: int(x == y),
    "ne": lambda x, y: int(x != y),
    "lt": lambda x, y: int(x < y),
    "le": lambda x, y: int(x <= y),
    "gt": lambda x, y: int(x > y),
    "ge": lambda x, y: int(x >= y),
}

_INT_BINOPS: dict[str, Callable[[Any, Any], Any]] = {
    **_BINOPS,
    "div": _int_div,
    "power": _int_power,
}

_UNOPS: dict[str, Callable[[Any], Any]] = {
    "neg": operator.neg,
    "abs": abs,
    "log": _log,
    "exp": _exp,
    "tanh": math.tanh,
    "sqrt": _sqrt,
}


def _max(values: Sequence[Any]) -> Any:
    result = values[0]
    for v in values[1:]:
        result = _maximum(result, v)
    return result


def _min(values: Sequence[Any]) -> Any:
    result = values[0]
    for v in values[1:]:
        result = _minimum(result, v)
    return result


_REDUCERS: dict[str, Callable[[Sequence[Any]], Any]] = {
    "sum": sum,
    "max": _max,
    "min": _min,
    "prod": math.prod,
}


class Array:
    def __init__(self, size: int, dtype: str = "float32"):
        self._dtype = dtype
        self.buffer = array.array(_TYPECODES[dtype], [0]) * size
        self._convert: Callable[[Any], Any] = float
        self.binops = _BINOPS
        if dtype.startswith("int"):
            self._bits = self.buffer.itemsize * 8
            self._convert = self._wrap
            self.binops = _INT_BINOPS

    @property
    def size(self) -> int:
        return len(self.buffer)

    @property
    def dtype(self) -> str:
        return self._dtype

    def ptr(self) -> int:
        return self.buffer.buffer_info()[0]

    def _wrap(self, value: Any) -> int:
        value = int(value) & ((1 << self._bits) - 1)
        if value >= 1 << (self._bits - 1):
            value -= 1 << self._bits
        return value

    def store(self, index: int, value: Any) -> None:
        self.buffer[index] = self._convert(value)

    def store_all(self, values: Iterable[Any]) -> None:
        for i, v in enumerate(values):
            self.store(i, v)

    def coerce(self, value: Any) -> Any:
        """Round a scalar operand to this buffer's floating-point precision."""
        if self.binops is _INT_BINOPS:
            return value
        return array.array(self.buffer.typecode, [float(value)])[0]


def to_numpy(a: Array) -> np.ndarray:
    return np.array(a.buffer, dtype=np.dtype(a.dtype))


def from_numpy(numpy_array: np.ndarray, out: Array) -> None:
    if numpy_array.size != out.size:
        raise ValueError(
            f"cannot copy {numpy_array.size} elements into a buffer of {out.size}"
        )
    out.store_all(v.item() for v in numpy_array.flat)


def synchronize() -> None:
    pass


def fill(out: Array, val: float, index: np.ndarray | None = None) -> None:
    addresses = range(out.size) if index is None else index
    for i in addresses:
        out.store(i, val)


def copy(
    src: Array,
    dst: Array,
    src_index: np.ndarray | None = None,
    dst_index: np.ndarray | None = None,
) -> None:
    reads = range(src.size) if src_index is None else src_index
    writes = range(dst.size) if dst_index is None else dst_index
    if len(reads) != len(writes):
        raise ValueError(f"copy of {len(reads)} elements into {len(writes)} slots")
    values = [src.buffer[i] for i in reads]
    for i, v in zip(writes, values):
        dst.store(i, v)


def ewise_binop(op: str, a: Array, b: Array, out: Array) -> None:
    fn = a.binops[op]
    out.store_all(fn(x, y) for x, y in zip(a.buffer, b.buffer))


def scalar_binop(op: str, a: Array, val: float, out: Array) -> None:
    fn = a.binops[op]
    val = a.coerce(val)
    out.store_all(fn(x, val) for x in a.buffer)


def ewise_unop(op: str, a: Array, out: Array) -> None:
    fn = _UNOPS[op]
    out.store_all(fn(x) for x in a.buffer)


def matmul(a: Array, b: Array, out: Array, m: int, k: int, n: int) -> None:
    lhs, rhs = a.buffer, b.buffer
    for i in range(m):
        row = lhs[i * k : (i + 1) * k]
        for j in range(n):
            out.store(i * n + j, sum(x * rhs[t * n + j] for t, x in enumerate(row)))


def reduce(op: str, a: Array, out: Array, reduce_size: int) -> None:
    fn = _REDUCERS[op]
    for i in range(out.size):
        out.store(i, fn(a.buffer[i * reduce_size : (i + 1) * reduce_size]))
