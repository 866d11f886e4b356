"""Device/kernel contract shared by every backend module.

A backend is a plain Python module. It exposes an ``Array`` buffer type and
the kernels listed in :data:`REQUIRED_KERNELS`. Kernels only ever receive
compact buffers plus scalar parameters; they never see shapes, strides or
offsets. Element addressing for strided views is done by the compaction
engine, which hands kernels flat address vectors instead.

Kernel signatures::

    Array(size, dtype)                     flat buffer; .size, .dtype
    ewise_binop(op, a, b, out)             out = a <op> b, equal sizes
    scalar_binop(op, a, val, out)          out = a <op> val
    ewise_unop(op, a, out)                 out = <op>(a)
    matmul(a, b, out, m, k, n)             out = (m, k) @ (k, n), row-major
    reduce(op, a, out, reduce_size)        one output per block of reduce_size
    fill(out, val, index=None)             all elements, or only out[index]
    copy(src, dst, src_index=None, dst_index=None)
                                           dst[dst_index] = src[src_index]
    to_numpy(a) / from_numpy(array, out)   host transfer of the flat buffer
    synchronize()                          wait for queued work

Comparison ops store ``1`` where the relation holds and ``0`` otherwise, in the
output's element type.

Backends agree with the reference backend bit for bit on every elementwise op
except ``exp``, ``log``, ``tanh`` and floating-point ``power``, which may
differ by up to :data:`TRANSCENDENTAL_MAX_ULP` units in the last place.
Float reductions and matmul agree within floating-point tolerance.

Integer buffers follow one policy on every backend: arithmetic wraps modulo
``2**bits``; ``div`` truncates toward zero and yields 0 for a zero divisor;
``power`` with a negative exponent yields 1 for base 1, +-1 for base -1 and
0 otherwise. Scalar operands reach integer kernels as in-range Python ints.
"""

from types import ModuleType

from ..errors import BackendError, DTypeError

DTYPES = ("float32", "float64", "int32", "int64")

EWISE_BINOPS = frozenset(
    {
        "add",
        "sub",
        "mul",
        "div",
        "power",
        "maximum",
        "minimum",
        "eq",
        "ne",
        "lt",
        "le",
        "gt",
        "ge",
    }
)
COMPARISON_OPS = frozenset({"eq", "ne", "lt", "le", "gt", "ge"})
EWISE_UNOPS = frozenset({"neg", "abs", "log", "exp", "tanh", "sqrt"})
REDUCE_OPS = frozenset({"sum", "max", "min", "prod"})
# integer arrays reject these
FLOAT_UNOPS = frozenset({"log", "exp", "tanh", "sqrt"})
TRANSCENDENTAL_MAX_ULP = 8

REQUIRED_KERNELS = (
    "Array",
    "ewise_binop",
    "scalar_binop",
    "ewise_unop",
    "matmul",
    "reduce",
    "fill",
    "copy",
    "to_numpy",
    "from_numpy",
    "synchronize",
)


def check_dtype(dtype: str) -> str:
    """Return ``dtype`` if it is a supported element type name."""
    if dtype not in DTYPES:
        raise DTypeError(f"Unsupported dtype {dtype!r}; expected one of {DTYPES}")
    return dtype


def validate_backend(module: ModuleType) -> ModuleType:
    """Check that ``module`` provides every kernel of the contract.

    Raises
    ------
    BackendError
        Naming the missing or non-callable attributes.
    """
    missing = [
        name for name in REQUIRED_KERNELS if not callable(getattr(module, name, None))
    ]
    if missing:
        raise BackendError(
            f"Backend {getattr(module, '__name__', module)!r} is missing kernels: "
            + ", ".join(missing)
        )
    return module
