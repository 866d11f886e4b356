"""Exception taxonomy for view algebra, dispatch and backends.

Every error derives from :class:`NDArrayError` and from the builtin exception
it specializes, so ``except ValueError`` style handlers keep working.
Validation errors are raised before any buffer is allocated or any kernel runs.
"""


class NDArrayError(Exception):
    """Base exception for all ndview errors."""


class ShapeError(NDArrayError, ValueError):
    """Rank or dimension mismatch, or a reshape that cannot be honored."""


class BroadcastError(ShapeError):
    """Incompatible non-1 dimensions, or a write through a broadcast dimension."""


class BoundsError(NDArrayError, IndexError):
    """An index, slice or view that addresses outside its array or buffer."""


class InvalidAxesError(NDArrayError, ValueError):
    """A malformed axis permutation or reduction axis specification."""


class DeviceMismatchError(NDArrayError, ValueError):
    """Operands (or an operand and its buffer) live on different devices."""


class DTypeError(NDArrayError, TypeError):
    """Element type mismatch between operands, or an unsupported element type."""


class BackendError(NDArrayError, RuntimeError):
    """A kernel or backend failed; never retried by the dispatcher."""
