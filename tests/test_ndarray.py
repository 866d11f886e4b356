import operator
from typing import Any, Callable

import numpy as np
import pytest
from ndview import errors
from ndview.backend import device as backend_device
from ndview.backend import ndarray as nd

_DEVICES = [backend_device.cpu_numpy(), backend_device.reference()]
_DEVICE_IDS = ["numpy", "reference"]

INT32_MIN, INT32_MAX = -(2**31), 2**31 - 1


def _wrap(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    return value - (1 << bits) if value >= 1 << (bits - 1) else value


# (nd view, numpy equivalent, shape, strides, offset) over a (4, 6) compact base
view_params = {
    "permute": (
        lambda X: X.permute((1, 0)),
        lambda X: X.T,
        (6, 4),
        (1, 6),
        0,
    ),
    "block": (lambda X: X[1:3, 2:5], lambda X: X[1:3, 2:5], (2, 3), (6, 1), 8),
    "stepped": (lambda X: X[::2, 1::3], lambda X: X[::2, 1::3], (2, 2), (12, 3), 1),
    "row": (lambda X: X[2], lambda X: X[2:3], (1, 6), (6, 1), 12),
    "negative": (lambda X: X[-1, -2:], lambda X: X[-1:, -2:], (1, 2), (6, 1), 22),
    "broadcast": (
        lambda X: X[1:2].broadcast_to((5, 1, 6)),
        lambda X: np.broadcast_to(X[1:2], (5, 1, 6)),
        (5, 1, 6),
        (0, 6, 1),
        6,
    ),
    "reshape": (
        lambda X: X.reshape((2, 12)),
        lambda X: X.reshape(2, 12),
        (2, 12),
        (12, 1),
        0,
    ),
    "reshape_rows": (
        lambda X: X[1:3].reshape((12,)),
        lambda X: X[1:3].reshape(12),
        (12,),
        (1,),
        6,
    ),
    "permute_slice": (
        lambda X: X.permute((1, 0))[1:3],
        lambda X: X.T[1:3],
        (2, 4),
        (1, 6),
        1,
    ),
}


@pytest.mark.parametrize("name", list(view_params))
@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_view_layout(name: str, device: backend_device.Device) -> None:
    nd_fn, np_fn, shape, strides, offset = view_params[name]
    _A = np.arange(24, dtype=np.int64).reshape(4, 6)
    A = nd.array(_A, dtype="int64", device=device)
    view = nd_fn(A)
    assert view.shape == shape
    assert view.strides == strides
    assert view.offset == offset
    assert view.buffer is A.buffer
    np.testing.assert_array_equal(view.numpy(), np_fn(_A))


BINARY = {
    "add": operator.add,
    "sub": operator.sub,
    "mul": operator.mul,
    "div": operator.truediv,
    "eq": operator.eq,
    "ne": operator.ne,
    "lt": operator.lt,
    "le": operator.le,
    "gt": operator.gt,
    "ge": operator.ge,
    "maximum": lambda a, b: a.maximum(b) if isinstance(a, nd.NDArray) else np.maximum(a, b),
    "minimum": lambda a, b: a.minimum(b) if isinstance(a, nd.NDArray) else np.minimum(a, b),
}


@pytest.mark.parametrize("fn", list(BINARY.values()), ids=list(BINARY))
@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_binary_on_strided_operands(
    fn: Callable[[Any, Any], Any], device: backend_device.Device
) -> None:
    # transposed left operand, broadcast row on the right; row 1 ties
    _A = np.random.randn(4, 3)
    _B = _A.T[1].copy()
    A = nd.array(_A, dtype="float64", device=device).permute((1, 0))
    B = nd.array(_B, dtype="float64", device=device)
    out = fn(A, B)
    assert out.shape == (3, 4)
    assert out.is_compact()
    expected = np.asarray(fn(_A.T, _B), dtype=np.float64)
    np.testing.assert_allclose(out.numpy(), expected, rtol=1e-12, atol=0)


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_scalar_ops_float32(device: backend_device.Device) -> None:
    _A = np.random.uniform(0.5, 2.0, size=(3, 5)).astype(np.float32)
    A = nd.array(_A, device=device)
    cases = [
        (A * 5.0, _A * np.float32(5.0)),
        (5.0 * A, _A * np.float32(5.0)),
        (A / 3.0, _A / np.float32(3.0)),
        (A - 0.1, _A - np.float32(0.1)),
        (2.0 - A, np.float32(2.0) - _A),
        (A + 1, _A + np.float32(1)),
        (A.maximum(1.0), np.maximum(_A, np.float32(1.0))),
        (A.minimum(1.0), np.minimum(_A, np.float32(1.0))),
        (A >= 1.0, _A >= np.float32(1.0)),
    ]
    for got, expected in cases:
        assert got.dtype == "float32"
        np.testing.assert_array_equal(got.numpy(), expected)
    np.testing.assert_allclose((A**2.5).numpy(), _A**2.5, rtol=1e-6)


@pytest.mark.parametrize(
    "op,np_op",
    [
        ("__neg__", np.negative),
        ("abs", np.abs),
        ("sqrt", lambda x: np.sqrt(np.abs(x))),
        ("log", lambda x: np.log(np.abs(x) + 0.1)),
        ("exp", np.exp),
        ("tanh", np.tanh),
    ],
    ids=["neg", "abs", "sqrt", "log", "exp", "tanh"],
)
@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_unary_float64(op: str, np_op: Callable, device: backend_device.Device) -> None:
    _A = np.random.randn(3, 4)
    A = nd.array(_A, dtype="float64", device=device)
    if op == "sqrt":
        A = abs(A)
    elif op == "log":
        A = abs(A) + 0.1
    np.testing.assert_allclose(getattr(A, op)().numpy(), np_op(_A), rtol=1e-12)


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_float_domain_edges(device: backend_device.Device) -> None:
    A = nd.array([0.0, -1.0, 1.0], dtype="float64", device=device)
    np.testing.assert_array_equal((A / 0.0).numpy(), [np.nan, -np.inf, np.inf])
    np.testing.assert_array_equal(A.log().numpy(), [-np.inf, np.nan, 0.0])
    np.testing.assert_array_equal(A.sqrt().numpy(), [0.0, np.nan, 1.0])
    N = nd.array([np.nan, 1.0], dtype="float64", device=device)
    np.testing.assert_array_equal(N.maximum(0.0).numpy(), [np.nan, 1.0])
    np.testing.assert_array_equal(N.max().numpy(), np.nan)


@pytest.mark.parametrize("op", ["sum", "max", "min"])
@pytest.mark.parametrize("axis", [0, -1, (0, 2), None], ids=["0", "-1", "0_2", "all"])
@pytest.mark.parametrize("keepdims", [False, True])
@pytest.mark.parametrize("dtype", ["float64", "int32"])
@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_reduce_permuted(
    op: str, axis: Any, keepdims: bool, dtype: str, device: backend_device.Device
) -> None:
    _A = np.random.randint(-50, 50, size=(4, 5, 6)).astype(dtype)
    A = nd.array(_A, dtype=dtype, device=device).permute((2, 0, 1))
    expected = getattr(_A.transpose(2, 0, 1), op)(axis=axis, keepdims=keepdims)
    out = getattr(A, op)(axis=axis, keepdims=keepdims)
    assert out.shape == np.shape(expected)
    assert out.dtype == dtype
    np.testing.assert_allclose(out.numpy(), expected, rtol=1e-12)


@pytest.mark.parametrize("m,k,n", [(1, 1, 1), (2, 3, 4), (7, 5, 3), (17, 9, 13)])
@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_matmul_float64(m: int, k: int, n: int, device: backend_device.Device) -> None:
    _A = np.random.randn(m, k)
    _B = np.random.randn(k, n)
    A = nd.array(_A, dtype="float64", device=device)
    B = nd.array(_B, dtype="float64", device=device)
    out = A @ B
    assert out.shape == (m, n)
    np.testing.assert_allclose(out.numpy(), _A @ _B, rtol=1e-10, atol=1e-12)


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_matmul_int64_views(device: backend_device.Device) -> None:
    _A = np.random.randint(-9, 9, size=(5, 4)).astype(np.int64)
    _B = np.random.randint(-9, 9, size=(5, 6)).astype(np.int64)
    A = nd.array(_A, dtype="int64", device=device)
    B = nd.array(_B, dtype="int64", device=device)
    out = A.permute((1, 0)) @ B[:, ::2]
    np.testing.assert_array_equal(out.numpy(), _A.T @ _B[:, ::2])


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_int32_wraps(device: backend_device.Device) -> None:
    A = nd.array([INT32_MAX, 2, 1], dtype="int32", device=device)
    np.testing.assert_array_equal((A + 1).numpy(), [INT32_MIN, 3, 2])
    np.testing.assert_array_equal(A.sum().numpy(), _wrap(INT32_MAX + 3, 32))
    np.testing.assert_array_equal((A * A).numpy(), [1, 4, 1])
    M = nd.array([INT32_MIN, -5], dtype="int32", device=device)
    np.testing.assert_array_equal((-M).numpy(), [INT32_MIN, 5])
    np.testing.assert_array_equal(abs(M).numpy(), [INT32_MIN, 5])
    P = nd.array([3, -3], dtype="int32", device=device)
    np.testing.assert_array_equal(
        (P**40).numpy(), [_wrap(3**40, 32), _wrap(3**40, 32)]
    )
    L = nd.array([2**62, -(2**62)], dtype="int64", device=device)
    np.testing.assert_array_equal((L * 4).numpy(), [0, 0])
    np.testing.assert_array_equal(L.prod().numpy(), _wrap(-(2**124), 64))


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_int_div_truncates(device: backend_device.Device) -> None:
    A = nd.array([7, -7, 7, -7, 5, INT32_MIN], dtype="int32", device=device)
    B = nd.array([2, 2, -2, -2, 0, -1], dtype="int32", device=device)
    np.testing.assert_array_equal((A / B).numpy(), [3, -3, -3, 3, 0, INT32_MIN])
    np.testing.assert_array_equal((A / 0).numpy(), [0] * 6)
    np.testing.assert_array_equal((A / 3).numpy(), [2, -2, 2, -2, 1, -715827882])


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_int_negative_power(device: backend_device.Device) -> None:
    A = nd.array([2, 1, -1, -1, 0, 5], dtype="int64", device=device)
    B = nd.array([-1, -3, -3, -2, -1, 2], dtype="int64", device=device)
    np.testing.assert_array_equal((A**B).numpy(), [0, 1, -1, 1, 0, 25])
    np.testing.assert_array_equal((A**-1).numpy(), [0, 1, -1, -1, 0, 0])
    np.testing.assert_array_equal((A**0).numpy(), [1] * 6)


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_int_scalar_checks(device: backend_device.Device) -> None:
    A = nd.array([1, 2, 3], dtype="int32", device=device)
    np.testing.assert_array_equal((A + 2.0).numpy(), [3, 4, 5])
    np.testing.assert_array_equal((A + np.int64(1)).numpy(), [2, 3, 4])
    with pytest.raises(errors.DTypeError):
        A * 1.5
    with pytest.raises(errors.DTypeError):
        A + 2**40
    with pytest.raises(errors.DTypeError):
        A.fill(INT32_MAX + 1)
    for op in ("exp", "log", "tanh", "sqrt"):
        with pytest.raises(errors.DTypeError):
            getattr(A, op)()
    A.fill(-4.0)
    np.testing.assert_array_equal(A.numpy(), [-4, -4, -4])


@pytest.mark.parametrize("dtype", ["float32", "int64"])
@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_setitem_scatters_in_place(dtype: str, device: backend_device.Device) -> None:
    _A = np.zeros((4, 5), dtype=dtype)
    A = nd.array(_A, dtype=dtype, device=device)
    buffer, ptr = A.buffer, A.buffer.ptr()

    A[1:4:2, ::2] = nd.array(np.arange(6).reshape(2, 3), dtype=dtype, device=device)
    _A[1:4:2, ::2] = np.arange(6).reshape(2, 3)
    A[0] = 9
    _A[0] = 9
    A.permute((1, 0))[4, 1:3] = nd.array([7, 8], dtype=dtype, device=device)
    _A.T[4, 1:3] = [7, 8]

    assert A.buffer is buffer and A.buffer.ptr() == ptr
    assert A.is_compact()
    np.testing.assert_array_equal(A.numpy(), _A)


def test_setitem_bounds() -> None:
    A = nd.zeros((4, 5))
    with pytest.raises(errors.BoundsError):
        A[4, 0] = 1.0
    with pytest.raises(errors.BoundsError):
        A[0, -6] = 1.0
    with pytest.raises(errors.BoundsError):
        A[0:2, 0:2, 0] = 1.0
    with pytest.raises(errors.BoundsError):
        A[::-1] = 1.0
    np.testing.assert_array_equal(A.numpy(), 0.0)


@pytest.mark.parametrize("device", _DEVICES, ids=_DEVICE_IDS)
def test_results_own_fresh_buffers(device: backend_device.Device) -> None:
    A = nd.array(np.ones((2, 3)), device=device)
    outputs = [A + A, A * 2.0, -A, A.sum(axis=0), A @ A.permute((1, 0)), A.compact()]
    for out in outputs[:-1]:
        assert out.buffer is not A.buffer
        assert out.is_compact()
    assert outputs[-1] is A
