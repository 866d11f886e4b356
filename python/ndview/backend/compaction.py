"""Compaction engine: materialize any view into a fresh contiguous buffer.

This is the only place outside the kernels that knows how a multi-index maps
to a buffer address. Kernels receive the resulting flat address vectors, never
shapes or strides.
"""

import logging
import math
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from .ndarray import NDArray

logger = logging.getLogger(__name__)


def linear_addresses(
    shape: tuple[int, ...], strides: tuple[int, ...], offset: int
) -> np.ndarray:
    """Buffer address of every element of a view, in row-major order.

    Parameters
    ----------
    shape : tuple of int
        Logical shape of the view.
    strides : tuple of int
        Strides of the view in elements (may be zero or negative).
    offset : int
        Base element offset of the view.

    Returns
    -------
    numpy.ndarray
        1-D int64 vector of length ``prod(shape)``; entry ``j`` is the address
        of the ``j``-th element when the last axis varies fastest.
    """
    addresses = np.array(offset, dtype=np.int64)
    for size, stride in zip(shape, strides):
        addresses = np.add.outer(addresses, np.arange(size, dtype=np.int64) * stride)
    return addresses.reshape(-1)


def compact(view: "NDArray") -> "NDArray":
    """Copy ``view`` into a newly allocated buffer with canonical strides.

    The copy is made even when ``view`` is already compact; callers that want
    to skip it use :meth:`NDArray.compact`. The source buffer is only read.
    """
    logger.debug(
        "compacting %d elements: shape=%s strides=%s offset=%d device=%s",
        math.prod(view.shape),
        view.shape,
        view.strides,
        view.offset,
        view.device,
    )
    index = linear_addresses(view.shape, view.strides, view.offset)
    out = view.make(view.shape, device=view.device, dtype=view.dtype)
    view.device.run("copy", view.buffer, out.buffer, src_index=index)
    view.device.synchronize()
    return out
