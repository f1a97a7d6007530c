# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.backends.base — device buffers and the compute-backend contract.

A backend owns an array module (``xp``: NumPy or CuPy), hands out
zero-filled :class:`DeviceBuffer` objects and implements the handful of
kernels the layers are built from: single-precision GEMM plus the
pad / im2col / col2im rearrangements and per-channel element ops.

Buffers are 2-D.  ``dim_x`` is the spatial (or feature) axis and
``dim_y`` the channel axis, so the backing array has shape
``(dim_y, dim_x)``: one row per channel, pixels row-major within it.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import nullcontext

import numpy as np


# CBLAS transpose flags.
NO_TRANSPOSE = 111
TRANSPOSE = 112


# ================================================================
#  Memory tracking
# ================================================================

class MemoryStats:
    """Live / peak byte counters for one backend."""
    __slots__ = ('allocated', 'max_allocated', 'num_buffers')

    def __init__(self):
        self.allocated = 0
        self.max_allocated = 0
        self.num_buffers = 0

    def alloc(self, size: int):
        self.allocated += size
        self.num_buffers += 1
        if self.allocated > self.max_allocated:
            self.max_allocated = self.allocated

    def free(self, size: int):
        self.allocated -= size
        self.num_buffers -= 1

    def reset_peak(self):
        self.max_allocated = self.allocated


# ================================================================
#  DeviceBuffer
# ================================================================

class DeviceBuffer:
    """Opaque float32 buffer living on a backend.

    Released explicitly with :meth:`destroy` or by leaving a ``with``
    block; any access after release raises ``RuntimeError``.
    """

    __slots__ = ('_backend', '_array', '_dim_x', '_dim_y', '_nbytes')

    def __init__(self, backend: 'Backend', array, dim_x: int, dim_y: int):
        self._backend = backend
        self._array = array
        self._dim_x = dim_x
        self._dim_y = dim_y
        self._nbytes = dim_x * dim_y * 4

    # ---- Introspection ----

    @property
    def backend(self) -> 'Backend':
        return self._backend

    @property
    def array(self):
        """Backing ``(dim_y, dim_x)`` array in the backend's array module."""
        if self._array is None:
            raise RuntimeError("DeviceBuffer used after destroy()")
        return self._array

    @property
    def dim_x(self) -> int:
        return self._dim_x

    @property
    def dim_y(self) -> int:
        return self._dim_y

    @property
    def shape(self) -> tuple[int, int]:
        return (self._dim_y, self._dim_x)

    @property
    def size(self) -> int:
        return self._dim_x * self._dim_y

    @property
    def nbytes(self) -> int:
        return self._nbytes

    @property
    def destroyed(self) -> bool:
        return self._array is None

    # ---- Host transfer ----

    def copy_from(self, host) -> 'DeviceBuffer':
        """Overwrite the buffer with ``host`` (any shape, same element count)."""
        data = np.asarray(host, dtype=np.float32)
        if data.size != self.size:
            raise ValueError(
                f"copy_from: host array has {data.size} elements, "
                f"buffer holds {self.size}")
        with self._backend.scope():
            self.array[...] = self._backend._to_device(data.reshape(self.shape))
        return self

    def copy_to(self, host: np.ndarray | None = None) -> np.ndarray:
        """Copy the buffer to the host.

        With ``host=None`` a fresh ``(dim_y, dim_x)`` array is returned,
        otherwise ``host`` is filled in place and returned.
        """
        data = self._backend._to_host(self.array)
        if host is None:
            return data
        if host.size != self.size:
            raise ValueError(
                f"copy_to: host array has {host.size} elements, "
                f"buffer holds {self.size}")
        host[...] = data.reshape(host.shape)
        return host

    def copy_2d_range_from(self, xoff: int, yoff: int,
                           count_x: int, count_y: int,
                           src: 'DeviceBuffer',
                           src_xoff: int = 0, src_yoff: int = 0) -> None:
        """Copy a ``count_x`` × ``count_y`` rectangle of ``src`` into this
        buffer at ``(xoff, yoff)``."""
        if src.backend is not self._backend:
            raise ValueError("copy_2d_range_from: buffers live on different backends")
        for name, off, count, dim in (
                ('x', xoff, count_x, self._dim_x),
                ('y', yoff, count_y, self._dim_y),
                ('src x', src_xoff, count_x, src.dim_x),
                ('src y', src_yoff, count_y, src.dim_y)):
            if off < 0 or count < 0 or off + count > dim:
                raise ValueError(
                    f"copy_2d_range_from: {name} range [{off}, {off + count}) "
                    f"outside [0, {dim})")
        with self._backend.scope():
            self.array[yoff:yoff + count_y, xoff:xoff + count_x] = \
                src.array[src_yoff:src_yoff + count_y, src_xoff:src_xoff + count_x]

    # ---- Lifetime ----

    def destroy(self) -> None:
        """Release the storage. Safe to call more than once."""
        if self._array is not None:
            self._array = None
            self._backend._release(self)

    def __enter__(self) -> 'DeviceBuffer':
        return self

    def __exit__(self, *exc) -> None:
        self.destroy()

    def __repr__(self) -> str:
        state = 'destroyed' if self._array is None else self._backend.name
        return f"DeviceBuffer(dim_x={self._dim_x}, dim_y={self._dim_y}, {state})"


# ================================================================
#  Backend
# ================================================================

class Backend(ABC):
    """Compute backend: buffer allocation, GEMM and layout kernels.

    Subclasses supply the array module ``xp`` and the host transfer /
    synchronization hooks; the kernels below are written once against
    ``xp`` and shared.
    """

    name: str = 'abstract'
    xp = None

    def __init__(self):
        self._stats = MemoryStats()

    # ---- Hooks ----

    @abstractmethod
    def _zeros(self, shape: tuple[int, int]):
        """Return a zero-filled float32 array of ``shape``."""

    @abstractmethod
    def _to_device(self, host: np.ndarray):
        """Convert a host float32 array to the backend's array type."""

    @abstractmethod
    def _to_host(self, array) -> np.ndarray:
        """Return an independent host copy of a backend array."""

    @abstractmethod
    def synchronize(self) -> None:
        """Block until all queued work has finished."""

    def scope(self):
        """Context in which this backend's arrays may be touched."""
        return nullcontext()

    # ---- Buffers ----

    def allocate(self, dim_x: int, dim_y: int = 1) -> DeviceBuffer:
        """Allocate a zero-filled ``dim_x`` × ``dim_y`` buffer."""
        dim_x, dim_y = int(dim_x), int(dim_y)
        if dim_x <= 0 or dim_y <= 0:
            raise ValueError(f"buffer dimensions must be positive, got {dim_x}x{dim_y}")
        buf = DeviceBuffer(self, self._zeros((dim_y, dim_x)), dim_x, dim_y)
        self._stats.alloc(buf.nbytes)
        return buf

    def from_host(self, host, dim_x: int | None = None,
                  dim_y: int | None = None) -> DeviceBuffer:
        """Allocate a buffer and fill it from ``host``.

        Without explicit dims a 2-D array maps rows to ``dim_y``, a 3-D
        ``(C, H, W)`` image maps to ``dim_y=C, dim_x=H*W`` and anything
        else becomes a single row.
        """
        data = np.asarray(host, dtype=np.float32)
        if dim_x is None:
            if data.ndim == 2:
                dim_y, dim_x = data.shape
            elif data.ndim == 3:
                dim_y, dim_x = data.shape[0], data.shape[1] * data.shape[2]
            else:
                dim_y, dim_x = 1, data.size
        elif dim_y is None:
            dim_y = 1
        buf = self.allocate(dim_x, dim_y)
        try:
            buf.copy_from(data)
        except ValueError:
            buf.destroy()
            raise
        return buf

    def _release(self, buf: DeviceBuffer) -> None:
        self._stats.free(buf.nbytes)

    def _check(self, *bufs: DeviceBuffer) -> None:
        for buf in bufs:
            if buf.backend is not self:
                raise ValueError(f"{buf!r} does not belong to backend {self.name!r}")

    # ---- Memory accounting ----

    def memory_allocated(self) -> int:
        """Bytes held by live buffers."""
        return self._stats.allocated

    def max_memory_allocated(self) -> int:
        """Peak of :meth:`memory_allocated` since the last reset."""
        return self._stats.max_allocated

    def reset_peak_memory_stats(self) -> None:
        self._stats.reset_peak()

    def live_buffers(self) -> int:
        return self._stats.num_buffers

    def memory_summary(self) -> str:
        mb = 1024 * 1024
        return (f"{self.name}: {self._stats.allocated / mb:.2f} MB in "
                f"{self._stats.num_buffers} buffers "
                f"(peak {self._stats.max_allocated / mb:.2f} MB)")

    # ---- GEMM ----

    def sgemm(self, trans_a: int, trans_b: int, alpha: float,
              a: DeviceBuffer, b: DeviceBuffer, beta: float,
              c: DeviceBuffer) -> None:
        """``C = alpha * op(A) @ op(B) + beta * C``.

        Matrices are the buffers' backing arrays (rows = ``dim_y``).  With
        ``beta == 0`` the previous contents of ``C`` are never read.
        """
        self._check(a, b, c)
        for flag in (trans_a, trans_b):
            if flag not in (NO_TRANSPOSE, TRANSPOSE):
                raise ValueError(f"invalid transpose flag {flag}")
        A = a.array.T if trans_a == TRANSPOSE else a.array
        B = b.array.T if trans_b == TRANSPOSE else b.array
        C = c.array
        if A.shape[1] != B.shape[0] or C.shape != (A.shape[0], B.shape[1]):
            raise ValueError(
                f"sgemm shape mismatch: op(A) {A.shape} x op(B) {B.shape} "
                f"-> C {C.shape}")
        xp = self.xp
        if beta == 0.0:
            xp.matmul(A, B, out=C)
            if alpha != 1.0:
                C *= alpha
        else:
            prod = xp.matmul(A, B)
            if beta != 1.0:
                C *= beta
            if alpha != 1.0:
                prod *= alpha
            C += prod

    # ---- Layout kernels ----

    def zero(self, buf: DeviceBuffer) -> None:
        buf.array.fill(0)

    def pad(self, src: DeviceBuffer, dst: DeviceBuffer, channels: int,
            h: int, w: int, pad_h: int, pad_w: int) -> None:
        """Write ``src`` (``channels`` × h × w) into the interior of ``dst``.

        The border of ``dst`` is left untouched, so a zeroed padded buffer
        can be refilled any number of times.
        """
        self._check(src, dst)
        img = src.array.reshape(channels, h, w)
        out = dst.array.reshape(channels, h + 2 * pad_h, w + 2 * pad_w)
        out[:, pad_h:pad_h + h, pad_w:pad_w + w] = img

    def unpad(self, src: DeviceBuffer, dst: DeviceBuffer, channels: int,
              h: int, w: int, pad_h: int, pad_w: int) -> None:
        """Crop the ``h`` × ``w`` interior of padded ``src`` into ``dst``."""
        self._check(src, dst)
        img = src.array.reshape(channels, h + 2 * pad_h, w + 2 * pad_w)
        dst.array[...] = img[:, pad_h:pad_h + h, pad_w:pad_w + w].reshape(channels, h * w)

    def im2col(self, padded: DeviceBuffer, col: DeviceBuffer, channels: int,
               padded_w: int, ksize: int, stride: int,
               out_row_start: int, out_rows: int, out_w: int) -> None:
        """Gather convolution windows for output rows
        ``[out_row_start, out_row_start + out_rows)`` into ``col``.

        Row ``c*k*k + kh*k + kw``, column ``oh*out_w + ow`` of ``col``
        receives ``padded[c, (out_row_start + oh)*stride + kh, ow*stride + kw]``.
        Rows of ``col`` past ``channels*k*k`` (GEMM alignment padding) and
        columns past ``out_rows*out_w`` are not touched.
        """
        self._check(padded, col)
        kk = ksize * ksize
        n = out_rows * out_w
        rows_k = channels * kk
        if rows_k > col.dim_y or n > col.dim_x:
            raise ValueError(
                f"im2col: column buffer {col.shape} too small for "
                f"({rows_k}, {n})")
        img = padded.array.reshape(channels, -1, padded_w)
        dst = col.array
        y0 = out_row_start * stride
        y_span = stride * (out_rows - 1) + 1
        x_span = stride * (out_w - 1) + 1
        for kh in range(ksize):
            for kw in range(ksize):
                patch = img[:, y0 + kh:y0 + kh + y_span:stride,
                            kw:kw + x_span:stride]
                dst[kh * ksize + kw:rows_k:kk, :n] = patch.reshape(channels, n)

    def col2im(self, col: DeviceBuffer, padded: DeviceBuffer, channels: int,
               padded_w: int, ksize: int, stride: int,
               col_row_start: int, col_rows: int, col_w: int) -> None:
        """Scatter-add ``col`` into ``padded`` (the inverse of :meth:`im2col`).

        Contributions accumulate, so ``padded`` must be zeroed once before
        the first call of a transposed convolution.
        """
        self._check(col, padded)
        kk = ksize * ksize
        n = col_rows * col_w
        rows_k = channels * kk
        if rows_k > col.dim_y or n > col.dim_x:
            raise ValueError(
                f"col2im: column buffer {col.shape} too small for "
                f"({rows_k}, {n})")
        img = padded.array.reshape(channels, -1, padded_w)
        src = col.array
        y0 = col_row_start * stride
        y_span = stride * (col_rows - 1) + 1
        x_span = stride * (col_w - 1) + 1
        for kh in range(ksize):
            for kw in range(ksize):
                img[:, y0 + kh:y0 + kh + y_span:stride,
                    kw:kw + x_span:stride] += \
                    src[kh * ksize + kw:rows_k:kk, :n].reshape(channels, col_rows, col_w)

    # ---- Per-channel / element kernels ----

    def add_bias(self, buf: DeviceBuffer, bias: DeviceBuffer) -> None:
        self._check(buf, bias)
        if bias.size != buf.dim_y:
            raise ValueError(f"bias has {bias.size} entries, buffer has {buf.dim_y} channels")
        x = buf.array
        x += bias.array.reshape(-1, 1)

    def batch_norm(self, buf: DeviceBuffer, gamma: DeviceBuffer,
                   beta: DeviceBuffer, mean: DeviceBuffer,
                   var: DeviceBuffer, eps: float) -> None:
        """In place: ``(x - mean) / sqrt(var + eps) * gamma + beta``."""
        self._check(buf, gamma, beta, mean, var)
        x = buf.array
        x -= mean.array.reshape(-1, 1)
        x /= self.xp.sqrt(var.array.reshape(-1, 1) + eps)
        x *= gamma.array.reshape(-1, 1)
        x += beta.array.reshape(-1, 1)

    def relu(self, buf: DeviceBuffer) -> None:
        x = buf.array
        self.xp.maximum(x, 0, out=x)

    def elu(self, buf: DeviceBuffer, alpha: float = 1.0) -> None:
        xp = self.xp
        x = buf.array
        x[...] = xp.where(x > 0, x, alpha * xp.expm1(xp.minimum(x, 0)))

    def add(self, dst: DeviceBuffer, src: DeviceBuffer) -> None:
        """``dst += src`` (residual connection)."""
        self._check(dst, src)
        if dst.shape != src.shape:
            raise ValueError(f"add: shape mismatch {dst.shape} vs {src.shape}")
        x = dst.array
        x += src.array

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.memory_summary()})"
