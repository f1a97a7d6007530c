# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.backends.cuda — CuPy backend for NVIDIA GPUs.

Usable only when CuPy is installed (``pip install stylenet[cuda]``) and a
CUDA device is visible.  GEMM dispatches to cuBLAS through
``cupy.matmul``; the layout kernels run as CuPy slicing ops.
"""
from __future__ import annotations

import functools

import numpy as np

from .base import Backend

# ── Try importing CuPy ──
try:
    import cupy as _cp
    _CUPY = True
except ImportError:
    _cp = None
    _CUPY = False


_device_count_cache: int | None = None


def is_built() -> bool:
    """Return True if CuPy is importable."""
    return _CUPY


def device_count() -> int:
    """Return the number of visible CUDA devices."""
    global _device_count_cache
    if not _CUPY:
        return 0
    if _device_count_cache is None:
        try:
            _device_count_cache = _cp.cuda.runtime.getDeviceCount()
        except _cp.cuda.runtime.CUDARuntimeError:
            _device_count_cache = 0
    return _device_count_cache


def is_available() -> bool:
    """Return True if CuPy is importable and a CUDA device is present."""
    return device_count() > 0


class CudaBackend(Backend):
    """Buffers are ``cupy.float32`` arrays on one CUDA device."""

    name = 'cuda'

    def __init__(self, index: int = 0):
        if not is_available():
            raise RuntimeError(
                "CUDA backend requested but CuPy or a CUDA device is not available")
        if not 0 <= index < device_count():
            raise ValueError(f"CUDA device index {index} out of range "
                             f"(found {device_count()} devices)")
        super().__init__()
        self.index = index
        self.name = f'cuda:{index}'
        self.xp = _cp
        self._device = _cp.cuda.Device(index)

    def scope(self):
        return self._device

    def _zeros(self, shape):
        with self._device:
            return _cp.zeros(shape, dtype=_cp.float32)

    def _to_device(self, host):
        with self._device:
            return _cp.asarray(host, dtype=_cp.float32)

    def _to_host(self, array):
        return _cp.asnumpy(array).astype(np.float32, copy=False)

    def synchronize(self) -> None:
        self._device.synchronize()


# ── Kernels run with this backend's device current ──

_KERNELS = ('sgemm', 'zero', 'pad', 'unpad', 'im2col', 'col2im',
            'add_bias', 'batch_norm', 'relu', 'elu', 'add')


def _on_device(kernel):
    @functools.wraps(kernel)
    def wrapper(self, *args, **kwargs):
        with self._device:
            return kernel(self, *args, **kwargs)
    return wrapper


for _name in _KERNELS:
    setattr(CudaBackend, _name, _on_device(getattr(Backend, _name)))
del _name
