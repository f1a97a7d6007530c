# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.backends.cpu — NumPy host backend.

GEMM goes through ``numpy.matmul`` and therefore whatever BLAS NumPy was
built against; every other kernel is vectorized NumPy slicing.
"""
from __future__ import annotations

import numpy as np

from .base import Backend


class CPUBackend(Backend):
    """Buffers are plain ``numpy.float32`` arrays in host memory."""

    name = 'cpu'
    xp = np

    def _zeros(self, shape):
        return np.zeros(shape, dtype=np.float32)

    def _to_device(self, host):
        return host

    def _to_host(self, array):
        return np.array(array, dtype=np.float32, copy=True)

    def synchronize(self) -> None:
        # Every NumPy call has completed by the time it returns.
        return None


def is_available() -> bool:
    return True
