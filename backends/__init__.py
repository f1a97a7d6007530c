# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.backends — compute backends and backend lookup."""
from __future__ import annotations

import logging

from .. import config
from ..device import device as _device
from . import cpu
from . import cuda
from .base import Backend, DeviceBuffer, MemoryStats, NO_TRANSPOSE, TRANSPOSE

logger = logging.getLogger(__name__)

_backends: dict[str, Backend] = {}


def get_backend(dev=None) -> Backend:
    """Return the shared backend for ``dev`` (default: configured device).

    One backend instance exists per device, so layers built for the same
    device share its memory accounting.
    """
    if isinstance(dev, Backend):
        return dev
    d = _device(dev if dev is not None else config.get_default_device())
    key = str(d)
    backend = _backends.get(key)
    if backend is None:
        if d.type == 'cpu':
            backend = cpu.CPUBackend()
        else:
            backend = cuda.CudaBackend(d.index or 0)
        logger.debug("created %s backend", key)
        _backends[key] = backend
    return backend


def is_available(dev) -> bool:
    d = _device(dev)
    if d.type == 'cpu':
        return cpu.is_available()
    return cuda.is_available() and (d.index or 0) < cuda.device_count()


__all__ = [
    'Backend', 'DeviceBuffer', 'MemoryStats',
    'NO_TRANSPOSE', 'TRANSPOSE',
    'get_backend', 'is_available',
    'cpu', 'cuda',
]
