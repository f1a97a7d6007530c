# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""
StyleNet — fast neural style transfer on memory-constrained devices.

Convolutions run as pad → im2col → GEMM → bias on a pluggable compute
backend (NumPy on the host, CuPy on NVIDIA GPUs), optionally in row
bands so the column buffer never holds more than one band.

Usage::

    import stylenet

    stylenet.config.set_asset_root('/data/styles')
    model = stylenet.FastStyleModel(tiled=True)
    model.load_parameters('starrynight')
    out = model.run(image)                # (3, H, W) float32
"""
from __future__ import annotations

__version__ = "0.1.0"
__author__ = "Pictofeed, LLC"

# ── Configuration & devices ──
from . import config
from .device import device

# ── Backends ──
from . import backends
from .backends import Backend, DeviceBuffer, get_backend

# ── Sub-packages ──
from . import nn
from . import utils

# ── Model ──
from .model import AVAILABLE_MODELS, DEFAULT_MODEL, FastStyleModel
from .nn.layers import TilePolicy
from .utils.benchmark import BenchmarkResult
from .utils.params import DirectoryStore, MemoryStore, ParameterStore

__all__ = [
    "__version__",
    "__author__",

    'config', 'device',
    'backends', 'Backend', 'DeviceBuffer', 'get_backend',
    'nn', 'utils',
    'FastStyleModel', 'AVAILABLE_MODELS', 'DEFAULT_MODEL',
    'TilePolicy', 'BenchmarkResult',
    'ParameterStore', 'DirectoryStore', 'MemoryStore',
]
