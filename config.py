# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.config — process-wide defaults.

Every setting is seeded from an environment variable at import time and
can be changed afterwards with the matching setter::

    STYLENET_DEVICE           default compute device      ('cpu')
    STYLENET_TILE_HEIGHT      rows per tile for tiled layers (64)
    STYLENET_TILE_REMAINDER   'partial' or 'truncate'     ('partial')
    STYLENET_ASSET_ROOT       parameter file directory    ('assets')
    STYLENET_BN_EPS           batch-norm variance epsilon (0.0)
    STYLENET_PROFILE          set to 0 to disable stage timing
"""
from __future__ import annotations

import os

TILE_REMAINDER_MODES = ('partial', 'truncate')

_default_device: str = os.environ.get('STYLENET_DEVICE', 'cpu')
_tile_height: int = int(os.environ.get('STYLENET_TILE_HEIGHT', '64'))
_tile_remainder: str = os.environ.get('STYLENET_TILE_REMAINDER', 'partial')
_asset_root: str = os.environ.get('STYLENET_ASSET_ROOT', 'assets')
_bn_eps: float = float(os.environ.get('STYLENET_BN_EPS', '0.0'))
_profiling: bool = os.environ.get('STYLENET_PROFILE', '1') != '0'


def set_default_device(device) -> None:
    """Set the device new layers and models allocate on."""
    global _default_device
    _default_device = str(device)


def get_default_device() -> str:
    return _default_device


def set_tile_height(height: int) -> None:
    global _tile_height
    if height <= 0:
        raise ValueError(f"tile height must be positive, got {height}")
    _tile_height = int(height)


def get_tile_height() -> int:
    return _tile_height


def set_tile_remainder(mode: str) -> None:
    global _tile_remainder
    if mode not in TILE_REMAINDER_MODES:
        raise ValueError(
            f"tile remainder must be one of {TILE_REMAINDER_MODES}, got {mode!r}")
    _tile_remainder = mode


def get_tile_remainder() -> str:
    return _tile_remainder


def set_asset_root(path) -> None:
    global _asset_root
    _asset_root = os.fspath(path)


def get_asset_root() -> str:
    return _asset_root


def set_bn_eps(eps: float) -> None:
    global _bn_eps
    if eps < 0:
        raise ValueError(f"eps must be non-negative, got {eps}")
    _bn_eps = float(eps)


def get_bn_eps() -> float:
    return _bn_eps


def set_profiling(enabled: bool) -> None:
    """Toggle per-stage timing. Timing synchronizes the backend after
    every stage, which serializes queued device work."""
    global _profiling
    _profiling = bool(enabled)


def profiling_enabled() -> bool:
    return _profiling
