# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.nn — layers of the style-transfer network."""
from __future__ import annotations

from .module import Layer, Workspace, accumulate_all

from .layers import (
    TilePolicy,
    Convolution2D,
    Deconvolution2D,
    BatchNormalization,
)

from .residual import ResidualBlock, ResidualBlockChained

# Geometry and host reference transforms (accessible as nn.functional or F)
from . import functional

__all__ = [
    'Layer', 'Workspace', 'accumulate_all',
    'TilePolicy',
    'Convolution2D', 'Deconvolution2D', 'BatchNormalization',
    'ResidualBlock', 'ResidualBlockChained',
    'functional',
]
