# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.utils — parameter stores and benchmark accounting."""
from __future__ import annotations

from .benchmark import BenchmarkResult, LayerTimer
from .params import DirectoryStore, MemoryStore, ParameterStore

__all__ = [
    'BenchmarkResult', 'LayerTimer',
    'ParameterStore', 'DirectoryStore', 'MemoryStore',
]
