# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.utils.benchmark — per-stage timing accumulators.

Each layer owns a :class:`LayerTimer`.  Callers collect the numbers by
handing a :class:`BenchmarkResult` of their own to
``accumulate_benchmark``; the layer adds its totals and starts over.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, fields

from .. import config

STAGES = ('sgemm', 'normalize', 'im2col', 'col2im', 'beta')


@dataclass
class BenchmarkResult:
    """Elapsed milliseconds per pipeline stage."""

    sgemm_time: float = 0.0
    normalize_time: float = 0.0
    im2col_time: float = 0.0
    col2im_time: float = 0.0
    beta_time: float = 0.0

    def add(self, stage: str, ms: float) -> None:
        if stage not in STAGES:
            raise ValueError(f"unknown benchmark stage {stage!r}")
        attr = f'{stage}_time'
        setattr(self, attr, getattr(self, attr) + ms)

    def merge(self, other: 'BenchmarkResult') -> 'BenchmarkResult':
        for f in fields(self):
            setattr(self, f.name, getattr(self, f.name) + getattr(other, f.name))
        return self

    __iadd__ = merge

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, 0.0)

    @property
    def total_time(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))

    def summary(self) -> str:
        parts = [f"{s}={getattr(self, f'{s}_time'):.2f}ms" for s in STAGES]
        return ' '.join(parts) + f" total={self.total_time:.2f}ms"


class LayerTimer:
    """Times pipeline stages of one layer on one backend.

    The backend is synchronized before the clock is read on both edges
    so queued device work is charged to the stage that issued it.  With
    profiling disabled in :mod:`stylenet.config` ``measure`` is a no-op.
    """

    __slots__ = ('backend', 'result')

    def __init__(self, backend):
        self.backend = backend
        self.result = BenchmarkResult()

    @contextmanager
    def measure(self, stage: str):
        if not config.profiling_enabled():
            yield
            return
        self.backend.synchronize()
        t0 = time.perf_counter()
        yield
        self.backend.synchronize()
        self.result.add(stage, (time.perf_counter() - t0) * 1000.0)

    def drain_into(self, sink: BenchmarkResult) -> BenchmarkResult:
        """Add the recorded times to ``sink`` and reset."""
        sink.merge(self.result)
        self.result.reset()
        return sink
