# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""nn.residual — residual blocks.

:class:`ResidualBlock` is the plain two-convolution block.
:class:`ResidualBlockChained` runs a stack of such blocks over a fixed set
of scratch buffers: two full-size feature maps used ping-pong, one padded
image and one band-sized column/output pair, all shared by every block
and every band.  Its working memory does not grow with the number of
blocks.
"""
from __future__ import annotations

import logging

from ..backends import DeviceBuffer, get_backend
from ..utils.benchmark import BenchmarkResult
from ..utils.params import ParameterStore
from .layers import (BatchNormalization, Convolution2D, TilePolicy, _as_policy,
                     _check_feature_map)
from .module import accumulate_all

logger = logging.getLogger(__name__)


def _check_geometry(n_in: int, n_out: int, ksize: int, stride: int, pad: int):
    if n_in != n_out:
        raise ValueError(
            f"residual block needs equal in/out channels, got {n_in} -> {n_out}")
    if stride != 1 or 2 * pad != ksize - 1:
        raise ValueError(
            f"residual block convolution k{ksize} s{stride} p{pad} "
            f"does not preserve spatial size")


# ──────────────────────── ResidualBlock ───────────────────────────────

class ResidualBlock:
    """``x + BN2(Conv2(ReLU(BN1(Conv1(x)))))``."""

    def __init__(self, n_in: int, n_out: int, ksize: int = 3, stride: int = 1,
                 pad: int = 1, tiling=None, eps: float | None = None,
                 device=None):
        _check_geometry(n_in, n_out, ksize, stride, pad)
        self.backend = get_backend(device)
        self.c1 = Convolution2D(n_in, n_out, ksize, stride, pad, tiling, self.backend)
        self.c2 = Convolution2D(n_out, n_out, ksize, stride, pad, tiling, self.backend)
        self.b1 = BatchNormalization(n_out, eps, self.backend)
        self.b2 = BatchNormalization(n_out, eps, self.backend)
        self.out_h = 0
        self.out_w = 0

    @property
    def layers(self):
        return (self.c1, self.b1, self.c2, self.b2)

    def load_parameters(self, store: ParameterStore, path: str) -> None:
        self.c1.load_parameters(store, f'{path}/c1')
        self.c2.load_parameters(store, f'{path}/c2')
        self.b1.load_parameters(store, f'{path}/b1')
        self.b2.load_parameters(store, f'{path}/b2')

    def process(self, input: DeviceBuffer, h: int, w: int) -> DeviceBuffer:
        """Return a new buffer; ``input`` stays owned by the caller."""
        x = self.c1.process(input, h, w)
        try:
            self.b1.process(x)
            self.backend.relu(x)
            y = self.c2.process(x, self.c1.out_h, self.c1.out_w)
        finally:
            x.destroy()
        try:
            self.b2.process(y)
            self.backend.add(y, input)
        except BaseException:
            y.destroy()
            raise
        self.out_h, self.out_w = self.c2.out_h, self.c2.out_w
        return y

    def accumulate_benchmark(self, sink: BenchmarkResult) -> BenchmarkResult:
        return accumulate_all(self.layers, sink)

    def destroy(self) -> None:
        for layer in self.layers:
            layer.destroy()


# ──────────────────────── ResidualBlockChained ────────────────────────

class ResidualBlockChained:
    """``num_blocks`` residual blocks evaluated over shared scratch buffers.

    Parameters for block ``i`` (1-based) live under ``<path>/r<i>/c1``,
    ``/c2``, ``/b1`` and ``/b2``, the same layout a sequence of
    :class:`ResidualBlock` objects would use.

    With a ``'truncate'`` tile policy the ping-pong maps are not cleared
    between blocks, so the uncomputed trailing rows of each convolution
    carry the previous stage's values plus the bias instead of the bias
    alone, and differ from a sequence of :class:`ResidualBlock` objects.
    """

    def __init__(self, n_in: int, n_out: int, ksize: int = 3, stride: int = 1,
                 pad: int = 1, num_blocks: int = 5, tiling=True,
                 eps: float | None = None, device=None):
        _check_geometry(n_in, n_out, ksize, stride, pad)
        if num_blocks <= 0:
            raise ValueError(f"num_blocks must be positive, got {num_blocks}")
        self.backend = get_backend(device)
        self.channels = n_out
        self.num_blocks = num_blocks
        self.tiling: TilePolicy | None = _as_policy(tiling)
        self.blocks = [
            (Convolution2D(n_in, n_out, ksize, stride, pad, self.tiling, self.backend),
             BatchNormalization(n_out, eps, self.backend),
             Convolution2D(n_out, n_out, ksize, stride, pad, self.tiling, self.backend),
             BatchNormalization(n_out, eps, self.backend))
            for _ in range(num_blocks)
        ]
        self.out_h = 0
        self.out_w = 0

    @property
    def layers(self):
        return [layer for block in self.blocks for layer in block]

    def load_parameters(self, store: ParameterStore, path: str) -> None:
        for i, (c1, b1, c2, b2) in enumerate(self.blocks, start=1):
            prefix = f'{path}/r{i}'
            c1.load_parameters(store, f'{prefix}/c1')
            c2.load_parameters(store, f'{prefix}/c2')
            b1.load_parameters(store, f'{prefix}/b1')
            b2.load_parameters(store, f'{prefix}/b2')

    def process(self, input: DeviceBuffer, h: int, w: int) -> DeviceBuffer:
        """Run every block; returns a new buffer, ``input`` is left intact."""
        be = self.backend
        _check_feature_map(input, self.channels, h, w, 'ResidualBlockChained input')
        n = h * w
        ping = be.allocate(n, self.channels)
        pong = None
        try:
            pong = be.allocate(n, self.channels)
            ping.copy_2d_range_from(0, 0, n, self.channels, input)
            with self.blocks[0][0].create_workspace(h, w) as ws:
                logger.debug("chained residual x%d on %dx%dx%d, workspace %d bytes",
                             self.num_blocks, self.channels, h, w, ws.nbytes)
                for c1, b1, c2, b2 in self.blocks:
                    c1.process_into(ping, h, w, pong, ws)
                    b1.process(pong)
                    be.relu(pong)
                    c2.process_into(pong, h, w, pong, ws)
                    b2.process(pong)
                    be.add(pong, ping)
                    ping, pong = pong, ping
        except BaseException:
            ping.destroy()
            if pong is not None:
                pong.destroy()
            raise
        pong.destroy()
        self.out_h, self.out_w = h, w
        return ping

    def accumulate_benchmark(self, sink: BenchmarkResult) -> BenchmarkResult:
        return accumulate_all(self.layers, sink)

    def destroy(self) -> None:
        for layer in self.layers:
            layer.destroy()
