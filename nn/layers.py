# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""nn.layers — GEMM-based convolution, transposed convolution and
inference batch normalization on device buffers.

Feature maps are buffers with ``dim_y = channels`` and
``dim_x = height * width``.  Both convolution layers take a ``tiling``
argument: ``None`` processes the whole image at once, a
:class:`TilePolicy` splits it into row bands so the column buffer only
ever holds one band.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from .. import config
from ..backends import NO_TRANSPOSE, DeviceBuffer, get_backend
from ..utils.benchmark import BenchmarkResult, LayerTimer
from ..utils.params import ParameterStore
from .functional import blas_aligned, conv_outsize, deconv_outsize
from .module import Workspace, load_into

logger = logging.getLogger(__name__)


# ──────────────────────── Tiling ──────────────────────────────────────

@dataclass(frozen=True)
class TilePolicy:
    """Row-band tiling.

    ``height`` is the band height in input rows.  ``remainder`` decides
    what happens when the row count is not a multiple of the band:
    ``'partial'`` runs a shorter last band, ``'truncate'`` runs only
    ``max(1, rows // band)`` full bands and leaves the trailing rows
    uncomputed.  They keep what the output buffer held before the bias
    pass: only the bias for a fresh buffer, stale data plus the bias when
    a buffer is reused (see :class:`ResidualBlockChained`).  A band taller
    than the image is clamped to it.
    """

    height: int = field(default_factory=config.get_tile_height)
    remainder: str = field(default_factory=config.get_tile_remainder)

    def __post_init__(self):
        if self.height <= 0:
            raise ValueError(f"tile height must be positive, got {self.height}")
        if self.remainder not in config.TILE_REMAINDER_MODES:
            raise ValueError(
                f"tile remainder must be one of {config.TILE_REMAINDER_MODES}, "
                f"got {self.remainder!r}")

    def bands(self, rows: int, band: int) -> list[tuple[int, int]]:
        """Split ``rows`` into ``(start, count)`` bands of ``band`` rows."""
        band = max(1, min(band, rows))
        if self.remainder == 'truncate':
            n = max(1, rows // band)
        else:
            n = -(-rows // band)
        return [(i * band, min(band, rows - i * band)) for i in range(n)]


def _as_policy(tiling) -> TilePolicy | None:
    if tiling is None or tiling is False:
        return None
    if tiling is True:
        return TilePolicy()
    if isinstance(tiling, TilePolicy):
        return tiling
    raise ValueError(f"tiling must be a TilePolicy, bool or None, got {tiling!r}")


def _check_feature_map(buf: DeviceBuffer, channels: int, h: int, w: int, what: str):
    if buf.dim_y != channels or buf.dim_x != h * w:
        raise ValueError(
            f"{what}: expected {channels} channels of {h}x{w}, "
            f"got buffer {buf.dim_y}x{buf.dim_x}")


# ──────────────────────── Convolution2D ───────────────────────────────

class Convolution2D:
    """2-D convolution as pad → im2col → GEMM → bias.

    ``W`` holds ``out_channels`` rows of ``in_channels*ksize*ksize``
    weights, zero-padded to a multiple of 8 columns for the GEMM.

    Tiled, output rows are produced in bands of
    ``conv_outsize(tiling.height)`` rows; each band goes through a
    band-sized column and output buffer and is copied into place.  The
    bias is added once over the full output.
    """

    def __init__(self, in_channels: int, out_channels: int, ksize: int,
                 stride: int = 1, pad: int = 0, tiling=None, device=None):
        self.backend = get_backend(device)
        self.in_channels = in_channels
        self.out_channels = out_channels
        self.ksize = ksize
        self.stride = stride
        self.pad = pad
        self.tiling = _as_policy(tiling)
        self.k_dim = in_channels * ksize * ksize
        self.k_padded = blas_aligned(self.k_dim)

        self.W = self.backend.allocate(self.k_padded, out_channels)
        self.b = self.backend.allocate(out_channels)
        self.out_h = 0
        self.out_w = 0
        self.timer = LayerTimer(self.backend)

    def load_parameters(self, store: ParameterStore, path: str) -> None:
        w = store.read(f'{path}/W', self.out_channels * self.k_dim)
        if self.k_padded == self.k_dim:
            self.W.copy_from(w)
        else:
            host = np.zeros((self.out_channels, self.k_padded), dtype=np.float32)
            host[:, :self.k_dim] = w.reshape(self.out_channels, self.k_dim)
            self.W.copy_from(host)
        load_into(self.b, store, f'{path}/b')
        logger.debug("loaded %s (%d->%d, k%d s%d p%d)", path, self.in_channels,
                     self.out_channels, self.ksize, self.stride, self.pad)

    # ---- Geometry ----

    def output_size(self, h: int, w: int) -> tuple[int, int]:
        oh = conv_outsize(h, self.ksize, self.stride, self.pad)
        ow = conv_outsize(w, self.ksize, self.stride, self.pad)
        if oh <= 0 or ow <= 0:
            raise ValueError(
                f"convolution k{self.ksize} s{self.stride} p{self.pad} on "
                f"{h}x{w} gives non-positive output {oh}x{ow}")
        return oh, ow

    def band_rows(self, h: int, w: int) -> int:
        """Output rows computed per GEMM."""
        oh, _ = self.output_size(h, w)
        if self.tiling is None:
            return oh
        per_tile = conv_outsize(self.tiling.height, self.ksize, self.stride, self.pad)
        return max(1, min(per_tile, oh))

    def create_workspace(self, h: int, w: int) -> Workspace:
        """Scratch buffers for one call on an ``h`` × ``w`` input.

        The same workspace may be reused for any number of calls with that
        input size; the padded buffer's border is never written.
        """
        _, ow = self.output_size(h, w)
        band = self.band_rows(h, w)
        hp, wp = h + 2 * self.pad, w + 2 * self.pad
        ws = Workspace(self.backend)
        try:
            ws.allocate('padded', hp * wp, self.in_channels)
            ws.allocate('col', band * ow, self.k_padded)
            if self.tiling is not None:
                ws.allocate('tile_out', band * ow, self.out_channels)
        except BaseException:
            ws.destroy()
            raise
        return ws

    # ---- Forward ----

    def process(self, input: DeviceBuffer, h: int, w: int) -> DeviceBuffer:
        """Convolve ``input`` (``in_channels`` × h × w) into a new buffer.

        The output size is recorded in ``out_h`` / ``out_w``.
        """
        oh, ow = self.output_size(h, w)
        out = self.backend.allocate(oh * ow, self.out_channels)
        try:
            with self.create_workspace(h, w) as ws:
                self.process_into(input, h, w, out, ws)
        except BaseException:
            out.destroy()
            raise
        return out

    def process_into(self, input: DeviceBuffer, h: int, w: int,
                     out: DeviceBuffer, ws: Workspace) -> DeviceBuffer:
        """Convolve into the existing ``out`` using scratch buffers ``ws``.

        ``out`` may be ``input`` when the convolution preserves shape: the
        input is fully copied into the padded buffer before any output
        row is written.
        """
        oh, ow = self.output_size(h, w)
        _check_feature_map(input, self.in_channels, h, w, 'Convolution2D input')
        _check_feature_map(out, self.out_channels, oh, ow, 'Convolution2D output')
        be = self.backend
        padded, col, tile_out = ws['padded'], ws['col'], ws.get('tile_out')
        wp = w + 2 * self.pad

        be.pad(input, padded, self.in_channels, h, w, self.pad, self.pad)
        band = self.band_rows(h, w)
        bands = [(0, oh)] if self.tiling is None else self.tiling.bands(oh, band)
        for start, rows in bands:
            with self.timer.measure('im2col'):
                be.im2col(padded, col, self.in_channels, wp, self.ksize,
                          self.stride, start, rows, ow)
            target = out if tile_out is None else tile_out
            with self.timer.measure('sgemm'):
                be.sgemm(NO_TRANSPOSE, NO_TRANSPOSE, 1.0, self.W, col, 0.0, target)
            if tile_out is not None:
                out.copy_2d_range_from(start * ow, 0, rows * ow,
                                       self.out_channels, tile_out)
        with self.timer.measure('beta'):
            be.add_bias(out, self.b)

        self.out_h, self.out_w = oh, ow
        logger.debug("conv %dx%dx%d -> %dx%dx%d in %d band(s)", self.in_channels,
                     h, w, self.out_channels, oh, ow, len(bands))
        return out

    def accumulate_benchmark(self, sink: BenchmarkResult) -> BenchmarkResult:
        return self.timer.drain_into(sink)

    def destroy(self) -> None:
        self.W.destroy()
        self.b.destroy()

    def __repr__(self) -> str:
        return (f"Convolution2D({self.in_channels}, {self.out_channels}, "
                f"ksize={self.ksize}, stride={self.stride}, pad={self.pad}, "
                f"tiling={self.tiling})")


# ──────────────────────── Deconvolution2D ─────────────────────────────

class Deconvolution2D:
    """2-D transposed convolution as GEMM → col2im scatter-add → unpad → bias.

    Weights arrive as ``[in_channels, out_channels*ksize*ksize]`` and are
    transposed once at load time so the forward GEMM needs no transpose
    flag; the ``out_channels*ksize*ksize`` rows are zero-padded to a
    multiple of 8.

    Tiled, input rows are processed in bands of ``tiling.height``; every
    band accumulates into the same zeroed padded output, so bands run
    strictly one after another.
    """

    def __init__(self, in_channels: int, out_channels: int, ksize: int,
                 stride: int = 1, pad: int = 0, tiling=None, device=None):
        self.backend = get_backend(device)
        self.in_channels = in_channels
        self.out_channels = out_channels
        self.ksize = ksize
        self.stride = stride
        self.pad = pad
        self.tiling = _as_policy(tiling)
        self.k_dim = out_channels * ksize * ksize
        self.k_padded = blas_aligned(self.k_dim)

        self.W = self.backend.allocate(in_channels, self.k_padded)
        self.b = self.backend.allocate(out_channels)
        self.out_h = 0
        self.out_w = 0
        self.timer = LayerTimer(self.backend)

    def load_parameters(self, store: ParameterStore, path: str) -> None:
        w = store.read(f'{path}/W', self.in_channels * self.k_dim)
        host = np.zeros((self.k_padded, self.in_channels), dtype=np.float32)
        host[:self.k_dim] = w.reshape(self.in_channels, self.k_dim).T
        self.W.copy_from(host)
        load_into(self.b, store, f'{path}/b')
        logger.debug("loaded %s (%d->%d, k%d s%d p%d)", path, self.in_channels,
                     self.out_channels, self.ksize, self.stride, self.pad)

    # ---- Geometry ----

    def output_size(self, col_h: int, col_w: int) -> tuple[int, int]:
        oh = deconv_outsize(col_h, self.ksize, self.stride, self.pad)
        ow = deconv_outsize(col_w, self.ksize, self.stride, self.pad)
        if oh <= 0 or ow <= 0:
            raise ValueError(
                f"deconvolution k{self.ksize} s{self.stride} p{self.pad} on "
                f"{col_h}x{col_w} gives non-positive output {oh}x{ow}")
        return oh, ow

    def band_rows(self, col_h: int) -> int:
        """Input rows multiplied per GEMM."""
        if self.tiling is None:
            return col_h
        return max(1, min(self.tiling.height, col_h))

    def create_workspace(self, col_h: int, col_w: int) -> Workspace:
        oh, ow = self.output_size(col_h, col_w)
        band = self.band_rows(col_h)
        ws = Workspace(self.backend)
        try:
            ws.allocate('padded', (oh + 2 * self.pad) * (ow + 2 * self.pad),
                        self.out_channels)
            ws.allocate('col', band * col_w, self.k_padded)
            if self.tiling is not None:
                ws.allocate('tile_in', band * col_w, self.in_channels)
        except BaseException:
            ws.destroy()
            raise
        return ws

    # ---- Forward ----

    def process(self, input: DeviceBuffer, col_h: int, col_w: int) -> DeviceBuffer:
        """Upsample ``input`` (``in_channels`` × col_h × col_w) into a new buffer."""
        oh, ow = self.output_size(col_h, col_w)
        out = self.backend.allocate(oh * ow, self.out_channels)
        try:
            with self.create_workspace(col_h, col_w) as ws:
                self.process_into(input, col_h, col_w, out, ws)
        except BaseException:
            out.destroy()
            raise
        return out

    def process_into(self, input: DeviceBuffer, col_h: int, col_w: int,
                     out: DeviceBuffer, ws: Workspace) -> DeviceBuffer:
        oh, ow = self.output_size(col_h, col_w)
        _check_feature_map(input, self.in_channels, col_h, col_w, 'Deconvolution2D input')
        _check_feature_map(out, self.out_channels, oh, ow, 'Deconvolution2D output')
        be = self.backend
        padded, col, tile_in = ws['padded'], ws['col'], ws.get('tile_in')
        wp = ow + 2 * self.pad

        be.zero(padded)
        band = self.band_rows(col_h)
        bands = [(0, col_h)] if self.tiling is None else self.tiling.bands(col_h, band)
        for start, rows in bands:
            src = input
            if tile_in is not None:
                tile_in.copy_2d_range_from(0, 0, rows * col_w, self.in_channels,
                                           input, start * col_w, 0)
                src = tile_in
            with self.timer.measure('sgemm'):
                be.sgemm(NO_TRANSPOSE, NO_TRANSPOSE, 1.0, self.W, src, 0.0, col)
            with self.timer.measure('col2im'):
                be.col2im(col, padded, self.out_channels, wp, self.ksize,
                          self.stride, start, rows, col_w)
        be.unpad(padded, out, self.out_channels, oh, ow, self.pad, self.pad)
        with self.timer.measure('beta'):
            be.add_bias(out, self.b)

        self.out_h, self.out_w = oh, ow
        logger.debug("deconv %dx%dx%d -> %dx%dx%d in %d band(s)", self.in_channels,
                     col_h, col_w, self.out_channels, oh, ow, len(bands))
        return out

    def accumulate_benchmark(self, sink: BenchmarkResult) -> BenchmarkResult:
        return self.timer.drain_into(sink)

    def destroy(self) -> None:
        self.W.destroy()
        self.b.destroy()

    def __repr__(self) -> str:
        return (f"Deconvolution2D({self.in_channels}, {self.out_channels}, "
                f"ksize={self.ksize}, stride={self.stride}, pad={self.pad}, "
                f"tiling={self.tiling})")


# ──────────────────────── BatchNormalization ──────────────────────────

class BatchNormalization:
    """Inference batch normalization with stored statistics, in place.

    ``y = (x - avg_mean) / sqrt(avg_var + eps) * gamma + beta`` per channel.
    """

    def __init__(self, size: int, eps: float | None = None, device=None):
        self.backend = get_backend(device)
        self.size = size
        self.eps = config.get_bn_eps() if eps is None else float(eps)
        self.gamma = self.backend.allocate(size)
        self.beta = self.backend.allocate(size)
        self.avg_mean = self.backend.allocate(size)
        self.avg_var = self.backend.allocate(size)
        self.timer = LayerTimer(self.backend)

    def load_parameters(self, store: ParameterStore, path: str) -> None:
        load_into(self.gamma, store, f'{path}/gamma')
        load_into(self.beta, store, f'{path}/beta')
        load_into(self.avg_mean, store, f'{path}/avg_mean')
        load_into(self.avg_var, store, f'{path}/avg_var')
        logger.debug("loaded %s (%d channels)", path, self.size)

    def process(self, buf: DeviceBuffer) -> DeviceBuffer:
        if buf.dim_y != self.size:
            raise ValueError(
                f"BatchNormalization({self.size}) got {buf.dim_y} channels")
        with self.timer.measure('normalize'):
            self.backend.batch_norm(buf, self.gamma, self.beta,
                                    self.avg_mean, self.avg_var, self.eps)
        return buf

    def accumulate_benchmark(self, sink: BenchmarkResult) -> BenchmarkResult:
        return self.timer.drain_into(sink)

    def destroy(self) -> None:
        for buf in (self.gamma, self.beta, self.avg_mean, self.avg_var):
            buf.destroy()

    def __repr__(self) -> str:
        return f"BatchNormalization({self.size}, eps={self.eps})"
