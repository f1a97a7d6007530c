# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.model — the fast style-transfer network.

Topology (``<id>`` is the style name, all parameters live below it)::

    c1  conv   3 ->  32  k9 s1 p4   ELU  b1
    c2  conv  32 ->  64  k4 s2 p1   ELU  b2
    c3  conv  64 -> 128  k4 s2 p1   ELU  b3
    r1 .. r5  residual blocks at 128 channels
    d1  deconv 128 -> 64 k4 s2 p1   ELU  b4
    d2  deconv  64 -> 32 k4 s2 p1   ELU  b5
    d3  deconv  32 ->  3 k9 s1 p4

Usage::

    import stylenet

    model = stylenet.FastStyleModel(tiled=True)
    model.load_parameters('candy')
    styled = model.run(image)          # (3, H, W) float32 in and out
"""
from __future__ import annotations

import logging

import numpy as np

from . import config
from .backends import DeviceBuffer, get_backend
from .nn.layers import BatchNormalization, Convolution2D, Deconvolution2D, TilePolicy
from .nn.module import accumulate_all
from .nn.residual import ResidualBlock, ResidualBlockChained
from .utils.benchmark import BenchmarkResult
from .utils.params import DirectoryStore, ParameterStore

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'composition'
AVAILABLE_MODELS = (
    'composition', 'seurat', 'candy', 'kanagawa', 'starrynight', 'fur',
)
NUM_RESIDUAL_BLOCKS = 5


class FastStyleModel:
    """Feed-forward style transfer network on a compute backend.

    With ``tiled=True`` every convolution runs in row bands
    (``tile_policy``, default :class:`TilePolicy`) and the residual stack
    is one :class:`ResidualBlockChained`; with ``tiled=False`` each layer
    processes whole images and the residual stack is five independent
    :class:`ResidualBlock` objects.  Both give the same result.
    """

    def __init__(self, tiled: bool = True, tile_policy: TilePolicy | None = None,
                 store: ParameterStore | None = None, device=None,
                 eps: float | None = None):
        self.backend = be = get_backend(device)
        self.tiled = tiled
        tiling = (tile_policy or TilePolicy()) if tiled else None
        self.tiling = tiling
        self.store = store

        self.convs = [
            Convolution2D(3, 32, 9, 1, 4, tiling, be),
            Convolution2D(32, 64, 4, 2, 1, tiling, be),
            Convolution2D(64, 128, 4, 2, 1, tiling, be),
        ]
        self.deconvs = [
            Deconvolution2D(128, 64, 4, 2, 1, tiling, be),
            Deconvolution2D(64, 32, 4, 2, 1, tiling, be),
            Deconvolution2D(32, 3, 9, 1, 4, tiling, be),
        ]
        self.norms = [
            BatchNormalization(n, eps, be) for n in (32, 64, 128, 64, 32)
        ]
        if tiled:
            self.residual = ResidualBlockChained(
                128, 128, 3, 1, 1, NUM_RESIDUAL_BLOCKS, tiling, eps, be)
            self.residual_blocks = []
        else:
            self.residual = None
            self.residual_blocks = [
                ResidualBlock(128, 128, 3, 1, 1, None, eps, be)
                for _ in range(NUM_RESIDUAL_BLOCKS)
            ]

        self.model_id: str | None = None
        self._ready = False
        self.out_h = 0
        self.out_w = 0

    @property
    def ready(self) -> bool:
        """True once :meth:`load_parameters` has succeeded."""
        return self._ready

    @property
    def layers(self) -> list:
        res = [self.residual] if self.residual is not None else self.residual_blocks
        return [*self.convs, *self.norms, *res, *self.deconvs]

    # ---- Parameters ----

    def load_parameters(self, model_id: str | None = None) -> None:
        """Load the weights of style ``model_id`` (default ``'composition'``).

        Parameters are read from the store given at construction, or from
        the configured asset directory.  Any failure propagates and leaves
        the model not ready.
        """
        model_id = model_id or DEFAULT_MODEL
        if model_id not in AVAILABLE_MODELS:
            logger.info("loading style %r, which is not one of the bundled styles",
                        model_id)
        store = self.store if self.store is not None else \
            DirectoryStore(config.get_asset_root())
        self._ready = False
        self.model_id = None

        for i, conv in enumerate(self.convs, start=1):
            conv.load_parameters(store, f'{model_id}/c{i}')
        for i, deconv in enumerate(self.deconvs, start=1):
            deconv.load_parameters(store, f'{model_id}/d{i}')
        for i, norm in enumerate(self.norms, start=1):
            norm.load_parameters(store, f'{model_id}/b{i}')
        if self.residual is not None:
            self.residual.load_parameters(store, model_id)
        else:
            for i, block in enumerate(self.residual_blocks, start=1):
                block.load_parameters(store, f'{model_id}/r{i}')

        self.model_id = model_id
        self._ready = True
        logger.info("loaded style model %r from %r", model_id, store)

    # ---- Forward ----

    def forward(self, input: DeviceBuffer, h: int, w: int) -> DeviceBuffer:
        """Stylize a 3 × h × w feature map; returns a new 3-channel buffer.

        ``input`` stays owned by the caller.  Every intermediate buffer is
        released as soon as the next stage has consumed it, and on error.
        """
        if not self._ready:
            raise RuntimeError(
                "FastStyleModel.forward called before load_parameters()")
        be = self.backend
        x, owned = input, False

        def advance(y: DeviceBuffer):
            nonlocal x, owned
            if owned:
                x.destroy()
            x, owned = y, True

        try:
            for conv, norm in zip(self.convs, self.norms[:3]):
                advance(conv.process(x, h, w))
                h, w = conv.out_h, conv.out_w
                be.elu(x)
                norm.process(x)

            if self.residual is not None:
                advance(self.residual.process(x, h, w))
            else:
                for block in self.residual_blocks:
                    advance(block.process(x, h, w))

            for deconv, norm in zip(self.deconvs[:2], self.norms[3:]):
                advance(deconv.process(x, h, w))
                h, w = deconv.out_h, deconv.out_w
                be.elu(x)
                norm.process(x)

            last = self.deconvs[2]
            advance(last.process(x, h, w))
            h, w = last.out_h, last.out_w
        except BaseException:
            if owned:
                x.destroy()
            raise

        self.out_h, self.out_w = h, w
        return x

    def run(self, image: np.ndarray) -> np.ndarray:
        """Host convenience: ``(3, H, W)`` float32 array in, stylized array out."""
        image = np.asarray(image, dtype=np.float32)
        if image.ndim != 3 or image.shape[0] != 3:
            raise ValueError(f"expected a (3, H, W) image, got shape {image.shape}")
        _, h, w = image.shape
        with self.backend.from_host(image) as x:
            out = self.forward(x, h, w)
        with out:
            return out.copy_to().reshape(3, self.out_h, self.out_w)

    __call__ = run

    # ---- Benchmarks / teardown ----

    def accumulate_benchmark(self, sink: BenchmarkResult) -> BenchmarkResult:
        return accumulate_all(self.layers, sink)

    def benchmark(self) -> BenchmarkResult:
        """Collect and reset every layer's timings."""
        result = self.accumulate_benchmark(BenchmarkResult())
        logger.debug("benchmark %s: %s", self.model_id, result.summary())
        return result

    def destroy(self) -> None:
        """Release all parameter buffers; the model is unusable afterwards."""
        for layer in self.layers:
            layer.destroy()
        self._ready = False

    def __repr__(self) -> str:
        return (f"FastStyleModel(model_id={self.model_id!r}, tiled={self.tiled}, "
                f"backend={self.backend.name!r})")
