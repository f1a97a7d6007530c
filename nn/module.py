# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""nn.module — the layer capability and shared scratch-buffer handling.

Layers do not share a base class.  Anything that can load its
parameters and report its timings satisfies :class:`Layer`; timing and
scratch memory are separate objects the layer holds.
"""
from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from ..backends import Backend, DeviceBuffer
from ..utils.benchmark import BenchmarkResult
from ..utils.params import ParameterStore


@runtime_checkable
class Layer(Protocol):
    """A pipeline stage.

    Besides these two methods every layer has a ``process`` method whose
    arguments depend on the layer kind (a buffer and its spatial size for
    convolutions, just the buffer for in-place normalization).
    """

    def load_parameters(self, store: ParameterStore, path: str) -> None: ...

    def accumulate_benchmark(self, sink: BenchmarkResult) -> BenchmarkResult: ...


def accumulate_all(layers: Iterable[Layer], sink: BenchmarkResult) -> BenchmarkResult:
    for layer in layers:
        layer.accumulate_benchmark(sink)
    return sink


def load_into(buf: DeviceBuffer, store: ParameterStore, path: str) -> None:
    """Fill ``buf`` with the parameter at ``path`` (exact element count)."""
    buf.copy_from(store.read(path, buf.size))


class Workspace:
    """Scratch buffers that live and die together.

    Used as a context manager, every buffer is destroyed when the block
    exits, whether normally or by exception.
    """

    def __init__(self, backend: Backend):
        self.backend = backend
        self._buffers: dict[str, DeviceBuffer] = {}

    def allocate(self, name: str, dim_x: int, dim_y: int = 1) -> DeviceBuffer:
        if name in self._buffers:
            raise ValueError(f"workspace buffer {name!r} already allocated")
        buf = self.backend.allocate(dim_x, dim_y)
        self._buffers[name] = buf
        return buf

    def __getitem__(self, name: str) -> DeviceBuffer:
        return self._buffers[name]

    def get(self, name: str) -> DeviceBuffer | None:
        return self._buffers.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._buffers

    @property
    def nbytes(self) -> int:
        return sum(b.nbytes for b in self._buffers.values())

    def destroy(self) -> None:
        for buf in self._buffers.values():
            buf.destroy()
        self._buffers.clear()

    def __enter__(self) -> 'Workspace':
        return self

    def __exit__(self, *exc) -> None:
        self.destroy()

    def __repr__(self) -> str:
        names = ', '.join(f"{k}={v.shape}" for k, v in self._buffers.items())
        return f"Workspace({names})"
