# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""stylenet.utils.params — where layer parameters come from.

A parameter is addressed by a slash-separated path such as
``candy/r3/b1/avg_var`` and stored as a raw array of native-endian
float32 values with no header.  Its shape is implied by the layer that
reads it, so stores only check the element count.
"""
from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping

import numpy as np

logger = logging.getLogger(__name__)


class ParameterStore(ABC):
    """Read-only source of float32 parameter arrays."""

    @abstractmethod
    def _load(self, path: str) -> np.ndarray:
        """Return the flat float32 array stored at ``path``."""

    def read(self, path: str, count: int) -> np.ndarray:
        """Return the ``count`` float32 values at ``path``.

        Raises ``FileNotFoundError`` if nothing is stored there and
        ``ValueError`` if the stored element count differs.
        """
        data = self._load(path)
        if data.size != count:
            raise ValueError(
                f"parameter {path!r} holds {data.size} values, expected {count}")
        return data


class DirectoryStore(ParameterStore):
    """Parameters as raw float32 files under ``root``."""

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)

    def _load(self, path: str) -> np.ndarray:
        file = self.root / path
        # np.fromfile raises FileNotFoundError for a missing file.
        data = np.fromfile(file, dtype=np.float32)
        logger.debug("read %d floats from %s", data.size, file)
        return data

    def __repr__(self) -> str:
        return f"DirectoryStore({str(self.root)!r})"


class MemoryStore(ParameterStore):
    """Parameters held in a dict; handy for synthetic weights and tests."""

    def __init__(self, entries: Mapping[str, np.ndarray] | None = None):
        self._entries: dict[str, np.ndarray] = {}
        for path, value in (entries or {}).items():
            self[path] = value

    def __setitem__(self, path: str, value) -> None:
        self._entries[path] = np.ascontiguousarray(value, dtype=np.float32).ravel()

    def __getitem__(self, path: str) -> np.ndarray:
        return self._load(path)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __iter__(self):
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _load(self, path: str) -> np.ndarray:
        try:
            return self._entries[path]
        except KeyError:
            raise FileNotFoundError(f"no parameter stored at {path!r}") from None

    def save(self, root: str | os.PathLike) -> DirectoryStore:
        """Write every entry as a raw float32 file under ``root``."""
        root = Path(root)
        for path, value in self._entries.items():
            file = root / path
            file.parent.mkdir(parents=True, exist_ok=True)
            value.tofile(file)
        logger.debug("saved %d parameters to %s", len(self._entries), root)
        return DirectoryStore(root)
