# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""Compute device descriptor ('cpu', 'cuda', 'cuda:1')."""
from __future__ import annotations

DEVICE_TYPES = ('cpu', 'cuda')


class device:
    """Names the backend a buffer or layer lives on."""

    __slots__ = ('_type', '_index')

    def __init__(self, type_or_str='cpu', index: int | None = None):
        if isinstance(type_or_str, device):
            self._type = type_or_str._type
            self._index = type_or_str._index
            return
        s = str(type_or_str).strip().lower()
        if ':' in s:
            kind, _, idx = s.partition(':')
            try:
                index = int(idx)
            except ValueError:
                raise ValueError(f"invalid device index in {type_or_str!r}") from None
            s = kind
        if s not in DEVICE_TYPES:
            raise ValueError(
                f"unknown device type {s!r}; expected one of {DEVICE_TYPES}")
        if s == 'cpu' and index not in (None, 0):
            raise ValueError(f"cpu device has no index {index}")
        self._type = s
        self._index = None if s == 'cpu' else index

    @property
    def type(self) -> str:
        return self._type

    @property
    def index(self) -> int | None:
        return self._index

    def __eq__(self, other) -> bool:
        if isinstance(other, str):
            try:
                other = device(other)
            except ValueError:
                return False
        if not isinstance(other, device):
            return NotImplemented
        return self._type == other._type and (self._index or 0) == (other._index or 0)

    def __hash__(self) -> int:
        return hash((self._type, self._index or 0))

    def __repr__(self) -> str:
        if self._index is not None:
            return f"device(type='{self._type}', index={self._index})"
        return f"device(type='{self._type}')"

    def __str__(self) -> str:
        if self._type == 'cpu':
            return 'cpu'
        return f"{self._type}:{self._index or 0}"
