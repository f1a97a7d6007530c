# ╔══════════════════════════════════════════════════════════════════════╗
# ║  StyleNet — Fast Style Transfer Engine                               ║
# ║  Copyright © 2026 Pictofeed, LLC. All rights reserved.               ║
# ╚══════════════════════════════════════════════════════════════════════╝
"""nn.functional — convolution geometry and host reference transforms.

Everything here works on plain NumPy arrays laid out ``(C, H, W)``.  The
layers run the equivalent backend kernels on device buffers; these
functions define what those kernels must produce.
"""
from __future__ import annotations

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view


# ──────────────────────── Output sizes ────────────────────────────────

def conv_outsize(size: int, k: int, s: int, p: int) -> int:
    """Output extent of a convolution: ``floor((size + 2p - k) / s) + 1``."""
    return (size + 2 * p - k) // s + 1


def deconv_outsize(size: int, k: int, s: int, p: int) -> int:
    """Output extent of a transposed convolution: ``s*(size - 1) + k - 2p``."""
    return s * (size - 1) + k - 2 * p


def blas_aligned(n: int, alignment: int = 8) -> int:
    """Round ``n`` up to a multiple of ``alignment`` (GEMM contraction width)."""
    return ((n + alignment - 1) // alignment) * alignment


# ──────────────────────── Padding ─────────────────────────────────────

def pad(image: np.ndarray, pad_h: int, pad_w: int) -> np.ndarray:
    """Return ``image`` (C, H, W) centred in a zero border."""
    c, h, w = image.shape
    out = np.zeros((c, h + 2 * pad_h, w + 2 * pad_w), dtype=image.dtype)
    out[:, pad_h:pad_h + h, pad_w:pad_w + w] = image
    return out


def unpad(image_padded: np.ndarray, pad_h: int, pad_w: int) -> np.ndarray:
    """Crop ``pad_h`` / ``pad_w`` pixels from every edge."""
    _, hp, wp = image_padded.shape
    return image_padded[:, pad_h:hp - pad_h, pad_w:wp - pad_w].copy()


# ──────────────────────── im2col / col2im ─────────────────────────────

def im2col(image: np.ndarray, kernel_h: int, kernel_w: int,
           stride_y: int, stride_x: int,
           pad_h: int, pad_w: int) -> np.ndarray:
    """Unfold convolution windows of ``image`` (C, H, W) into columns.

    Returns a ``(C*kernel_h*kernel_w, out_h*out_w)`` matrix whose row
    ``c*kh*kw + i*kw + j`` and column ``oh*out_w + ow`` hold
    ``padded[c, oh*stride_y + i, ow*stride_x + j]``.  Walks output rows,
    then channels, then kernel rows, copying ``kernel_w`` contiguous
    pixels per output column.
    """
    c, h, w = image.shape
    out_h = conv_outsize(h, kernel_h, stride_y, pad_h)
    out_w = conv_outsize(w, kernel_w, stride_x, pad_w)
    if out_h <= 0 or out_w <= 0:
        raise ValueError(
            f"im2col: non-positive output size {out_h}x{out_w} for input {h}x{w}")
    padded = pad(image, pad_h, pad_w)
    kk = kernel_h * kernel_w
    col = np.empty((c * kk, out_h * out_w), dtype=image.dtype)
    for oh in range(out_h):
        y = oh * stride_y
        cols = slice(oh * out_w, (oh + 1) * out_w)
        for ic in range(c):
            for i in range(kernel_h):
                windows = sliding_window_view(padded[ic, y + i], kernel_w)[::stride_x][:out_w]
                row = ic * kk + i * kernel_w
                col[row:row + kernel_w, cols] = windows.T
    return col


def col2im(col: np.ndarray, col_h: int, col_w: int,
           kernel_h: int, kernel_w: int,
           stride_y: int, stride_x: int,
           pad_h: int, pad_w: int) -> np.ndarray:
    """Fold ``col`` back into an image by scatter-add.

    ``col`` is ``(C*kernel_h*kernel_w, col_h*col_w)``.  Every window
    contribution accumulates into a zeroed padded image of size
    ``deconv_outsize(col_h) + 2*pad_h`` by ``deconv_outsize(col_w) + 2*pad_w``;
    kernel offsets are visited outermost and spatial positions innermost.
    The unpadded ``(C, img_h, img_w)`` image is returned.
    """
    kk = kernel_h * kernel_w
    if col.shape[0] % kk or col.shape[1] != col_h * col_w:
        raise ValueError(
            f"col2im: column matrix {col.shape} does not match "
            f"{kernel_h}x{kernel_w} kernel over {col_h}x{col_w} positions")
    c = col.shape[0] // kk
    img_h = deconv_outsize(col_h, kernel_h, stride_y, pad_h)
    img_w = deconv_outsize(col_w, kernel_w, stride_x, pad_w)
    if img_h <= 0 or img_w <= 0:
        raise ValueError(f"col2im: non-positive output size {img_h}x{img_w}")
    padded = np.zeros((c, img_h + 2 * pad_h, img_w + 2 * pad_w), dtype=col.dtype)
    grid = col.reshape(c, kernel_h, kernel_w, col_h, col_w)
    x_span = stride_x * (col_w - 1) + 1
    for i in range(kernel_h):
        for j in range(kernel_w):
            for ih in range(col_h):
                padded[:, ih * stride_y + i, j:j + x_span:stride_x] += grid[:, i, j, ih]
    return unpad(padded, pad_h, pad_w)


__all__ = [
    'conv_outsize', 'deconv_outsize', 'blas_aligned',
    'pad', 'unpad', 'im2col', 'col2im',
]
