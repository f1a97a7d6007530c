"""
Direct NumPy reference for the style-transfer network.

Convolutions are computed as a sum of per-kernel-offset products over
strided views of the padded input; transposed convolutions by dilating
the input and convolving with the flipped kernel.  Neither uses im2col,
col2im or tiling, so they check the engine independently.  Everything
runs in float64.
"""

import numpy as np

from stylenet import MemoryStore


# ── Layers ────────────────────────────────────────────────────────────

def conv2d(x, W, b, stride, pad):
    """x: (C, H, W), W: (O, C, k, k) -> (O, H_out, W_out)."""
    x = np.asarray(x, dtype=np.float64)
    W = np.asarray(W, dtype=np.float64)
    C, H, Wd = x.shape
    O, _, k, _ = W.shape
    H_out = (H + 2 * pad - k) // stride + 1
    W_out = (Wd + 2 * pad - k) // stride + 1
    xp = np.pad(x, ((0, 0), (pad, pad), (pad, pad)), mode='constant')
    out = np.zeros((O, H_out, W_out))
    for i in range(k):
        for j in range(k):
            patch = xp[:, i:i + stride * H_out:stride, j:j + stride * W_out:stride]
            out += np.einsum('oc,chw->ohw', W[:, :, i, j], patch, optimize=True)
    return out + np.asarray(b, dtype=np.float64)[:, None, None]


def deconv2d(x, W, b, stride, pad):
    """x: (C, H, W), W: (C, O, k, k) -> (O, H_out, W_out)."""
    x = np.asarray(x, dtype=np.float64)
    W = np.asarray(W, dtype=np.float64)
    C, H, Wd = x.shape
    _, O, k, _ = W.shape
    H_out = (H - 1) * stride - 2 * pad + k
    W_out = (Wd - 1) * stride - 2 * pad + k

    # Insert zeros between input pixels, then pad for a full convolution
    x_dil = np.zeros((C, (H - 1) * stride + 1, (Wd - 1) * stride + 1))
    x_dil[:, ::stride, ::stride] = x
    p = k - 1 - pad
    xp = np.pad(x_dil, ((0, 0), (p, p), (p, p)), mode='constant')

    w_flipped = W[:, :, ::-1, ::-1]
    out = np.zeros((O, H_out, W_out))
    for i in range(k):
        for j in range(k):
            patch = xp[:, i:i + H_out, j:j + W_out]
            out += np.einsum('chw,co->ohw', patch, w_flipped[:, :, i, j], optimize=True)
    return out + np.asarray(b, dtype=np.float64)[:, None, None]


def batch_norm(x, gamma, beta, mean, var, eps=0.0):
    c = lambda v: np.asarray(v, dtype=np.float64)[:, None, None]
    return (x - c(mean)) / np.sqrt(c(var) + eps) * c(gamma) + c(beta)


def relu(x):
    return np.maximum(x, 0)


def elu(x):
    return np.where(x > 0, x, np.expm1(np.minimum(x, 0)))


# ── Synthetic parameters ──────────────────────────────────────────────

ENCODER = [('c1', 3, 32, 9, 1, 4), ('c2', 32, 64, 4, 2, 1), ('c3', 64, 128, 4, 2, 1)]
DECODER = [('d1', 128, 64, 4, 2, 1), ('d2', 64, 32, 4, 2, 1), ('d3', 32, 3, 9, 1, 4)]
NORMS = [('b1', 32), ('b2', 64), ('b3', 128), ('b4', 64), ('b5', 32)]


def add_conv(store, path, n_in, n_out, k, rng, scale=1.0):
    std = scale / np.sqrt(n_in * k * k)
    store[f'{path}/W'] = rng.normal(0, std, (n_out, n_in, k, k))
    store[f'{path}/b'] = rng.normal(0, 0.05, n_out)


def add_deconv(store, path, n_in, n_out, k, s, rng, scale=1.0):
    std = scale / np.sqrt(n_in * max(1, (k // s) ** 2))
    store[f'{path}/W'] = rng.normal(0, std, (n_in, n_out, k, k))
    store[f'{path}/b'] = rng.normal(0, 0.05, n_out)


def add_norm(store, path, n, rng):
    store[f'{path}/gamma'] = rng.uniform(0.8, 1.2, n)
    store[f'{path}/beta'] = rng.normal(0, 0.1, n)
    store[f'{path}/avg_mean'] = rng.normal(0, 0.1, n)
    store[f'{path}/avg_var'] = rng.uniform(0.5, 1.5, n)


def add_residual(store, path, n, rng):
    add_conv(store, f'{path}/c1', n, n, 3, rng, scale=0.5)
    add_conv(store, f'{path}/c2', n, n, 3, rng, scale=0.5)
    add_norm(store, f'{path}/b1', n, rng)
    add_norm(store, f'{path}/b2', n, rng)


def make_model_store(model_id='composition', seed=0, store=None):
    """Deterministic small parameter set for the whole network."""
    rng = np.random.default_rng(seed)
    store = MemoryStore() if store is None else store
    for name, n_in, n_out, k, s, p in ENCODER:
        add_conv(store, f'{model_id}/{name}', n_in, n_out, k, rng)
    for name, n in NORMS:
        add_norm(store, f'{model_id}/{name}', n, rng)
    for i in range(1, 6):
        add_residual(store, f'{model_id}/r{i}', 128, rng)
    for name, n_in, n_out, k, s, p in DECODER:
        add_deconv(store, f'{model_id}/{name}', n_in, n_out, k, s, rng)
    return store


# ── Forward passes ────────────────────────────────────────────────────

def _norm(store, path, x, eps=0.0):
    return batch_norm(x, store[f'{path}/gamma'], store[f'{path}/beta'],
                      store[f'{path}/avg_mean'], store[f'{path}/avg_var'], eps)


def _conv(store, path, x, n_in, n_out, k, s, p):
    W = store[f'{path}/W'].reshape(n_out, n_in, k, k)
    return conv2d(x, W, store[f'{path}/b'], s, p)


def _deconv(store, path, x, n_in, n_out, k, s, p):
    W = store[f'{path}/W'].reshape(n_in, n_out, k, k)
    return deconv2d(x, W, store[f'{path}/b'], s, p)


def residual_block(store, path, x, n, eps=0.0):
    h = _conv(store, f'{path}/c1', x, n, n, 3, 1, 1)
    h = relu(_norm(store, f'{path}/b1', h, eps))
    h = _conv(store, f'{path}/c2', h, n, n, 3, 1, 1)
    h = _norm(store, f'{path}/b2', h, eps)
    return x + h


def forward(store, image, model_id='composition', eps=0.0):
    """Full network on a (3, H, W) image."""
    x = np.asarray(image, dtype=np.float64)
    for (name, n_in, n_out, k, s, p), (bn, _) in zip(ENCODER, NORMS[:3]):
        x = _conv(store, f'{model_id}/{name}', x, n_in, n_out, k, s, p)
        x = _norm(store, f'{model_id}/{bn}', elu(x), eps)
    for i in range(1, 6):
        x = residual_block(store, f'{model_id}/r{i}', x, 128, eps)
    for (name, n_in, n_out, k, s, p), (bn, _) in zip(DECODER[:2], NORMS[3:]):
        x = _deconv(store, f'{model_id}/{name}', x, n_in, n_out, k, s, p)
        x = _norm(store, f'{model_id}/{bn}', elu(x), eps)
    name, n_in, n_out, k, s, p = DECODER[2]
    return _deconv(store, f'{model_id}/{name}', x, n_in, n_out, k, s, p)


def rel_err(actual, expected):
    """max |actual - expected| relative to the magnitude of ``expected``."""
    expected = np.asarray(expected, dtype=np.float64)
    scale = max(1.0, float(np.max(np.abs(expected))))
    return float(np.max(np.abs(np.asarray(actual, dtype=np.float64) - expected))) / scale
