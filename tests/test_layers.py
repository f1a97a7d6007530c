"""
Convolution2D, Deconvolution2D and BatchNormalization, tiled and untiled,
against the direct NumPy reference in tests/reference.py.

Run:  pytest tests/test_layers.py -v
"""

import numpy as np
import pytest

import reference as ref
from stylenet import BenchmarkResult, MemoryStore, TilePolicy, config
from stylenet.backends.cpu import CPUBackend
from stylenet.nn import BatchNormalization, Convolution2D, Deconvolution2D


@pytest.fixture
def be():
    return CPUBackend()


@pytest.fixture
def profiling():
    prev = config.profiling_enabled()
    config.set_profiling(True)
    yield
    config.set_profiling(prev)


def make_conv(be, n_in, n_out, k, s, p, tiling=None, seed=0, store=None):
    store = store if store is not None else MemoryStore()
    if 'c/W' not in store:
        ref.add_conv(store, 'c', n_in, n_out, k, np.random.default_rng(seed))
    conv = Convolution2D(n_in, n_out, k, s, p, tiling, be)
    conv.load_parameters(store, 'c')
    return conv, store


def make_deconv(be, n_in, n_out, k, s, p, tiling=None, seed=0, store=None):
    store = store if store is not None else MemoryStore()
    if 'd/W' not in store:
        ref.add_deconv(store, 'd', n_in, n_out, k, s, np.random.default_rng(seed))
    deconv = Deconvolution2D(n_in, n_out, k, s, p, tiling, be)
    deconv.load_parameters(store, 'd')
    return deconv, store


def run(layer, be, x):
    C, H, W = x.shape
    with be.from_host(x) as buf:
        out = layer.process(buf, H, W)
    with out:
        return out.copy_to().reshape(out.dim_y, layer.out_h, layer.out_w)


# ── TilePolicy ────────────────────────────────────────────────────────

def test_tile_policy_bands():
    assert TilePolicy(8, 'partial').bands(20, 8) == [(0, 8), (8, 8), (16, 4)]
    assert TilePolicy(8, 'truncate').bands(20, 8) == [(0, 8), (8, 8)]
    assert TilePolicy(8, 'truncate').bands(16, 8) == [(0, 8), (8, 8)]
    # A band taller than the image is clamped to it
    assert TilePolicy(64, 'partial').bands(5, 64) == [(0, 5)]
    assert TilePolicy(64, 'truncate').bands(5, 64) == [(0, 5)]


def test_tile_policy_validation():
    with pytest.raises(ValueError):
        TilePolicy(0)
    with pytest.raises(ValueError):
        TilePolicy(8, 'ceil')


def test_tile_policy_defaults_follow_config():
    prev = config.get_tile_height()
    config.set_tile_height(32)
    try:
        assert TilePolicy().height == 32
    finally:
        config.set_tile_height(prev)
    assert TilePolicy().remainder == config.get_tile_remainder()


# ── Convolution2D ─────────────────────────────────────────────────────

@pytest.mark.parametrize('n_in,n_out,k,s,p', [
    (3, 8, 9, 1, 4),
    (8, 16, 4, 2, 1),
    (16, 16, 3, 1, 1),
])
def test_conv_matches_reference(be, n_in, n_out, k, s, p):
    np.random.seed(42)
    x = np.random.randn(n_in, 20, 18).astype(np.float32)
    conv, store = make_conv(be, n_in, n_out, k, s, p)
    got = run(conv, be, x)
    want = ref.conv2d(x, store['c/W'].reshape(n_out, n_in, k, k), store['c/b'], s, p)
    assert got.shape == want.shape
    assert ref.rel_err(got, want) < 1e-5


def test_conv_weight_padding_is_zero(be):
    conv, store = make_conv(be, 3, 4, 3, 1, 1)
    assert (conv.k_dim, conv.k_padded) == (27, 32)
    W = conv.W.copy_to()
    assert W.shape == (4, 32)
    assert np.all(W[:, 27:] == 0)
    assert np.array_equal(W[:, :27], store['c/W'].reshape(4, 27))


@pytest.mark.parametrize('n_in,n_out,k,s,p', [
    (3, 8, 9, 1, 4),
    (8, 16, 4, 2, 1),
    (16, 16, 3, 1, 1),
])
def test_tiled_conv_matches_untiled(be, n_in, n_out, k, s, p):
    np.random.seed(42)
    x = np.random.randn(n_in, 32, 12).astype(np.float32)
    untiled, store = make_conv(be, n_in, n_out, k, s, p)
    tiled, _ = make_conv(be, n_in, n_out, k, s, p, TilePolicy(8), store=store)
    np.testing.assert_allclose(run(tiled, be, x), run(untiled, be, x), rtol=1e-5, atol=1e-6)


def test_tiled_conv_partial_last_band(be):
    np.random.seed(42)
    x = np.random.randn(4, 37, 9).astype(np.float32)
    untiled, store = make_conv(be, 4, 6, 3, 1, 1)
    tiled, _ = make_conv(be, 4, 6, 3, 1, 1, TilePolicy(8, 'partial'), store=store)
    np.testing.assert_allclose(run(tiled, be, x), run(untiled, be, x), rtol=1e-5, atol=1e-6)


def test_tiled_conv_truncate_leaves_trailing_rows(be):
    np.random.seed(42)
    x = np.random.randn(4, 37, 9).astype(np.float32)
    untiled, store = make_conv(be, 4, 6, 3, 1, 1)
    tiled, _ = make_conv(be, 4, 6, 3, 1, 1, TilePolicy(8, 'truncate'), store=store)
    full = run(untiled, be, x)
    got = run(tiled, be, x)
    # 37 // 8 = 4 bands of 8 rows; rows 32..36 only receive the bias
    np.testing.assert_allclose(got[:, :32], full[:, :32], rtol=1e-5, atol=1e-6)
    bias = store['c/b'][:, None, None]
    assert np.array_equal(got[:, 32:], np.broadcast_to(bias, got[:, 32:].shape))


def test_tiled_conv_image_shorter_than_tile(be):
    np.random.seed(42)
    x = np.random.randn(3, 5, 7).astype(np.float32)
    untiled, store = make_conv(be, 3, 4, 3, 1, 1)
    for remainder in ('partial', 'truncate'):
        tiled, _ = make_conv(be, 3, 4, 3, 1, 1, TilePolicy(64, remainder), store=store)
        np.testing.assert_allclose(run(tiled, be, x), run(untiled, be, x),
                                   rtol=1e-5, atol=1e-6)


def test_tiled_conv_uses_less_memory():
    np.random.seed(42)
    x = np.random.randn(8, 64, 16).astype(np.float32)
    peaks = {}
    for name, tiling in (('untiled', None), ('tiled', TilePolicy(8))):
        be = CPUBackend()
        conv, _ = make_conv(be, 8, 8, 3, 1, 1, tiling)
        be.reset_peak_memory_stats()
        base = be.memory_allocated()
        run(conv, be, x)
        peaks[name] = be.max_memory_allocated() - base
    assert peaks['tiled'] < peaks['untiled']


def test_conv_rejects_non_positive_output(be):
    conv = Convolution2D(3, 4, 9, 1, 0, device=be)
    with be.from_host(np.zeros((3, 4, 4), np.float32)) as x:
        live = be.live_buffers()
        with pytest.raises(ValueError):
            conv.process(x, 4, 4)
        assert be.live_buffers() == live


def test_conv_releases_buffers_on_error(be):
    conv, _ = make_conv(be, 3, 4, 3, 1, 1, TilePolicy(4))
    with be.from_host(np.zeros((2, 8, 8), np.float32)) as x:
        live = be.live_buffers()
        mem = be.memory_allocated()
        with pytest.raises(ValueError):
            conv.process(x, 8, 8)          # two channels, layer expects three
        assert be.live_buffers() == live
        assert be.memory_allocated() == mem


def test_conv_load_errors(be):
    conv = Convolution2D(3, 4, 3, device=be)
    store = MemoryStore({'c/W': np.zeros(3 * 4 * 9 - 1), 'c/b': np.zeros(4)})
    with pytest.raises(ValueError):
        conv.load_parameters(store, 'c')
    with pytest.raises(FileNotFoundError):
        conv.load_parameters(MemoryStore(), 'c')


# ── Deconvolution2D ───────────────────────────────────────────────────

@pytest.mark.parametrize('n_in,n_out,k,s,p', [
    (8, 4, 4, 2, 1),
    (4, 3, 9, 1, 4),
    (4, 4, 3, 1, 1),
])
def test_deconv_matches_reference(be, n_in, n_out, k, s, p):
    np.random.seed(42)
    x = np.random.randn(n_in, 10, 7).astype(np.float32)
    deconv, store = make_deconv(be, n_in, n_out, k, s, p)
    got = run(deconv, be, x)
    want = ref.deconv2d(x, store['d/W'].reshape(n_in, n_out, k, k), store['d/b'], s, p)
    assert got.shape == want.shape
    assert ref.rel_err(got, want) < 1e-5


def test_deconv_weight_transposed_at_load(be):
    deconv, store = make_deconv(be, 4, 3, 3, 1, 1)
    assert (deconv.k_dim, deconv.k_padded) == (27, 32)
    W = deconv.W.copy_to()
    assert W.shape == (32, 4)
    assert np.array_equal(W[:27], store['d/W'].reshape(4, 27).T)
    assert np.all(W[27:] == 0)


@pytest.mark.parametrize('n_in,n_out,k,s,p', [
    (8, 4, 4, 2, 1),
    (4, 3, 9, 1, 4),
])
def test_tiled_deconv_matches_untiled(be, n_in, n_out, k, s, p):
    np.random.seed(42)
    for rows in (16, 20):                  # a multiple of the band, then not
        x = np.random.randn(n_in, rows, 6).astype(np.float32)
        untiled, store = make_deconv(be, n_in, n_out, k, s, p)
        tiled, _ = make_deconv(be, n_in, n_out, k, s, p, TilePolicy(8, 'partial'),
                               store=store)
        np.testing.assert_allclose(run(tiled, be, x), run(untiled, be, x),
                                   rtol=1e-5, atol=1e-6)


def test_tiled_deconv_truncate_drops_trailing_input_rows(be):
    np.random.seed(42)
    x = np.random.randn(8, 20, 6).astype(np.float32)
    untiled, store = make_deconv(be, 8, 4, 4, 2, 1)
    tiled, _ = make_deconv(be, 8, 4, 4, 2, 1, TilePolicy(8, 'truncate'), store=store)
    # 20 // 8 = 2 bands: input rows 16..19 never contribute
    x_cut = x.copy()
    x_cut[:, 16:] = 0
    np.testing.assert_allclose(run(tiled, be, x), run(untiled, be, x_cut),
                               rtol=1e-5, atol=1e-6)


def test_deconv_rejects_non_positive_output(be):
    deconv = Deconvolution2D(2, 2, 1, 1, 1, device=be)
    with be.from_host(np.zeros((2, 1, 1), np.float32)) as x:
        with pytest.raises(ValueError):
            deconv.process(x, 1, 1)


# ── BatchNormalization ────────────────────────────────────────────────

def _bn_store(n, gamma, beta, mean, var):
    return MemoryStore({'b/gamma': gamma * np.ones(n), 'b/beta': beta * np.ones(n),
                        'b/avg_mean': mean * np.ones(n), 'b/avg_var': var * np.ones(n)})


def test_batch_norm_identity(be):
    np.random.seed(42)
    x = np.random.randn(5, 6, 7).astype(np.float32)
    for eps in (0.0, 1e-5):
        bn = BatchNormalization(5, eps=eps, device=be)
        bn.load_parameters(_bn_store(5, 1.0, 0.0, 0.0, 1.0), 'b')
        with be.from_host(x) as buf:
            bn.process(buf)
            np.testing.assert_allclose(buf.copy_to().reshape(x.shape), x,
                                       rtol=1e-5, atol=1e-6)


def test_batch_norm_matches_reference(be):
    np.random.seed(42)
    x = np.random.randn(6, 4, 5).astype(np.float32)
    store = MemoryStore()
    ref.add_norm(store, 'b', 6, np.random.default_rng(1))
    bn = BatchNormalization(6, eps=2e-5, device=be)
    bn.load_parameters(store, 'b')
    with be.from_host(x) as buf:
        bn.process(buf)
        got = buf.copy_to().reshape(x.shape)
    want = ref.batch_norm(x, store['b/gamma'], store['b/beta'],
                          store['b/avg_mean'], store['b/avg_var'], 2e-5)
    assert ref.rel_err(got, want) < 1e-5


def test_batch_norm_default_eps_and_channel_check(be):
    bn = BatchNormalization(4, device=be)
    assert bn.eps == config.get_bn_eps()
    with be.allocate(10, 3) as buf:
        with pytest.raises(ValueError):
            bn.process(buf)


# ── Benchmarks ────────────────────────────────────────────────────────

def test_benchmark_accumulates_and_resets(be, profiling):
    np.random.seed(42)
    x = np.random.randn(3, 16, 16).astype(np.float32)
    conv, _ = make_conv(be, 3, 4, 3, 1, 1, TilePolicy(4))
    deconv, _ = make_deconv(be, 4, 3, 4, 2, 1)
    run(conv, be, x)
    run(deconv, be, np.random.randn(4, 8, 8).astype(np.float32))

    sink = BenchmarkResult()
    conv.accumulate_benchmark(sink)
    assert sink.im2col_time > 0 and sink.sgemm_time > 0
    assert sink.col2im_time == 0
    deconv.accumulate_benchmark(sink)
    assert sink.col2im_time > 0
    total = sink.total_time

    # Counters were drained into the sink
    assert conv.timer.result.total_time == 0
    conv.accumulate_benchmark(sink)
    assert sink.total_time == total


def test_benchmark_disabled(be):
    prev = config.profiling_enabled()
    config.set_profiling(False)
    try:
        conv, _ = make_conv(be, 3, 4, 3, 1, 1)
        run(conv, be, np.ones((3, 8, 8), np.float32))
        assert conv.accumulate_benchmark(BenchmarkResult()).total_time == 0
    finally:
        config.set_profiling(prev)
