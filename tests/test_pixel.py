"""
Scramblery — Pixel-Domain Scrambler Tests
==========================================
Block shuffle, random noise, mosaic and circular-area scrambling, both
as plain functions and through FourierScrambler's method switch.

Part 5 of 7 — Integration
"""

from __future__ import annotations

import sys
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from scramble_engine import FourierScrambler
from scramble_pixel import (
    apply_pixel_method,
    block_shuffle,
    circle_scramble,
    mosaic,
    random_noise,
)
from scramble_types import FaceRegion, InvalidOptions, ScrambleMethod, ScrambleOptions


# ── Helpers ───────────────────────────────────────────────────

class _SizeRecordingRng:
    """Wraps a seeded Generator and records the size of every draw."""

    def __init__(self, seed=0):
        self._rng = np.random.default_rng(seed)
        self.sizes = []

    def uniform(self, low, high, size):
        self.sizes.append(size)
        return self._rng.uniform(low, high, size)


def _make_image(height=32, width=32, seed=42):
    return np.random.RandomState(seed).randint(0, 256, (height, width, 3)).astype(np.uint8)


def _indexed_image(height=16, width=16):
    """Every pixel has a distinct colour encoding its flat index."""
    idx = np.arange(height * width)
    image = np.zeros((height * width, 3), dtype=np.uint8)
    image[:, 0] = idx % 256
    image[:, 1] = idx // 256
    image[:, 2] = 7
    return image.reshape(height, width, 3)


def _tiles(image, size):
    rows, cols = image.shape[0] // size, image.shape[1] // size
    return [image[r * size:(r + 1) * size, c * size:(c + 1) * size].tobytes()
            for r in range(rows) for c in range(cols)]


def _changed(a, b):
    return np.any(a != b, axis=-1)


# ─── Test 1: Block shuffle ────────────────────────────────────

def test_block_shuffle_permutes_whole_tiles():
    image = _make_image(32, 32)
    out = block_shuffle(image, 8, np.random.default_rng(3))

    assert out.shape == image.shape and out.dtype == np.uint8
    assert sorted(_tiles(out, 8)) == sorted(_tiles(image, 8))
    assert not np.array_equal(out, image)


def test_block_shuffle_keeps_partial_edge_strips():
    image = _make_image(20, 18)
    out = block_shuffle(image, 8, np.random.default_rng(1))

    np.testing.assert_array_equal(out[16:, :], image[16:, :])
    np.testing.assert_array_equal(out[:, 16:], image[:, 16:])
    assert sorted(_tiles(out[:16, :16], 8)) == sorted(_tiles(image[:16, :16], 8))


def test_block_shuffle_single_tile_is_unchanged():
    image = _make_image(10, 10)
    rng = _SizeRecordingRng()
    np.testing.assert_array_equal(block_shuffle(image, 8, rng), image)
    assert rng.sizes == []


def test_block_shuffle_one_draw_per_tile():
    rng = _SizeRecordingRng()
    block_shuffle(_make_image(32, 24), 8, rng)
    assert rng.sizes == [4 * 3]


# ─── Test 2: Random noise ─────────────────────────────────────

def test_noise_zero_ratio_is_identity():
    image = _make_image()
    np.testing.assert_array_equal(random_noise(image, 0.0, np.random.default_rng(0)), image)


def test_noise_full_ratio_replaces_everything():
    image = _make_image(64, 64)
    out = random_noise(image, 1.0, np.random.default_rng(0))
    assert _changed(out, image).mean() > 0.99


def test_noise_ratio_controls_fraction():
    image = _make_image(64, 64)
    out = random_noise(image, 0.3, np.random.default_rng(5))
    assert 0.25 < _changed(out, image).mean() < 0.35


def test_noise_draw_sizes():
    image = _make_image(8, 6)
    rng = _SizeRecordingRng(2)
    out = random_noise(image, 0.5, rng)
    assert rng.sizes[0] == (8, 6)
    count = rng.sizes[1][0]
    assert rng.sizes[1] == (count, 3)
    assert _changed(out, image).sum() <= count


def test_noise_does_not_modify_input():
    image = _make_image()
    before = image.copy()
    random_noise(image, 1.0, np.random.default_rng(0))
    np.testing.assert_array_equal(image, before)


# ─── Test 3: Mosaic ───────────────────────────────────────────

def test_mosaic_cells_take_top_left_pixel():
    image = _make_image(8, 8)
    out = mosaic(image, 4)
    for y in range(0, 8, 4):
        for x in range(0, 8, 4):
            assert np.all(out[y:y + 4, x:x + 4] == image[y, x])


def test_mosaic_partial_cells_at_edges():
    image = _make_image(10, 7)
    out = mosaic(image, 4)
    assert out.shape == image.shape
    assert np.all(out[8:, 4:] == image[8, 4])


def test_mosaic_block_one_is_identity():
    image = _make_image(9, 5)
    np.testing.assert_array_equal(mosaic(image, 1), image)


# ─── Test 4: Circular area ────────────────────────────────────

def test_circle_leaves_outside_untouched():
    image = _make_image(40, 40)
    out = circle_scramble(image, (20, 20), 8, 1.0, np.random.default_rng(0))

    yy, xx = np.ogrid[:40, :40]
    inside = (xx - 20) ** 2 + (yy - 20) ** 2 < 64
    np.testing.assert_array_equal(out[~inside], image[~inside])
    assert _changed(out, image)[inside].mean() > 0.9


def test_circle_copies_existing_pixels():
    image = _indexed_image(16, 16)
    out = circle_scramble(image, (8, 8), 6, 1.0, np.random.default_rng(4))
    source_colours = {tuple(p) for p in image.reshape(-1, 3)}
    assert all(tuple(p) in source_colours for p in out.reshape(-1, 3))


def test_circle_zero_ratio_is_identity():
    image = _make_image()
    np.testing.assert_array_equal(
        circle_scramble(image, (5, 5), 10, 0.0, np.random.default_rng(0)), image)


@pytest.mark.parametrize("radius", [0, -3])
def test_circle_rejects_non_positive_radius(radius):
    with pytest.raises(InvalidOptions):
        circle_scramble(_make_image(), (5, 5), radius, 0.5, np.random.default_rng(0))


# ─── Test 5: Method switch ────────────────────────────────────

def test_fourier_is_not_a_pixel_method():
    with pytest.raises(InvalidOptions):
        apply_pixel_method(_make_image(), ScrambleOptions(method="fourier"),
                           np.random.default_rng(0))


def test_scrambler_dispatches_mosaic():
    image = _make_image(12, 12)
    scrambler = FourierScrambler(options=ScrambleOptions(method="mosaic", block_size=4))
    np.testing.assert_array_equal(scrambler.scramble(image), mosaic(image, 4))


@pytest.mark.parametrize("method", [ScrambleMethod.BLOCK, ScrambleMethod.NOISE])
def test_scrambler_pixel_methods_reproducible(method):
    image = _make_image(32, 32)
    opts = ScrambleOptions(method=method, block_size=8, ratio=0.5)
    first = FourierScrambler(options=opts, seed=11).scramble(image)
    second = FourierScrambler(options=opts, seed=11).scramble(image)
    np.testing.assert_array_equal(first, second)
    assert not np.array_equal(first, image)


def test_pixel_method_inside_regions_only():
    image = _make_image(24, 24)
    scrambler = FourierScrambler(options=ScrambleOptions(method="mosaic", block_size=4))
    region = FaceRegion(4, 8, 16, 20)

    out = scrambler.scramble_regions(image, [region], "include")

    np.testing.assert_array_equal(out[8:20, 4:16], mosaic(image[8:20, 4:16], 4))
    mask = np.ones((24, 24), dtype=bool)
    mask[8:20, 4:16] = False
    np.testing.assert_array_equal(out[mask], image[mask])


def test_scrambler_circle_uses_ratio_and_seed():
    image = _make_image(30, 30)
    opts = ScrambleOptions(ratio=0.8)
    first = FourierScrambler(options=opts, seed=2).scramble_circle(image, (15, 15), 10)
    second = FourierScrambler(options=opts, seed=2).scramble_circle(image, (15, 15), 10)
    np.testing.assert_array_equal(first, second)
    np.testing.assert_array_equal(first[0], image[0])
