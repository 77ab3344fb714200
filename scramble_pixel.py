"""
Scramblery — Pixel-Domain Scramblers
=====================================
Spatial alternatives to Fourier phase scrambling. All operate on RGB
uint8 arrays, return a new array, and take their randomness from the
same injectable source as the Fourier path (any object with
``uniform(low, high, size)``), so a fixed seed reproduces the output.

Methods:
  - BLOCK:  cut the image into block_size tiles and shuffle them
  - NOISE:  replace a ``ratio`` fraction of pixels with random colours
  - MOSAIC: fill every block_size cell with its top-left pixel
  - Circular area: inside a circle, replace a ``ratio`` fraction of
    pixels with pixels copied from random positions of the image

Part 5 of 7 — Integration
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from scramble_types import InvalidOptions, ScrambleMethod, ScrambleOptions


# ═══════════════════════════════════════════════════════════════
# Methods
# ═══════════════════════════════════════════════════════════════

def block_shuffle(image: np.ndarray, block_size: int, rng) -> np.ndarray:
    """Shuffle the full block_size x block_size tiles of an image.

    Only whole tiles take part; the partial strip along the right and
    bottom edges keeps its original pixels. One uniform draw per tile
    decides the new order.
    """
    height, width = image.shape[:2]
    rows, cols = height // block_size, width // block_size
    out = image.copy()
    if rows * cols < 2:
        return out

    h, w = rows * block_size, cols * block_size
    tiles = (image[:h, :w]
             .reshape(rows, block_size, cols, block_size, -1)
             .swapaxes(1, 2)
             .reshape(rows * cols, block_size, block_size, -1))
    order = np.argsort(np.asarray(rng.uniform(0.0, 1.0, rows * cols)), kind="stable")
    out[:h, :w] = (tiles[order]
                   .reshape(rows, cols, block_size, block_size, -1)
                   .swapaxes(1, 2)
                   .reshape(h, w, -1))
    return out


def random_noise(image: np.ndarray, ratio: float, rng) -> np.ndarray:
    """Replace each pixel with a random colour with probability ``ratio``."""
    height, width = image.shape[:2]
    mask = np.asarray(rng.uniform(0.0, 1.0, (height, width))) < ratio
    count = int(mask.sum())

    out = image.copy()
    colours = np.floor(np.asarray(rng.uniform(0.0, 256.0, (count, image.shape[2]))))
    out[mask] = np.clip(colours, 0, 255).astype(np.uint8)
    return out


def mosaic(image: np.ndarray, block_size: int) -> np.ndarray:
    """Pixelate: every block_size cell takes the colour of its top-left pixel."""
    height, width = image.shape[:2]
    cells = image[::block_size, ::block_size]
    expanded = np.repeat(np.repeat(cells, block_size, axis=0), block_size, axis=1)
    return np.ascontiguousarray(expanded[:height, :width])


def circle_scramble(
    image: np.ndarray,
    center: Tuple[float, float],
    radius: float,
    ratio: float,
    rng,
) -> np.ndarray:
    """Scramble pixels strictly inside a circle.

    Each pixel within ``radius`` of ``center`` (x, y) is, with
    probability ``ratio``, replaced by the pixel at a uniformly random
    position of the source image. Sources are read from the unmodified
    input, so the result does not depend on visiting order.

    Raises:
        InvalidOptions: Non-positive radius.
    """
    if radius <= 0:
        raise InvalidOptions(f"Circle radius must be positive, got {radius}")
    height, width = image.shape[:2]
    cx, cy = center

    yy, xx = np.ogrid[:height, :width]
    inside = (xx - cx) ** 2 + (yy - cy) ** 2 < radius ** 2
    mask = inside & (np.asarray(rng.uniform(0.0, 1.0, (height, width))) < ratio)
    count = int(mask.sum())

    flat = image.reshape(height * width, -1)
    sources = np.floor(np.asarray(rng.uniform(0.0, height * width, count))).astype(np.int64)
    sources = np.clip(sources, 0, height * width - 1)

    out = image.copy()
    out.reshape(height * width, -1)[mask.ravel()] = flat[sources]
    return out


def apply_pixel_method(image: np.ndarray, options: ScrambleOptions, rng) -> np.ndarray:
    """Run the pixel-domain method selected by ``options.method``."""
    method = options.method
    if method is ScrambleMethod.BLOCK:
        return block_shuffle(image, options.block_size, rng)
    if method is ScrambleMethod.NOISE:
        return random_noise(image, options.ratio, rng)
    if method is ScrambleMethod.MOSAIC:
        return mosaic(image, options.block_size)
    raise InvalidOptions(f"{method.value} is not a pixel-domain method")
