"""
Scramblery — Padding Engine
============================
Maps an arbitrary (height, width) plane onto the square, power-of-two
plane the FFT plans are built for, and crops the result back.

Padding modes:
  - ZERO:    plane in the top-left corner, zeros elsewhere
  - REFLECT: plane mirrored about its right and bottom edges
             (edge sample repeated: value(y, 2*width-1-x))
  - WRAP:    plane tiled, value(y mod height, x mod width)

Unpadding is always a plain top-left crop of the real part, whatever
mode was used to pad.

Part 2 of 7 — Padding
"""

from __future__ import annotations

import numpy as np

from scramble_types import PaddingMode, UnsupportedPaddingGeometry

# numpy.pad mode for each padding strategy. "symmetric" repeats the edge
# sample, which is the 2*width-1-x mirror.
_NP_PAD_MODES = {
    PaddingMode.ZERO: "constant",
    PaddingMode.REFLECT: "symmetric",
    PaddingMode.WRAP: "wrap",
}


def next_power_of_two(size: int) -> int:
    """Smallest power of two >= size (1 for size <= 1)."""
    if size <= 1:
        return 1
    return 1 << (int(size) - 1).bit_length()


def is_power_of_two(n: int) -> bool:
    return n > 0 and (n & (n - 1)) == 0


def padded_size_for(height: int, width: int) -> int:
    """Side of the square transform plane for a (height, width) plane."""
    return next_power_of_two(max(width, height))


def pad(plane: np.ndarray, mode=PaddingMode.ZERO) -> np.ndarray:
    """Extend a 2D real plane to a padded_size x padded_size square.

    Args:
        plane: (height, width) float array.
        mode: PaddingMode (or its string value).

    Returns:
        (n, n) float64 array with the source plane in its top-left corner.

    Raises:
        UnsupportedPaddingGeometry: REFLECT mode where the padded side is
            more than twice the width or height. A padded side of exactly
            twice a dimension is accepted: the mirrored copy then ends on
            the first source row/column, so every index stays in bounds.
    """
    mode = PaddingMode.parse(mode)
    plane = np.asarray(plane, dtype=np.float64)
    if plane.ndim != 2 or plane.size == 0:
        raise ValueError(f"pad expects a non-empty 2D plane, got shape {plane.shape}")

    height, width = plane.shape
    n = padded_size_for(height, width)

    if mode is PaddingMode.REFLECT and (n > 2 * width or n > 2 * height):
        raise UnsupportedPaddingGeometry(
            f"Reflect padding of a {width}x{height} plane to {n}x{n} would "
            f"mirror past the source (padded side must be <= 2*width and <= 2*height)"
        )

    return np.pad(plane, ((0, n - height), (0, n - width)), mode=_NP_PAD_MODES[mode])


def unpad(padded: np.ndarray, original_dims: tuple[int, int]) -> np.ndarray:
    """Crop the top-left (height, width) real part of a padded result.

    Args:
        padded: (n, n) real or complex array, or a flat row-major buffer
            of length n*n.
        original_dims: (height, width) of the plane before padding.
    """
    height, width = original_dims
    padded = np.asarray(padded)
    if padded.ndim == 1:
        n = padded_size_for(height, width)
        padded = padded.reshape(n, n)
    return np.real(padded[:height, :width]).astype(np.float64, copy=True)
