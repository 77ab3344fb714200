"""
Scramblery — Spectral Transform
================================
2D forward/inverse FFT of a square complex plane by row/column
decomposition over a 1D transform primitive.

The 1D primitive is numpy.fft wrapped in an FftPlan that is bound to one
length. Both directions are UNNORMALISED:

    inverse1d(forward1d(x)) == n * x

so the 2D inverse applies the 1/(n*n) scale itself.

Buffers are flat row-major complex128 arrays of length n*n and are
transformed in place.

Part 3 of 7 — Spectral Transform
"""

from __future__ import annotations

import logging
import math

import numpy as np

from scramble_padding import is_power_of_two
from scramble_types import TransformSizeMismatch

_log = logging.getLogger("ScrambleSpectral")


class FftPlan:
    """1D FFT primitive for a single power-of-two length.

    ``process`` transforms every row of a (k, size) array in place, which
    is the same as k independent 1D transforms.
    """

    def __init__(self, size: int, inverse: bool = False) -> None:
        if not is_power_of_two(size):
            raise ValueError(f"FFT plan size must be a power of two, got {size}")
        self.size = size
        self.inverse = inverse

    def process(self, buffer: np.ndarray) -> None:
        if buffer.shape[-1] != self.size:
            raise TransformSizeMismatch(
                f"{'Inverse' if self.inverse else 'Forward'} plan built for length "
                f"{self.size}, got {buffer.shape[-1]}"
            )
        if self.inverse:
            buffer[...] = np.fft.ifft(buffer, axis=-1, norm="forward")
        else:
            buffer[...] = np.fft.fft(buffer, axis=-1)

    def __repr__(self) -> str:
        return f"FftPlan(size={self.size}, inverse={self.inverse})"


class SpectralTransform:
    """Forward/inverse 2D transform for n x n planes."""

    def __init__(self, size: int) -> None:
        self.size = size
        self.fft = FftPlan(size)
        self.ifft = FftPlan(size, inverse=True)

    def _as_square(self, data: np.ndarray) -> np.ndarray:
        n = math.isqrt(data.size)
        if n * n != data.size:
            raise TransformSizeMismatch(
                f"Buffer of length {data.size} is not a square plane"
            )
        if n != self.size:
            raise TransformSizeMismatch(
                f"Transform built for {self.size}x{self.size}, got {n}x{n}"
            )
        if data.dtype != np.complex128:
            raise TypeError(f"Expected complex128 buffer, got {data.dtype}")
        if not data.flags.c_contiguous:
            raise ValueError("Transform buffer must be C-contiguous")
        # Must be a view so the transform lands in the caller's buffer.
        return data.reshape(n, n)

    def _rows_then_columns(self, data: np.ndarray, plan: FftPlan) -> np.ndarray:
        plane = self._as_square(data)
        plan.process(plane)
        # Columns are gathered into a contiguous buffer, transformed, scattered back.
        columns = np.ascontiguousarray(plane.T)
        plan.process(columns)
        plane[...] = columns.T
        return plane

    def forward2d(self, data: np.ndarray) -> None:
        """In-place 2D forward transform of a flat n*n buffer."""
        self._rows_then_columns(data, self.fft)

    def inverse2d(self, data: np.ndarray) -> None:
        """In-place 2D inverse transform, scaled by 1/(n*n)."""
        plane = self._rows_then_columns(data, self.ifft)
        plane *= 1.0 / (self.size * self.size)


class PlanCache:
    """One SpectralTransform per padded size, built on first use."""

    def __init__(self) -> None:
        self._transforms: dict[int, SpectralTransform] = {}

    def get(self, size: int) -> SpectralTransform:
        transform = self._transforms.get(size)
        if transform is None:
            _log.debug("Building %dx%d FFT plans", size, size)
            transform = SpectralTransform(size)
            self._transforms[size] = transform
        return transform

    def __contains__(self, size: int) -> bool:
        return size in self._transforms

    def __len__(self) -> int:
        return len(self._transforms)
