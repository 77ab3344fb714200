"""
Scramblery — Phase Scrambler
=============================
Moves every FFT coefficient's phase toward a uniformly random target,
keeping its magnitude and the spectrum's Hermitian symmetry.

For each coefficient visited:
    mag, phase   = |c|, arg(c)
    target       ~ U[0, 2*pi)
    d            = wrap_to_[-pi, pi)(target - phase)
    c'           = mag * (cos(phase + intensity*d) + i*sin(phase + intensity*d))
and its partner at ((n-y) mod n, (n-x) mod n) becomes conj(c').

Self-paired bins (DC and the Nyquist rows/columns) have no separate
partner. They are rotated like any other bin, so the inverse transform
carries an imaginary residue there; callers only ever read the real part.

Random draws happen in row-major order of the visited coefficients, one
per unique pair. The whole channel is drawn as a single vector, which
yields the same sequence as one scalar draw per coefficient.

Part 4 of 7 — Phase Scrambler
"""

from __future__ import annotations

import numpy as np

from scramble_padding import is_power_of_two

_TWO_PI = 2.0 * np.pi


def angle_difference(a, b):
    """Signed minimal difference a - b, wrapped to [-pi, pi)."""
    return np.mod(np.subtract(a, b) + np.pi, _TWO_PI) - np.pi


def unique_pair_indices(n: int) -> tuple[np.ndarray, np.ndarray]:
    """Flat indices of the coefficients to visit, and of their partners.

    A coefficient (y, x) is visited unless y > sym_y, or y == sym_y and
    x > sym_x. Returned in row-major order; a visited index equals its
    partner only for self-paired bins.
    """
    ys, xs = np.indices((n, n))
    sym_y = (n - ys) % n
    sym_x = (n - xs) % n
    visit = (ys < sym_y) | ((ys == sym_y) & (xs <= sym_x))
    idx = np.flatnonzero(visit)
    partner = (sym_y * n + sym_x).ravel()[idx]
    return idx, partner


def scramble_phase(spectrum: np.ndarray, intensity: float, rng) -> None:
    """Randomize the phase of an n x n spectrum in place.

    Args:
        spectrum: complex128 array, (n, n) or flat with n*n entries,
            n a power of two.
        intensity: 0.0 leaves phases untouched, 1.0 replaces them with
            the random target.
        rng: Sequential random source with a NumPy ``uniform(low, high, size)``.
    """
    flat = spectrum.reshape(-1)
    n = int(round(np.sqrt(flat.size)))
    if n * n != flat.size or not is_power_of_two(n):
        raise ValueError(f"Spectrum side must be a power of two, got {flat.size} coefficients")
    if not np.shares_memory(flat, spectrum):
        raise ValueError("Spectrum must be contiguous to be scrambled in place")

    idx, partner = unique_pair_indices(n)
    coeffs = flat[idx]
    mag = np.abs(coeffs)
    orig_phase = np.angle(coeffs)

    random_phase = np.asarray(rng.uniform(0.0, _TWO_PI, idx.size), dtype=np.float64)
    new_phase = orig_phase + intensity * angle_difference(random_phase, orig_phase)
    new_coeffs = mag * (np.cos(new_phase) + 1j * np.sin(new_phase))

    flat[idx] = new_coeffs
    paired = idx != partner
    flat[partner[paired]] = np.conj(new_coeffs[paired])
