"""
Scramblery — FourierScrambler (Channel Pipeline & Region Orchestrator)
=======================================================================
The central orchestrator. Takes one RGB image and returns one image
whose spatial structure is destroyed by FFT phase randomization while
its per-frequency energy is kept.

Per channel (R, then G, then B):
  Pad → Forward FFT → Phase scramble (optional) → Inverse FFT
      → Crop → Clamp [0, 1] → floor(v * 255)

Face-aware path:
  - INCLUDE: scrambled face boxes pasted over a copy of the original
  - EXCLUDE: scrambled face boxes pasted onto a blank (black) canvas

Pixel-domain methods (BLOCK, NOISE, MOSAIC) replace the per-channel
pipeline when selected in ScrambleOptions.method and take part in the
face-aware path the same way.

Reproducibility: all random draws come from one sequential source owned
by the scrambler, consumed in channel order, then row-major pair order,
then detector region order. A fixed seed gives byte-identical output.

Part 5 of 7 — Integration
"""

from __future__ import annotations

from typing import Optional, Sequence

import cv2
import numpy as np

from scramble_face_detector import (
    FaceDetectorSession,
    detect_face_regions,
    load_face_detector,
)
from scramble_padding import pad, padded_size_for, unpad
from scramble_phase import scramble_phase
from scramble_pixel import apply_pixel_method, circle_scramble
from scramble_spectral import PlanCache
from scramble_types import (
    BackgroundMode,
    FaceRegion,
    FaceRegionOptions,
    InvalidImage,
    ScrambleMethod,
    ScrambleOptions,
)
from scramble_utils_core import setup_logger

_log = setup_logger("ScrambleEngine")

_NUM_CHANNELS = 3


# ═══════════════════════════════════════════════════════════════
# Image helpers
# ═══════════════════════════════════════════════════════════════

def ensure_rgb(image) -> np.ndarray:
    """Validate an image and normalise it to a (h, w, 3) uint8 RGB array.

    Grayscale inputs are replicated to three channels and RGBA inputs
    lose their alpha channel.

    Raises:
        InvalidImage: None, non-uint8 data, unsupported shape, or zero
            width/height.
    """
    if image is None or not isinstance(image, np.ndarray):
        raise InvalidImage("Image must be a numpy array")
    if image.dtype != np.uint8:
        raise InvalidImage(f"Image must be uint8, got {image.dtype}")
    if image.ndim == 3 and image.shape[2] == 1:
        image = image[:, :, 0]
    if image.ndim not in (2, 3) or image.shape[0] == 0 or image.shape[1] == 0:
        raise InvalidImage(f"Unsupported image shape {image.shape}")

    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    channels = image.shape[2]
    if channels == 3:
        return image
    if channels == 4:
        return cv2.cvtColor(image, cv2.COLOR_RGBA2RGB)
    raise InvalidImage(f"Unsupported channel count {channels}")


def split_channels(image: np.ndarray) -> list[np.ndarray]:
    """Split an RGB image into three float64 planes normalised to [0, 1]."""
    return [image[:, :, c].astype(np.float64) / 255.0 for c in range(_NUM_CHANNELS)]


def combine_channels(channels: Sequence[np.ndarray]) -> np.ndarray:
    """Merge [0, 1] planes into an RGB uint8 image, truncating v * 255."""
    stacked = np.stack(channels, axis=-1) * 255.0
    return np.floor(stacked).astype(np.uint8)


# ═══════════════════════════════════════════════════════════════
# FourierScrambler
# ═══════════════════════════════════════════════════════════════

class FourierScrambler:
    """Fourier phase scrambler for whole images or face regions.

    One instance can be reused for many images of different sizes: FFT
    plans are cached per padded size, and the working width/height are
    updated on every call. The random source is NOT thread-safe; use one
    instance per thread.
    """

    def __init__(
        self,
        width: int = 0,
        height: int = 0,
        options: Optional[ScrambleOptions] = None,
        seed: Optional[int] = None,
        rng=None,
    ) -> None:
        """Initialize the scrambler.

        Args:
            width, height: Expected image size. When both are given the
                matching FFT plans are built up front.
            options: Scramble settings (defaults from config.yaml).
            seed: Seed for the default NumPy generator. None = OS entropy.
            rng: Any object with ``uniform(low, high, size)``. Overrides seed.
        """
        self.width = width
        self.height = height
        self.options = options if options is not None else ScrambleOptions()
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self._plans = PlanCache()
        if width > 0 and height > 0:
            self._plans.get(padded_size_for(height, width))

        _log.debug(
            "FourierScrambler initialized — %dx%d options=%s seeded=%s",
            width, height, self.options.to_dict(), seed is not None or rng is not None,
        )

    # ── Channel Pipeline ──────────────────────────────────────

    def process_channel(self, channel: np.ndarray) -> np.ndarray:
        """Scramble one [0, 1] plane and return it clamped to [0, 1]."""
        padded = pad(channel, self.options.padding_mode)
        n = padded.shape[0]
        transform = self._plans.get(n)

        data = padded.astype(np.complex128).ravel()
        transform.forward2d(data)
        if self.options.enable_phase_scramble:
            scramble_phase(data, self.options.intensity, self.rng)
        transform.inverse2d(data)

        result = unpad(data, channel.shape)
        return np.clip(result, 0.0, 1.0)

    def scramble(self, image: np.ndarray) -> np.ndarray:
        """Scramble a whole image.

        Args:
            image: (h, w, 3) RGB uint8 (grayscale / RGBA accepted).

        Returns:
            New (h, w, 3) RGB uint8 image. The input is not modified.
        """
        rgb = ensure_rgb(image)
        self.height, self.width = rgb.shape[:2]
        if self.options.method is not ScrambleMethod.FOURIER:
            _log.debug("Applying %s to %dx%d image",
                       self.options.method.value, self.width, self.height)
            return apply_pixel_method(rgb, self.options, self.rng)

        _log.debug(
            "Scrambling %dx%d image (padded %d)",
            self.width, self.height, padded_size_for(self.height, self.width),
        )
        processed = [self.process_channel(ch) for ch in split_channels(rgb)]
        return combine_channels(processed)

    def scramble_circle(self, image: np.ndarray, center, radius: float) -> np.ndarray:
        """Scramble a circular area, replacing options.ratio of its pixels.

        Args:
            image: RGB uint8 image.
            center: (x, y) in pixels.
            radius: Circle radius in pixels.
        """
        rgb = ensure_rgb(image)
        self.height, self.width = rgb.shape[:2]
        _log.debug("Scrambling circle at %s r=%.1f ratio=%.2f",
                   tuple(center), radius, self.options.ratio)
        return circle_scramble(rgb, center, radius, self.options.ratio, self.rng)

    # ── Region Orchestrator ───────────────────────────────────

    def scramble_regions(
        self,
        image: np.ndarray,
        regions: Sequence[FaceRegion],
        mode=BackgroundMode.INCLUDE,
    ) -> np.ndarray:
        """Scramble each region independently and composite the results.

        Regions are handled in the given order; on overlap the later
        region wins. Boxes are clipped to the image.
        """
        rgb = ensure_rgb(image)
        mode = BackgroundMode.parse(mode)
        height, width = rgb.shape[:2]

        if mode is BackgroundMode.INCLUDE:
            canvas = rgb.copy()
        else:
            canvas = np.zeros_like(rgb)

        for region in regions:
            x1, y1 = max(0, region.x1), max(0, region.y1)
            x2, y2 = min(width, region.x2), min(height, region.y2)
            if x2 <= x1 or y2 <= y1:
                _log.warning("Skipping region outside image: %s", region)
                continue
            crop = rgb[y1:y2, x1:x2].copy()
            canvas[y1:y2, x1:x2] = self.scramble(crop)

        self.height, self.width = height, width
        return canvas

    def scramble_with_face_detection(
        self,
        image: np.ndarray,
        face_opts: Optional[FaceRegionOptions] = None,
        session: Optional[FaceDetectorSession] = None,
    ) -> np.ndarray:
        """Detect faces and scramble only inside them.

        Args:
            image: RGB uint8 image.
            face_opts: Detection threshold, box expansion and background mode.
            session: Pre-loaded detector. Loaded from config when None.

        Raises:
            DetectorLoadFailed, DetectorInferenceFailed: detector errors
                are never downgraded to "no faces".
        """
        face_opts = face_opts if face_opts is not None else FaceRegionOptions()
        rgb = ensure_rgb(image)
        if session is None:
            session = load_face_detector()

        regions = detect_face_regions(
            rgb,
            session,
            face_opts.confidence_threshold,
            face_opts.expansion_factor,
        )
        _log.info(
            "Detected %d face region(s) — mode=%s", len(regions), face_opts.mode.value,
        )
        return self.scramble_regions(rgb, regions, face_opts.mode)


def scramble_image(
    image: np.ndarray,
    options: Optional[ScrambleOptions] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """One-shot helper: scramble an image with a fresh scrambler."""
    return FourierScrambler(options=options, seed=seed).scramble(image)
