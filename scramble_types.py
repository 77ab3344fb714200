"""
Scramblery — Shared Types
==========================
Options, region boxes and the error hierarchy shared by every module.

Part 1 of 7 — Data Model
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Any, Mapping, Optional

from scramble_utils_core import (
    DEFAULT_INTENSITY,
    DEFAULT_PHASE_SCRAMBLE,
    DEFAULT_PADDING_MODE,
    DEFAULT_METHOD,
    DEFAULT_RATIO,
    DEFAULT_BLOCK_SIZE,
    CONFIDENCE_THRESHOLD,
    EXPANSION_FACTOR,
    BACKGROUND_MODE,
)


# ═══════════════════════════════════════════════════════════════
#  EXCEPTIONS
# ═══════════════════════════════════════════════════════════════

class ScrambleError(Exception):
    """Base exception for every failure of a scramble call."""
    pass


class InvalidImage(ScrambleError):
    """Raised for empty, undecodable or wrongly shaped pixel data."""
    pass


class InvalidOptions(ScrambleError):
    """Raised when an options payload cannot be parsed."""
    pass


class DetectorLoadFailed(ScrambleError):
    """Raised when the face detector model cannot be opened."""
    pass


class DetectorInferenceFailed(ScrambleError):
    """Raised when the face detector fails while running on an image."""
    pass


class UnsupportedPaddingGeometry(ScrambleError):
    """Raised when reflect padding would mirror past the source plane."""
    pass


class TransformSizeMismatch(ScrambleError):
    """Raised when a buffer does not match the size a transform plan was built for."""
    pass


# ═══════════════════════════════════════════════════════════════
#  ENUMS
# ═══════════════════════════════════════════════════════════════

class _LenientEnum(str, Enum):

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise InvalidOptions(
                f"Unknown {cls.__name__} {value!r}. Supported: {allowed}"
            ) from None


class PaddingMode(_LenientEnum):
    ZERO = "zero"
    REFLECT = "reflect"
    WRAP = "wrap"


class BackgroundMode(_LenientEnum):
    INCLUDE = "include"   # scrambled regions composited onto the original
    EXCLUDE = "exclude"   # scrambled regions on a blank canvas


class ScrambleMethod(_LenientEnum):
    FOURIER = "fourier"   # FFT phase randomization
    BLOCK = "block"       # tile shuffle
    NOISE = "noise"       # random pixel replacement
    MOSAIC = "mosaic"     # pixelation


_TRUE_STRINGS = ("true", "1")
_FALSE_STRINGS = ("false", "0")


def _pick(data: Mapping[str, Any], *keys, default=None):
    for key in keys:
        if key in data:
            return data[key]
    return default


def _as_mapping(data, what: str) -> Mapping[str, Any]:
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise InvalidOptions(f"{what} must be an object, got {type(data).__name__}")
    return data


def _parse_bool(value, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise InvalidOptions(f"{name} must be true or false, got {value!r}")


def _parse_fraction(value, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidOptions(f"{name} must be a number, got {value!r}") from None
    if not 0.0 <= number <= 1.0:
        raise InvalidOptions(f"{name} must lie in [0, 1], got {number}")
    return number


# ═══════════════════════════════════════════════════════════════
#  OPTIONS
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScrambleOptions:
    """Per-call scramble settings.

    Attributes:
        enable_phase_scramble: When False the image only goes through the
            transform round trip (pad, FFT, IFFT, crop, clamp).
        intensity: Fraction in [0, 1] of the way each phase moves toward
            its random target.
        padding_mode: How planes are extended to the transform size.
        method: FOURIER, or one of the pixel-domain methods (BLOCK, NOISE,
            MOSAIC). Only FOURIER uses the three fields above.
        ratio: Fraction in [0, 1] of pixels replaced by NOISE and by
            circular-area scrambling.
        block_size: Tile side in pixels for BLOCK and MOSAIC.
    """
    enable_phase_scramble: bool = DEFAULT_PHASE_SCRAMBLE
    intensity: float = DEFAULT_INTENSITY
    padding_mode: PaddingMode = PaddingMode.parse(DEFAULT_PADDING_MODE)
    method: ScrambleMethod = ScrambleMethod.parse(DEFAULT_METHOD)
    ratio: float = DEFAULT_RATIO
    block_size: int = DEFAULT_BLOCK_SIZE

    def __post_init__(self):
        object.__setattr__(self, "padding_mode", PaddingMode.parse(self.padding_mode))
        object.__setattr__(self, "method", ScrambleMethod.parse(self.method))
        object.__setattr__(self, "enable_phase_scramble",
                           _parse_bool(self.enable_phase_scramble, "enable_phase_scramble"))
        object.__setattr__(self, "intensity", _parse_fraction(self.intensity, "intensity"))
        object.__setattr__(self, "ratio", _parse_fraction(self.ratio, "ratio"))

        block_size = self.block_size
        if isinstance(block_size, str) and block_size.strip().isdigit():
            block_size = int(block_size)
        if isinstance(block_size, bool) or not isinstance(block_size, int) or block_size < 1:
            raise InvalidOptions(f"block_size must be a positive integer, got {self.block_size!r}")
        object.__setattr__(self, "block_size", block_size)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ScrambleOptions":
        """Build options from a host payload (snake_case or camelCase keys)."""
        data = _as_mapping(data, "options")
        defaults = cls()
        return cls(
            enable_phase_scramble=_pick(
                data, "enable_phase_scramble", "phase_scramble", "phaseScramble",
                default=defaults.enable_phase_scramble),
            intensity=_pick(data, "intensity", default=defaults.intensity),
            padding_mode=_pick(data, "padding_mode", "paddingMode",
                               default=defaults.padding_mode),
            method=_pick(data, "method", default=defaults.method),
            ratio=_pick(data, "ratio", default=defaults.ratio),
            block_size=_pick(data, "block_size", "blockSize", default=defaults.block_size),
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["padding_mode"] = self.padding_mode.value
        d["method"] = self.method.value
        return d


@dataclass(frozen=True)
class FaceRegionOptions:
    """Settings for the face-aware scramble path."""
    confidence_threshold: float = CONFIDENCE_THRESHOLD
    expansion_factor: float = EXPANSION_FACTOR
    mode: BackgroundMode = BackgroundMode.parse(BACKGROUND_MODE)

    def __post_init__(self):
        object.__setattr__(self, "mode", BackgroundMode.parse(self.mode))
        if self.expansion_factor <= 0:
            raise InvalidOptions(
                f"expansion_factor must be positive, got {self.expansion_factor}"
            )

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "FaceRegionOptions":
        data = _as_mapping(data, "face_options")
        defaults = cls()
        try:
            return cls(
                confidence_threshold=float(_pick(
                    data, "confidence_threshold", "confidenceThreshold",
                    default=defaults.confidence_threshold)),
                expansion_factor=float(_pick(
                    data, "expansion_factor", "expansionFactor",
                    default=defaults.expansion_factor)),
                mode=_pick(data, "mode", "background_mode", "backgroundMode",
                           default=defaults.mode),
            )
        except (TypeError, ValueError) as e:
            raise InvalidOptions(f"Bad face detection options: {e}") from None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["mode"] = self.mode.value
        return d


# ═══════════════════════════════════════════════════════════════
#  REGIONS
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class FaceRegion:
    """Axis-aligned box in source pixel coordinates (x2, y2 exclusive)."""
    x1: int
    y1: int
    x2: int
    y2: int
    score: float = field(default=1.0, compare=False)

    def __post_init__(self):
        if self.x1 >= self.x2 or self.y1 >= self.y2:
            raise ValueError(
                f"Degenerate region ({self.x1}, {self.y1}, {self.x2}, {self.y2})"
            )

    @property
    def width(self) -> int:
        return self.x2 - self.x1

    @property
    def height(self) -> int:
        return self.y2 - self.y1

    def to_dict(self) -> dict:
        return asdict(self)
