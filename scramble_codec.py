"""
Scramblery — Host Boundary (base64 image in, base64 image out)
===============================================================
The single entry point a host application calls: one encoded image and
a set of options in, one encoded image (or an error message) out.

Images travel as base64 text, optionally wrapped in a
``data:image/<fmt>;base64,`` URL. OpenCV decodes to BGR; everything
inside the engine is RGB, so the conversion happens here and only here.

Part 7 of 7 — Host Integration
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Mapping, Optional, Tuple

import cv2
import numpy as np

from scramble_engine import FourierScrambler, ensure_rgb
from scramble_types import (
    FaceRegionOptions,
    InvalidImage,
    InvalidOptions,
    ScrambleError,
    ScrambleOptions,
)

_log = logging.getLogger("ScrambleCodec")

_DATA_URL_MARKER = ";base64,"


def decode_image(image_data: str) -> np.ndarray:
    """Decode base64 (or a data URL) into an RGB uint8 array.

    Raises:
        InvalidImage: Bad base64, or bytes OpenCV cannot decode.
    """
    if not isinstance(image_data, str) or not image_data.strip():
        raise InvalidImage("Image payload is empty")
    payload = image_data.strip()
    if payload.startswith("data:") and _DATA_URL_MARKER in payload:
        payload = payload.split(_DATA_URL_MARKER, 1)[1]

    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImage(f"Image payload is not valid base64: {e}") from None

    buf = np.frombuffer(raw, dtype=np.uint8)
    img_bgr = cv2.imdecode(buf, cv2.IMREAD_COLOR) if buf.size else None
    if img_bgr is None or img_bgr.size == 0:
        raise InvalidImage("Image bytes could not be decoded")
    return cv2.cvtColor(img_bgr, cv2.COLOR_BGR2RGB)


def encode_image(image: np.ndarray, fmt: str = "png") -> str:
    """Encode an RGB uint8 array as base64 text (no data-URL prefix)."""
    rgb = ensure_rgb(image)
    ok, encoded = cv2.imencode(f".{fmt.lstrip('.')}", cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
    if not ok:
        raise InvalidImage(f"Could not encode image as {fmt}")
    return base64.b64encode(encoded.tobytes()).decode("ascii")


def process_base64_image(
    image_data: str,
    options: Optional[ScrambleOptions] = None,
    face_options: Optional[FaceRegionOptions] = None,
    seed: Optional[int] = None,
    session=None,
    circle: Optional[Tuple[float, float, float]] = None,
) -> str:
    """Decode, scramble, re-encode as PNG.

    The whole image is scrambled unless ``face_options`` (detected faces)
    or ``circle`` ((x, y, radius) in pixels) narrows the area; the two
    cannot be combined.
    """
    if face_options is not None and circle is not None:
        raise InvalidOptions("face_options and circle cannot be combined")
    image = decode_image(image_data)
    height, width = image.shape[:2]
    scrambler = FourierScrambler(width, height, options, seed=seed)
    if face_options is not None:
        result = scrambler.scramble_with_face_detection(image, face_options, session=session)
    elif circle is not None:
        cx, cy, radius = circle
        result = scrambler.scramble_circle(image, (cx, cy), radius)
    else:
        result = scrambler.scramble(image)
    return encode_image(result)


def _parse_seed(seed) -> Optional[int]:
    if seed is None:
        return None
    if isinstance(seed, bool):
        raise InvalidOptions(f"seed must be an integer, got {seed!r}")
    try:
        return int(seed)
    except (TypeError, ValueError):
        raise InvalidOptions(f"seed must be an integer, got {seed!r}") from None


def _parse_circle(circle) -> Optional[Tuple[float, float, float]]:
    """Accept {"x", "y", "radius"} or an [x, y, radius] triple."""
    if circle is None:
        return None
    try:
        if isinstance(circle, Mapping):
            values = (circle["x"], circle["y"], circle["radius"])
        else:
            values = tuple(circle)
            if len(values) != 3:
                raise ValueError(f"expected 3 values, got {len(values)}")
        return tuple(float(v) for v in values)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidOptions(f"Bad circle {circle!r}: {e}") from None


def handle_scramble_request(payload: Mapping[str, Any], session=None) -> dict:
    """Host command handler.

    Payload keys: ``image`` (base64), ``options``, optional
    ``face_options``, ``circle`` and ``seed``.

    Returns:
        {"ok": True, "image": <base64 png>} or {"ok": False, "error": <message>}
    """
    try:
        if not isinstance(payload, Mapping):
            raise InvalidOptions(f"Request must be an object, got {type(payload).__name__}")
        options = ScrambleOptions.from_dict(payload.get("options"))
        face_payload = payload.get("face_options")
        face_options = FaceRegionOptions.from_dict(face_payload) if face_payload is not None else None
        seed = _parse_seed(payload.get("seed"))
        image = process_base64_image(
            payload.get("image", ""),
            options,
            face_options,
            seed=seed,
            session=session,
            circle=_parse_circle(payload.get("circle")),
        )
    except ScrambleError as e:
        _log.error("Scramble request failed: %s", e)
        return {"ok": False, "error": str(e)}
    return {"ok": True, "image": image}
