"""
Scramblery — Face Region Detector (BlazeFace ONNX)
===================================================
Wraps an ONNX-exported BlazeFace (short range, 128x128) model and turns
its raw anchor regressions into pixel-space FaceRegion boxes.

Model: models/blazeface.onnx (path from config.yaml)
Outputs: regressors [1, 896, 16] and classificators [1, 896, 1]
         (order is detected from the shapes)

Pipeline:
  1. Resize RGB image to the model input, normalize to [-1, 1]
  2. Run the ONNX session
  3. Sigmoid scores → confidence filter
  4. Decode anchor-relative boxes (normalized coordinates)
  5. Non-maximum suppression (cv2.dnn.NMSBoxes)
  6. Scale each box about its centre by expansion_factor, clip to image
  7. Sort by score, highest first

Part 6 of 7 — Face Detection
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
import onnxruntime as ort

from scramble_types import (
    DetectorInferenceFailed,
    DetectorLoadFailed,
    FaceRegion,
)
from scramble_utils_core import (
    EXPANSION_FACTOR,
    FACE_MODEL_PATH,
    NMS_THRESHOLD,
    resolve_path,
)

_log = logging.getLogger("ScrambleFaceDetector")

# Priority: VitisAI -> CUDA -> CPU
_PREFERRED_PROVIDERS = [
    'VitisAIExecutionProvider',
    'CUDAExecutionProvider',
    'CPUExecutionProvider',
]

# BlazeFace short-range SSD anchor layout: 16x16 map with 2 anchors per
# cell (stride 8), then 8x8 with 6 anchors per cell (three stride-16 layers).
_ANCHOR_LAYERS = ((16, 2), (8, 6))
_DEFAULT_INPUT_SIZE = 128


def generate_anchors() -> np.ndarray:
    """SSD-style anchor centres, normalized [0, 1], shape (896, 2)."""
    anchors = []
    for fmap, per_cell in _ANCHOR_LAYERS:
        for y in range(fmap):
            for x in range(fmap):
                cx = (x + 0.5) / fmap
                cy = (y + 0.5) / fmap
                anchors.extend([(cx, cy)] * per_cell)
    return np.array(anchors, dtype=np.float32)


@dataclass
class FaceDetectorSession:
    """A loaded detector: ONNX session plus its input geometry."""
    session: object
    input_name: str
    input_size: int = _DEFAULT_INPUT_SIZE
    channels_last: bool = False
    nms_threshold: float = NMS_THRESHOLD
    model_path: Optional[str] = None

    @classmethod
    def from_session(cls, session, model_path=None, nms_threshold=NMS_THRESHOLD):
        """Read input name and layout ([1,3,S,S] or [1,S,S,3]) from a session."""
        model_input = session.get_inputs()[0]
        shape = list(model_input.shape)
        channels_last = len(shape) == 4 and shape[-1] == 3 and shape[1] != 3
        size_dim = shape[1] if channels_last else (shape[2] if len(shape) == 4 else None)
        input_size = size_dim if isinstance(size_dim, int) and size_dim > 0 else _DEFAULT_INPUT_SIZE
        return cls(
            session=session,
            input_name=model_input.name,
            input_size=input_size,
            channels_last=channels_last,
            nms_threshold=nms_threshold,
            model_path=model_path,
        )


def load_face_detector(model_path: Optional[str] = None) -> FaceDetectorSession:
    """Open the BlazeFace ONNX model.

    Args:
        model_path: Path to the .onnx file. Defaults to config.yaml's
            face_detection.model_path (relative to the project root).

    Raises:
        DetectorLoadFailed: Missing file or ONNX Runtime refused the model.
    """
    path = resolve_path(model_path or FACE_MODEL_PATH)
    if not os.path.exists(path):
        raise DetectorLoadFailed(f"Face detector model missing: {path}")

    available = set(ort.get_available_providers())
    providers = [p for p in _PREFERRED_PROVIDERS if p in available] or ['CPUExecutionProvider']
    try:
        session = ort.InferenceSession(path, providers=providers)
    except Exception as e:
        _log.warning("Detector init with %s failed: %s. Fallback to CPU.", providers, e)
        try:
            session = ort.InferenceSession(path, providers=['CPUExecutionProvider'])
        except Exception as cpu_err:
            raise DetectorLoadFailed(f"Cannot load face detector {path}: {cpu_err}") from cpu_err

    detector = FaceDetectorSession.from_session(session, model_path=path)
    _log.info(
        "Face detector loaded — %s input=%d layout=%s",
        os.path.basename(path), detector.input_size,
        "NHWC" if detector.channels_last else "NCHW",
    )
    return detector


def _preprocess(image_rgb: np.ndarray, detector: FaceDetectorSession) -> np.ndarray:
    size = detector.input_size
    img_resized = cv2.resize(image_rgb, (size, size))
    # Normalize [-1, 1]
    img_norm = (img_resized.astype(np.float32) / 127.5) - 1.0
    if not detector.channels_last:
        img_norm = np.transpose(img_norm, (2, 0, 1))  # HWC -> CHW
    return np.expand_dims(img_norm, axis=0)


def _split_outputs(outputs) -> tuple[np.ndarray, np.ndarray]:
    """Return (scores [N], regressors [N, K]) whatever the output order."""
    if len(outputs) < 2:
        raise DetectorInferenceFailed(f"Expected 2 detector outputs, got {len(outputs)}")
    out0, out1 = np.asarray(outputs[0]), np.asarray(outputs[1])
    if out0.shape[-1] == 1:
        scores, boxes_raw = out0, out1
    else:
        scores, boxes_raw = out1, out0
    return scores.reshape(-1), boxes_raw.reshape(scores.size, -1)


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-np.clip(x, -100.0, 100.0)))


def decode_boxes(boxes_raw: np.ndarray, anchors: np.ndarray, input_size: int) -> np.ndarray:
    """Anchor-relative regressions → (N, 4) normalized [x1, y1, x2, y2]."""
    cx = boxes_raw[:, 0] / input_size + anchors[:, 0]
    cy = boxes_raw[:, 1] / input_size + anchors[:, 1]
    w = boxes_raw[:, 2] / input_size
    h = boxes_raw[:, 3] / input_size
    return np.stack([cx - w / 2, cy - h / 2, cx + w / 2, cy + h / 2], axis=1)


def expand_box(box, factor: float, width: int, height: int) -> Optional[FaceRegion]:
    """Scale a pixel box about its centre and clip it to the image."""
    x1, y1, x2, y2, score = box
    cx, cy = (x1 + x2) / 2.0, (y1 + y2) / 2.0
    half_w = (x2 - x1) * factor / 2.0
    half_h = (y2 - y1) * factor / 2.0

    nx1 = max(0, int(np.floor(cx - half_w)))
    ny1 = max(0, int(np.floor(cy - half_h)))
    nx2 = min(width, int(np.ceil(cx + half_w)))
    ny2 = min(height, int(np.ceil(cy + half_h)))
    if nx2 <= nx1 or ny2 <= ny1:
        return None
    return FaceRegion(nx1, ny1, nx2, ny2, score=float(score))


def detect_face_regions(
    image: np.ndarray,
    detector: FaceDetectorSession,
    confidence_threshold: float,
    expansion_factor: Optional[float] = None,
) -> list[FaceRegion]:
    """Detect faces in an RGB image.

    Args:
        image: (h, w, 3) RGB uint8 image.
        detector: Session from load_face_detector().
        confidence_threshold: Minimum sigmoid score to keep a box.
        expansion_factor: Box scale about its centre. None = config default.

    Returns:
        FaceRegions in pixel coordinates, highest score first. Empty list
        if no faces were found.

    Raises:
        DetectorInferenceFailed: The session failed or produced outputs
            that do not match the anchor layout.
    """
    factor = EXPANSION_FACTOR if expansion_factor is None else expansion_factor
    h_orig, w_orig = image.shape[:2]

    try:
        outputs = detector.session.run(None, {detector.input_name: _preprocess(image, detector)})
    except Exception as e:
        raise DetectorInferenceFailed(f"Face detector inference failed: {e}") from e

    raw_scores, boxes_raw = _split_outputs(outputs)
    anchors = generate_anchors()
    if raw_scores.size != anchors.shape[0] or boxes_raw.shape[1] < 4:
        raise DetectorInferenceFailed(
            f"Detector output {boxes_raw.shape} does not match {anchors.shape[0]} anchors"
        )

    scores = _sigmoid(raw_scores)
    mask = scores >= confidence_threshold
    if not np.any(mask):
        return []

    boxes = decode_boxes(boxes_raw[mask], anchors[mask], detector.input_size)
    scores = scores[mask]
    boxes[:, [0, 2]] *= w_orig
    boxes[:, [1, 3]] *= h_orig

    nms_boxes = [[float(b[0]), float(b[1]), float(b[2] - b[0]), float(b[3] - b[1])] for b in boxes]
    keep = cv2.dnn.NMSBoxes(
        nms_boxes, scores.astype(float).tolist(),
        float(confidence_threshold), float(detector.nms_threshold),
    )
    keep = np.array(keep, dtype=int).flatten()

    regions = []
    for i in sorted(keep, key=lambda k: -scores[k]):
        region = expand_box((*boxes[i], scores[i]), factor, w_orig, h_orig)
        if region is not None:
            regions.append(region)

    _log.debug("BlazeFace: %d candidates, %d after NMS", int(mask.sum()), len(regions))
    return regions
