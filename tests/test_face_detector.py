"""
Scramblery — Face Detector Tests
=================================
Uses a fake ONNX session with hand-built BlazeFace outputs to test
anchor decoding, score filtering, NMS, box expansion and error
reporting without a real model file.

Part 6 of 7 — Face Detection
"""

from __future__ import annotations

import sys
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import scramble_face_detector as fd
from scramble_face_detector import (
    FaceDetectorSession,
    detect_face_regions,
    expand_box,
    generate_anchors,
    load_face_detector,
)
from scramble_types import DetectorInferenceFailed, DetectorLoadFailed, FaceRegion

_NUM_ANCHORS = 896


# ─── Fakes ────────────────────────────────────────────────────

class _FakeInput:
    def __init__(self, shape, name="input"):
        self.shape = shape
        self.name = name


class _FakeSession:
    """Mimics onnxruntime.InferenceSession.run for BlazeFace."""

    def __init__(self, scores, boxes, shape=(1, 3, 128, 128), swap=False, error=None):
        self._inputs = [_FakeInput(list(shape))]
        self.scores = scores
        self.boxes = boxes
        self.swap = swap
        self.error = error
        self.feeds = None

    def get_inputs(self):
        return self._inputs

    def run(self, output_names, feeds):
        if self.error is not None:
            raise self.error
        self.feeds = feeds
        if self.swap:
            return [self.scores, self.boxes]
        return [self.boxes, self.scores]


def _anchor_index(layer: int, y: int, x: int, k: int = 0) -> int:
    """Flat anchor index for cell (y, x) of layer 0 (16x16x2) or 1 (8x8x6)."""
    if layer == 0:
        return (y * 16 + x) * 2 + k
    return 16 * 16 * 2 + (y * 8 + x) * 6 + k


def _make_outputs(faces):
    """faces: list of (anchor_index, logit, (dx, dy, w, h)) in 128px units."""
    scores = np.full((1, _NUM_ANCHORS, 1), -10.0, dtype=np.float32)
    boxes = np.zeros((1, _NUM_ANCHORS, 16), dtype=np.float32)
    for idx, logit, (dx, dy, w, h) in faces:
        scores[0, idx, 0] = logit
        boxes[0, idx, :4] = (dx, dy, w, h)
    return scores, boxes


def _detector(faces, **kwargs):
    scores, boxes = _make_outputs(faces)
    return FaceDetectorSession.from_session(_FakeSession(scores, boxes, **kwargs))


def _image(h=256, w=256):
    return np.full((h, w, 3), 120, dtype=np.uint8)


# ─── Test 1: Anchor layout ────────────────────────────────────

def test_anchor_layout_matches_blazeface():
    anchors = generate_anchors()
    assert anchors.shape == (_NUM_ANCHORS, 2)
    np.testing.assert_allclose(anchors[0], (0.5 / 16, 0.5 / 16))
    np.testing.assert_allclose(anchors[_anchor_index(1, 0, 0)], (0.5 / 8, 0.5 / 8))
    assert np.all((anchors > 0) & (anchors < 1))


# ─── Test 2: Single face decodes to pixel box ─────────────────

def test_single_face_decoded_to_pixels():
    idx = _anchor_index(0, 8, 8)  # centre (0.53125, 0.53125)
    detector = _detector([(idx, 10.0, (0.0, 0.0, 32.0, 32.0))])

    regions = detect_face_regions(_image(), detector, 0.5, expansion_factor=1.0)

    assert regions == [FaceRegion(104, 104, 168, 168)]
    assert regions[0].score == pytest.approx(1.0 / (1.0 + np.exp(-10.0)))


def test_expansion_scales_about_centre():
    idx = _anchor_index(0, 8, 8)
    detector = _detector([(idx, 10.0, (0.0, 0.0, 32.0, 32.0))])

    regions = detect_face_regions(_image(), detector, 0.5, expansion_factor=2.0)

    assert regions == [FaceRegion(72, 72, 200, 200)]


def test_expansion_defaults_to_config(monkeypatch):
    monkeypatch.setattr(fd, "EXPANSION_FACTOR", 1.0)
    idx = _anchor_index(0, 8, 8)
    detector = _detector([(idx, 10.0, (0.0, 0.0, 32.0, 32.0))])
    assert detect_face_regions(_image(), detector, 0.5) == [FaceRegion(104, 104, 168, 168)]


# ─── Test 3: Threshold, NMS and ordering ──────────────────────

def test_below_threshold_returns_empty():
    detector = _detector([(_anchor_index(0, 8, 8), 0.0, (0, 0, 32, 32))])  # score 0.5
    assert detect_face_regions(_image(), detector, 0.9) == []


def test_duplicate_boxes_suppressed():
    a = _anchor_index(0, 8, 8, k=0)
    b = _anchor_index(0, 8, 8, k=1)
    detector = _detector([
        (a, 5.0, (0, 0, 32, 32)),
        (b, 8.0, (1, 1, 32, 32)),
    ])

    regions = detect_face_regions(_image(), detector, 0.5, expansion_factor=1.0)

    assert len(regions) == 1
    assert regions[0].score == pytest.approx(1.0 / (1.0 + np.exp(-8.0)))


def test_regions_sorted_by_score():
    weak = _anchor_index(0, 2, 2)
    strong = _anchor_index(0, 12, 12)
    detector = _detector([
        (weak, 3.0, (0, 0, 16, 16)),
        (strong, 8.0, (0, 0, 16, 16)),
    ])

    regions = detect_face_regions(_image(), detector, 0.5, expansion_factor=1.0)

    assert len(regions) == 2
    assert regions[0].score > regions[1].score
    assert regions[0].x1 > regions[1].x1


def test_output_order_detected_from_shapes():
    idx = _anchor_index(0, 8, 8)
    detector = _detector([(idx, 10.0, (0, 0, 32, 32))], swap=True)
    assert detect_face_regions(_image(), detector, 0.5, 1.0) == [FaceRegion(104, 104, 168, 168)]


# ─── Test 4: Preprocessing and input layout ───────────────────

def test_input_tensor_nchw_normalized():
    detector = _detector([])
    detect_face_regions(_image(300, 200), detector, 0.5)

    feed = detector.session.feeds["input"]
    assert feed.shape == (1, 3, 128, 128)
    assert feed.dtype == np.float32
    assert feed.min() >= -1.0 and feed.max() <= 1.0


def test_input_tensor_nhwc_layout():
    detector = _detector([], shape=(1, 128, 128, 3))
    assert detector.channels_last
    detect_face_regions(_image(), detector, 0.5)
    assert detector.session.feeds["input"].shape == (1, 128, 128, 3)


def test_dynamic_input_shape_falls_back_to_default_size():
    detector = _detector([], shape=("batch", 3, "h", "w"))
    assert detector.input_size == 128
    assert not detector.channels_last


# ─── Test 5: Box expansion and clipping ───────────────────────

def test_expand_box_clips_to_image():
    region = expand_box((-10.0, -10.0, 20.0, 20.0, 0.9), 1.0, 100, 100)
    assert region == FaceRegion(0, 0, 20, 20)


def test_expand_box_outside_image_dropped():
    assert expand_box((150.0, 150.0, 180.0, 180.0, 0.9), 1.0, 100, 100) is None


# ─── Test 6: Failures are hard errors ─────────────────────────

def test_inference_error_raised():
    scores, boxes = _make_outputs([])
    detector = FaceDetectorSession.from_session(
        _FakeSession(scores, boxes, error=RuntimeError("ORT crash")))
    with pytest.raises(DetectorInferenceFailed):
        detect_face_regions(_image(), detector, 0.5)


def test_wrong_anchor_count_raised():
    scores = np.zeros((1, 100, 1), dtype=np.float32)
    boxes = np.zeros((1, 100, 16), dtype=np.float32)
    detector = FaceDetectorSession.from_session(_FakeSession(scores, boxes))
    with pytest.raises(DetectorInferenceFailed):
        detect_face_regions(_image(), detector, 0.5)


def test_load_missing_model_raises(tmp_path):
    with pytest.raises(DetectorLoadFailed):
        load_face_detector(str(tmp_path / "nope.onnx"))


def test_load_session_failure_raises(tmp_path):
    model = tmp_path / "broken.onnx"
    model.write_bytes(b"not an onnx model")
    with patch.object(fd.ort, "InferenceSession", side_effect=RuntimeError("bad model")):
        with pytest.raises(DetectorLoadFailed):
            load_face_detector(str(model))


def test_load_reads_session_geometry(tmp_path):
    model = tmp_path / "face.onnx"
    model.write_bytes(b"stub")
    scores, boxes = _make_outputs([])
    with patch.object(fd.ort, "InferenceSession", return_value=_FakeSession(scores, boxes)):
        detector = load_face_detector(str(model))
    assert detector.input_name == "input"
    assert detector.input_size == 128
    assert detector.model_path == str(model)
