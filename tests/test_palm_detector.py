"""
Stage-1 palm detector tests: box decoding and the detector on a scripted engine.
"""

import math

import numpy as np
import pytest
from conftest import CENTER_ANCHOR, CORNER_ANCHOR, NUM_PALM_ANCHORS, EngineRecorder, ScriptedEngine, palm_outputs

from hand_detection.errors import NotInitializedError
from hand_detection.palm_detector import PalmDetector, decode_boxes, split_palm_outputs
from hand_detection.utils import sigmoid


# =============================================================================
# decode_boxes
# =============================================================================


class TestDecodeBoxes:
    """Regressor rows decoded against anchors."""

    def test_only_confident_anchors(self, palm_anchors):
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 5.0), (CORNER_ANCHOR, 0.0)])
        detections = decode_boxes(boxes, scores, palm_anchors, score_threshold=0.6)
        assert len(detections) == 1
        assert detections[0].score == pytest.approx(sigmoid(5.0))

    def test_threshold_is_strict(self, palm_anchors):
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 0.0)])
        assert decode_boxes(boxes, scores, palm_anchors, score_threshold=0.5) == []

    def test_decoded_against_matching_anchor(self, palm_anchors):
        """Row i pairs with anchor i; offsets are scaled by 1/192."""
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 5.0)])
        boxes[0, CENTER_ANCHOR, 0] = 19.2
        (det,) = decode_boxes(boxes, scores, palm_anchors, score_threshold=0.6)

        ax, ay = palm_anchors[CENTER_ANCHOR, :2]
        assert det.center_x == pytest.approx(ax + 0.1)
        assert det.center_y == pytest.approx(ay)
        assert det.box_size == pytest.approx(48.0 / 192.0)
        assert (det.kp0_x, det.kp0_y) == pytest.approx((ax, ay))
        assert (det.kp2_x, det.kp2_y) == pytest.approx((ax, ay - 20.0 / 192.0))

    def test_box_size_is_larger_side(self, palm_anchors):
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 5.0)])
        boxes[0, CENTER_ANCHOR, 2] = 10.0
        boxes[0, CENTER_ANCHOR, 3] = 30.0
        (det,) = decode_boxes(boxes, scores, palm_anchors, score_threshold=0.6)
        assert det.box_size == pytest.approx(30.0 / 192.0)

    def test_non_positive_box_dropped(self, palm_anchors):
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 5.0)], box_raw=-5.0)
        assert decode_boxes(boxes, scores, palm_anchors, score_threshold=0.6) == []

    def test_anchor_order_preserved(self, palm_anchors):
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 3.0), (CORNER_ANCHOR, 5.0)])
        detections = decode_boxes(boxes, scores, palm_anchors, score_threshold=0.6)
        assert [d.score for d in detections] == pytest.approx([sigmoid(5.0), sigmoid(3.0)])

    def test_extreme_logits(self, palm_anchors):
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 1000.0)])
        scores[0, CORNER_ANCHOR, 0] = -1000.0
        detections = decode_boxes(boxes, scores, palm_anchors, score_threshold=0.6)
        assert len(detections) == 1
        assert detections[0].score == pytest.approx(1.0)

    def test_count_mismatch(self, palm_anchors):
        boxes = np.zeros((1, 100, 18), dtype=np.float32)
        scores = np.zeros((1, 100, 1), dtype=np.float32)
        with pytest.raises(ValueError, match="anchors"):
            decode_boxes(boxes, scores, palm_anchors, score_threshold=0.6)


class TestSplitPalmOutputs:
    def test_either_order(self):
        boxes, scores = palm_outputs([(CENTER_ANCHOR, 5.0)])
        b1, s1 = split_palm_outputs([boxes, scores])
        b2, s2 = split_palm_outputs([scores, boxes])
        assert b1.shape == b2.shape == (NUM_PALM_ANCHORS, 18)
        assert s1.shape == s2.shape == (NUM_PALM_ANCHORS,)
        assert np.array_equal(s1, s2)

    def test_too_few_outputs(self):
        with pytest.raises(ValueError):
            split_palm_outputs([np.zeros((1, 10, 18))])


# =============================================================================
# PalmDetector
# =============================================================================


class TestPalmDetector:
    """Full stage 1 on a scripted engine."""

    def test_not_initialized(self, palm_factory, square_image):
        detector = PalmDetector(palm_factory)
        with pytest.raises(NotInitializedError):
            detector.detect(square_image)
        with pytest.raises(NotInitializedError):
            detector.anchors

    def test_detect_region(self, palm_factory, palm_anchors, square_image):
        detector = PalmDetector(palm_factory)
        detector.initialize()
        try:
            (region,) = detector.detect(square_image)
        finally:
            detector.dispose()

        ax, ay = palm_anchors[CENTER_ANCHOR, :2]
        assert region.rotation == pytest.approx(0.0, abs=1e-9)
        assert region.center_x == pytest.approx(ax)
        assert region.center_y == pytest.approx(ay - 0.125)
        assert region.size == pytest.approx(2.9 * 0.25)
        assert region.score == pytest.approx(sigmoid(5.0))

    def test_input_is_letterboxed_rgb(self, palm_factory):
        image = np.zeros((50, 100, 3), dtype=np.uint8)
        image[:, :, 2] = 255  # red in BGR
        detector = PalmDetector(palm_factory)
        detector.initialize()
        try:
            detector.detect(image)
        finally:
            detector.dispose()

        tensor = palm_factory.engines[0].inputs[0]
        assert tensor.shape == (1, 192, 192, 3)
        assert tensor[0, 0, 96].tolist() == [0.0, 0.0, 0.0]
        np.testing.assert_allclose(tensor[0, 96, 96], [1.0, 0.0, 0.0])

    def test_nms_applied(self, palm_anchors, square_image):
        """Both anchors of one cell fire; only the better one survives."""
        factory = EngineRecorder(
            lambda: ScriptedEngine(palm_outputs([(CENTER_ANCHOR, 5.0), (CENTER_ANCHOR + 1, 4.0)]))
        )
        detector = PalmDetector(factory)
        detector.initialize()
        try:
            regions = detector.detect(square_image)
        finally:
            detector.dispose()
        assert len(regions) == 1
        assert regions[0].score == pytest.approx(sigmoid(5.0))

    def test_rotation_from_keypoints(self, square_image):
        factory = EngineRecorder(lambda: ScriptedEngine(palm_outputs([(CENTER_ANCHOR, 5.0)], kp2_dy=20.0)))
        detector = PalmDetector(factory)
        detector.initialize()
        try:
            (region,) = detector.detect(square_image)
        finally:
            detector.dispose()
        assert abs(region.rotation) == pytest.approx(math.pi)

    def test_anchor_count_mismatch(self):
        engine = ScriptedEngine(
            palm_outputs(),
            input_shape=(1, 192, 192, 3),
            output_shapes=[(1, 2944, 18), (1, 2944, 1)],
        )
        detector = PalmDetector(lambda: engine)
        with pytest.raises(ValueError, match="2016 anchors"):
            detector.initialize()
        assert engine.closed
        assert not detector.is_initialized

    def test_input_size_mismatch(self):
        engine = ScriptedEngine(palm_outputs(), input_shape=(1, 256, 256, 3))
        detector = PalmDetector(lambda: engine)
        with pytest.raises(ValueError, match="input"):
            detector.initialize()
        assert engine.closed

    def test_dynamic_dimensions_accepted(self):
        engine = ScriptedEngine(
            palm_outputs(),
            input_shape=("batch", 192, 192, 3),
            output_shapes=[("batch", "n", 18), ("batch", "n", 1)],
        )
        detector = PalmDetector(lambda: engine)
        detector.initialize()
        assert detector.anchors.shape == (2016, 4)
        detector.dispose()
        assert engine.closed

    def test_reinitialize_replaces_engine(self, palm_factory):
        detector = PalmDetector(palm_factory)
        detector.initialize()
        detector.initialize()
        assert len(palm_factory.engines) == 2
        assert palm_factory.engines[0].closed
        assert not palm_factory.engines[1].closed
        detector.dispose()
