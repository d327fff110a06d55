"""
Shared fixtures: scripted inference engines standing in for ONNX Runtime sessions.
"""

import threading
import time
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pytest

from hand_detection.anchors import PALM_ANCHOR_CONFIG, generate_anchors

NUM_PALM_ANCHORS = 2016

# Anchor 600 is cell (12, 12) of the 24x24 stride-8 map; anchor 100 is cell (2, 2).
CENTER_ANCHOR = 600
CORNER_ANCHOR = 100


class ScriptedEngine:
    """Engine that returns fixed outputs and records how it was called."""

    def __init__(
        self,
        outputs: Sequence[np.ndarray],
        input_shape: Optional[Tuple] = None,
        output_shapes: Optional[List[Tuple]] = None,
        delay_s: float = 0.0,
        fail: bool = False,
    ):
        self.outputs = [np.asarray(o) for o in outputs]
        self.input_shape = input_shape
        self.output_shapes = output_shapes
        self.delay_s = delay_s
        self.fail = fail

        self.calls = 0
        self.closed = False
        self.in_flight = 0
        self.max_in_flight = 0
        self.inputs: List[np.ndarray] = []
        self._lock = threading.Lock()

    def run(self, tensor):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.calls += 1
            self.inputs.append(np.array(tensor, copy=True))
        try:
            if self.delay_s:
                time.sleep(self.delay_s)
            if self.fail:
                raise RuntimeError("scripted engine failure")
            return [o.copy() for o in self.outputs]
        finally:
            with self._lock:
                self.in_flight -= 1

    def close(self):
        self.closed = True


def palm_outputs(hits: Sequence[Tuple[int, float]] = (), box_raw: float = 48.0, kp2_dy: float = -20.0):
    """
    Palm model outputs with a detection at each (anchor_index, logit) in `hits`.

    Each hit decodes to a box centered on its anchor, `box_raw / 192` wide, with
    keypoint 2 straight above keypoint 0 (rotation 0).
    """
    boxes = np.zeros((1, NUM_PALM_ANCHORS, 18), dtype=np.float32)
    scores = np.full((1, NUM_PALM_ANCHORS, 1), -10.0, dtype=np.float32)
    for index, logit in hits:
        boxes[0, index, 2] = box_raw
        boxes[0, index, 3] = box_raw
        boxes[0, index, 9] = kp2_dy
        scores[0, index, 0] = logit
    return [boxes, scores]


def landmark_outputs(value: float = 112.0, score_logit: float = 5.0, handedness_logit: float = 3.0):
    raw = np.full((1, 63), value, dtype=np.float32)
    raw[0, 2::3] = 0.25  # z
    return [
        raw,
        np.array([[score_logit]], dtype=np.float32),
        np.array([[handedness_logit]], dtype=np.float32),
        np.zeros((1, 63), dtype=np.float32),
    ]


class EngineRecorder:
    """Factory that hands out a fresh engine per call and keeps every one it made."""

    def __init__(self, make):
        self._make = make
        self.engines: List[ScriptedEngine] = []

    def __call__(self):
        engine = self._make()
        self.engines.append(engine)
        return engine


@pytest.fixture
def palm_anchors():
    return generate_anchors(PALM_ANCHOR_CONFIG)


@pytest.fixture
def palm_factory():
    """Palm engine factory with one confident detection on the center anchor."""
    return EngineRecorder(
        lambda: ScriptedEngine(
            palm_outputs([(CENTER_ANCHOR, 5.0)]),
            input_shape=(1, 192, 192, 3),
            output_shapes=[(1, NUM_PALM_ANCHORS, 18), (1, NUM_PALM_ANCHORS, 1)],
        )
    )


@pytest.fixture
def landmark_factory():
    return EngineRecorder(lambda: ScriptedEngine(landmark_outputs()))


@pytest.fixture
def square_image():
    return np.full((400, 400, 3), 90, dtype=np.uint8)
