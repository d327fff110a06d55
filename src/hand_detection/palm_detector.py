from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .anchors import PALM_ANCHOR_CONFIG, AnchorConfig, generate_anchors
from .engine import EngineFactory, InferenceEngine
from .errors import NotInitializedError
from .geometry import region_from_detection
from .image_utils import image_to_tensor, keep_aspect_resize_and_pad
from .nms import non_max_suppression
from .types import OrientedRegion, RawDetection
from .utils import sigmoid_array

logger = logging.getLogger(__name__)

# Regressor row layout: 9 (x, y) pairs. Pair 0 is the box center, pair 1 the
# size reference, pairs 2 and 4 the keypoints used for orientation.
NUM_BOX_VALUES = 18


def decode_boxes(
    raw_boxes: np.ndarray,
    raw_scores: np.ndarray,
    anchors: np.ndarray,
    score_threshold: float,
    scale: float = 192.0,
) -> List[RawDetection]:
    """
    Decode SSD regressor rows against their anchors.

    raw_boxes: (N, 18), raw_scores: (N, 1) or (N,) logits, anchors: (N, 4).
    Only anchors with sigmoid(score) > `score_threshold` and a positive box size
    are returned, in anchor order.
    """
    raw_boxes = np.asarray(raw_boxes, dtype=np.float64).reshape(-1, NUM_BOX_VALUES)
    logits = np.asarray(raw_scores, dtype=np.float64).reshape(-1)
    if raw_boxes.shape[0] != anchors.shape[0] or logits.shape[0] != anchors.shape[0]:
        raise ValueError(
            f"Model produced {raw_boxes.shape[0]} boxes / {logits.shape[0]} scores "
            f"for {anchors.shape[0]} anchors"
        )

    scores = sigmoid_array(logits)
    idx = np.nonzero(scores > score_threshold)[0]
    if idx.size == 0:
        return []

    sel = anchors[idx]
    anchor_wh = np.tile(sel[:, 2:4], (1, 9))
    anchor_xy = np.tile(sel[:, 0:2], (1, 9))
    decoded = raw_boxes[idx] * anchor_wh / scale + anchor_xy

    w = decoded[:, 2] - sel[:, 0]
    h = decoded[:, 3] - sel[:, 1]
    box_size = np.maximum(w, h)

    detections: List[RawDetection] = []
    for k in range(idx.size):
        if box_size[k] <= 0:
            continue
        row = decoded[k]
        detections.append(
            RawDetection(
                score=float(scores[idx[k]]),
                center_x=float(row[0]),
                center_y=float(row[1]),
                box_size=float(box_size[k]),
                kp0_x=float(row[4]),
                kp0_y=float(row[5]),
                kp2_x=float(row[8]),
                kp2_y=float(row[9]),
            )
        )
    return detections


def split_palm_outputs(outputs: Sequence[np.ndarray]) -> Tuple[np.ndarray, np.ndarray]:
    """Pick (regressors, scores) out of the engine outputs by their trailing dimension."""
    if len(outputs) < 2:
        raise ValueError(f"Palm model returned {len(outputs)} outputs, expected 2")
    first, second = np.asarray(outputs[0]), np.asarray(outputs[1])
    if first.shape[-1] == NUM_BOX_VALUES:
        boxes, scores = first, second
    else:
        boxes, scores = second, first
    return boxes.reshape(-1, NUM_BOX_VALUES), scores.reshape(-1)


class PalmDetector:
    """
    Stage 1: SSD palm detector.

    Runs one engine handle, decodes regressors against a fixed anchor grid and
    returns NMS-filtered `OrientedRegion`s in source-image space.
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        score_threshold: float = 0.6,
        anchor_config: AnchorConfig = PALM_ANCHOR_CONFIG,
    ) -> None:
        self._engine_factory = engine_factory
        self.score_threshold = score_threshold
        self.anchor_config = anchor_config

        self._engine: Optional[InferenceEngine] = None
        self._anchors: Optional[np.ndarray] = None
        self._input: Optional[np.ndarray] = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def anchors(self) -> np.ndarray:
        if self._anchors is None:
            raise NotInitializedError("PalmDetector not initialized. Call initialize() first.")
        return self._anchors

    @property
    def input_width(self) -> int:
        return self.anchor_config.input_size_width

    @property
    def input_height(self) -> int:
        return self.anchor_config.input_size_height

    def initialize(self) -> None:
        if self.is_initialized:
            self.dispose()

        anchors = generate_anchors(self.anchor_config)
        engine = self._engine_factory()
        try:
            self._check_engine_shapes(engine, anchors.shape[0])
        except Exception:
            engine.close()
            raise

        self._engine = engine
        self._anchors = anchors
        self._input = np.zeros((1, self.input_height, self.input_width, 3), dtype=np.float32)
        logger.info("Palm detector ready: %d anchors, %dx%d input", anchors.shape[0], self.input_width, self.input_height)

    def _check_engine_shapes(self, engine: InferenceEngine, num_anchors: int) -> None:
        input_shape = getattr(engine, "input_shape", None)
        if input_shape is not None and len(input_shape) == 4:
            h, w = input_shape[1], input_shape[2]
            if isinstance(h, int) and isinstance(w, int) and (h, w) != (self.input_height, self.input_width):
                raise ValueError(
                    f"Palm model input is {w}x{h} but anchors were configured for "
                    f"{self.input_width}x{self.input_height}"
                )
        for shape in getattr(engine, "output_shapes", None) or []:
            if len(shape) == 3 and isinstance(shape[1], int) and shape[1] != num_anchors:
                raise ValueError(f"Palm model declares {shape[1]} detections but {num_anchors} anchors were generated")

    def dispose(self) -> None:
        engine, self._engine = self._engine, None
        self._anchors = None
        self._input = None
        if engine is not None:
            engine.close()

    def detect(self, image: np.ndarray) -> List[OrientedRegion]:
        if self._engine is None or self._anchors is None or self._input is None:
            raise NotInitializedError("PalmDetector not initialized. Call initialize() first.")

        image_height, image_width = image.shape[:2]
        letterbox = keep_aspect_resize_and_pad(image, self.input_width, self.input_height)
        image_to_tensor(letterbox.image, out=self._input)

        outputs = self._engine.run(self._input)
        raw_boxes, raw_scores = split_palm_outputs(outputs)

        detections = decode_boxes(
            raw_boxes,
            raw_scores,
            self._anchors,
            self.score_threshold,
            scale=float(self.input_width),
        )
        regions = [region_from_detection(d, image_width, image_height) for d in detections]
        kept = non_max_suppression(regions, image_width, image_height)
        logger.debug("Palm detection: %d candidates, %d after NMS", len(regions), len(kept))
        return kept
