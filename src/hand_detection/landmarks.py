"""
Stage 2: hand landmark model and its engine pool.

Each pool slot owns one engine handle, its input buffer, and a single worker
thread. Work is assigned round-robin; a slot's worker runs its queue in FIFO
order, so a handle never has more than one inference in flight.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .engine import EngineFactory, InferenceEngine
from .errors import NotInitializedError
from .image_utils import image_to_tensor, keep_aspect_resize_and_pad
from .types import NUM_HAND_LANDMARKS, Handedness, HandLandmark, HandLandmarks, HandLandmarkType
from .utils import clamp, sigmoid

logger = logging.getLogger(__name__)

LANDMARK_INPUT_SIZE = 224
MIN_POOL_SIZE = 1
MAX_POOL_SIZE = 10


def parse_landmarks(
    raw_landmarks: np.ndarray,
    raw_score: float,
    raw_handedness: float,
    half_pad_w: float,
    half_pad_h: float,
    resize_scale_w: float,
    resize_scale_h: float,
    crop_width: int,
    crop_height: int,
    input_size: int = LANDMARK_INPUT_SIZE,
) -> HandLandmarks:
    """
    Convert raw landmark model outputs into crop-pixel landmarks.

    raw_landmarks holds 21 (x, y, z) triples in the padded `input_size` square.
    x/y are normalized by `input_size`, scaled back, un-padded and divided by the
    resize scale per axis, then clipped to the crop. z passes through unscaled.
    Every landmark's visibility is the hand score.
    """
    raw = np.asarray(raw_landmarks, dtype=np.float64).reshape(-1)
    if raw.size < NUM_HAND_LANDMARKS * 3:
        raise ValueError(f"Expected {NUM_HAND_LANDMARKS * 3} landmark values, got {raw.size}")

    score = sigmoid(float(raw_score))
    handedness = Handedness.RIGHT if sigmoid(float(raw_handedness)) > 0.5 else Handedness.LEFT

    landmarks: List[HandLandmark] = []
    for i in range(NUM_HAND_LANDMARKS):
        base = i * 3
        normalized_x = raw[base] / input_size
        normalized_y = raw[base + 1] / input_size
        x = (normalized_x * input_size - half_pad_w) / resize_scale_w
        y = (normalized_y * input_size - half_pad_h) / resize_scale_h
        landmarks.append(
            HandLandmark(
                type=HandLandmarkType(i),
                x=clamp(float(x), 0.0, float(crop_width)),
                y=clamp(float(y), 0.0, float(crop_height)),
                z=float(raw[base + 2]),
                visibility=score,
            )
        )

    return HandLandmarks(landmarks=landmarks, score=score, handedness=handedness)


@dataclass
class _PoolSlot:
    engine: InferenceEngine
    input_buffer: np.ndarray
    worker: ThreadPoolExecutor

    def close(self) -> None:
        try:
            self.worker.shutdown(wait=True)
        finally:
            self.engine.close()


def _close_slots(slots: Sequence[_PoolSlot]) -> Optional[Exception]:
    """Close every slot, even past failures. Returns the first error, already logged."""
    first_error: Optional[Exception] = None
    for i, slot in enumerate(slots):
        try:
            slot.close()
        except Exception as e:
            logger.warning("Closing landmark engine handle %d failed: %s", i, e)
            if first_error is None:
                first_error = e
    return first_error


class HandLandmarkRunner:
    """Runs the landmark model over hand crops using a fixed pool of engine handles."""

    def __init__(self, engine_factory: EngineFactory, pool_size: int = 1, input_size: int = LANDMARK_INPUT_SIZE) -> None:
        if not MIN_POOL_SIZE <= pool_size <= MAX_POOL_SIZE:
            raise ValueError(f"pool_size must be in [{MIN_POOL_SIZE}, {MAX_POOL_SIZE}], got {pool_size}")
        self._engine_factory = engine_factory
        self.pool_size = pool_size
        self.input_size = input_size

        self._slots: List[_PoolSlot] = []
        self._counter = 0
        self._counter_lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        return bool(self._slots)

    def initialize(self) -> None:
        if self.is_initialized:
            self.dispose()

        slots: List[_PoolSlot] = []
        try:
            for i in range(self.pool_size):
                engine = self._engine_factory()
                slots.append(
                    _PoolSlot(
                        engine=engine,
                        input_buffer=np.zeros((1, self.input_size, self.input_size, 3), dtype=np.float32),
                        worker=ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"hand-landmark-{i}"),
                    )
                )
        except Exception:
            _close_slots(slots)
            raise

        self._slots = slots
        self._counter = 0
        logger.info("Landmark runner ready with %d engine handle(s)", len(slots))

    def dispose(self) -> None:
        slots, self._slots = self._slots, []
        error = _close_slots(slots)
        if error is not None:
            raise error

    def _next_slot(self) -> _PoolSlot:
        with self._counter_lock:
            if not self._slots:
                raise NotInitializedError("HandLandmarkRunner not initialized. Call initialize() first.")
            index = self._counter % len(self._slots)
            self._counter = (self._counter + 1) % len(self._slots)
            return self._slots[index]

    def submit(self, crop: np.ndarray) -> "Future[HandLandmarks]":
        """Queue `crop` on the next slot in round-robin order."""
        slot = self._next_slot()
        return slot.worker.submit(self._infer, slot, crop)

    def run(self, crop: np.ndarray) -> HandLandmarks:
        return self.submit(crop).result()

    def run_many(self, crops: Sequence[np.ndarray]) -> List[Optional[HandLandmarks]]:
        """
        Run all crops concurrently across the pool.

        A crop whose inference fails yields None instead of aborting the batch.
        """
        futures = [self.submit(crop) for crop in crops]
        results: List[Optional[HandLandmarks]] = []
        for i, fut in enumerate(futures):
            try:
                results.append(fut.result())
            except Exception as e:
                logger.warning("Landmark extraction failed for crop %d: %s", i, e)
                results.append(None)
        return results

    def _infer(self, slot: _PoolSlot, crop: np.ndarray) -> HandLandmarks:
        crop_height, crop_width = crop.shape[:2]
        letterbox = keep_aspect_resize_and_pad(crop, self.input_size, self.input_size)

        pad_w = letterbox.image.shape[1] - letterbox.resized_width
        pad_h = letterbox.image.shape[0] - letterbox.resized_height
        half_pad_w = float(max(0, pad_w // 2))
        half_pad_h = float(max(0, pad_h // 2))

        image_to_tensor(letterbox.image, out=slot.input_buffer)
        outputs = slot.engine.run(slot.input_buffer)
        if len(outputs) < 3:
            raise ValueError(f"Landmark model returned {len(outputs)} outputs, expected at least 3")

        return parse_landmarks(
            np.asarray(outputs[0]),
            float(np.asarray(outputs[1]).reshape(-1)[0]),
            float(np.asarray(outputs[2]).reshape(-1)[0]),
            half_pad_w=half_pad_w,
            half_pad_h=half_pad_h,
            resize_scale_w=letterbox.scale_x,
            resize_scale_h=letterbox.scale_y,
            crop_width=crop_width,
            crop_height=crop_height,
            input_size=self.input_size,
        )
