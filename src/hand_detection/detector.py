from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import List, Optional, Sequence

import cv2
import numpy as np

from .config import HandDetectorConfig
from .engine import EngineFactory, onnx_engine_factory
from .errors import NotInitializedError
from .geometry import CropContext, region_bounding_box, transform_to_original
from .image_utils import decode_image
from .landmarks import HandLandmarkRunner
from .model_assets import ensure_model, resolve_model_path
from .palm_detector import PalmDetector
from .types import Hand, HandLandmark, HandLandmarks, HandMode, OrientedRegion
from .utils import clamp

logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    DISPOSED = "disposed"


class HandDetector:
    """
    Two-stage hand detector.

    Stage 1 finds rotated palm regions on the whole image; stage 2 runs the
    landmark model on an upright crop of each region, concurrently over a pool
    of engine handles, and maps the 21 keypoints back to image pixels.

    Input images are expected as **BGR** arrays (OpenCV default). The caller
    keeps ownership of the image.

        with HandDetector(HandDetectorConfig(max_detections=2)) as detector:
            hands = detector.detect_on_image(frame)
    """

    def __init__(
        self,
        config: Optional[HandDetectorConfig] = None,
        *,
        palm_engine_factory: Optional[EngineFactory] = None,
        landmark_engine_factory: Optional[EngineFactory] = None,
    ) -> None:
        self.config = config or HandDetectorConfig()
        self._palm_engine_factory = palm_engine_factory
        self._landmark_engine_factory = landmark_engine_factory

        self._palm: Optional[PalmDetector] = None
        self._landmarks: Optional[HandLandmarkRunner] = None
        self._state = DetectorState.UNINITIALIZED
        self._lock = threading.RLock()

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is DetectorState.INITIALIZED

    @property
    def mode(self) -> HandMode:
        return self.config.mode

    def _model_factory(self, model_path: str, url: Optional[str]) -> EngineFactory:
        path = ensure_model(resolve_model_path(model_path, self.config.models_dir), url=url)
        return onnx_engine_factory(path, providers=self.config.providers, num_threads=self.config.num_threads)

    def initialize(self) -> None:
        """Load both models and build the anchor grid. Re-initializing tears down the previous handles first."""
        with self._lock:
            if self._state is DetectorState.INITIALIZED:
                # Stay unusable until the rebuild below succeeds.
                self._state = DetectorState.UNINITIALIZED
                self._teardown()

            cfg = self.config
            palm_factory = self._palm_engine_factory or self._model_factory(cfg.palm_model_path, cfg.palm_model_url)
            landmark_factory = self._landmark_engine_factory or self._model_factory(
                cfg.landmark_model_path, cfg.landmark_model_url
            )

            palm = PalmDetector(palm_factory, score_threshold=cfg.score_threshold)
            landmarks = HandLandmarkRunner(landmark_factory, pool_size=cfg.effective_pool_size)
            palm.initialize()
            try:
                landmarks.initialize()
            except Exception:
                palm.dispose()
                raise

            self._palm = palm
            self._landmarks = landmarks
            self._state = DetectorState.INITIALIZED
            logger.info(
                "Hand detector initialized (mode=%s, pool=%d)", cfg.mode.value, landmarks.pool_size
            )

    def _teardown(self) -> None:
        palm, landmarks = self._palm, self._landmarks
        self._palm = None
        self._landmarks = None
        try:
            if palm is not None:
                palm.dispose()
        finally:
            if landmarks is not None:
                landmarks.dispose()

    def dispose(self) -> None:
        """Release all engine handles. Safe to call more than once."""
        with self._lock:
            if self._state is DetectorState.INITIALIZED:
                self._state = DetectorState.DISPOSED
            self._teardown()

    close = dispose

    def __enter__(self) -> "HandDetector":
        if not self.is_initialized:
            self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def _require_initialized(self) -> None:
        if self._state is not DetectorState.INITIALIZED or self._palm is None or self._landmarks is None:
            raise NotInitializedError(
                f"HandDetector not initialized (state: {self._state.value}). Call initialize() first."
            )

    def detect(self, image_bytes: bytes) -> List[Hand]:
        """
        Detect hands in encoded image bytes (JPEG, PNG, ...).

        Returns [] when the bytes cannot be decoded.
        """
        self._require_initialized()
        try:
            image = decode_image(image_bytes)
        except cv2.error as e:
            logger.warning("Could not decode image bytes: %s", e)
            return []
        if image is None:
            logger.warning("Could not decode image bytes (%d bytes)", len(image_bytes or b""))
            return []
        return self.detect_on_image(image)

    def detect_on_image(self, image: np.ndarray) -> List[Hand]:
        with self._lock:
            self._require_initialized()

            image_height, image_width = image.shape[:2]
            if image_height == 0 or image_width == 0:
                return []

            regions = self._palm.detect(image)[: self.config.max_detections]

            if self.config.mode is HandMode.BOXES:
                return [self._region_to_hand(r, image_width, image_height) for r in regions]

            crops: List[CropContext] = []
            try:
                for region in regions:
                    crop = CropContext.build(image, region)
                    if crop is None:
                        logger.debug("Skipping region with empty crop: %s", region)
                        continue
                    crops.append(crop)

                all_landmarks = self._landmarks.run_many([c.image for c in crops])
                return self._build_results(crops, all_landmarks, image_width, image_height)
            finally:
                for crop in crops:
                    crop.release()

    def _region_to_hand(self, region: OrientedRegion, image_width: int, image_height: int) -> Hand:
        center_x = region.center_x * image_width
        center_y = region.center_y * image_height
        size = region.size * max(image_width, image_height)
        return Hand(
            bounding_box=region_bounding_box(center_x, center_y, size, image_width, image_height),
            score=region.score,
            image_width=image_width,
            image_height=image_height,
            landmarks=[],
            handedness=None,
            rotation=region.rotation,
            rotated_center_x=center_x,
            rotated_center_y=center_y,
            rotated_size=size,
        )

    def _build_results(
        self,
        crops: Sequence[CropContext],
        all_landmarks: Sequence[Optional[HandLandmarks]],
        image_width: int,
        image_height: int,
    ) -> List[Hand]:
        results: List[Hand] = []
        for crop, lms in zip(crops, all_landmarks):
            if lms is None or lms.score < self.config.min_landmark_score:
                continue

            transformed: List[HandLandmark] = []
            for lm in lms.landmarks:
                x, y = transform_to_original(
                    lm.x,
                    lm.y,
                    float(crop.crop_width),
                    float(crop.crop_height),
                    crop.region.rotation,
                    crop.center_x,
                    crop.center_y,
                )
                transformed.append(
                    HandLandmark(
                        type=lm.type,
                        x=clamp(x, 0.0, float(image_width)),
                        y=clamp(y, 0.0, float(image_height)),
                        z=lm.z,
                        visibility=lm.visibility,
                    )
                )

            results.append(
                Hand(
                    bounding_box=region_bounding_box(
                        crop.center_x, crop.center_y, crop.crop_size, image_width, image_height
                    ),
                    score=crop.region.score,
                    image_width=image_width,
                    image_height=image_height,
                    landmarks=transformed,
                    handedness=lms.handedness,
                    rotation=crop.region.rotation,
                    rotated_center_x=crop.center_x,
                    rotated_center_y=crop.center_y,
                    rotated_size=crop.crop_size,
                )
            )
        return results
