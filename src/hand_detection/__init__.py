import logging

from .anchors import PALM_ANCHOR_CONFIG, AnchorConfig, generate_anchors
from .config import HandDetectorConfig
from .detector import DetectorState, HandDetector
from .errors import HandDetectionError, ModelLoadError, NotInitializedError
from .types import (
    HAND_CONNECTIONS,
    NUM_HAND_LANDMARKS,
    BoundingBox,
    Hand,
    Handedness,
    HandLandmark,
    HandLandmarkType,
    HandMode,
    OrientedRegion,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "HandDetector",
    "HandDetectorConfig",
    "DetectorState",
    "HandMode",
    "Hand",
    "HandLandmark",
    "HandLandmarkType",
    "Handedness",
    "BoundingBox",
    "OrientedRegion",
    "HAND_CONNECTIONS",
    "NUM_HAND_LANDMARKS",
    "AnchorConfig",
    "PALM_ANCHOR_CONFIG",
    "generate_anchors",
    "HandDetectionError",
    "NotInitializedError",
    "ModelLoadError",
]
