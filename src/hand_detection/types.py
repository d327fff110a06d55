from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import List, Optional, Tuple

from .utils import bbox_from_points


Point2 = Tuple[int, int]

NUM_HAND_LANDMARKS = 21


class HandMode(str, Enum):
    """Which pipeline stages run per image."""

    BOXES = "boxes"
    BOXES_AND_LANDMARKS = "boxes_and_landmarks"


class Handedness(str, Enum):
    LEFT = "left"
    RIGHT = "right"


class HandLandmarkType(IntEnum):
    """The 21 keypoints of the MediaPipe hand topology, in model output order."""

    WRIST = 0
    THUMB_CMC = 1
    THUMB_MCP = 2
    THUMB_IP = 3
    THUMB_TIP = 4
    INDEX_FINGER_MCP = 5
    INDEX_FINGER_PIP = 6
    INDEX_FINGER_DIP = 7
    INDEX_FINGER_TIP = 8
    MIDDLE_FINGER_MCP = 9
    MIDDLE_FINGER_PIP = 10
    MIDDLE_FINGER_DIP = 11
    MIDDLE_FINGER_TIP = 12
    RING_FINGER_MCP = 13
    RING_FINGER_PIP = 14
    RING_FINGER_DIP = 15
    RING_FINGER_TIP = 16
    PINKY_MCP = 17
    PINKY_PIP = 18
    PINKY_DIP = 19
    PINKY_TIP = 20


HAND_CONNECTIONS: List[Tuple[HandLandmarkType, HandLandmarkType]] = [
    # thumb
    (HandLandmarkType.WRIST, HandLandmarkType.THUMB_CMC),
    (HandLandmarkType.THUMB_CMC, HandLandmarkType.THUMB_MCP),
    (HandLandmarkType.THUMB_MCP, HandLandmarkType.THUMB_IP),
    (HandLandmarkType.THUMB_IP, HandLandmarkType.THUMB_TIP),
    # index
    (HandLandmarkType.WRIST, HandLandmarkType.INDEX_FINGER_MCP),
    (HandLandmarkType.INDEX_FINGER_MCP, HandLandmarkType.INDEX_FINGER_PIP),
    (HandLandmarkType.INDEX_FINGER_PIP, HandLandmarkType.INDEX_FINGER_DIP),
    (HandLandmarkType.INDEX_FINGER_DIP, HandLandmarkType.INDEX_FINGER_TIP),
    # middle
    (HandLandmarkType.INDEX_FINGER_MCP, HandLandmarkType.MIDDLE_FINGER_MCP),
    (HandLandmarkType.MIDDLE_FINGER_MCP, HandLandmarkType.MIDDLE_FINGER_PIP),
    (HandLandmarkType.MIDDLE_FINGER_PIP, HandLandmarkType.MIDDLE_FINGER_DIP),
    (HandLandmarkType.MIDDLE_FINGER_DIP, HandLandmarkType.MIDDLE_FINGER_TIP),
    # ring
    (HandLandmarkType.MIDDLE_FINGER_MCP, HandLandmarkType.RING_FINGER_MCP),
    (HandLandmarkType.RING_FINGER_MCP, HandLandmarkType.RING_FINGER_PIP),
    (HandLandmarkType.RING_FINGER_PIP, HandLandmarkType.RING_FINGER_DIP),
    (HandLandmarkType.RING_FINGER_DIP, HandLandmarkType.RING_FINGER_TIP),
    # pinky
    (HandLandmarkType.RING_FINGER_MCP, HandLandmarkType.PINKY_MCP),
    (HandLandmarkType.PINKY_MCP, HandLandmarkType.PINKY_PIP),
    (HandLandmarkType.PINKY_PIP, HandLandmarkType.PINKY_DIP),
    (HandLandmarkType.PINKY_DIP, HandLandmarkType.PINKY_TIP),
    # palm base
    (HandLandmarkType.WRIST, HandLandmarkType.PINKY_MCP),
]


@dataclass(frozen=True)
class RawDetection:
    """One anchor that survived the score threshold, in normalized letterbox space."""

    score: float
    center_x: float
    center_y: float
    box_size: float
    kp0_x: float
    kp0_y: float
    kp2_x: float
    kp2_y: float


@dataclass(frozen=True)
class OrientedRegion:
    """
    Rotated square palm region produced by stage 1.

    Center is normalized by the image width/height; size is normalized by the
    longer image side.
    """

    center_x: float
    center_y: float
    size: float
    rotation: float  # radians
    score: float


@dataclass(frozen=True)
class HandLandmark:
    """A single keypoint. x/y are pixels, z is relative depth (unscaled)."""

    type: HandLandmarkType
    x: float
    y: float
    z: float
    visibility: float

    def x_norm(self, image_width: int) -> float:
        return min(1.0, max(0.0, self.x / image_width))

    def y_norm(self, image_height: int) -> float:
        return min(1.0, max(0.0, self.y / image_height))

    def to_pixel(self) -> Point2:
        return (int(self.x), int(self.y))


@dataclass(frozen=True)
class HandLandmarks:
    """Stage-2 output for one crop, landmarks in crop-pixel space."""

    landmarks: List[HandLandmark]
    score: float
    handedness: Handedness


@dataclass(frozen=True)
class BoundingBox:
    left: float
    top: float
    right: float
    bottom: float

    @property
    def width(self) -> float:
        return self.right - self.left

    @property
    def height(self) -> float:
        return self.bottom - self.top


@dataclass(frozen=True)
class Hand:
    """Detected hand returned by `HandDetector.detect`."""

    bounding_box: BoundingBox
    score: float
    image_width: int
    image_height: int
    landmarks: List[HandLandmark] = field(default_factory=list)  # empty in boxes mode
    handedness: Optional[Handedness] = None
    rotation: Optional[float] = None
    rotated_center_x: Optional[float] = None
    rotated_center_y: Optional[float] = None
    rotated_size: Optional[float] = None

    @property
    def has_landmarks(self) -> bool:
        return len(self.landmarks) > 0

    def get_landmark(self, landmark_type: HandLandmarkType) -> Optional[HandLandmark]:
        for lm in self.landmarks:
            if lm.type == landmark_type:
                return lm
        return None

    def landmark_bounds(self) -> Tuple[float, float, float, float]:
        """Tight (x_min, y_min, x_max, y_max) around the landmarks; zeros when there are none."""
        return bbox_from_points((lm.x, lm.y) for lm in self.landmarks)
