from __future__ import annotations

import math
from typing import Iterable, Sequence, Tuple

import cv2
import numpy as np

from .types import HAND_CONNECTIONS, Hand


def draw_text(frame, text: str, org: Tuple[int, int], color=(255, 255, 255), scale=0.6, thickness=2):
    cv2.putText(frame, text, org, cv2.FONT_HERSHEY_SIMPLEX, scale, (0, 0, 0), thickness + 2, cv2.LINE_AA)
    cv2.putText(frame, text, org, cv2.FONT_HERSHEY_SIMPLEX, scale, color, thickness, cv2.LINE_AA)
    return frame


def draw_polyline(frame, points: Iterable[Tuple[float, float]], color=(255, 255, 0), thickness=2, closed=False):
    pts = np.array([(int(round(x)), int(round(y))) for x, y in points], dtype=np.int32)
    if pts.shape[0] < 2:
        return frame
    cv2.polylines(frame, [pts], closed, color, thickness, cv2.LINE_AA)
    return frame


def rotated_square_corners(cx: float, cy: float, size: float, rotation: float):
    """Corners of the crop square in image pixels, clockwise from the crop's top-left."""
    half = size / 2
    cos_r = math.cos(rotation)
    sin_r = math.sin(rotation)
    corners = []
    for dx, dy in ((-half, -half), (half, -half), (half, half), (-half, half)):
        corners.append((cx + dx * cos_r - dy * sin_r, cy + dx * sin_r + dy * cos_r))
    return corners


def draw_hands(frame, hands: Sequence[Hand], draw_landmarks: bool = True):
    for hand in hands:
        box = hand.bounding_box
        cv2.rectangle(
            frame,
            (int(box.left), int(box.top)),
            (int(box.right), int(box.bottom)),
            (0, 255, 0),
            2,
        )

        if hand.rotation is not None and hand.rotated_size is not None:
            corners = rotated_square_corners(
                hand.rotated_center_x, hand.rotated_center_y, hand.rotated_size, hand.rotation
            )
            draw_polyline(frame, corners, color=(255, 128, 0), thickness=1, closed=True)

        if draw_landmarks and hand.has_landmarks:
            by_type = {lm.type: lm for lm in hand.landmarks}
            for a, b in HAND_CONNECTIONS:
                if a in by_type and b in by_type:
                    cv2.line(frame, by_type[a].to_pixel(), by_type[b].to_pixel(), (0, 255, 255), 2, cv2.LINE_AA)
            for lm in hand.landmarks:
                cv2.circle(frame, lm.to_pixel(), 3, (40, 255, 120), -1, lineType=cv2.LINE_AA)

        label = hand.handedness.value if hand.handedness is not None else "hand"
        draw_text(frame, f"{label} {hand.score:.2f}", (int(box.left), max(12, int(box.top) - 8)))

    return frame
