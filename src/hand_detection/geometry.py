"""
Rotated-rectangle math shared by both stages.

Forward: a palm detection becomes an `OrientedRegion`, which is cut out of the
source image with `cv2.getRotationMatrix2D` + `cv2.warpAffine` so the hand
stands upright in a square crop.

Inverse: crop-pixel coordinates are mapped back to source-image pixels by
undoing that affine transform (`transform_to_original`). The two must stay
paired: the crop matrix is built with `+rotation` in OpenCV's angle convention,
which the inverse undoes with the rotation `[[cos, -sin], [sin, cos]]`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from .types import BoundingBox, OrientedRegion, RawDetection
from .utils import clamp

# Palm box -> hand crop expansion, fixed by the landmark model's training crops.
REGION_SCALE = 2.9


def normalize_radians(angle: float) -> float:
    """Wrap an angle to [-pi, pi)."""
    return angle - 2 * math.pi * math.floor((angle + math.pi) / (2 * math.pi))


def region_from_detection(det: RawDetection, image_width: int, image_height: int) -> OrientedRegion:
    """
    Turn a decoded palm box into a rotated hand region in source-image space.

    The detection coordinates live in the letterboxed square the palm model saw;
    the axis that received padding is mapped back to the unpadded image here.
    """
    kp02_x = det.kp2_x - det.kp0_x
    kp02_y = det.kp2_y - det.kp0_y
    size = REGION_SCALE * det.box_size
    rotation = normalize_radians(0.5 * math.pi - math.atan2(-kp02_y, kp02_x))
    center_x = det.center_x + 0.5 * det.box_size * math.sin(rotation)
    center_y = det.center_y - 0.5 * det.box_size * math.cos(rotation)

    square_standard_size = max(image_height, image_width)
    square_padding_half_size = abs(image_height - image_width) // 2
    if image_height > image_width:
        center_x = (center_x * square_standard_size - square_padding_half_size) / image_width
    else:
        center_y = (center_y * square_standard_size - square_padding_half_size) / image_height

    return OrientedRegion(
        center_x=center_x,
        center_y=center_y,
        size=size,
        rotation=rotation,
        score=det.score,
    )


def crop_parameters(region: OrientedRegion, image_width: int, image_height: int) -> Tuple[float, float, float, float, float]:
    """Pixel-space (center_x, center_y, width, height, angle_degrees) of a region."""
    cx = region.center_x * image_width
    cy = region.center_y * image_height
    size = region.size * max(image_width, image_height)
    return (cx, cy, size, size, math.degrees(region.rotation))


def crop_matrix(cx: float, cy: float, rotation: float, size: int) -> np.ndarray:
    """2x3 affine matrix taking source pixels into a `size` x `size` crop centered on (cx, cy)."""
    m = cv2.getRotationMatrix2D((cx, cy), rotation * 180.0 / math.pi, 1.0)
    m[0, 2] += size / 2.0 - cx
    m[1, 2] += size / 2.0 - cy
    return m


def rotate_and_crop_rectangle(image: np.ndarray, region: OrientedRegion) -> Optional[np.ndarray]:
    """Cut the rotated square `region` out of `image`. Returns None when the crop would be empty."""
    image_height, image_width = image.shape[:2]
    cx = region.center_x * image_width
    cy = region.center_y * image_height
    size = int(round(region.size * max(image_width, image_height)))
    if size <= 0:
        return None

    m = crop_matrix(cx, cy, region.rotation, size)
    return cv2.warpAffine(
        image,
        m,
        (size, size),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0),
    )


def transform_to_original(
    x_crop: float,
    y_crop: float,
    crop_width: float,
    crop_height: float,
    rotation: float,
    center_x: float,
    center_y: float,
) -> Tuple[float, float]:
    """Map a crop-pixel point back to source-image pixels (inverse of `crop_matrix`)."""
    x_rel = x_crop - crop_width / 2
    y_rel = y_crop - crop_height / 2

    cos_r = math.cos(rotation)
    sin_r = math.sin(rotation)
    x_rot = x_rel * cos_r - y_rel * sin_r
    y_rot = x_rel * sin_r + y_rel * cos_r

    return (x_rot + center_x, y_rot + center_y)


def region_bounding_box(center_x: float, center_y: float, size: float, image_width: int, image_height: int) -> BoundingBox:
    """Axis-aligned box of side `size` around a pixel center, clipped to the image."""
    half = size / 2
    return BoundingBox(
        left=clamp(center_x - half, 0.0, float(image_width)),
        top=clamp(center_y - half, 0.0, float(image_height)),
        right=clamp(center_x + half, 0.0, float(image_width)),
        bottom=clamp(center_y + half, 0.0, float(image_height)),
    )


@dataclass
class CropContext:
    """
    A region cut out of a borrowed source image.

    Owns `image` (the crop) until `release()`; the source image is never held.
    """

    region: OrientedRegion
    image: Optional[np.ndarray]
    center_x: float
    center_y: float
    crop_size: float
    crop_width: int
    crop_height: int

    @classmethod
    def build(cls, source: np.ndarray, region: OrientedRegion) -> Optional["CropContext"]:
        crop = rotate_and_crop_rectangle(source, region)
        if crop is None:
            return None
        image_height, image_width = source.shape[:2]
        cx, cy, size, _, _ = crop_parameters(region, image_width, image_height)
        return cls(
            region=region,
            image=crop,
            center_x=cx,
            center_y=cy,
            crop_size=size,
            crop_width=crop.shape[1],
            crop_height=crop.shape[0],
        )

    def release(self) -> None:
        self.image = None

    def __enter__(self) -> "CropContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
