from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np


@dataclass(frozen=True)
class Letterbox:
    """Result of an aspect-preserving resize centered on a padded canvas."""

    image: np.ndarray
    resized_width: int
    resized_height: int
    pad_left: int
    pad_top: int
    scale_x: float  # resized_width / source_width
    scale_y: float  # resized_height / source_height


def decode_image(data: bytes) -> Optional[np.ndarray]:
    """Decode encoded image bytes (JPEG, PNG, ...) to a BGR array, or None."""
    if not data:
        return None
    buf = np.frombuffer(bytes(data), dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if image is None or image.size == 0:
        return None
    return image


def keep_aspect_resize_and_pad(image: np.ndarray, resize_width: int, resize_height: int) -> Letterbox:
    image_height, image_width = image.shape[:2]

    ash = resize_height / image_height
    asw = resize_width / image_width
    if asw < ash:
        new_width = int(image_width * asw)
        new_height = int(image_height * asw)
    else:
        new_width = int(image_width * ash)
        new_height = int(image_height * ash)
    # Extremely thin inputs would otherwise truncate to zero pixels.
    new_width = max(1, new_width)
    new_height = max(1, new_height)

    resized = cv2.resize(image, (new_width, new_height), interpolation=cv2.INTER_LINEAR)

    pad_top = (resize_height - new_height) // 2
    pad_bottom = resize_height - new_height - pad_top
    pad_left = (resize_width - new_width) // 2
    pad_right = resize_width - new_width - pad_left

    padded = cv2.copyMakeBorder(
        resized,
        pad_top,
        pad_bottom,
        pad_left,
        pad_right,
        cv2.BORDER_CONSTANT,
        value=(0, 0, 0),
    )

    return Letterbox(
        image=padded,
        resized_width=new_width,
        resized_height=new_height,
        pad_left=pad_left,
        pad_top=pad_top,
        scale_x=new_width / image_width,
        scale_y=new_height / image_height,
    )


def image_to_tensor(image: np.ndarray, out: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Convert a BGR uint8 image into an NHWC float32 tensor of RGB values in [0, 1].

    If `out` is given it must have shape (1, H, W, 3) and is filled in place.
    """
    h, w = image.shape[:2]
    if out is None:
        out = np.empty((1, h, w, 3), dtype=np.float32)
    elif out.shape != (1, h, w, 3):
        raise ValueError(f"tensor buffer has shape {out.shape}, expected {(1, h, w, 3)}")

    if image.ndim == 2:
        rgb = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)
    elif image.shape[2] == 4:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGRA2RGB)
    else:
        rgb = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    np.multiply(rgb, 1.0 / 255.0, out=out[0], casting="unsafe")
    return out
