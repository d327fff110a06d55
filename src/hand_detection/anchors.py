"""
SSD anchor grid for the palm detection model.

The anchor order (stride group, then feature-map row, column, anchor index) is
the same order the model emits regressor rows in, so decoding pairs them by index.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np


@dataclass(frozen=True)
class AnchorConfig:
    num_layers: int
    min_scale: float
    max_scale: float
    input_size_height: int
    input_size_width: int
    anchor_offset_x: float
    anchor_offset_y: float
    strides: Tuple[int, ...]
    aspect_ratios: Tuple[float, ...]
    reduce_boxes_in_lowest_layer: bool = False
    interpolated_scale_aspect_ratio: float = 1.0
    fixed_anchor_size: bool = True

    def validate(self) -> None:
        if not self.strides:
            raise ValueError("AnchorConfig.strides must not be empty")
        if self.num_layers != len(self.strides):
            raise ValueError(
                f"AnchorConfig.num_layers={self.num_layers} does not match {len(self.strides)} strides"
            )
        if any(s <= 0 for s in self.strides):
            raise ValueError(f"AnchorConfig.strides must be positive, got {list(self.strides)}")
        if self.input_size_height <= 0 or self.input_size_width <= 0:
            raise ValueError(
                f"AnchorConfig input size must be positive, got "
                f"{self.input_size_width}x{self.input_size_height}"
            )
        if not self.aspect_ratios and not self.reduce_boxes_in_lowest_layer:
            raise ValueError("AnchorConfig.aspect_ratios must not be empty")
        if any(r <= 0 for r in self.aspect_ratios):
            raise ValueError(f"AnchorConfig.aspect_ratios must be positive, got {list(self.aspect_ratios)}")


# Palm detection model (192x192 input, 2016 anchors).
PALM_ANCHOR_CONFIG = AnchorConfig(
    num_layers=4,
    min_scale=0.1484375,
    max_scale=0.75,
    input_size_height=192,
    input_size_width=192,
    anchor_offset_x=0.5,
    anchor_offset_y=0.5,
    strides=(8, 16, 16, 16),
    aspect_ratios=(1.0,),
    reduce_boxes_in_lowest_layer=False,
    interpolated_scale_aspect_ratio=1.0,
    fixed_anchor_size=True,
)


def _calculate_scale(min_scale: float, max_scale: float, stride_index: int, num_strides: int) -> float:
    if num_strides == 1:
        return (min_scale + max_scale) / 2
    return min_scale + (max_scale - min_scale) * stride_index / (num_strides - 1)


def generate_anchors(config: AnchorConfig) -> np.ndarray:
    """
    Build the anchor grid for `config`.

    Returns a contiguous float64 array of shape (N, 4) with rows
    (center_x, center_y, width, height) in normalized units. Raises ValueError
    for a malformed config rather than returning an empty grid.
    """
    config.validate()

    rows: List[Tuple[float, float, float, float]] = []
    strides = config.strides
    n_strides = len(strides)
    layer_id = 0

    while layer_id < n_strides:
        aspect_ratios: List[float] = []
        scales: List[float] = []

        # Layers sharing a stride share one feature map.
        last_same_stride_layer = layer_id
        while last_same_stride_layer < n_strides and strides[last_same_stride_layer] == strides[layer_id]:
            scale = _calculate_scale(config.min_scale, config.max_scale, last_same_stride_layer, n_strides)

            if last_same_stride_layer == 0 and config.reduce_boxes_in_lowest_layer:
                aspect_ratios.extend([1.0, 2.0, 0.5])
                scales.extend([0.1, scale, scale])
            else:
                aspect_ratios.extend(config.aspect_ratios)
                scales.extend([scale] * len(config.aspect_ratios))
                if config.interpolated_scale_aspect_ratio > 0:
                    if last_same_stride_layer == n_strides - 1:
                        scale_next = 1.0
                    else:
                        scale_next = _calculate_scale(
                            config.min_scale, config.max_scale, last_same_stride_layer + 1, n_strides
                        )
                    scales.append(math.sqrt(scale * scale_next))
                    aspect_ratios.append(config.interpolated_scale_aspect_ratio)
            last_same_stride_layer += 1

        anchor_width = []
        anchor_height = []
        for ratio, scale in zip(aspect_ratios, scales):
            ratio_sqrt = math.sqrt(ratio)
            anchor_height.append(scale / ratio_sqrt)
            anchor_width.append(scale * ratio_sqrt)

        stride = strides[layer_id]
        feature_map_height = math.ceil(config.input_size_height / stride)
        feature_map_width = math.ceil(config.input_size_width / stride)

        for y in range(feature_map_height):
            for x in range(feature_map_width):
                for anchor_id in range(len(anchor_height)):
                    x_center = (x + config.anchor_offset_x) / feature_map_width
                    y_center = (y + config.anchor_offset_y) / feature_map_height
                    if config.fixed_anchor_size:
                        rows.append((x_center, y_center, 1.0, 1.0))
                    else:
                        rows.append((x_center, y_center, anchor_width[anchor_id], anchor_height[anchor_id]))

        layer_id = last_same_stride_layer

    anchors = np.ascontiguousarray(rows, dtype=np.float64)
    anchors.setflags(write=False)
    return anchors
