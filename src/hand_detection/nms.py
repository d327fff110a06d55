from __future__ import annotations

import math
from typing import List, Sequence

from .types import OrientedRegion

# Palm centers closer than this (in source-image pixels) are treated as the same hand.
NMS_DISTANCE_THRESHOLD_PX = 200.0


def non_max_suppression(
    regions: Sequence[OrientedRegion],
    image_width: int,
    image_height: int,
    distance_threshold: float = NMS_DISTANCE_THRESHOLD_PX,
) -> List[OrientedRegion]:
    """
    Greedy center-distance suppression.

    Candidates are visited in descending score order (stable on ties); each kept
    region suppresses every later candidate whose pixel-space center lies within
    `distance_threshold`.
    """
    if not regions:
        return []

    ordered = sorted(regions, key=lambda r: r.score, reverse=True)
    suppressed = [False] * len(ordered)
    keep: List[OrientedRegion] = []

    for i, region in enumerate(ordered):
        if suppressed[i]:
            continue
        keep.append(region)
        for j in range(i + 1, len(ordered)):
            if suppressed[j]:
                continue
            dx = (region.center_x - ordered[j].center_x) * image_width
            dy = (region.center_y - ordered[j].center_y) * image_height
            if math.sqrt(dx * dx + dy * dy) < distance_threshold:
                suppressed[j] = True

    return keep
