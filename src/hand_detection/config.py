"""
Detector configuration.

Values are validated on construction; `from_env()` reads HAND_DETECTION_*
overrides (e.g. HAND_DETECTION_POOL_SIZE=4) on top of the defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .landmarks import MAX_POOL_SIZE, MIN_POOL_SIZE
from .model_assets import LANDMARK_MODEL_FILENAME, PALM_MODEL_FILENAME
from .types import HandMode

ENV_PREFIX = "HAND_DETECTION_"


@dataclass(frozen=True)
class HandDetectorConfig:
    mode: HandMode = HandMode.BOXES_AND_LANDMARKS
    score_threshold: float = 0.6
    max_detections: int = 10
    min_landmark_score: float = 0.5
    pool_size: int = 1
    models_dir: Optional[str] = None
    palm_model_path: str = PALM_MODEL_FILENAME
    landmark_model_path: str = LANDMARK_MODEL_FILENAME
    palm_model_url: Optional[str] = None
    landmark_model_url: Optional[str] = None
    providers: Tuple[str, ...] = field(default_factory=lambda: ("CPUExecutionProvider",))
    num_threads: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.mode, HandMode):
            object.__setattr__(self, "mode", HandMode(self.mode))
        if not 0.0 <= self.score_threshold <= 1.0:
            raise ValueError(f"score_threshold must be in [0, 1], got {self.score_threshold}")
        if not 0.0 <= self.min_landmark_score <= 1.0:
            raise ValueError(f"min_landmark_score must be in [0, 1], got {self.min_landmark_score}")
        if self.max_detections < 1:
            raise ValueError(f"max_detections must be >= 1, got {self.max_detections}")
        if not MIN_POOL_SIZE <= self.pool_size <= MAX_POOL_SIZE:
            raise ValueError(f"pool_size must be in [{MIN_POOL_SIZE}, {MAX_POOL_SIZE}], got {self.pool_size}")
        if self.num_threads is not None and not 0 <= self.num_threads <= 8:
            raise ValueError(f"num_threads must be in [0, 8], got {self.num_threads}")

    @property
    def effective_pool_size(self) -> int:
        # Multi-threaded engine handles are not pooled.
        return 1 if self.num_threads is not None else self.pool_size

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "HandDetectorConfig":
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        kwargs = {}
        if get("MODE"):
            kwargs["mode"] = HandMode(get("MODE").lower())
        if get("SCORE_THRESHOLD"):
            kwargs["score_threshold"] = float(get("SCORE_THRESHOLD"))
        if get("MAX_DETECTIONS"):
            kwargs["max_detections"] = int(get("MAX_DETECTIONS"))
        if get("MIN_LANDMARK_SCORE"):
            kwargs["min_landmark_score"] = float(get("MIN_LANDMARK_SCORE"))
        if get("POOL_SIZE"):
            kwargs["pool_size"] = int(get("POOL_SIZE"))
        if get("MODELS_DIR"):
            kwargs["models_dir"] = get("MODELS_DIR")
        if get("NUM_THREADS"):
            kwargs["num_threads"] = int(get("NUM_THREADS"))
        if get("PROVIDERS"):
            kwargs["providers"] = tuple(p.strip() for p in get("PROVIDERS").split(",") if p.strip())

        kwargs.update(overrides)
        return cls(**kwargs)
