from __future__ import annotations

import argparse
import logging
import os
import sys

import cv2

# Allow running without installing the package (repo-local usage).
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC_ROOT = os.path.join(REPO_ROOT, "src")
if SRC_ROOT not in sys.path:
    sys.path.insert(0, SRC_ROOT)

from hand_detection import HandDetector, HandDetectorConfig, HandMode  # noqa: E402
from hand_detection.drawing import draw_hands  # noqa: E402


def main() -> int:
    ap = argparse.ArgumentParser(description="Detect hands in a still image and write an annotated copy.")
    ap.add_argument("--image", required=True, help="Path to input image")
    ap.add_argument("--out", required=True, help="Path to output image (annotated)")
    ap.add_argument("--max-hands", type=int, default=10, help="Maximum number of hands to detect")
    ap.add_argument("--boxes-only", action="store_true", help="Skip the landmark stage")
    ap.add_argument("--models-dir", default=None, help="Directory holding the ONNX models")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = ap.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")

    frame = cv2.imread(args.image)
    if frame is None:
        raise RuntimeError(f"Could not read image: {args.image}")

    overrides = {
        "max_detections": args.max_hands,
        "mode": HandMode.BOXES if args.boxes_only else HandMode.BOXES_AND_LANDMARKS,
    }
    if args.models_dir:
        overrides["models_dir"] = args.models_dir
    config = HandDetectorConfig.from_env(**overrides)
    with HandDetector(config) as detector:
        hands = detector.detect_on_image(frame)

    out = draw_hands(frame, hands, draw_landmarks=True)
    ok = cv2.imwrite(args.out, out)
    if not ok:
        raise RuntimeError(f"Could not write output image: {args.out}")

    print(f"hands: {len(hands)}")
    for i, h in enumerate(hands):
        box = h.bounding_box
        handedness = h.handedness.value if h.handedness is not None else None
        print(
            f"[{i}] {handedness} score={h.score:.3f} "
            f"box=({box.left:.0f}, {box.top:.0f}, {box.right:.0f}, {box.bottom:.0f}) "
            f"landmarks={len(h.landmarks)}"
        )

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
