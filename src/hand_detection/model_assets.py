from __future__ import annotations

import http.client
import logging
import os
import ssl
import subprocess
import urllib.request
from pathlib import Path
from typing import Optional

import certifi

from .errors import ModelLoadError

logger = logging.getLogger(__name__)

MODELS_DIR_ENV = "HAND_DETECTION_MODELS_DIR"
DEFAULT_MODELS_DIR = Path(__file__).resolve().parent / "models"

PALM_MODEL_FILENAME = "hand_detection.onnx"
LANDMARK_MODEL_FILENAME = "hand_landmark_full.onnx"


def models_dir() -> Path:
    override = os.environ.get(MODELS_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return DEFAULT_MODELS_DIR


def resolve_model_path(name: str, directory: Optional[str] = None) -> str:
    """Absolute paths are returned as-is; bare names are looked up in the models directory."""
    p = Path(name).expanduser()
    if p.is_absolute():
        return str(p)
    base = Path(directory).expanduser() if directory else models_dir()
    return str(base / p)


def _remove_partial(model_path: str) -> None:
    try:
        if os.path.exists(model_path):
            os.remove(model_path)
    except OSError as e:
        logger.warning("Could not remove partial download %s: %s", model_path, e)


def ensure_model(model_path: str, *, url: Optional[str] = None, timeout_s: int = 30) -> str:
    """
    Ensure the model file exists at `model_path`.

    When it is missing and `url` is given, download it (urllib with certifi roots,
    then curl). Raises ModelLoadError when the file cannot be provided.
    """
    if os.path.exists(model_path) and os.path.getsize(model_path) > 0:
        return model_path

    if not url:
        raise ModelLoadError(
            f"Model not found: {model_path}\n"
            f"Place the ONNX model there or point {MODELS_DIR_ENV} at a directory containing it."
        )

    os.makedirs(os.path.dirname(model_path) or ".", exist_ok=True)
    logger.info("Downloading %s -> %s", url, model_path)

    try:
        ctx = ssl.create_default_context(cafile=certifi.where())
        with urllib.request.urlopen(url, context=ctx, timeout=timeout_s) as r, open(model_path, "wb") as f:
            f.write(r.read())
        return model_path
    except (OSError, http.client.HTTPException, ValueError) as e:
        logger.warning("urllib download failed (%s), retrying with curl", e)
        _remove_partial(model_path)

    try:
        proc = subprocess.run(
            ["curl", "-fL", "-o", model_path, url],
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s * 4,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        _remove_partial(model_path)
        raise ModelLoadError(f"Could not download model from {url}: {e}") from e

    if proc.returncode == 0 and os.path.exists(model_path) and os.path.getsize(model_path) > 0:
        return model_path

    _remove_partial(model_path)
    raise ModelLoadError(
        "Missing model file and download failed.\n\n"
        f"Expected model at: {model_path}\n"
        f"URL: {url}\n\n"
        "Download manually:\n"
        f'  mkdir -p "{os.path.dirname(model_path) or "."}"\n'
        f'  curl -L -o "{model_path}" "{url}"\n'
        f"\ncurl stderr:\n{proc.stderr.strip()}\n"
    )
