"""
Inference engine seam.

The pipeline only needs "tensor in, list of tensors out". `OnnxEngine` provides
that on top of ONNX Runtime; tests substitute scripted engines with the same shape.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from .errors import ModelLoadError

logger = logging.getLogger(__name__)

Shape = Tuple[Any, ...]


class InferenceEngine(Protocol):
    """A loaded model. Not reentrant: callers serialize `run` per instance."""

    def run(self, tensor: np.ndarray) -> List[np.ndarray]:
        ...

    def close(self) -> None:
        ...


EngineFactory = Callable[[], InferenceEngine]


_runtime_lock = threading.Lock()
_runtime: Optional[Any] = None


def load_runtime() -> Any:
    """Import ONNX Runtime once per process and return the module."""
    global _runtime
    if _runtime is not None:
        return _runtime
    with _runtime_lock:
        if _runtime is None:
            import onnxruntime as ort

            logger.info("ONNX Runtime %s available (providers: %s)", ort.__version__, ort.get_available_providers())
            _runtime = ort
    return _runtime


def reset_runtime() -> None:
    global _runtime
    with _runtime_lock:
        _runtime = None


def select_providers(requested: Optional[Sequence[str]] = None) -> List[str]:
    """Keep the requested providers the runtime actually has; always end with CPU."""
    ort = load_runtime()
    available = set(ort.get_available_providers())
    providers = [p for p in (requested or []) if p in available]
    if "CPUExecutionProvider" not in providers:
        providers.append("CPUExecutionProvider")
    return providers


class OnnxEngine:
    """ONNX Runtime session for one model file."""

    def __init__(
        self,
        model_path: str,
        providers: Optional[Sequence[str]] = None,
        num_threads: Optional[int] = None,
    ) -> None:
        ort = load_runtime()
        path = Path(model_path)
        if not path.is_file():
            raise ModelLoadError(f"Model file not found: {path}")

        opts = ort.SessionOptions()
        opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
        if num_threads is not None:
            opts.intra_op_num_threads = num_threads

        try:
            self._session = ort.InferenceSession(str(path), opts, providers=select_providers(providers))
        except Exception as e:
            raise ModelLoadError(f"Could not load model {path}: {e}") from e

        inp = self._session.get_inputs()[0]
        self.model_path = str(path)
        self.input_name: str = inp.name
        self.input_shape: Shape = tuple(inp.shape)
        self.output_names: List[str] = [o.name for o in self._session.get_outputs()]
        self.output_shapes: List[Shape] = [tuple(o.shape) for o in self._session.get_outputs()]
        logger.info(
            "Loaded %s: input %s %s, outputs %s",
            path.name,
            self.input_name,
            self.input_shape,
            self.output_shapes,
        )

    def run(self, tensor: np.ndarray) -> List[np.ndarray]:
        if self._session is None:
            raise RuntimeError(f"Engine for {self.model_path} is closed")
        return self._session.run(self.output_names, {self.input_name: tensor})

    def close(self) -> None:
        self._session = None


def onnx_engine_factory(
    model_path: str,
    providers: Optional[Sequence[str]] = None,
    num_threads: Optional[int] = None,
) -> EngineFactory:
    def factory() -> InferenceEngine:
        return OnnxEngine(model_path, providers=providers, num_threads=num_threads)

    return factory
