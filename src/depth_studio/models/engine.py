"""Inference engine boundary.

The lifecycle manager and the orchestrator only talk to an engine through the
narrow contract below; no tensor math happens on this side of it.

    engine.acquire(source_path, backend=..., dtype=..., on_progress=...)
        → handle
    handle(image)
        → {"predicted_depth": tensor, ...} | RawDepth
    handle.dispose()                       (optional, see Disposable)

``TransformersEngine`` is the default adapter. It fetches the snapshot through
``WeightsManager`` and builds a ``transformers`` depth-estimation pipeline:

    | dtype | Load path                                         |
    |-------|---------------------------------------------------|
    | fp32  | plain pipeline                                    |
    | fp16  | torch_dtype=torch.float16                         |
    | q8    | torch.ao dynamic int8 quantization (cpu only)     |
    | bnb4  | BitsAndBytesConfig(load_in_4bit=True), cuda only  |
    | bnb8  | BitsAndBytesConfig(load_in_8bit=True), cuda only  |
"""

import gc
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol, Tuple, Union, runtime_checkable

import numpy as np
import torch
from transformers import BitsAndBytesConfig, pipeline

from depth_studio.errors import InferenceError, ModelLoadError
from depth_studio.models.catalog import ComputeBackend, ExecutionDType
from depth_studio.utils.postprocessing import DepthMap
from depth_studio.utils.progress import ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


@runtime_checkable
class Disposable(Protocol):
    """Handle that can free its resources. ``dispose`` may be sync or async."""

    def dispose(self) -> Any: ...


class InferenceEngine(Protocol):
    """Anything that can turn a model source into a callable depth handle."""

    def acquire(
        self,
        source_path: str,
        *,
        backend: str,
        dtype: ExecutionDType,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Callable[[Any], Any]: ...


@dataclass(frozen=True)
class RawDepth:
    """Raw model output: a tensor shape plus its data.

    Attributes:
        dims: Tensor shape, the last two axes are (height, width)
        data: Depth values, any array-like with ``prod(dims)`` elements
    """

    dims: Tuple[int, ...]
    data: Any

    @property
    def height(self) -> int:
        return int(self.dims[-2])

    @property
    def width(self) -> int:
        return int(self.dims[-1])

    @classmethod
    def from_output(cls, output: Any) -> "RawDepth":
        """Extract the raw depth tensor from whatever a handle returned.

        Accepts a ``RawDepth``, a transformers result dict (``predicted_depth``
        preferred, ``depth`` image as a fallback), a model output object with a
        ``predicted_depth`` attribute, a single-element list of those, or a bare
        tensor/array.
        """
        if isinstance(output, cls):
            return output
        if isinstance(output, (list, tuple)) and len(output) == 1:
            output = output[0]

        if isinstance(output, Mapping):
            tensor = output.get("predicted_depth")
            if tensor is None:
                tensor = output.get("depth")
        elif hasattr(output, "predicted_depth"):
            tensor = output.predicted_depth
        else:
            tensor = output

        if tensor is None:
            raise InferenceError("Model returned no depth output")

        if isinstance(tensor, torch.Tensor):
            array = tensor.detach().to(torch.float32).cpu().numpy()
        else:
            array = np.asarray(tensor, dtype=np.float32)

        if array.ndim < 2:
            raise InferenceError(f"Depth output must be at least 2D, got shape {array.shape}")
        return cls(dims=tuple(int(d) for d in array.shape), data=array)

    def to_depth_map(self) -> DepthMap:
        """Flatten to a DepthMap using the trailing (height, width) axes."""
        values = np.asarray(self.data, dtype=np.float32).reshape(-1)
        return DepthMap(values=values, width=self.width, height=self.height)


def _empty_device_cache(device: str) -> None:
    if device.startswith("cuda") and torch.cuda.is_available():
        torch.cuda.empty_cache()
    elif device.startswith("mps") and hasattr(torch, "mps"):
        torch.mps.empty_cache()


class DepthPipelineHandle:
    """Callable wrapper around a transformers depth-estimation pipeline."""

    def __init__(self, pipe: Any, device: str, source_path: str = ""):
        self._pipe = pipe
        self.device = device
        self.source_path = source_path

    @property
    def disposed(self) -> bool:
        return self._pipe is None

    def __call__(self, image: Any) -> Any:
        if self._pipe is None:
            raise InferenceError("Model handle has been disposed")
        if isinstance(image, Path):
            image = str(image)
        with torch.inference_mode():
            return self._pipe(image)

    def dispose(self) -> None:
        """Drop the pipeline and return accelerator memory."""
        if self._pipe is None:
            return
        self._pipe = None
        gc.collect()
        _empty_device_cache(self.device)
        logger.info(f"Disposed depth pipeline {self.source_path} on {self.device}")


class TransformersEngine:
    """Default engine built on Hugging Face transformers pipelines.

    Example:
        >>> engine = TransformersEngine()
        >>> handle = engine.acquire(
        ...     "depth-anything/Depth-Anything-V2-Small-hf",
        ...     backend="cpu",
        ...     dtype=ExecutionDType.FP32,
        ... )
        >>> result = handle("photo.jpg")
    """

    def __init__(self, weights_manager=None):
        if weights_manager is None:
            from depth_studio.utils.weights import WeightsManager

            weights_manager = WeightsManager()
        self.weights = weights_manager

    def acquire(
        self,
        source_path: str,
        *,
        backend: Union[str, ComputeBackend],
        dtype: ExecutionDType,
        on_progress: Optional[ProgressCallback] = None,
    ) -> DepthPipelineHandle:
        """Fetch weights and build a depth pipeline on the requested backend.

        Raises:
            ModelLoadError: If the dtype cannot run on the resolved device.
        """
        from depth_studio.services.capabilities import resolve_device

        emit = on_progress or (lambda event: None)
        device = resolve_device(backend)
        dtype = ExecutionDType(dtype)

        emit(ProgressEvent("initiate", file=source_path))
        model_dir = self.weights.fetch(source_path, on_progress=emit)

        emit(ProgressEvent("loading", file=source_path))
        pipe = self._build_pipeline(model_dir, device, dtype)
        logger.info(f"Built depth pipeline for {source_path} on {device} ({dtype.value})")

        emit(ProgressEvent("ready", file=source_path))
        return DepthPipelineHandle(pipe, device, source_path)

    def _build_pipeline(self, model_dir: Path, device: str, dtype: ExecutionDType) -> Any:
        model = str(model_dir)

        if dtype in (ExecutionDType.BNB4, ExecutionDType.BNB8):
            if not device.startswith("cuda"):
                raise ModelLoadError(f"{dtype.value} quantization requires a CUDA device, got {device}")
            if dtype == ExecutionDType.BNB4:
                quantization = BitsAndBytesConfig(load_in_4bit=True, bnb_4bit_compute_dtype=torch.float16)
            else:
                quantization = BitsAndBytesConfig(load_in_8bit=True)
            return pipeline(
                "depth-estimation",
                model=model,
                model_kwargs={"quantization_config": quantization},
                device_map="auto",
            )

        if dtype == ExecutionDType.Q8:
            if device != "cpu":
                raise ModelLoadError(f"q8 dynamic quantization runs on cpu only, got {device}")
            pipe = pipeline("depth-estimation", model=model, device="cpu")
            pipe.model = torch.ao.quantization.quantize_dynamic(
                pipe.model, {torch.nn.Linear}, dtype=torch.qint8
            )
            return pipe

        kwargs = {}
        if dtype == ExecutionDType.FP16:
            kwargs["torch_dtype"] = torch.float16
        return pipeline("depth-estimation", model=model, device=device, **kwargs)
