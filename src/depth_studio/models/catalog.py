"""Static catalogs for models, compute backends and precision levels.

The model catalog lists the depth networks the UI offers. Backends and
precisions are orthogonal: the backend selects the execution hardware, the
precision selects the quantization/dtype trade-off and only affects the load
path, never post-processing.

Precision to dtype mapping:

    | Precision | dtype |
    |-----------|-------|
    | fp32      | fp32  |
    | fp16      | fp16  |
    | q8, int8  | q8    |
    | q4, bnb4  | bnb4  |
    | bnb8      | bnb8  |
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Union

from depth_studio.errors import UnknownModelError


@dataclass(frozen=True)
class ModelDescriptor:
    """Catalog entry for a depth estimation model.

    Attributes:
        id: Stable identifier used by the UI and config
        display_name: Human readable name
        description: Short quality/speed note
        source_path: Hugging Face repository id handed to the engine
        size_hint: Approximate download size in MB
    """

    id: str
    display_name: str
    description: str
    source_path: str
    size_hint: float


class ComputeBackend(str, Enum):
    """Execution targets the engine can run on."""

    AUTO = "auto"
    CPU = "cpu"  # baseline, always available
    CUDA = "cuda"  # generic GPU
    MPS = "mps"  # Apple Metal
    XPU = "xpu"  # Intel accelerators
    NPU = "npu"  # neural processing units (plugin backends)

    @classmethod
    def parse(cls, value: Union[str, "ComputeBackend"]) -> "ComputeBackend":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown backend: {value}. Supported: {[b.value for b in cls]}"
            ) from None


class PrecisionLevel(str, Enum):
    """User-facing quantization levels."""

    FP32 = "fp32"
    FP16 = "fp16"
    Q8 = "q8"
    Q4 = "q4"
    INT8 = "int8"
    BNB4 = "bnb4"
    BNB8 = "bnb8"

    @classmethod
    def parse(cls, value: Union[str, "PrecisionLevel"]) -> "PrecisionLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown precision: {value}. Supported: {[p.value for p in cls]}"
            ) from None


class ExecutionDType(str, Enum):
    """Concrete dtypes understood by the engine."""

    FP32 = "fp32"
    FP16 = "fp16"
    Q8 = "q8"
    BNB4 = "bnb4"
    BNB8 = "bnb8"


PRECISION_TO_DTYPE: Dict[PrecisionLevel, ExecutionDType] = {
    PrecisionLevel.FP32: ExecutionDType.FP32,
    PrecisionLevel.FP16: ExecutionDType.FP16,
    PrecisionLevel.Q8: ExecutionDType.Q8,
    PrecisionLevel.INT8: ExecutionDType.Q8,
    PrecisionLevel.Q4: ExecutionDType.BNB4,
    PrecisionLevel.BNB4: ExecutionDType.BNB4,
    PrecisionLevel.BNB8: ExecutionDType.BNB8,
}


AVAILABLE_MODELS: List[ModelDescriptor] = [
    ModelDescriptor(
        id="depth-anything-v2-large",
        display_name="Depth Anything V2 Large",
        description="Best quality, slowest (~1.3GB)",
        source_path="depth-anything/Depth-Anything-V2-Large-hf",
        size_hint=1340,
    ),
    ModelDescriptor(
        id="depth-anything-v2-small",
        display_name="Depth Anything V2 Small",
        description="Fast, balanced quality (~100MB)",
        source_path="depth-anything/Depth-Anything-V2-Small-hf",
        size_hint=99,
    ),
    ModelDescriptor(
        id="depth-anything-v2-base",
        display_name="Depth Anything V2 Base",
        description="Better quality, slower (~390MB)",
        source_path="depth-anything/Depth-Anything-V2-Base-hf",
        size_hint=390,
    ),
    ModelDescriptor(
        id="dpt-hybrid-midas",
        display_name="DPT Hybrid MiDaS",
        description="Alternative model (~490MB)",
        source_path="Intel/dpt-hybrid-midas",
        size_hint=490,
    ),
]

BACKEND_LABELS: Dict[ComputeBackend, str] = {
    ComputeBackend.AUTO: "Auto (best available)",
    ComputeBackend.CPU: "CPU (baseline)",
    ComputeBackend.CUDA: "CUDA GPU",
    ComputeBackend.MPS: "Apple Metal (MPS)",
    ComputeBackend.XPU: "Intel XPU",
    ComputeBackend.NPU: "Neural accelerator (NPU)",
}


def get_model(model_id: str) -> ModelDescriptor:
    """Look up a catalog entry by id.

    Raises:
        UnknownModelError: If the id is not in the catalog.
    """
    for model in AVAILABLE_MODELS:
        if model.id == model_id:
            return model
    raise UnknownModelError(
        f"Unknown model: {model_id}. Available: {[m.id for m in AVAILABLE_MODELS]}"
    )


def can_model_be_loaded(model_id: str) -> bool:
    return any(model.id == model_id for model in AVAILABLE_MODELS)


def resolve_dtype(
    backend: Union[str, ComputeBackend],
    precision: Optional[Union[str, PrecisionLevel]] = None,
) -> ExecutionDType:
    """Map a (backend, precision) pair to the dtype the engine loads with.

    Without an explicit precision the GPU-specialized backend defaults to fp16
    and everything else to fp32.
    """
    if precision is None:
        if ComputeBackend.parse(backend) == ComputeBackend.MPS:
            return ExecutionDType.FP16
        return ExecutionDType.FP32
    return PRECISION_TO_DTYPE[PrecisionLevel.parse(precision)]


def available_precisions() -> List[PrecisionLevel]:
    return list(PrecisionLevel)


def backend_catalog(support: Mapping[str, bool]) -> List[Dict[str, object]]:
    """Join backend labels with the support flags from capability detection.

    Args:
        support: Mapping backend value -> supported flag

    Returns:
        List of {"id", "label", "supported"} dicts in enum order
    """
    return [
        {
            "id": backend.value,
            "label": BACKEND_LABELS[backend],
            "supported": bool(support.get(backend.value, False)),
        }
        for backend in ComputeBackend
    ]
