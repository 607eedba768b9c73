"""Depth Studio Models.

This package contains:
- The model, backend and precision catalogs
- The inference engine boundary and the transformers adapter
"""

from depth_studio.models.catalog import (
    AVAILABLE_MODELS,
    ComputeBackend,
    ExecutionDType,
    ModelDescriptor,
    PrecisionLevel,
    backend_catalog,
    get_model,
    resolve_dtype,
)
from depth_studio.models.engine import (
    DepthPipelineHandle,
    Disposable,
    InferenceEngine,
    RawDepth,
    TransformersEngine,
)

__all__ = [
    # Catalog
    "AVAILABLE_MODELS",
    "ModelDescriptor",
    "ComputeBackend",
    "PrecisionLevel",
    "ExecutionDType",
    "get_model",
    "resolve_dtype",
    "backend_catalog",
    # Engine
    "InferenceEngine",
    "Disposable",
    "RawDepth",
    "DepthPipelineHandle",
    "TransformersEngine",
]
