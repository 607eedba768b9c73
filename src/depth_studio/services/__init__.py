"""Depth Studio Services.

Stateful components that tie the pipeline together:
- Capability detection for compute backends
- Model lifecycle (load, switch, release)
- Inference orchestration
- Visualization coordination and canvas persistence
"""

from depth_studio.services.capabilities import CapabilityDetector, detect_capabilities, resolve_device
from depth_studio.services.coordinator import VisualizationCoordinator
from depth_studio.services.inference import InferenceOrchestrator
from depth_studio.services.lifecycle import ModelLifecycleManager
from depth_studio.services.persistence import (
    CanvasPersistence,
    FileSessionStore,
    MemorySessionStore,
)
from depth_studio.services.state import LoadState, PipelineState

__all__ = [
    "CapabilityDetector",
    "detect_capabilities",
    "resolve_device",
    "ModelLifecycleManager",
    "InferenceOrchestrator",
    "VisualizationCoordinator",
    "CanvasPersistence",
    "MemorySessionStore",
    "FileSessionStore",
    "LoadState",
    "PipelineState",
]
