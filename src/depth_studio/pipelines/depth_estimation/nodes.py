"""Depth Estimation Pipeline Nodes.

Batch counterpart of the interactive services: load one model, estimate depth
for a folder of images, render grayscale/colormap views, back-project point
clouds and summarize the run.

Architecture Overview:

    params:depth_estimation → load_depth_model → ModelLifecycleManager
                                                        ↓
    input_images {stem: path} ────────────────→ estimate_depth
                                                        ↓
                                               {stem: DepthMap}
                          ┌──────────────┬──────────────┼──────────────┐
                          ↓              ↓              ↓              ↓
                render_depth_images  compute_point  summarize    release_depth
                   (PNG export)        _clouds       _depth         _model
                                                        ↓
                                               log_depth_to_mlflow

Nodes are synchronous; each drives the async services with ``asyncio.run``.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

import numpy as np

from depth_studio.errors import ModelLoadError
from depth_studio.models.engine import TransformersEngine
from depth_studio.services.coordinator import VisualizationCoordinator
from depth_studio.services.inference import InferenceOrchestrator
from depth_studio.services.lifecycle import ModelLifecycleManager
from depth_studio.utils.mlflow_utils import log_depth_run, mlflow_run
from depth_studio.utils.postprocessing import DepthMap, depth_stats, to_point_cloud
from depth_studio.utils.visualization import VisualizationSettings
from depth_studio.utils.weights import WeightsManager

logger = logging.getLogger(__name__)


@dataclass
class DepthConfig:
    """Configuration for batch depth estimation.

    Attributes:
        model: Catalog model id or a Hugging Face repo / local path
        backend: Compute backend (auto, cpu, cuda, mps, xpu, npu)
        precision: Precision level, backend default if None
        focal_length: Focal length in pixels for point clouds
        downsample: Point cloud stride
        cache_dir: Weights cache directory, default cache if None
        finalize_delay: Lifecycle finalize delay in seconds
        progress_clear_delay: Lifecycle progress clear delay in seconds
    """

    model: str = "depth-anything-v2-small"
    backend: str = "auto"
    precision: Optional[str] = None
    focal_length: float = 500.0
    downsample: int = 1
    cache_dir: Optional[str] = None
    # headless runs skip the UI delays
    finalize_delay: float = 0.0
    progress_clear_delay: float = 0.0

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "DepthConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (params or {}).items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_depth_model(params: Dict[str, Any]) -> ModelLifecycleManager:
    """Load the configured depth model.

    Args:
        params: ``depth_estimation`` parameters

    Returns:
        Lifecycle manager holding the loaded model

    Raises:
        ModelLoadError: If the model could not be loaded.
    """
    config = DepthConfig.from_params(params)
    engine = TransformersEngine(WeightsManager(cache_dir=config.cache_dir))
    manager = ModelLifecycleManager(
        engine,
        finalize_delay=config.finalize_delay,
        progress_clear_delay=config.progress_clear_delay,
    )

    if not asyncio.run(manager.load(config.model, config.backend, config.precision)):
        raise ModelLoadError(manager.error or f"Failed to load {config.model}")

    logger.info(f"Loaded depth model: {manager.current_model()}")
    return manager


def estimate_depth(manager: ModelLifecycleManager, images: Dict[str, str]) -> Dict[str, DepthMap]:
    """Estimate depth for every image.

    Args:
        manager: Lifecycle manager with a loaded model
        images: Mapping of image name to path or URL

    Returns:
        Mapping of image name to DepthMap at the image's resolution
    """
    orchestrator = InferenceOrchestrator(manager, clear_delay=0)

    async def run() -> Dict[str, DepthMap]:
        results = {}
        for name, image in images.items():
            results[name] = await orchestrator.estimate(image)
            logger.info(f"Estimated depth for {name}: {results[name].width}x{results[name].height}")
        return results

    return asyncio.run(run())


def release_depth_model(manager: ModelLifecycleManager, depth_maps: Dict[str, DepthMap]) -> None:
    """Release the model once all depth maps exist."""
    asyncio.run(manager.release())
    logger.info(f"Released depth model after {len(depth_maps)} images")


def render_depth_images(depth_maps: Dict[str, DepthMap], params: Dict[str, Any]) -> Dict[str, np.ndarray]:
    """Render grayscale and colored views of each depth map.

    Args:
        depth_maps: Mapping of image name to DepthMap
        params: ``visualization`` parameters

    Returns:
        Mapping ``<name>_grayscale`` / ``<name>_colored`` to RGB images
    """
    coordinator = VisualizationCoordinator(VisualizationSettings.from_params(params or {}))

    rendered = {}
    for name, depth_map in depth_maps.items():
        coordinator.set_depth_map(depth_map)
        grayscale, colored = coordinator.images
        rendered[f"{name}_grayscale"] = grayscale
        rendered[f"{name}_colored"] = colored

    logger.info(f"Rendered {len(rendered)} depth images")
    return rendered


def compute_point_clouds(depth_maps: Dict[str, DepthMap], params: Dict[str, Any]) -> Dict[str, np.ndarray]:
    """Back-project each depth map into an (N, 3) point cloud."""
    config = DepthConfig.from_params(params)
    clouds = {
        name: to_point_cloud(depth_map, config.focal_length, config.downsample)
        for name, depth_map in depth_maps.items()
    }
    total = sum(len(points) for points in clouds.values())
    logger.info(f"Computed {len(clouds)} point clouds ({total} points)")
    return clouds


def summarize_depth(depth_maps: Dict[str, DepthMap]) -> Dict[str, float]:
    """Aggregate depth statistics over all images.

    Returns:
        Dictionary with num_images, min/max over all maps, means of the
        per-image mean and median, and the mean pixel count
    """
    if not depth_maps:
        return {"num_images": 0}

    stats = [depth_stats(m) for m in depth_maps.values()]
    summary = {
        "num_images": len(stats),
        "min_depth": float(min(s["min_depth"] for s in stats)),
        "max_depth": float(max(s["max_depth"] for s in stats)),
        "mean_depth": float(np.mean([s["mean_depth"] for s in stats])),
        "median_depth": float(np.mean([s["median_depth"] for s in stats])),
        "mean_pixels": float(np.mean([len(m) for m in depth_maps.values()])),
    }
    logger.info(f"Depth summary: {summary}")
    return summary


def log_depth_to_mlflow(summary: Dict[str, float], params: Dict[str, Any], mlflow_params: Dict[str, Any]) -> None:
    """Log the run summary and configuration to MLFlow when enabled."""
    mlflow_params = mlflow_params or {}
    if not mlflow_params.get("enabled", True):
        logger.info("MLFlow logging disabled")
        return

    with mlflow_run(
        experiment_name=mlflow_params.get("experiment_name", "depth_studio"),
        run_name=mlflow_params.get("run_name"),
    ):
        log_depth_run(summary, DepthConfig.from_params(params).to_dict())
