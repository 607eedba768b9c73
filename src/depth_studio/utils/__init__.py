"""Utility modules for Depth Studio.

This package contains utility functions for:
- Depth post-processing (normalize, upscale, enhance, lookup, point clouds)
- Visualization (grayscale/colormap rendering, PNG export)
- Progress tracking and formatting
- Model weights caching
- MLFlow experiment tracking
"""

from depth_studio.utils.postprocessing import (
    DepthMap,
    depth_at,
    depth_stats,
    enhance,
    normalize,
    rescale,
    resize,
    to_point_cloud,
    upscale,
)
from depth_studio.utils.progress import (
    ProgressEvent,
    ProgressSnapshot,
    ProgressTracker,
    format_file_size,
    format_speed,
    format_time,
)
from depth_studio.utils.visualization import (
    COLORMAPS,
    VisualizationSettings,
    apply_colormap,
    encode_image,
    export_filename,
    get_colormap_color,
    render_depth_image,
    to_colored_image,
    to_data_url,
    to_grayscale_image,
    trigger_download,
)
from depth_studio.utils.mlflow_utils import (
    is_mlflow_available,
    log_depth_run,
    log_metrics_safe,
    log_params_safe,
    mlflow_run,
)
from depth_studio.utils.weights import WeightsManager

__all__ = [
    # Post-processing
    "DepthMap",
    "normalize",
    "upscale",
    "enhance",
    "resize",
    "rescale",
    "depth_at",
    "to_point_cloud",
    "depth_stats",
    # Progress
    "ProgressEvent",
    "ProgressSnapshot",
    "ProgressTracker",
    "format_file_size",
    "format_speed",
    "format_time",
    # Visualization
    "COLORMAPS",
    "VisualizationSettings",
    "apply_colormap",
    "get_colormap_color",
    "to_grayscale_image",
    "to_colored_image",
    "render_depth_image",
    "encode_image",
    "to_data_url",
    "export_filename",
    "trigger_download",
    # MLFlow
    "is_mlflow_available",
    "mlflow_run",
    "log_params_safe",
    "log_metrics_safe",
    "log_depth_run",
    # Weights Management
    "WeightsManager",
]
