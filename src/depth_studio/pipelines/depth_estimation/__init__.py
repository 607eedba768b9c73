"""Depth Estimation Pipeline.

Batch monocular depth estimation over a folder of images.

Supported Models:
    - Depth Anything V2 (small, base, large)
    - DPT Hybrid MiDaS

Speed/Quality:
    | Model                 | Size    | Speed   |
    |-----------------------|---------|---------|
    | Depth Anything V2 S   | ~100MB  | Fast    |
    | Depth Anything V2 B   | ~390MB  | Medium  |
    | Depth Anything V2 L   | ~1.3GB  | Slow    |
    | DPT Hybrid MiDaS      | ~490MB  | Medium  |
"""

from kedro.pipeline import Pipeline, node, pipeline

from .nodes import (
    DepthConfig,
    compute_point_clouds,
    estimate_depth,
    load_depth_model,
    log_depth_to_mlflow,
    release_depth_model,
    render_depth_images,
    summarize_depth,
)


def create_pipeline(**kwargs) -> Pipeline:
    """Create the depth estimation pipeline."""
    return pipeline(
        [
            node(
                func=load_depth_model,
                inputs="params:depth_estimation",
                outputs="depth_model",
                name="load_depth_model",
            ),
            node(
                func=estimate_depth,
                inputs=["depth_model", "input_images"],
                outputs="depth_maps",
                name="estimate_depth",
            ),
            node(
                func=release_depth_model,
                inputs=["depth_model", "depth_maps"],
                outputs=None,
                name="release_depth_model",
            ),
            node(
                func=render_depth_images,
                inputs=["depth_maps", "params:visualization"],
                outputs="depth_images",
                name="render_depth_images",
            ),
            node(
                func=compute_point_clouds,
                inputs=["depth_maps", "params:depth_estimation"],
                outputs="point_clouds",
                name="compute_point_clouds",
            ),
            node(
                func=summarize_depth,
                inputs="depth_maps",
                outputs="depth_summary",
                name="summarize_depth",
            ),
            node(
                func=log_depth_to_mlflow,
                inputs=["depth_summary", "params:depth_estimation", "params:mlflow"],
                outputs=None,
                name="log_depth_to_mlflow",
            ),
        ]
    )


__all__ = [
    "create_pipeline",
    "DepthConfig",
    "load_depth_model",
    "estimate_depth",
    "release_depth_model",
    "render_depth_images",
    "compute_point_clouds",
    "summarize_depth",
    "log_depth_to_mlflow",
]
