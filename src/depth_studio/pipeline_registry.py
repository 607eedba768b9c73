"""Kedro Pipeline Registry.

This module provides the central registry for all pipelines in the Depth Studio project.
"""

from typing import Dict

from kedro.pipeline import Pipeline

from depth_studio.pipelines.depth_estimation import create_pipeline as create_depth_pipeline


def register_pipelines() -> Dict[str, Pipeline]:
    """Register all project pipelines.

    Returns:
        A dictionary mapping pipeline names to Pipeline objects.
    """
    depth_estimation_pipeline = create_depth_pipeline()

    return {
        "depth_estimation": depth_estimation_pipeline,
        # Default pipeline
        "__default__": depth_estimation_pipeline,
    }
