"""Integration tests for the depth estimation pipeline.

These tests verify that:
1. The Kedro nodes drive the lifecycle, inference and visualization services
2. Data flows correctly between nodes
3. The pipeline registry exposes the depth pipeline
"""

from unittest.mock import patch

import numpy as np
import pytest
from PIL import Image

from conftest import FakeEngine

NODES = "depth_studio.pipelines.depth_estimation.nodes"


@pytest.fixture
def depth_params():
    """depth_estimation parameters as loaded from parameters.yml."""
    return {
        "model": "depth-anything-v2-small",
        "backend": "cpu",
        "precision": None,
        "focal_length": 4.0,
        "downsample": 1,
        "cache_dir": None,
        "finalize_delay": 0.0,
        "progress_clear_delay": 0.0,
    }


@pytest.fixture
def input_images(tmp_path):
    """Two 8x6 images as produced by ImageFolderDataset."""
    images = {}
    for name in ("kitchen", "street"):
        path = tmp_path / f"{name}.png"
        Image.new("RGB", (8, 6)).save(path)
        images[name] = str(path)
    return images


@pytest.fixture
def fake_transformers_engine():
    """Patch the node module's engine and weights manager."""
    engine = FakeEngine()
    with patch(f"{NODES}.TransformersEngine", return_value=engine), patch(f"{NODES}.WeightsManager"):
        yield engine


class TestDepthConfig:
    """Tests for DepthConfig."""

    def test_from_params_ignores_unknown(self):
        """Test that extra keys in parameters are ignored."""
        from depth_studio.pipelines.depth_estimation import DepthConfig

        config = DepthConfig.from_params({"model": "dpt-hybrid-midas", "colormap": "magma"})

        assert config.model == "dpt-hybrid-midas"
        assert config.backend == "auto"
        assert config.precision is None

    def test_defaults_from_none(self):
        """Test building from missing parameters."""
        from depth_studio.pipelines.depth_estimation import DepthConfig

        assert DepthConfig.from_params(None).to_dict()["model"] == "depth-anything-v2-small"


class TestModelNodes:
    """Tests for the load/release nodes."""

    def test_load_depth_model(self, depth_params, fake_transformers_engine):
        """Test that the load node returns a loaded manager."""
        from depth_studio.pipelines.depth_estimation import load_depth_model
        from depth_studio.services.state import LoadState

        manager = load_depth_model(depth_params)

        assert manager.status() == LoadState.LOADED
        assert manager.current_model() == "depth-anything/Depth-Anything-V2-Small-hf (cpu, fp32)"

    def test_load_failure_raises(self, depth_params):
        """Test that a failed load stops the pipeline."""
        from depth_studio.errors import ModelLoadError
        from depth_studio.pipelines.depth_estimation import load_depth_model

        engine = FakeEngine(fail=RuntimeError("no weights"))
        with patch(f"{NODES}.TransformersEngine", return_value=engine), patch(f"{NODES}.WeightsManager"):
            with pytest.raises(ModelLoadError) as exc_info:
                load_depth_model(depth_params)

        assert "no weights" in str(exc_info.value)

    def test_release_depth_model(self, depth_params, fake_transformers_engine):
        """Test that the release node disposes the handle."""
        from depth_studio.pipelines.depth_estimation import load_depth_model, release_depth_model
        from depth_studio.services.state import LoadState

        manager = load_depth_model(depth_params)
        release_depth_model(manager, {})

        assert manager.status() == LoadState.IDLE
        assert fake_transformers_engine.handles[0].dispose_count == 1


class TestOutputNodes:
    """Tests for nodes consuming depth maps."""

    def test_render_depth_images(self, ramp_depth_map):
        """Test that each depth map yields a grayscale and a colored image."""
        from depth_studio.pipelines.depth_estimation import render_depth_images

        rendered = render_depth_images({"room": ramp_depth_map}, {"colormap": "inferno", "high_quality": True})

        assert set(rendered) == {"room_grayscale", "room_colored"}
        assert rendered["room_colored"].shape == (6, 8, 3)
        assert rendered["room_grayscale"].dtype == np.uint8

    def test_compute_point_clouds(self, ramp_depth_map):
        """Test back-projection with the configured stride."""
        from depth_studio.pipelines.depth_estimation import compute_point_clouds

        clouds = compute_point_clouds({"room": ramp_depth_map}, {"focal_length": 2.0, "downsample": 2})

        # 2x2 samples, the first one has zero depth
        assert clouds["room"].shape == (3, 3)
        assert np.all(clouds["room"][:, 2] > 0)

    def test_summarize_depth(self, ramp_depth_map, random_depth_map):
        """Test aggregate statistics."""
        from depth_studio.pipelines.depth_estimation import summarize_depth

        summary = summarize_depth({"ramp": ramp_depth_map, "random": random_depth_map})

        assert summary["num_images"] == 2
        assert summary["min_depth"] == 0.0
        assert summary["max_depth"] == pytest.approx(max(11.0, float(random_depth_map.values.max())))
        assert summary["mean_pixels"] == (12 + 192) / 2

    def test_summarize_empty(self):
        """Test summarizing no images."""
        from depth_studio.pipelines.depth_estimation import summarize_depth

        assert summarize_depth({}) == {"num_images": 0}

    def test_mlflow_disabled(self):
        """Test that a disabled flag skips the MLFlow run."""
        from depth_studio.pipelines.depth_estimation import log_depth_to_mlflow

        with patch(f"{NODES}.mlflow_run") as run:
            log_depth_to_mlflow({"num_images": 1}, {}, {"enabled": False})

        run.assert_not_called()

    def test_mlflow_enabled(self):
        """Test that summary and config are handed to the MLFlow helpers."""
        from depth_studio.pipelines.depth_estimation import log_depth_to_mlflow

        with patch(f"{NODES}.mlflow_run") as run, patch(f"{NODES}.log_depth_run") as log_run:
            log_depth_to_mlflow({"num_images": 1}, {"model": "dpt-hybrid-midas"}, {"experiment_name": "exp"})

        run.assert_called_once_with(experiment_name="exp", run_name=None)
        summary, config = log_run.call_args.args
        assert summary == {"num_images": 1}
        assert config["model"] == "dpt-hybrid-midas"


class TestEndToEndPipeline:
    """Test the node chain without a Kedro session."""

    def test_full_depth_flow(self, depth_params, input_images, fake_transformers_engine, tmp_path):
        """Test load, estimate, render, save, summarize and release."""
        from depth_studio.datasets import DepthImageDataset
        from depth_studio.pipelines.depth_estimation import (
            compute_point_clouds,
            estimate_depth,
            load_depth_model,
            release_depth_model,
            render_depth_images,
            summarize_depth,
        )

        manager = load_depth_model(depth_params)
        depth_maps = estimate_depth(manager, input_images)
        release_depth_model(manager, depth_maps)

        assert set(depth_maps) == {"kitchen", "street"}
        assert all((m.width, m.height) == (8, 6) for m in depth_maps.values())

        rendered = render_depth_images(depth_maps, {})
        DepthImageDataset(path=str(tmp_path / "depth_images")).save(rendered)
        assert len(list((tmp_path / "depth_images").glob("*.png"))) == 4

        clouds = compute_point_clouds(depth_maps, depth_params)
        assert clouds["kitchen"].shape[1] == 3

        summary = summarize_depth(depth_maps)
        assert summary["num_images"] == 2
        assert summary["mean_pixels"] == 48.0

    def test_estimate_failure_propagates(self, depth_params, input_images, fake_transformers_engine):
        """Test that an engine error fails the estimate node."""
        from depth_studio.errors import InferenceError
        from depth_studio.pipelines.depth_estimation import estimate_depth, load_depth_model

        manager = load_depth_model(depth_params)
        fake_transformers_engine.handles[0].fail = RuntimeError("bad input")

        with pytest.raises(InferenceError):
            estimate_depth(manager, input_images)


class TestPipelineRegistry:
    """Tests for the pipeline registry."""

    def test_register_pipelines(self):
        """Test that the depth pipeline is the default."""
        from depth_studio.pipeline_registry import register_pipelines

        pipelines = register_pipelines()

        assert set(pipelines) == {"depth_estimation", "__default__"}
        names = {n.name for n in pipelines["__default__"].nodes}
        assert names == {
            "load_depth_model",
            "estimate_depth",
            "release_depth_model",
            "render_depth_images",
            "compute_point_clouds",
            "summarize_depth",
            "log_depth_to_mlflow",
        }

    def test_pipeline_inputs_and_outputs(self):
        """Test the free inputs and the persisted outputs."""
        from depth_studio.pipelines.depth_estimation import create_pipeline

        pipeline = create_pipeline()

        assert pipeline.inputs() == {
            "input_images",
            "params:depth_estimation",
            "params:visualization",
            "params:mlflow",
        }
        assert pipeline.outputs() == {"depth_images", "point_clouds"}
