"""Pytest configuration and fixtures for Depth Studio tests."""

import threading
from typing import Any, List, Optional

import numpy as np
import pytest
from PIL import Image


class FakeHandle:
    """Callable depth handle returning a fixed-size ramp."""

    def __init__(self, width: int = 4, height: int = 3, fail: Optional[Exception] = None):
        self.width = width
        self.height = height
        self.fail = fail
        self.calls: List[Any] = []
        self.dispose_count = 0

    def __call__(self, image):
        self.calls.append(image)
        if self.fail is not None:
            raise self.fail
        values = np.arange(self.width * self.height, dtype=np.float32).reshape(1, self.height, self.width)
        return {"predicted_depth": values}

    def dispose(self):
        self.dispose_count += 1


class FakeEngine:
    """Engine that reports the usual progress phases and returns FakeHandles."""

    def __init__(self, fail: Optional[Exception] = None, gate: Optional[threading.Event] = None, **handle_kwargs):
        self.fail = fail
        self.gate = gate
        self.handle_kwargs = handle_kwargs
        self.calls: List[dict] = []
        self.handles: List[FakeHandle] = []

    def acquire(self, source_path, *, backend, dtype, on_progress=None):
        self.calls.append({"source_path": source_path, "backend": backend, "dtype": dtype})
        emit = on_progress or (lambda event: None)
        emit({"status": "initiate", "file": source_path})
        emit({"status": "downloading", "loaded": 50, "total": 100, "file": "model.safetensors"})
        emit({"status": "downloading", "loaded": 100, "total": 100, "file": "model.safetensors"})
        emit({"status": "loading", "file": source_path})
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.fail is not None:
            raise self.fail
        emit({"status": "ready", "file": source_path})
        handle = FakeHandle(**self.handle_kwargs)
        self.handles.append(handle)
        return handle


@pytest.fixture
def fake_engine():
    """Engine producing 4x3 depth ramps."""
    return FakeEngine()


@pytest.fixture
def manager(fake_engine):
    """Lifecycle manager without UI delays."""
    from depth_studio.services.lifecycle import ModelLifecycleManager

    return ModelLifecycleManager(fake_engine, finalize_delay=0, progress_clear_delay=0)


@pytest.fixture
def ramp_depth_map():
    """4x3 depth map with values 0..11 in row-major order."""
    from depth_studio.utils.postprocessing import DepthMap

    return DepthMap(values=np.arange(12, dtype=np.float32), width=4, height=3)


@pytest.fixture
def random_depth_map():
    """Random 16x12 depth map."""
    from depth_studio.utils.postprocessing import DepthMap

    rng = np.random.default_rng(0)
    return DepthMap(values=rng.uniform(0.5, 10.0, 16 * 12), width=16, height=12)


@pytest.fixture
def sample_image_path(tmp_path):
    """8x6 RGB PNG on disk."""
    path = tmp_path / "sample.png"
    Image.new("RGB", (8, 6), color=(120, 60, 30)).save(path)
    return path
