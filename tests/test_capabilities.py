"""Unit tests for compute backend detection."""

import logging

import pytest


def _raise_runtime_error():
    raise RuntimeError("driver exploded")


class TestCapabilityDetector:
    """Tests for CapabilityDetector."""

    def test_real_runtime_has_baseline(self):
        """Test that detection on this machine always reports cpu and auto."""
        from depth_studio.services.capabilities import detect_capabilities

        capabilities = detect_capabilities()

        assert capabilities["cpu"] is True
        assert capabilities["auto"] is True
        assert set(capabilities) == {"auto", "cpu", "cuda", "mps", "xpu", "npu"}

    def test_probes_are_independent(self):
        """Test that one failing probe does not affect the others."""
        from depth_studio.services.capabilities import CapabilityDetector

        detector = CapabilityDetector(
            probes={
                "cuda": lambda: True,
                "mps": _raise_runtime_error,
                "xpu": lambda: False,
                "npu": lambda: True,
            }
        )
        capabilities = detector.detect()

        assert capabilities["cuda"] is True
        assert capabilities["mps"] is False
        assert capabilities["xpu"] is False
        assert capabilities["npu"] is True

    def test_probe_failure_logged_at_debug(self, caplog):
        """Test that probe failures are logged, not raised."""
        from depth_studio.services.capabilities import CapabilityDetector

        detector = CapabilityDetector(probes={"mps": _raise_runtime_error})

        with caplog.at_level(logging.DEBUG, logger="depth_studio.services.capabilities"):
            detector.detect()

        assert "Probe for backend 'mps' failed: driver exploded" in caplog.text

    @pytest.mark.parametrize(
        "capabilities, expected",
        [
            ({"cuda": True, "mps": True}, "cuda"),
            ({"cuda": False, "mps": True}, "mps"),
            ({"xpu": True}, "xpu"),
            ({"cuda": False}, "cpu"),
        ],
    )
    def test_resolve_auto(self, capabilities, expected):
        """Test that auto picks the first supported accelerator."""
        from depth_studio.services.capabilities import CapabilityDetector

        assert CapabilityDetector().resolve_device("auto", capabilities) == expected

    def test_resolve_explicit_backend(self):
        """Test that explicit backends map straight to device strings."""
        from depth_studio.services.capabilities import CapabilityDetector

        detector = CapabilityDetector()

        assert detector.resolve_device("cuda") == "cuda"
        assert detector.resolve_device("cpu") == "cpu"
