"""Unit tests for depth visualization utilities."""

import re

import numpy as np
import pytest


class TestColormaps:
    """Tests for colormap polynomials."""

    @pytest.mark.parametrize(
        "name, start, end",
        [
            ("viridis", (68, 1, 84), (120, 121, 0)),
            ("plasma", (16, 3, 157), (247, 215, 207)),
            ("inferno", (0, 0, 4), (255, 215, 1)),
            ("magma", (0, 0, 4), (255, 255, 1)),
        ],
    )
    def test_colormap_endpoints(self, name, start, end):
        """Test every colormap at t=0 and t=1 against its coefficients."""
        from depth_studio.utils.visualization import get_colormap_color

        assert get_colormap_color(0.0, name) == start
        assert get_colormap_color(1.0, name) == end

    def test_values_are_clamped(self):
        """Test that inputs outside [0, 1] are clamped."""
        from depth_studio.utils.visualization import get_colormap_color

        assert get_colormap_color(-3.0, "plasma") == get_colormap_color(0.0, "plasma")
        assert get_colormap_color(7.0, "plasma") == get_colormap_color(1.0, "plasma")

    @pytest.mark.parametrize("name", ["viridis", "plasma", "inferno", "magma"])
    def test_all_colormaps_render(self, name):
        """Test that every colormap produces uint8 RGB."""
        from depth_studio.utils.visualization import apply_colormap

        colors = apply_colormap(np.linspace(0, 1, 11), name)

        assert colors.shape == (11, 3)
        assert colors.dtype == np.uint8

    def test_unknown_colormap(self):
        """Test that unknown names raise ValueError."""
        from depth_studio.utils.visualization import apply_colormap

        with pytest.raises(ValueError):
            apply_colormap(np.zeros(3), "jet")


class TestGrayscaleImage:
    """Tests for grayscale rendering."""

    def test_identity_adjustments(self, ramp_depth_map):
        """Test gray = round(normalized * 255) replicated over RGB."""
        from depth_studio.utils.visualization import to_grayscale_image

        image = to_grayscale_image(ramp_depth_map)

        expected = np.floor(np.arange(12) / 11 * 255 + 0.5).astype(np.uint8).reshape(3, 4)
        assert image.shape == (3, 4, 3)
        assert image.dtype == np.uint8
        for channel in range(3):
            np.testing.assert_array_equal(image[:, :, channel], expected)

    def test_flat_map_is_mid_gray(self):
        """Test that a constant map renders as 128 gray."""
        from depth_studio.utils.postprocessing import DepthMap
        from depth_studio.utils.visualization import to_grayscale_image

        flat = DepthMap(values=np.full(6, 2.0), width=3, height=2)

        assert np.all(to_grayscale_image(flat) == 128)

    def test_brightness_and_exposure_clamp(self, ramp_depth_map):
        """Test that adjustments are clamped into [0, 255]."""
        from depth_studio.utils.visualization import to_grayscale_image

        assert np.all(to_grayscale_image(ramp_depth_map, brightness=2.0) == 255)
        assert np.all(to_grayscale_image(ramp_depth_map, exposure=0.0) == 0)


class TestColoredImage:
    """Tests for colormap rendering."""

    def test_shape_and_endpoints(self, ramp_depth_map):
        """Test that the nearest and farthest pixels hit the colormap ends."""
        from depth_studio.utils.visualization import to_colored_image

        image = to_colored_image(ramp_depth_map, "viridis")

        assert image.shape == (3, 4, 3)
        assert tuple(image[0, 0]) == (68, 1, 84)
        assert tuple(image[2, 3]) == (120, 121, 0)

    def test_flat_map_renders_mid_color(self):
        """Test that a constant map renders the t=0.5 color."""
        from depth_studio.utils.postprocessing import DepthMap
        from depth_studio.utils.visualization import get_colormap_color, to_colored_image

        flat = DepthMap(values=np.full(4, 1.0), width=2, height=2)
        image = to_colored_image(flat, "magma")

        assert tuple(image[0, 0]) == get_colormap_color(0.5, "magma")


class TestContrastAndSharpness:
    """Tests for the contrast curve and sharpen kernel."""

    def test_zero_contrast_is_identity(self):
        """Test that c=0 gives factor 1."""
        from depth_studio.utils.visualization import apply_contrast

        image = np.random.default_rng(1).integers(0, 256, (5, 5, 3), dtype=np.uint8)

        np.testing.assert_array_equal(apply_contrast(image, 0.0), image)

    def test_mid_gray_is_fixed_point(self):
        """Test that 128 is unchanged for any contrast."""
        from depth_studio.utils.visualization import apply_contrast

        image = np.full((2, 2, 3), 128, dtype=np.uint8)

        for contrast in (0.3, 0.8, 1.5):
            assert np.all(apply_contrast(image, contrast) == 128)

    @pytest.mark.parametrize(
        "contrast, value, expected",
        [
            (0.5, 140, 163),
            (0.5, 120, 104),
            (0.5, 200, 255),
            (0.3, 150, 169),
            (0.3, 100, 76),
            (-0.5, 200, 152),
            (-0.5, 0, 85),
        ],
    )
    def test_contrast_factor(self, contrast, value, expected):
        """Test the 259-based factor on values away from mid-gray."""
        from depth_studio.utils.visualization import apply_contrast

        image = np.full((1, 1, 3), value, dtype=np.uint8)

        assert tuple(apply_contrast(image, contrast)[0, 0]) == (expected,) * 3

    def test_infinite_contrast_thresholds(self):
        """Test that c=259/255 thresholds and sends mid-gray to black."""
        from depth_studio.utils.visualization import apply_contrast

        image = np.array([[[127, 128, 129]]], dtype=np.uint8)

        np.testing.assert_array_equal(apply_contrast(image, 259 / 255), [[[0, 0, 255]]])

    def test_sharpen_uniform_image_unchanged(self):
        """Test that the kernel preserves flat regions."""
        from depth_studio.utils.visualization import apply_sharpness

        image = np.full((5, 5, 3), 90, dtype=np.uint8)

        np.testing.assert_array_equal(apply_sharpness(image, 1.0), image)

    def test_sharpen_keeps_border(self):
        """Test that only interior pixels change."""
        from depth_studio.utils.visualization import apply_sharpness

        image = np.random.default_rng(2).integers(0, 256, (6, 7, 3), dtype=np.uint8)
        result = apply_sharpness(image, 0.7)

        np.testing.assert_array_equal(result[0], image[0])
        np.testing.assert_array_equal(result[-1], image[-1])
        np.testing.assert_array_equal(result[:, 0], image[:, 0])
        np.testing.assert_array_equal(result[:, -1], image[:, -1])

    def test_sharpen_interior_value(self):
        """Test one interior pixel against the blend formula."""
        from depth_studio.utils.visualization import apply_sharpness

        image = np.zeros((3, 3, 3), dtype=np.uint8)
        image[1, 1] = 100
        result = apply_sharpness(image, 0.5)

        # conv = 5 * 100 = 500; out = 100 * 0.5 + 500 * 0.5 = 300 -> 255
        assert tuple(result[1, 1]) == (255, 255, 255)

    @pytest.mark.parametrize("sharpness, expected", [(0.25, 106), (0.5, 113)])
    def test_sharpen_blend(self, sharpness, expected):
        """Test a non-saturating blend, with 106.5 rounding half to even."""
        from depth_studio.utils.visualization import apply_sharpness

        image = np.zeros((3, 3, 3), dtype=np.uint8)
        image[1, 1] = 100
        image[0, 1] = image[2, 1] = 90
        image[1, 0] = image[1, 2] = 97
        result = apply_sharpness(image, sharpness)

        # conv = 5 * 100 - (90 + 90 + 97 + 97) = 126
        assert tuple(result[1, 1]) == (expected,) * 3


class TestVisualizationSettings:
    """Tests for the settings dataclass."""

    def test_defaults(self):
        """Test neutral defaults."""
        from depth_studio.utils.visualization import VisualizationSettings

        settings = VisualizationSettings()

        assert settings.colormap == "viridis"
        assert settings.adjustments() == {"brightness": 1.0, "exposure": 1.0, "contrast": 1.0, "sharpness": 0.0}
        assert settings.high_quality is False

    def test_invalid_colormap(self):
        """Test that unknown colormaps are rejected."""
        from depth_studio.utils.visualization import VisualizationSettings

        with pytest.raises(ValueError):
            VisualizationSettings(colormap="rainbow")

    def test_from_params_ignores_unknown(self):
        """Test building from a Kedro params dict."""
        from depth_studio.utils.visualization import VisualizationSettings

        settings = VisualizationSettings.from_params({"colormap": "inferno", "unused": 1})

        assert settings.colormap == "inferno"


class TestRenderDepthImage:
    """Tests for the high-quality aware builder."""

    def test_high_quality_doubles_size(self, ramp_depth_map):
        """Test enhance + 2x upscale in high quality mode."""
        from depth_studio.utils.visualization import VisualizationSettings, render_depth_image

        settings = VisualizationSettings(high_quality=True)

        assert render_depth_image(ramp_depth_map, colored=True, settings=settings).shape == (6, 8, 3)
        assert render_depth_image(ramp_depth_map, colored=False).shape == (3, 4, 3)


class TestEncodingAndExport:
    """Tests for PNG encoding and file export."""

    def test_png_roundtrip(self, ramp_depth_map):
        """Test that PNG encoding is lossless and keeps RGB order."""
        from depth_studio.utils.visualization import decode_image, encode_image, to_colored_image

        image = to_colored_image(ramp_depth_map)
        data = encode_image(image)

        assert data[:8] == b"\x89PNG\r\n\x1a\n"
        np.testing.assert_array_equal(decode_image(data), image)

    def test_data_url(self, ramp_depth_map):
        """Test data URL encoding and decoding."""
        from depth_studio.utils.visualization import decode_data_url, to_data_url, to_grayscale_image

        image = to_grayscale_image(ramp_depth_map)
        url = to_data_url(image)

        assert url.startswith("data:image/png;base64,")
        np.testing.assert_array_equal(decode_data_url(url), image)

    def test_decode_rejects_non_data_url(self):
        """Test that arbitrary strings are rejected."""
        from depth_studio.utils.visualization import decode_data_url

        with pytest.raises(ValueError):
            decode_data_url("https://example.com/depth.png")

    def test_export_filename(self):
        """Test the depth_map_<millis>.png pattern."""
        from depth_studio.utils.visualization import export_filename

        assert export_filename(1700000000123) == "depth_map_1700000000123.png"
        assert re.fullmatch(r"depth_map_\d{13}\.png", export_filename())

    def test_trigger_download(self, tmp_path):
        """Test writing an export to disk."""
        from depth_studio.utils.visualization import trigger_download

        path = trigger_download(b"png-bytes", "depth_map_1.png", tmp_path / "exports")

        assert path == tmp_path / "exports" / "depth_map_1.png"
        assert path.read_bytes() == b"png-bytes"
