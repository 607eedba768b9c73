"""Visualization utilities for depth maps.

This module turns a ``DepthMap`` into display-ready RGB images:
- Grayscale rendering with brightness/exposure/contrast/sharpness
- Colormap rendering (viridis, plasma, inferno, magma)
- PNG encoding, data URLs and file export

All image functions return RGB uint8 arrays of shape (H, W, 3). OpenCV is only
used at the encode/decode boundary, where the channel order is swapped to BGR.

Pipeline:

    DepthMap → normalize → (n + (brightness - 1)) * exposure → clamp [0, 1]
                                                                  ↓
                                     gray = round(t * 255) | colormap(t)
                                                                  ↓
                                          contrast (if != 1) → sharpen (if > 0)
"""

import base64
import logging
import time
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import cv2
import numpy as np

from depth_studio.utils.postprocessing import DepthMap, enhance, normalize, upscale

logger = logging.getLogger(__name__)

HIGH_QUALITY_SCALE = 2

# Cubic approximations of the matplotlib colormaps: per channel (a, b, c, d)
# for a + b*t + c*t^2 + d*t^3. These must not be tuned.
COLORMAPS: Dict[str, Tuple[Tuple[float, float, float, float], ...]] = {
    "viridis": (
        (0.267, 0.742, -0.855, 0.318),
        (0.005, 1.404, -1.384, 0.448),
        (0.329, 2.137, -5.532, 2.78),
    ),
    "plasma": (
        (0.063, 2.81, -3.342, 1.437),
        (0.012, 1.358, -0.0, -0.528),
        (0.615, 2.666, -5.191, 2.72),
    ),
    "inferno": (
        (0.001, 1.777, -0.037, -0.342),
        (0.0, 0.542, 1.92, -1.617),
        (0.014, 1.775, -2.945, 1.16),
    ),
    "magma": (
        (0.001, 1.596, 0.112, -0.71),
        (0.0, 0.639, 1.729, -1.355),
        (0.014, 1.657, -2.25, 0.581),
    ),
}

SHARPEN_KERNEL = np.array([[0, -1, 0], [-1, 5, -1], [0, -1, 0]], dtype=np.float64)


@dataclass
class VisualizationSettings:
    """User-selected rendering parameters.

    Attributes:
        colormap: One of viridis, plasma, inferno, magma
        brightness: Additive offset, 1.0 is neutral
        exposure: Multiplicative gain, 1.0 is neutral
        contrast: Contrast curve parameter, 1.0 disables the curve
        sharpness: Sharpen blend in [0, 1], 0 disables sharpening
        high_quality: Enhance + 2x upscale before rendering
    """

    colormap: str = "viridis"
    brightness: float = 1.0
    exposure: float = 1.0
    contrast: float = 1.0
    sharpness: float = 0.0
    high_quality: bool = False

    def __post_init__(self):
        if self.colormap not in COLORMAPS:
            raise ValueError(f"Unknown colormap: {self.colormap}. Supported: {list(COLORMAPS)}")

    @classmethod
    def from_params(cls, params: Dict[str, Any]) -> "VisualizationSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in params.items() if k in known})

    def adjustments(self) -> Dict[str, float]:
        """Keyword arguments for the image builders."""
        return {
            "brightness": self.brightness,
            "exposure": self.exposure,
            "contrast": self.contrast,
            "sharpness": self.sharpness,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _round_half_up(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def _to_uint8(values: np.ndarray) -> np.ndarray:
    """Round half to even and clamp into the 8-bit range."""
    return np.clip(np.rint(values), 0, 255).astype(np.uint8)


def _adjust(normalized: np.ndarray, brightness: float, exposure: float) -> np.ndarray:
    adjusted = (normalized.astype(np.float64) + (brightness - 1)) * exposure
    return np.clip(adjusted, 0.0, 1.0)


def apply_contrast(image: np.ndarray, contrast: float) -> np.ndarray:
    """Apply the classic 259-based contrast curve around mid-gray.

    factor = 259 * (c*255 + 255) / (255 * (259 - c*255))
    out    = factor * (v - 128) + 128

    Args:
        image: RGB uint8 image
        contrast: Curve parameter

    Returns:
        New RGB uint8 image
    """
    denominator = 255 * (259 - contrast * 255)
    pixels = image.astype(np.float64)

    if denominator == 0:
        # Infinite slope: hard threshold, the undefined midpoint goes to black
        return np.where(pixels > 128, 255, 0).astype(np.uint8)

    factor = (259 * (contrast * 255 + 255)) / denominator
    return _to_uint8(factor * (pixels - 128) + 128)


def apply_sharpness(image: np.ndarray, sharpness: float) -> np.ndarray:
    """Blend a 3x3 sharpen convolution into the image.

    Only interior pixels are convolved; the one-pixel border is copied as is.

    Args:
        image: RGB uint8 image
        sharpness: Blend weight, result = original*(1-s) + convolved*s

    Returns:
        New RGB uint8 image
    """
    if sharpness <= 0:
        return image.copy()

    height, width = image.shape[:2]
    if height < 3 or width < 3:
        return image.copy()

    src = image.astype(np.float64)
    center = src[1:-1, 1:-1]
    convolved = (
        SHARPEN_KERNEL[1, 1] * center
        + SHARPEN_KERNEL[0, 1] * src[:-2, 1:-1]
        + SHARPEN_KERNEL[2, 1] * src[2:, 1:-1]
        + SHARPEN_KERNEL[1, 0] * src[1:-1, :-2]
        + SHARPEN_KERNEL[1, 2] * src[1:-1, 2:]
    )

    result = src.copy()
    result[1:-1, 1:-1] = center * (1 - sharpness) + convolved * sharpness
    return _to_uint8(result)


def _finish(image: np.ndarray, contrast: float, sharpness: float) -> np.ndarray:
    if contrast != 1:
        image = apply_contrast(image, contrast)
    if sharpness > 0:
        image = apply_sharpness(image, sharpness)
    return image


def apply_colormap(values: np.ndarray, colormap: str = "viridis") -> np.ndarray:
    """Map scalars in [0, 1] through a colormap polynomial.

    Args:
        values: Array of any shape, clamped to [0, 1]
        colormap: Colormap name

    Returns:
        uint8 array with a trailing RGB axis
    """
    if colormap not in COLORMAPS:
        raise ValueError(f"Unknown colormap: {colormap}. Supported: {list(COLORMAPS)}")

    t = np.clip(np.asarray(values, dtype=np.float64), 0.0, 1.0)
    channels = []
    for a, b, c, d in COLORMAPS[colormap]:
        poly = a + b * t + c * t * t + d * t * t * t
        channels.append(_round_half_up(255 * np.clip(poly, 0.0, 1.0)))

    return np.stack(channels, axis=-1).astype(np.uint8)


def get_colormap_color(value: float, colormap: str = "viridis") -> Tuple[int, int, int]:
    """RGB triplet for a single scalar."""
    r, g, b = apply_colormap(np.array([value]), colormap)[0]
    return int(r), int(g), int(b)


def to_grayscale_image(
    depth_map: DepthMap,
    brightness: float = 1.0,
    exposure: float = 1.0,
    contrast: float = 1.0,
    sharpness: float = 0.0,
) -> np.ndarray:
    """Render a depth map as a replicated-channel grayscale image.

    Returns:
        RGB uint8 image (H, W, 3)
    """
    adjusted = _adjust(normalize(depth_map), brightness, exposure)
    gray = _round_half_up(adjusted * 255).astype(np.uint8)
    gray = gray.reshape(depth_map.height, depth_map.width)
    image = np.repeat(gray[:, :, np.newaxis], 3, axis=2)
    return _finish(image, contrast, sharpness)


def to_colored_image(
    depth_map: DepthMap,
    colormap: str = "viridis",
    brightness: float = 1.0,
    exposure: float = 1.0,
    contrast: float = 1.0,
    sharpness: float = 0.0,
) -> np.ndarray:
    """Render a depth map through a colormap.

    Returns:
        RGB uint8 image (H, W, 3)
    """
    adjusted = _adjust(normalize(depth_map), brightness, exposure)
    image = apply_colormap(adjusted, colormap).reshape(depth_map.height, depth_map.width, 3)
    return _finish(image, contrast, sharpness)


def prepare_for_display(depth_map: DepthMap, high_quality: bool = False) -> DepthMap:
    """Enhance then upscale 2x when high quality mode is on."""
    if not high_quality:
        return depth_map
    return upscale(enhance(depth_map), HIGH_QUALITY_SCALE)


def render_depth_image(
    depth_map: DepthMap,
    colored: bool = False,
    settings: Optional[VisualizationSettings] = None,
    prepared: Optional[DepthMap] = None,
) -> np.ndarray:
    """Render one display variant for the given settings.

    Args:
        depth_map: Source depth
        colored: Colormap variant instead of grayscale
        settings: Rendering parameters, defaults if None
        prepared: Already enhanced/upscaled map to reuse across variants

    Returns:
        RGB uint8 image
    """
    settings = settings or VisualizationSettings()
    source = prepared if prepared is not None else prepare_for_display(depth_map, settings.high_quality)

    if colored:
        return to_colored_image(source, settings.colormap, **settings.adjustments())
    return to_grayscale_image(source, **settings.adjustments())


def encode_image(image: np.ndarray, fmt: str = "png") -> bytes:
    """Encode an RGB (or single channel) image to bytes.

    Args:
        image: RGB uint8 image (H, W, 3) or grayscale (H, W)
        fmt: Image format understood by OpenCV (png, jpg, ...)

    Returns:
        Encoded image bytes
    """
    if image.ndim == 3 and image.shape[-1] == 3:
        image = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)

    ok, buffer = cv2.imencode(f".{fmt.lstrip('.')}", image)
    if not ok:
        raise ValueError(f"Failed to encode image as {fmt}")
    return buffer.tobytes()


def decode_image(data: bytes) -> np.ndarray:
    """Decode image bytes into an RGB uint8 array."""
    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if image is None:
        raise ValueError("Failed to decode image data")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def to_data_url(image: np.ndarray) -> str:
    """Encode an RGB image as a PNG data URL."""
    encoded = base64.b64encode(encode_image(image, "png")).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def decode_data_url(data_url: str) -> np.ndarray:
    """Decode a base64 image data URL into an RGB array."""
    header, _, payload = data_url.partition(",")
    if not header.startswith("data:image/") or ";base64" not in header:
        raise ValueError("Not a base64 image data URL")
    return decode_image(base64.b64decode(payload))


def export_filename(timestamp_ms: Optional[int] = None) -> str:
    """Export filename in the ``depth_map_<timestamp>.png`` pattern."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    return f"depth_map_{timestamp_ms}.png"


def trigger_download(
    blob: bytes,
    filename: str,
    directory: Union[str, Path] = ".",
) -> Path:
    """Write an encoded image to ``directory/filename``.

    Returns:
        Path of the written file
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_bytes(blob)
    logger.info(f"Exported depth image to {path}")
    return path
