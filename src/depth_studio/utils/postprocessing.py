"""Numeric post-processing for raw depth maps.

Everything here is a pure function over a ``DepthMap``: no I/O, no state, and
no exceptions for well-formed input. Rendering to RGB lives in
``depth_studio.utils.visualization``.

Coordinate convention:

    values[y * width + x]      row-major, x to the right, y downwards
         ↓
    [H, W] view via DepthMap.as_array()

Back-projection (pinhole, principal point at the image center):

    X = (u - cx) * Z / f
    Y = (v - cy) * Z / f
    Z = depth[v, u]
"""

import logging
import math
from dataclasses import dataclass
from typing import Dict, Optional

import cv2
import numpy as np

from depth_studio.errors import DepthMapError, InvalidDepthError, ShapeMismatchError

logger = logging.getLogger(__name__)

# Local variance below this counts as a flat region in enhance()
FLAT_VARIANCE_THRESHOLD = 0.01
EDGE_BOOST = 0.1


@dataclass(frozen=True, eq=False)
class DepthMap:
    """Dense relative depth produced by one inference call.

    The buffer is copied on construction and marked read-only, so a DepthMap
    can be shared freely between the orchestrator, the post-processor and the
    visualization coordinator.

    Attributes:
        values: Flat float32 buffer, row-major, length width * height
        width: Number of columns
        height: Number of rows
    """

    values: np.ndarray
    width: int
    height: int

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float32).reshape(-1)
        expected = int(self.width) * int(self.height)
        if self.width < 0 or self.height < 0 or values.size != expected:
            raise ShapeMismatchError(expected, values.size)
        if not np.all(np.isfinite(values)):
            raise InvalidDepthError("Depth values must be finite")
        values.flags.writeable = False
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "width", int(self.width))
        object.__setattr__(self, "height", int(self.height))

    @classmethod
    def from_array(cls, array: np.ndarray) -> "DepthMap":
        """Build a DepthMap from an [H, W] (or squeezable [1, H, W]) array."""
        array = np.asarray(array)
        original_shape = array.shape
        if array.ndim > 2:
            array = np.squeeze(array)
        if array.ndim != 2:
            raise DepthMapError(f"Depth output must be [H, W] or [1, H, W], got shape {original_shape}")
        height, width = array.shape
        return cls(values=array, width=width, height=height)

    def as_array(self) -> np.ndarray:
        """Read-only [H, W] view of the buffer."""
        return self.values.reshape(self.height, self.width)

    @property
    def shape(self):
        return (self.height, self.width)

    def __len__(self) -> int:
        return self.values.size

    def __repr__(self) -> str:
        return f"DepthMap(width={self.width}, height={self.height})"


def normalize(depth_map: DepthMap) -> np.ndarray:
    """Min-max scale depth values to [0, 1].

    A flat map (max == min) maps every value to 0.5 instead of dividing by zero.

    Returns:
        Flat float32 array, same length as ``depth_map.values``
    """
    values = depth_map.values.astype(np.float64)
    if values.size == 0:
        return np.empty(0, dtype=np.float32)

    min_depth = values.min()
    max_depth = values.max()
    depth_range = max_depth - min_depth

    if depth_range == 0:
        return np.full(values.shape, 0.5, dtype=np.float32)

    return ((values - min_depth) / depth_range).astype(np.float32)


def upscale(depth_map: DepthMap, factor: float) -> DepthMap:
    """Bilinear upscaling by ``factor``.

    Destination pixel (x, y) samples source (x / factor, y / factor). The four
    lattice neighbours are weighted by fractional distance; the far neighbour
    clamps at the last row/column.

    Args:
        depth_map: Source map
        factor: Scale factor, must be positive

    Returns:
        New DepthMap of size floor(W * factor) x floor(H * factor)
    """
    if factor <= 0:
        raise ValueError(f"Scale factor must be positive, got {factor}")

    w, h = depth_map.width, depth_map.height
    new_w = int(math.floor(w * factor))
    new_h = int(math.floor(h * factor))

    if new_w == 0 or new_h == 0:
        return DepthMap(values=np.empty(0, dtype=np.float32), width=new_w, height=new_h)

    grid = depth_map.as_array().astype(np.float64)

    src_x = np.arange(new_w, dtype=np.float64) / factor
    src_y = np.arange(new_h, dtype=np.float64) / factor

    x0 = np.minimum(np.floor(src_x).astype(np.int64), w - 1)
    y0 = np.minimum(np.floor(src_y).astype(np.int64), h - 1)
    x1 = np.minimum(x0 + 1, w - 1)
    y1 = np.minimum(y0 + 1, h - 1)

    fx = (src_x - x0)[np.newaxis, :]
    fy = (src_y - y0)[:, np.newaxis]

    top_left = grid[np.ix_(y0, x0)]
    top_right = grid[np.ix_(y0, x1)]
    bottom_left = grid[np.ix_(y1, x0)]
    bottom_right = grid[np.ix_(y1, x1)]

    result = (
        top_left * (1 - fx) * (1 - fy)
        + top_right * fx * (1 - fy)
        + bottom_left * (1 - fx) * fy
        + bottom_right * fx * fy
    )

    return DepthMap(values=result, width=new_w, height=new_h)


def enhance(depth_map: DepthMap) -> DepthMap:
    """Edge-aware smoothing/sharpening.

    For each interior pixel the center and its 4-neighbourhood give a local
    mean and variance. Flat neighbourhoods (variance < 0.01) are replaced by the
    mean; elsewhere the pixel is pushed 10% further away from the mean. Border
    rows and columns pass through unchanged.
    """
    w, h = depth_map.width, depth_map.height
    grid = depth_map.as_array().astype(np.float64)
    result = grid.copy()

    if w < 3 or h < 3:
        return DepthMap(values=result, width=w, height=h)

    center = grid[1:-1, 1:-1]
    samples = np.stack(
        [
            center,
            grid[:-2, 1:-1],  # up
            grid[2:, 1:-1],  # down
            grid[1:-1, :-2],  # left
            grid[1:-1, 2:],  # right
        ]
    )
    mean = samples.mean(axis=0)
    variance = ((samples - mean) ** 2).mean(axis=0)

    result[1:-1, 1:-1] = np.where(
        variance < FLAT_VARIANCE_THRESHOLD,
        mean,
        center + EDGE_BOOST * (center - mean),
    )

    return DepthMap(values=result, width=w, height=h)


def resize(depth_map: DepthMap, width: int, height: int) -> DepthMap:
    """Resample to an arbitrary size with OpenCV bilinear interpolation.

    Raises:
        cv2.error: If OpenCV cannot resample the buffer
    """
    grid = np.ascontiguousarray(depth_map.as_array(), dtype=np.float32)
    resized = cv2.resize(grid, (int(width), int(height)), interpolation=cv2.INTER_LINEAR)
    return DepthMap(values=resized, width=width, height=height)


def rescale(depth_map: DepthMap, width: int, height: int) -> DepthMap:
    """Bring a raw model output back to the source image resolution.

    An exact integer enlargement reuses ``upscale``; any other size change goes
    through ``resize``. If resampling fails the un-rescaled map is returned
    (degraded quality, not an error).
    """
    if depth_map.width == width and depth_map.height == height:
        return depth_map

    if (
        depth_map.width > 0
        and depth_map.height > 0
        and width % depth_map.width == 0
        and height % depth_map.height == 0
    ):
        factor = width // depth_map.width
        if factor > 1 and factor == height // depth_map.height:
            return upscale(depth_map, factor)

    try:
        return resize(depth_map, width, height)
    except cv2.error as e:
        logger.warning(
            f"Could not rescale depth {depth_map.width}x{depth_map.height} "
            f"to {width}x{height}, keeping model resolution: {e}"
        )
        return depth_map


def depth_at(depth_map: DepthMap, x: float, y: float) -> Optional[float]:
    """Depth value at pixel (x, y), or None when outside the map.

    Never raises; an index past the end of the buffer also yields None.
    """
    try:
        col = math.floor(x)
        row = math.floor(y)
    except (TypeError, ValueError, OverflowError):
        return None

    if col < 0 or col >= depth_map.width or row < 0 or row >= depth_map.height:
        return None

    index = row * depth_map.width + col
    if index >= depth_map.values.size:
        logger.warning(f"Index {index} out of bounds for data length {depth_map.values.size}")
        return None

    return float(depth_map.values[index])


def to_point_cloud(
    depth_map: DepthMap,
    focal_length: float = 500.0,
    downsample: int = 1,
) -> np.ndarray:
    """Back-project a depth map into camera-space 3D points.

    Args:
        depth_map: Source depth
        focal_length: Focal length in pixels (same for both axes)
        downsample: Stride over rows and columns

    Returns:
        Point cloud [N, 3] (x, y, z), samples with depth <= 0 skipped
    """
    if downsample < 1:
        raise ValueError(f"downsample must be >= 1, got {downsample}")

    w, h = depth_map.width, depth_map.height
    cx, cy = w / 2, h / 2

    grid = depth_map.as_array()[::downsample, ::downsample].astype(np.float64)
    v, u = np.meshgrid(
        np.arange(0, h, downsample, dtype=np.float64),
        np.arange(0, w, downsample, dtype=np.float64),
        indexing="ij",
    )

    valid = grid > 0
    z = grid[valid]
    x = (u[valid] - cx) * z / focal_length
    y = (v[valid] - cy) * z / focal_length

    return np.stack([x, y, z], axis=-1).astype(np.float32).reshape(-1, 3)


def depth_stats(depth_map: DepthMap) -> Dict[str, float]:
    """Summary statistics of a depth map."""
    if depth_map.values.size == 0:
        return {"min_depth": 0.0, "max_depth": 0.0, "mean_depth": 0.0, "median_depth": 0.0}

    values = depth_map.values
    return {
        "min_depth": float(np.min(values)),
        "max_depth": float(np.max(values)),
        "mean_depth": float(np.mean(values)),
        "median_depth": float(np.median(values)),
    }
