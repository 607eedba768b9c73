"""Inference Orchestrator.

Turns an image into a DepthMap at the image's natural resolution:

    image (path | URL | bytes | file object | PIL image)
        ↓ resolve_image_source      (bytes spilled to a temp file)     10%
        ↓ load_image_dimensions     (Pillow header + EXIF)              25%
        ↓ handle(source)            (worker thread)                     75%
        ↓ RawDepth → DepthMap → rescale to (width, height)             100%

The temp file is removed on every exit path. The loaded model survives any
estimation failure.
"""

import asyncio
import io
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, BinaryIO, Iterator, Optional, Tuple, Union

import requests
from PIL import Image

from depth_studio.errors import InferenceError, ModelNotLoadedError, NotReadyError
from depth_studio.models.engine import RawDepth
from depth_studio.services.lifecycle import ModelLifecycleManager
from depth_studio.services.state import LoadState
from depth_studio.utils.postprocessing import DepthMap, rescale

logger = logging.getLogger(__name__)

ESTIMATION_START = 0
ESTIMATION_IMAGE_LOADED = 10
ESTIMATION_DIMENSIONS_ACQUIRED = 25
ESTIMATION_COMPLETE = 75
ESTIMATION_PROCESSING_COMPLETE = 100

# EXIF orientations that swap width and height
EXIF_ORIENTATION_TAG = 0x0112
TRANSPOSED_ORIENTATIONS = (5, 6, 7, 8)

ImageInput = Union[str, Path, bytes, bytearray, BinaryIO, Image.Image]


def _is_url(source: Any) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


@contextmanager
def resolve_image_source(image: ImageInput) -> Iterator[Union[str, Image.Image]]:
    """Yield something both Pillow and the engine can open.

    Raw bytes and binary file objects are written to a temporary file that is
    deleted when the context exits, whether or not an error occurred.
    """
    if isinstance(image, Image.Image) or _is_url(image):
        yield image
        return
    if isinstance(image, (str, Path)):
        yield str(image)
        return

    if isinstance(image, (bytes, bytearray, memoryview)):
        data = bytes(image)
        suffix = ".img"
    elif hasattr(image, "read"):
        data = image.read()
        suffix = Path(getattr(image, "name", "") or "upload.img").suffix or ".img"
    else:
        raise InferenceError(f"Unsupported image input: {type(image).__name__}")

    fd, name = tempfile.mkstemp(prefix="depth_studio_", suffix=suffix)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        yield str(path)
    finally:
        path.unlink(missing_ok=True)


def _oriented_size(img: Image.Image) -> Tuple[int, int]:
    width, height = img.size
    if img.getexif().get(EXIF_ORIENTATION_TAG) in TRANSPOSED_ORIENTATIONS:
        return height, width
    return width, height


def load_image_dimensions(source: Union[str, Image.Image], timeout: float = 30.0) -> Tuple[int, int]:
    """Displayed (width, height) of an image without decoding its pixels.

    The EXIF orientation is honoured like the engine's image loader does, so
    rotated phone photos report their upright size.

    Raises:
        requests.HTTPError: If a URL cannot be fetched.
        PIL.UnidentifiedImageError: If the data is not an image.
    """
    if isinstance(source, Image.Image):
        return _oriented_size(source)

    if _is_url(source):
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        with Image.open(io.BytesIO(response.content)) as img:
            return _oriented_size(img)

    with Image.open(source) as img:
        return _oriented_size(img)


class InferenceOrchestrator:
    """Run depth estimation against the model owned by a lifecycle manager.

    Args:
        manager: Lifecycle manager holding the model handle
        clear_delay: Seconds before the estimation progress resets, 0 keeps it
        http_timeout: Timeout for fetching URL images
    """

    def __init__(
        self,
        manager: ModelLifecycleManager,
        clear_delay: float = 1.0,
        http_timeout: float = 30.0,
    ):
        self.manager = manager
        self.state = manager.state
        self.clear_delay = clear_delay
        self.http_timeout = http_timeout
        self._clear_task: Optional[asyncio.Task] = None

    @property
    def progress(self) -> float:
        return self.state.estimation_progress

    @property
    def is_loading(self) -> bool:
        return self.state.is_estimating

    def _check_ready(self) -> Any:
        handle = self.manager.handle
        if handle is None:
            raise NotReadyError()
        if self.manager.status() != LoadState.LOADED:
            raise ModelNotLoadedError()
        return handle

    async def estimate(self, image: ImageInput) -> DepthMap:
        """Estimate depth for one image.

        Raises:
            NotReadyError: No model is loaded.
            ModelNotLoadedError: The model is still loading or failed to load.
            InferenceError: The image or the engine failed.
        """
        handle = self._check_ready()

        self._cancel_clear()
        self.state.update(is_estimating=True, error=None, estimation_progress=ESTIMATION_START)

        try:
            with resolve_image_source(image) as source:
                self.state.update(estimation_progress=ESTIMATION_IMAGE_LOADED)

                width, height = await asyncio.to_thread(load_image_dimensions, source, self.http_timeout)
                self.state.update(estimation_progress=ESTIMATION_DIMENSIONS_ACQUIRED)

                output = await asyncio.to_thread(handle, source)
                self.state.update(estimation_progress=ESTIMATION_COMPLETE)

                raw = RawDepth.from_output(output)
                depth_map = rescale(raw.to_depth_map(), width, height)
                self.state.update(estimation_progress=ESTIMATION_PROCESSING_COMPLETE)
        except Exception as e:
            message = str(e) or "Unknown error occurred"
            logger.error(f"Depth estimation failed: {message}")
            self.state.update(error=message)
            if isinstance(e, InferenceError):
                raise
            raise InferenceError(message) from e
        finally:
            self.state.update(is_estimating=False)

        logger.info(
            f"Depth estimation complete: model {raw.width}x{raw.height}, "
            f"output {depth_map.width}x{depth_map.height}"
        )
        self.state.update(depth_map=depth_map)
        self._schedule_clear()
        return depth_map

    async def safe_estimate(self, image: ImageInput) -> Optional[DepthMap]:
        """Like ``estimate`` but records the message on the state and returns None."""
        try:
            return await self.estimate(image)
        except InferenceError as e:
            self.state.update(error=str(e))
            return None

    def _schedule_clear(self) -> None:
        if self.clear_delay <= 0:
            return

        async def clear() -> None:
            await asyncio.sleep(self.clear_delay)
            self.state.update(estimation_progress=0)

        self._clear_task = asyncio.get_running_loop().create_task(clear())

    def _cancel_clear(self) -> None:
        if self._clear_task is not None and not self._clear_task.done():
            self._clear_task.cancel()
        self._clear_task = None
