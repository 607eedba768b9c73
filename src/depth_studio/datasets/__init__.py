"""Custom Kedro Datasets for Depth Studio.

This module provides custom dataset implementations for:
- Input image folders (ImageFolderDataset)
- Rendered depth images written as PNG files (DepthImageDataset)
"""

import logging
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional

import cv2
import numpy as np
from kedro.io import AbstractDataset, DatasetError
from kedro.io.core import get_filepath_str

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".webp", ".tif", ".tiff")


class ImageFolderDataset(AbstractDataset[Dict[str, str], Dict[str, str]]):
    """Dataset exposing a folder of images as ``{stem: path}``.

    Paths are returned instead of pixels so the inference orchestrator can
    read the image header and hand the file to the engine untouched.

    Example catalog.yml entry:
        input_images:
            type: depth_studio.datasets.ImageFolderDataset
            path: data/01_raw/images
            load_args:
                recursive: false
    """

    def __init__(
        self,
        path: str,
        load_args: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Initialize ImageFolderDataset.

        Args:
            path: Folder containing the images.
            load_args: Arguments for loading:
                - recursive: Also search sub-folders
                - extensions: File extensions to include
            metadata: Optional metadata dictionary.
        """
        self._path = PurePosixPath(path)
        self._load_args = load_args or {}
        self.metadata = metadata or {}

    def load(self) -> Dict[str, str]:
        """List images in the folder.

        Returns:
            Mapping of file stem to file path, sorted by stem.
        """
        folder = Path(get_filepath_str(self._path, "file"))
        if not folder.is_dir():
            raise DatasetError(f"Image folder does not exist: {folder}")

        extensions = tuple(e.lower() for e in self._load_args.get("extensions", IMAGE_EXTENSIONS))
        pattern = "**/*" if self._load_args.get("recursive", False) else "*"

        images = {
            p.stem: str(p)
            for p in sorted(folder.glob(pattern))
            if p.is_file() and p.suffix.lower() in extensions
        }
        logger.info(f"Found {len(images)} images in {folder}")
        return images

    def save(self, data: Dict[str, str]) -> None:
        """Save is not supported - images are inputs only."""
        raise DatasetError("ImageFolderDataset is read-only.")

    def _describe(self) -> Dict[str, Any]:
        return {"path": str(self._path), "load_args": self._load_args}

    def _exists(self) -> bool:
        return Path(get_filepath_str(self._path, "file")).is_dir()


class DepthImageDataset(AbstractDataset[Dict[str, np.ndarray], Dict[str, np.ndarray]]):
    """Dataset for saving and loading rendered depth images as PNG files.

    Images are RGB uint8 arrays in memory; OpenCV writes them as BGR.

    Example catalog.yml entry:
        depth_images:
            type: depth_studio.datasets.DepthImageDataset
            path: data/08_reporting/depth_images
            save_args:
                compression: 3
    """

    def __init__(
        self,
        path: str,
        save_args: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        """Initialize DepthImageDataset.

        Args:
            path: Output folder.
            save_args: Arguments for saving:
                - compression: PNG compression level 0-9
            metadata: Optional metadata dictionary.
        """
        self._path = PurePosixPath(path)
        self._save_args = save_args or {}
        self.metadata = metadata or {}

    def _folder(self) -> Path:
        return Path(get_filepath_str(self._path, "file"))

    def load(self) -> Dict[str, np.ndarray]:
        """Load every PNG in the folder as an RGB image keyed by stem."""
        folder = self._folder()
        if not folder.is_dir():
            raise DatasetError(f"Depth image folder does not exist: {folder}")

        images = {}
        for png in sorted(folder.glob("*.png")):
            image = cv2.imread(str(png), cv2.IMREAD_COLOR)
            if image is None:
                raise DatasetError(f"Cannot read image: {png}")
            images[png.stem] = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)

        logger.info(f"Loaded {len(images)} depth images from {folder}")
        return images

    def save(self, data: Dict[str, np.ndarray]) -> None:
        """Write each image to ``<path>/<name>.png``."""
        folder = self._folder()
        folder.mkdir(parents=True, exist_ok=True)
        params = [cv2.IMWRITE_PNG_COMPRESSION, int(self._save_args.get("compression", 3))]

        for name, image in data.items():
            if image.ndim == 3 and image.shape[-1] == 3:
                image = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)
            filepath = folder / f"{name}.png"
            if not cv2.imwrite(str(filepath), image, params):
                raise DatasetError(f"Failed to write image: {filepath}")

        logger.info(f"Saved {len(data)} depth images to {folder}")

    def _describe(self) -> Dict[str, Any]:
        return {"path": str(self._path), "save_args": self._save_args}

    def _exists(self) -> bool:
        return self._folder().is_dir()
