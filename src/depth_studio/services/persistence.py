"""Canvas Persistence.

Session-scoped snapshot/restore of the rendered depth images, so a view can be
rebuilt after the consumer goes away and comes back.

    | Key                     | Value                        |
    |-------------------------|------------------------------|
    | depth-grayscale-canvas  | PNG data URL                 |
    | depth-colored-canvas    | PNG data URL                 |
    | depth-canvas-ready      | "true" once images are ready |

Restore only happens when the ready marker is exactly ``"true"``.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple, Union

import numpy as np

from depth_studio.utils.visualization import decode_data_url, to_data_url

logger = logging.getLogger(__name__)

GRAYSCALE_KEY = "depth-grayscale-canvas"
COLORED_KEY = "depth-colored-canvas"
READY_KEY = "depth-canvas-ready"


class SessionStore(Protocol):
    """Minimal string key-value store."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemorySessionStore:
    """In-process store, lives as long as the object."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)


class FileSessionStore:
    """Store backed by one JSON file, by default in the system temp directory."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        if path is None:
            path = Path(tempfile.gettempdir()) / "depth_studio_session" / f"session-{os.getpid()}.json"
        self.path = Path(path)

    def _read(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path) as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt session file {self.path}: {e}")
            return {}

    def _write(self, items: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(items, f)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def remove(self, key: str) -> None:
        items = self._read()
        if items.pop(key, None) is not None:
            self._write(items)


class CanvasPersistence:
    """Save and restore the (grayscale, colored) image pair.

    Example:
        >>> persistence = CanvasPersistence(MemorySessionStore())
        >>> persistence.snapshot(coordinator.images)
        >>> persistence.mark_ready()
        >>> grayscale, colored = persistence.restore()
    """

    def __init__(self, store: Optional[SessionStore] = None):
        self.store = store if store is not None else MemorySessionStore()

    def snapshot(self, images: Tuple[Optional[np.ndarray], Optional[np.ndarray]]) -> None:
        """Store whichever of the two images exist."""
        grayscale, colored = images
        if grayscale is not None:
            self.store.set(GRAYSCALE_KEY, to_data_url(grayscale))
        if colored is not None:
            self.store.set(COLORED_KEY, to_data_url(colored))

    def mark_ready(self) -> None:
        self.store.set(READY_KEY, "true")

    def is_ready(self) -> bool:
        return self.store.get(READY_KEY) == "true"

    def restore(self) -> Optional[Tuple[Optional[np.ndarray], Optional[np.ndarray]]]:
        """Decoded (grayscale, colored) images, or None if not marked ready."""
        if not self.is_ready():
            return None
        return self._decode(GRAYSCALE_KEY), self._decode(COLORED_KEY)

    def _decode(self, key: str) -> Optional[np.ndarray]:
        data_url = self.store.get(key)
        if not data_url:
            return None
        try:
            return decode_data_url(data_url)
        except ValueError as e:
            logger.warning(f"Could not restore {key}: {e}")
            return None

    def clear(self) -> None:
        for key in (GRAYSCALE_KEY, COLORED_KEY, READY_KEY):
            self.store.remove(key)
