"""Visualization State Coordinator.

Keeps the last depth map and the user's visualization settings, and re-renders
only what a change affects:

    | Change                          | Re-rendered          |
    |---------------------------------|----------------------|
    | new depth map                   | grayscale + colored  |
    | colormap only                   | colored              |
    | brightness/exposure/contrast/   | grayscale + colored  |
    | sharpness/high_quality          |                      |
    | nothing actually different      | nothing              |
    | hover / leave                   | nothing              |
"""

import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Any, FrozenSet, Optional, Tuple, Union

import numpy as np

from depth_studio.services.state import PipelineState
from depth_studio.utils.postprocessing import DepthMap, depth_at
from depth_studio.utils.visualization import (
    VisualizationSettings,
    encode_image,
    export_filename,
    prepare_for_display,
    render_depth_image,
    trigger_download,
)

logger = logging.getLogger(__name__)

SETTING_NAMES = frozenset(f.name for f in fields(VisualizationSettings))


class VisualizationCoordinator:
    """Render grayscale and colored views of the current depth map.

    When given a ``PipelineState`` the coordinator follows its ``depth_map``
    field and mirrors the hover position/depth back into it.

    Example:
        >>> coordinator = VisualizationCoordinator()
        >>> coordinator.set_depth_map(depth_map)
        >>> coordinator.on_settings_changed(colormap="magma")
        >>> filename, png = coordinator.export(colored=True)
    """

    def __init__(
        self,
        settings: Optional[VisualizationSettings] = None,
        state: Optional[PipelineState] = None,
    ):
        self.settings = settings or VisualizationSettings()
        self.state = state
        self.depth_map: Optional[DepthMap] = None
        self.grayscale_image: Optional[np.ndarray] = None
        self.colored_image: Optional[np.ndarray] = None
        self.hover_position: Optional[Tuple[float, float]] = None
        self.hover_depth: Optional[float] = None
        self.render_counts = {"grayscale": 0, "colored": 0}
        self._prepared: Optional[DepthMap] = None

        if state is not None:
            state.subscribe(self._on_state_changed)
            if state.depth_map is not None:
                self.set_depth_map(state.depth_map)

    @property
    def images(self) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        """(grayscale, colored) RGB images at the current quality."""
        return self.grayscale_image, self.colored_image

    def _on_state_changed(self, state: PipelineState, changed: FrozenSet[str]) -> None:
        if "depth_map" in changed and state.depth_map is not self.depth_map:
            self.set_depth_map(state.depth_map)

    def set_depth_map(self, depth_map: Optional[DepthMap]) -> None:
        """Store a new depth map and render both variants; None clears them."""
        self.depth_map = depth_map
        self._prepared = None
        self.leave()
        if depth_map is None:
            self.grayscale_image = None
            self.colored_image = None
        else:
            self._render(grayscale=True, colored=True)

        if self.state is not None:
            self.state.update(depth_map=depth_map)

    def on_settings_changed(self, **changes: Any) -> FrozenSet[str]:
        """Apply setting changes and re-render what they affect.

        Returns:
            Names of the settings that actually changed.

        Raises:
            TypeError: For unknown setting names.
            ValueError: For an unknown colormap.
        """
        unknown = set(changes) - SETTING_NAMES
        if unknown:
            raise TypeError(f"Unknown visualization settings: {sorted(unknown)}")

        changed = frozenset(k for k, v in changes.items() if getattr(self.settings, k) != v)
        if not changed:
            return changed

        self.settings = replace(self.settings, **{k: changes[k] for k in changed})
        if "high_quality" in changed:
            self._prepared = None

        if changed == {"colormap"}:
            self._render(grayscale=False, colored=True)
        else:
            self._render(grayscale=True, colored=True)
        return changed

    def toggle_high_quality(self) -> bool:
        """Flip high quality mode; returns the new value."""
        self.on_settings_changed(high_quality=not self.settings.high_quality)
        return self.settings.high_quality

    def hover(self, x: float, y: float) -> Optional[float]:
        """Depth under the pointer in source-map coordinates."""
        self.hover_position = (x, y)
        self.hover_depth = depth_at(self.depth_map, x, y) if self.depth_map is not None else None
        if self.state is not None:
            self.state.update(hover_position=self.hover_position, hover_depth=self.hover_depth)
        return self.hover_depth

    def leave(self) -> None:
        self.hover_position = None
        self.hover_depth = None
        if self.state is not None:
            self.state.update(hover_position=None, hover_depth=None)

    def export(self, colored: bool = False, timestamp_ms: Optional[int] = None) -> Tuple[str, bytes]:
        """Encode the current image of one variant as PNG.

        Raises:
            ValueError: If no depth map has been rendered yet.
        """
        image = self.colored_image if colored else self.grayscale_image
        if image is None:
            raise ValueError("No depth image to export")
        return export_filename(timestamp_ms), encode_image(image, "png")

    def save(self, colored: bool = False, directory: Union[str, Path] = ".") -> Path:
        filename, blob = self.export(colored)
        return trigger_download(blob, filename, directory)

    def _render(self, grayscale: bool, colored: bool) -> None:
        if self.depth_map is None:
            return

        if self._prepared is None:
            self._prepared = prepare_for_display(self.depth_map, self.settings.high_quality)

        if grayscale:
            self.grayscale_image = render_depth_image(
                self.depth_map, colored=False, settings=self.settings, prepared=self._prepared
            )
            self.render_counts["grayscale"] += 1
        if colored:
            self.colored_image = render_depth_image(
                self.depth_map, colored=True, settings=self.settings, prepared=self._prepared
            )
            self.render_counts["colored"] += 1

        logger.debug(f"Rendered depth images (grayscale={grayscale}, colored={colored})")

