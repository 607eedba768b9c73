"""Observable pipeline state shared by the lifecycle manager, the inference
orchestrator and the visualization coordinator.

Components write through ``update(**changes)``; listeners registered with
``subscribe`` receive the state and the set of field names that changed.
"""

import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from depth_studio.utils.postprocessing import DepthMap
from depth_studio.utils.progress import ProgressSnapshot

logger = logging.getLogger(__name__)


class LoadState(str, Enum):
    """Model load state machine.

    idle → loading → loaded | error; loaded → idle on release; error → loading
    on retry.
    """

    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERROR = "error"


StateListener = Callable[["PipelineState", FrozenSet[str]], None]


@dataclass
class PipelineState:
    """Snapshot of everything a UI would display."""

    load_state: LoadState = LoadState.IDLE
    current_model: Optional[str] = None
    backend: Optional[str] = None
    precision: Optional[str] = None
    model_progress: float = 0
    progress_snapshot: Optional[ProgressSnapshot] = None
    error: Optional[str] = None
    is_estimating: bool = False
    estimation_progress: float = 0
    depth_map: Optional[DepthMap] = None
    hover_position: Optional[Tuple[float, float]] = None
    hover_depth: Optional[float] = None
    _listeners: List[StateListener] = field(default_factory=list, init=False, repr=False, compare=False)

    @property
    def is_model_loaded(self) -> bool:
        return self.load_state == LoadState.LOADED

    @property
    def is_loading_model(self) -> bool:
        return self.load_state == LoadState.LOADING

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> FrozenSet[str]:
        """Apply changes and notify listeners about the fields that differ.

        Raises:
            TypeError: If a change names an unknown field.
        """
        known = self.field_names()
        unknown = set(changes) - known
        if unknown:
            raise TypeError(f"Unknown state fields: {sorted(unknown)}")

        changed = set()
        for name, value in changes.items():
            current = getattr(self, name)
            if current is value or (current is not None and value is not None and _same(current, value)):
                continue
            setattr(self, name, value)
            changed.add(name)

        changed = frozenset(changed)
        if changed:
            self._notify(changed)
        return changed

    def _notify(self, changed: FrozenSet[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(self, changed)
            except Exception as e:
                logger.warning(f"State listener {listener!r} failed: {e}")

    @classmethod
    def field_names(cls) -> FrozenSet[str]:
        return frozenset(f.name for f in fields(cls) if not f.name.startswith("_"))

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.field_names()}


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, DepthMap) or isinstance(b, DepthMap):
        return a is b
    return type(a) is type(b) and a == b
