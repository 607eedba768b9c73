"""Progress tracking for model downloads and loading.

The engine reports loading in phases. ``ProgressTracker`` turns those raw
events into an overall percentage plus a ``ProgressSnapshot`` carrying
byte-level transfer speed and ETA:

    | Phase       | Overall %                          |
    |-------------|------------------------------------|
    | initiate    | 10                                 |
    | downloading | 10 + round(loaded/total*100) * 0.7 |
    |             | (capped at 80)                     |
    | loading     | 85                                 |
    | ready       | 95                                 |
"""

import math
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

PROGRESS_INIT = 5
PROGRESS_INITIATE = 10
PROGRESS_DOWNLOAD_START = 10
PROGRESS_DOWNLOAD_END = 80
PROGRESS_LOADING = 85
PROGRESS_READY = 95
PROGRESS_FINALIZE = 98
PROGRESS_COMPLETE = 100


@dataclass(frozen=True)
class ProgressEvent:
    """Raw progress event emitted by an inference engine.

    Attributes:
        status: One of initiate, downloading, loading, ready (others ignored)
        loaded: Bytes transferred so far
        total: Total bytes expected
        file: File or repository currently being processed
    """

    status: str
    loaded: Optional[int] = None
    total: Optional[int] = None
    file: Optional[str] = None

    @classmethod
    def coerce(cls, event: Union["ProgressEvent", Mapping[str, Any]]) -> "ProgressEvent":
        if isinstance(event, cls):
            return event
        return cls(
            status=str(event.get("status", "")),
            loaded=event.get("loaded"),
            total=event.get("total"),
            file=event.get("file"),
        )


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of a model load."""

    percentage: float
    bytes_loaded: int = 0
    bytes_total: int = 0
    speed_bytes_per_sec: Optional[float] = None
    eta_seconds: Optional[float] = None
    current_file: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ProgressListener = Callable[[float, Optional[ProgressSnapshot]], None]


class ProgressTracker:
    """Callable adapter from engine events to (percentage, snapshot) updates.

    Speed is the byte delta since the previous download tick divided by the
    wall-clock delta; ETA is remaining bytes over that speed.

    Example:
        >>> tracker = ProgressTracker(lambda pct, snap: print(pct, snap))
        >>> tracker({"status": "initiate", "file": "model.safetensors"})
    """

    def __init__(self, listener: ProgressListener, clock: Callable[[], float] = time.monotonic):
        self._listener = listener
        self._clock = clock
        self._start_time = clock()
        self._last_update = self._start_time
        self._last_loaded = 0

    def __call__(self, event: Union[ProgressEvent, Mapping[str, Any]]) -> None:
        event = ProgressEvent.coerce(event)
        now = self._clock()

        if event.status == "initiate":
            self._start_time = now
            self._last_update = now
            self._last_loaded = 0
            self._emit(PROGRESS_INITIATE, ProgressSnapshot(PROGRESS_INITIATE, current_file=event.file))

        elif event.status == "downloading":
            if not event.loaded or not event.total:
                return

            download_percent = math.floor(event.loaded / event.total * 100 + 0.5)
            mapped = PROGRESS_DOWNLOAD_START + download_percent * 0.7

            time_diff = now - self._last_update
            bytes_diff = event.loaded - self._last_loaded
            speed = bytes_diff / time_diff if time_diff > 0 else 0.0
            remaining = event.total - event.loaded
            eta = remaining / speed if speed > 0 else 0.0

            self._emit(
                min(mapped, PROGRESS_DOWNLOAD_END),
                ProgressSnapshot(
                    percentage=download_percent,
                    bytes_loaded=event.loaded,
                    bytes_total=event.total,
                    speed_bytes_per_sec=speed,
                    eta_seconds=eta,
                    current_file=event.file,
                ),
            )
            self._last_update = now
            self._last_loaded = event.loaded

        elif event.status == "loading":
            self._emit(PROGRESS_LOADING, ProgressSnapshot(PROGRESS_LOADING, current_file=event.file))

        elif event.status == "ready":
            self._emit(PROGRESS_READY, ProgressSnapshot(PROGRESS_READY, current_file=event.file))

    @property
    def elapsed(self) -> float:
        """Seconds since the last initiate event."""
        return self._clock() - self._start_time

    def _emit(self, percentage: float, snapshot: ProgressSnapshot) -> None:
        self._listener(percentage, snapshot)


def format_file_size(num_bytes: float) -> str:
    """Human readable size, e.g. ``1.5 MB``."""
    if num_bytes <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = min(max(int(math.floor(math.log(num_bytes) / math.log(1024))), 0), len(units) - 1)
    value = float(f"{num_bytes / 1024 ** i:.2f}")
    return f"{value:g} {units[i]}"


def format_speed(bytes_per_second: float) -> str:
    return format_file_size(bytes_per_second) + "/s"


def format_time(seconds: float) -> str:
    """Short duration, ``42s`` or ``3m 5s``."""
    if seconds < 60:
        return f"{math.floor(seconds + 0.5)}s"
    minutes = int(seconds // 60)
    remaining = math.floor(seconds % 60 + 0.5)
    return f"{minutes}m {remaining}s"
