"""Model Lifecycle Manager.

Owns the single live model handle and the load/release state machine.

    load(model, backend, precision)
        │  state=loading, progress=5
        ▼
    engine.acquire(...)  ── worker thread ──► progress events
        │                                      (initiate 10, downloading 10-80,
        │                                       loading 85, ready 95)
        ▼
    progress=98 → finalize delay → state=loaded, progress=100
        │
        └─ background: clear progress after ``progress_clear_delay``

Every ``load`` and ``release`` bumps a generation counter. A load whose
generation is stale when the engine resolves disposes its handle and leaves
the state alone, so the last request wins.
"""

import asyncio
import inspect
import logging
from typing import Any, List, Optional, Union

from depth_studio.models.catalog import (
    ComputeBackend,
    ModelDescriptor,
    PrecisionLevel,
    available_precisions,
    can_model_be_loaded,
    get_model,
    resolve_dtype,
)
from depth_studio.models.engine import Disposable, InferenceEngine
from depth_studio.services.state import LoadState, PipelineState
from depth_studio.utils.progress import (
    PROGRESS_COMPLETE,
    PROGRESS_FINALIZE,
    PROGRESS_INIT,
    ProgressSnapshot,
    ProgressTracker,
)

logger = logging.getLogger(__name__)

CONCURRENT_LOAD_MESSAGE = "Another model load is already in progress"


async def dispose_handle(handle: Any) -> None:
    """Best-effort dispose; failures are logged, never raised."""
    if not isinstance(handle, Disposable):
        return
    try:
        result = handle.dispose()
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning(f"Failed to dispose model handle: {e}")


class ModelLifecycleManager:
    """Load, switch and release depth models.

    Args:
        engine: Inference engine used to acquire handles
        state: Shared state to publish into, a fresh one if None
        finalize_delay: Seconds to hold 98% before reporting loaded
        progress_clear_delay: Seconds before the finished progress is cleared,
            0 keeps it
    """

    def __init__(
        self,
        engine: InferenceEngine,
        state: Optional[PipelineState] = None,
        finalize_delay: float = 0.2,
        progress_clear_delay: float = 2.0,
    ):
        self.engine = engine
        self.state = state if state is not None else PipelineState()
        self.finalize_delay = finalize_delay
        self.progress_clear_delay = progress_clear_delay

        self._handle: Any = None
        self._descriptor: Optional[ModelDescriptor] = None
        self._source_path: Optional[str] = None
        self._backend: Optional[ComputeBackend] = None
        self._precision: Optional[str] = None
        self._generation = 0
        self._in_flight: Optional[int] = None
        self._clear_task: Optional[asyncio.Task] = None

    # Read-only views

    @property
    def handle(self) -> Any:
        return self._handle

    @property
    def descriptor(self) -> Optional[ModelDescriptor]:
        return self._descriptor

    @property
    def progress(self) -> Optional[ProgressSnapshot]:
        return self.state.progress_snapshot

    @property
    def error(self) -> Optional[str]:
        return self.state.error

    @property
    def generation(self) -> int:
        return self._generation

    def status(self) -> LoadState:
        return self.state.load_state

    def current_model(self) -> Optional[str]:
        """``"<source_path> (<backend>, <precision>)"`` of the loaded model."""
        if self._handle is None or self._source_path is None:
            return None
        return f"{self._source_path} ({self._backend.value}, {self._precision})"

    def available_precisions(self) -> List[str]:
        return [p.value for p in available_precisions()]

    # Transitions

    async def load(
        self,
        model: Union[str, ModelDescriptor],
        backend: Union[str, ComputeBackend] = ComputeBackend.AUTO,
        precision: Optional[Union[str, PrecisionLevel]] = None,
    ) -> bool:
        """Load a model, releasing the current one first.

        Args:
            model: Catalog descriptor, catalog id or a raw source path
            backend: Compute backend
            precision: Precision level, backend default if None

        Returns:
            True if the model is now loaded. Failures are recorded on the
            state instead of raised.
        """
        backend = ComputeBackend.parse(backend)
        precision = PrecisionLevel.parse(precision) if precision is not None else None
        descriptor = self._resolve_descriptor(model)
        source_path = descriptor.source_path if descriptor else str(model)

        if self._in_flight is not None:
            # Supersede the running load; its result is disposed on arrival
            self._generation += 1
            self._in_flight = None
            logger.warning(f"{CONCURRENT_LOAD_MESSAGE}, rejected {source_path}")
            self.state.update(
                load_state=LoadState.ERROR,
                error=CONCURRENT_LOAD_MESSAGE,
                model_progress=0,
                progress_snapshot=None,
            )
            return False

        self._generation += 1
        generation = self._generation
        self._in_flight = generation
        self._cancel_progress_clear()

        dtype = resolve_dtype(backend, precision)
        precision_label = precision.value if precision is not None else dtype.value

        self.state.update(
            load_state=LoadState.LOADING,
            error=None,
            backend=backend.value,
            model_progress=PROGRESS_INIT,
            progress_snapshot=None,
        )
        logger.info(f"Loading model: {source_path} on {backend.value} with {precision_label}")

        # At most one live handle: the previous model goes before the next is acquired
        if await self._drop_handle():
            logger.info("Released previous model before loading")
            self.state.update(current_model=None, precision=None)
            if generation != self._generation:
                return False

        loop = asyncio.get_running_loop()

        def publish(percentage: float, snapshot: Optional[ProgressSnapshot]) -> None:
            if generation == self._generation:
                self.state.update(model_progress=percentage, progress_snapshot=snapshot)

        tracker = ProgressTracker(publish)

        def on_progress(event) -> None:
            loop.call_soon_threadsafe(tracker, event)

        try:
            handle = await asyncio.to_thread(
                self.engine.acquire,
                source_path,
                backend=backend.value,
                dtype=dtype,
                on_progress=on_progress,
            )
        except Exception as e:
            if generation != self._generation:
                logger.info(f"Ignoring failure of superseded load {source_path}: {e}")
                return False
            self._in_flight = None
            message = f"Failed to load model on {backend.value}: {e}"
            logger.error(message)
            await self._drop_handle()
            self.state.update(
                load_state=LoadState.ERROR,
                error=message,
                current_model=None,
                precision=None,
                model_progress=0,
                progress_snapshot=None,
            )
            return False

        if generation != self._generation:
            logger.info(f"Discarding stale model load {source_path}")
            await dispose_handle(handle)
            return False

        self.state.update(model_progress=PROGRESS_FINALIZE)
        if self.finalize_delay > 0:
            await asyncio.sleep(self.finalize_delay)
            if generation != self._generation:
                logger.info(f"Discarding stale model load {source_path}")
                await dispose_handle(handle)
                return False

        self._handle = handle
        self._descriptor = descriptor
        self._source_path = source_path
        self._backend = backend
        self._precision = precision_label
        self._in_flight = None

        self.state.update(
            load_state=LoadState.LOADED,
            current_model=self.current_model(),
            precision=precision_label,
            model_progress=PROGRESS_COMPLETE,
            progress_snapshot=ProgressSnapshot(PROGRESS_COMPLETE, current_file=source_path),
        )
        logger.info(f"Model loaded successfully: {self.current_model()}")

        self._schedule_progress_clear(generation)
        return True

    async def release(self) -> None:
        """Dispose the current handle and return to idle. Idempotent.

        The last error message is kept so a UI can still show why a load
        failed.
        """
        self._generation += 1
        self._in_flight = None
        self._cancel_progress_clear()

        if await self._drop_handle():
            logger.info("Model released")

        self.state.update(
            load_state=LoadState.IDLE,
            current_model=None,
            precision=None,
            model_progress=0,
            progress_snapshot=None,
        )

    async def switch(
        self,
        model: Union[str, ModelDescriptor],
        backend: Union[str, ComputeBackend] = ComputeBackend.AUTO,
        precision: Optional[Union[str, PrecisionLevel]] = None,
    ) -> bool:
        """Release the current model, then load another configuration."""
        await self.release()
        return await self.load(model, backend, precision)

    # Internals

    async def _drop_handle(self) -> bool:
        handle, self._handle = self._handle, None
        self._descriptor = None
        self._source_path = None
        self._backend = None
        self._precision = None
        if handle is None:
            return False
        await dispose_handle(handle)
        return True

    @staticmethod
    def _resolve_descriptor(model: Union[str, ModelDescriptor]) -> Optional[ModelDescriptor]:
        if isinstance(model, ModelDescriptor):
            return model
        if can_model_be_loaded(model):
            return get_model(model)
        return None

    def _schedule_progress_clear(self, generation: int) -> None:
        if self.progress_clear_delay <= 0:
            return

        async def clear() -> None:
            await asyncio.sleep(self.progress_clear_delay)
            if generation == self._generation:
                self.state.update(model_progress=0, progress_snapshot=None)

        self._clear_task = asyncio.get_running_loop().create_task(clear())

    def _cancel_progress_clear(self) -> None:
        if self._clear_task is not None and not self._clear_task.done():
            self._clear_task.cancel()
        self._clear_task = None
