"""MLFlow Utilities for Depth Studio.

Experiment tracking for batch depth runs:

    mlflow_run ─┬─ log_params_safe   depth config, nested keys joined with "_"
                ├─ log_metrics_safe  depth summary, NaN/inf dropped
                └─ log_image_artifact rendered PNGs under depth_images/

Every helper is a no-op when mlflow is not installed, and tracking server
errors are logged instead of failing the pipeline.
"""

import logging
import math
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

import numpy as np

logger = logging.getLogger(__name__)

try:
    import mlflow

    MLFLOW_AVAILABLE = True
except ImportError:
    MLFLOW_AVAILABLE = False
    mlflow = None
    logger.warning("mlflow is not installed, depth runs will not be tracked")

# MLFlow rejects param values longer than this
MAX_PARAM_LENGTH = 500
DEPTH_PREFIX = "depth_"
IMAGE_ARTIFACT_DIR = "depth_images"


def is_mlflow_available() -> bool:
    return MLFLOW_AVAILABLE


@contextmanager
def mlflow_run(
    experiment_name: str = "depth_studio",
    run_name: Optional[str] = None,
    tags: Optional[Dict[str, str]] = None,
) -> Iterator[Any]:
    """Open a run in ``experiment_name``.

    Yields:
        The active run, or None when mlflow is missing.
    """
    if not MLFLOW_AVAILABLE:
        logger.warning(f"Skipping MLFlow run {run_name or experiment_name}: mlflow is not installed")
        yield None
        return

    mlflow.set_experiment(experiment_name)
    with mlflow.start_run(run_name=run_name) as run:
        run_id = run.info.run_id
        if tags:
            mlflow.set_tags(tags)
        logger.info(f"Tracking depth run {run_id} in experiment {experiment_name}")
        yield run
    logger.info(f"Closed depth run {run_id}")


def _flatten_dict(d: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for name, value in d.items():
        key = prefix + name
        if isinstance(value, Mapping):
            flat.update(_flatten_dict(value, key + "_"))
        else:
            flat[key] = value
    return flat


def _clip(value: Any) -> str:
    text = str(value)
    if len(text) <= MAX_PARAM_LENGTH:
        return text
    return text[: MAX_PARAM_LENGTH - 3] + "..."


def _is_loggable(value: Any) -> bool:
    return isinstance(value, (int, float, np.number)) and not isinstance(value, bool) and math.isfinite(value)


def log_params_safe(params: Mapping[str, Any], prefix: str = "") -> None:
    """Log (possibly nested) parameters, truncating over-long values."""
    if not MLFLOW_AVAILABLE:
        return

    for key, value in _flatten_dict(params, prefix).items():
        try:
            mlflow.log_param(key, _clip(value))
        except Exception as e:
            logger.warning(f"Could not log param {key}={value!r}: {e}")


def log_metrics_safe(
    metrics: Mapping[str, Any],
    step: Optional[int] = None,
    prefix: str = "",
) -> None:
    """Log finite numeric metrics; everything else is skipped."""
    if not MLFLOW_AVAILABLE:
        return

    for name, value in metrics.items():
        if not _is_loggable(value):
            logger.debug(f"Skipping metric {name}={value!r}")
            continue
        try:
            mlflow.log_metric(prefix + name, value, step=step)
        except Exception as e:
            logger.warning(f"Could not log metric {prefix + name}: {e}")


def log_image_artifact(image: np.ndarray, filename: str, artifact_path: Optional[str] = None) -> None:
    """Upload an RGB image as a PNG artifact."""
    if not MLFLOW_AVAILABLE:
        return

    from depth_studio.utils.visualization import encode_image

    try:
        with tempfile.TemporaryDirectory(prefix="depth_studio_") as tmpdir:
            path = Path(tmpdir) / filename
            path.write_bytes(encode_image(image, "png"))
            mlflow.log_artifact(str(path), artifact_path)
    except Exception as e:
        logger.warning(f"Could not upload depth image {filename}: {e}")
    else:
        logger.info(f"Uploaded depth image {filename}")


def log_depth_run(
    summary: Mapping[str, Any],
    params: Mapping[str, Any],
    images: Optional[Mapping[str, np.ndarray]] = None,
) -> None:
    """Log a depth estimation run: config params, summary metrics and images.

    Args:
        summary: Aggregate depth statistics
        params: Depth configuration
        images: Optional rendered images keyed by name
    """
    log_params_safe(params, prefix=DEPTH_PREFIX)
    log_metrics_safe(summary, prefix=DEPTH_PREFIX)
    for name, image in (images or {}).items():
        log_image_artifact(image, f"{name}.png", IMAGE_ARTIFACT_DIR)
