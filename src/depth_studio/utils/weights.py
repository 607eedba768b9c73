"""Model Weights Manager for Depth Studio.

This module downloads and caches depth model snapshots from the Hugging Face
Hub. Files are streamed with ``requests`` so byte-level progress can be
reported to the model lifecycle manager while a ``tqdm`` bar is shown on the
console.

Cache layout:

    ~/.cache/depth_studio/models/
        depth-anything--Depth-Anything-V2-Small-hf/
            config.json
            model.safetensors
            preprocessor_config.json
            .complete
"""

import fnmatch
import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests
from huggingface_hub import HfApi, hf_hub_url
from tqdm import tqdm

from depth_studio.models.catalog import AVAILABLE_MODELS, get_model
from depth_studio.utils.progress import ProgressEvent

logger = logging.getLogger(__name__)

# Default weights directory
DEFAULT_WEIGHTS_DIR = Path.home() / ".cache" / "depth_studio" / "models"

# Files needed to build a transformers depth-estimation pipeline
WEIGHT_PATTERNS = ("*.json", "*.safetensors", "*.txt")
FALLBACK_PATTERNS = ("*.bin",)

COMPLETE_MARKER = ".complete"
CHUNK_SIZE = 1024 * 1024

ProgressCallback = Callable[[ProgressEvent], None]


class WeightsManager:
    """Download, cache and inspect model snapshots.

    Example:
        >>> manager = WeightsManager()
        >>> model_dir = manager.fetch("depth-anything/Depth-Anything-V2-Small-hf")
        >>> pipe = pipeline("depth-estimation", model=str(model_dir))
    """

    def __init__(
        self,
        cache_dir: Optional[Union[str, Path]] = None,
        token: Optional[str] = None,
        show_progress: bool = True,
        timeout: float = 60.0,
    ):
        """Initialize the weights manager.

        Args:
            cache_dir: Directory to cache downloaded snapshots.
                      Defaults to ~/.cache/depth_studio/models
            token: Optional Hugging Face access token
            show_progress: Show a tqdm bar while downloading
            timeout: Per-request timeout in seconds
        """
        self.cache_dir = Path(cache_dir) if cache_dir else DEFAULT_WEIGHTS_DIR
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.token = token
        self.show_progress = show_progress
        self.timeout = timeout
        logger.info(f"Weights cache directory: {self.cache_dir}")

    def model_dir(self, repo_id: str) -> Path:
        """Local directory for a repository snapshot."""
        return self.cache_dir / repo_id.replace("/", "--")

    def is_cached(self, repo_id: str) -> bool:
        return (self.model_dir(repo_id) / COMPLETE_MARKER).exists()

    def fetch(
        self,
        repo_id: str,
        on_progress: Optional[ProgressCallback] = None,
        force_download: bool = False,
    ) -> Path:
        """Get the local snapshot directory, downloading if necessary.

        Args:
            repo_id: Hugging Face repository id, or a local directory
            on_progress: Receives ``downloading`` events with cumulative bytes
            force_download: Re-download even if cached

        Returns:
            Path to the snapshot directory.

        Raises:
            requests.HTTPError: If a file download fails.
        """
        local = Path(repo_id)
        if local.is_dir():
            logger.info(f"Using local model directory: {local}")
            return local

        target = self.model_dir(repo_id)
        if self.is_cached(repo_id) and not force_download:
            logger.info(f"Using cached weights: {target}")
            return target

        files = self._list_files(repo_id)
        total = sum(size for _, size in files)
        logger.info(f"Downloading {len(files)} files ({total} bytes) from {repo_id}")

        target.mkdir(parents=True, exist_ok=True)
        (target / COMPLETE_MARKER).unlink(missing_ok=True)

        loaded = 0
        with tqdm(
            total=total,
            unit="B",
            unit_scale=True,
            desc=repo_id,
            disable=not self.show_progress,
        ) as pbar:
            for filename, _ in files:

                def on_chunk(n: int, filename: str = filename) -> None:
                    nonlocal loaded
                    loaded += n
                    pbar.update(n)
                    if on_progress is not None:
                        on_progress(
                            ProgressEvent("downloading", loaded=loaded, total=total, file=filename)
                        )

                url = hf_hub_url(repo_id, filename)
                self._download_file(url, target / filename, on_chunk)

        (target / COMPLETE_MARKER).touch()
        logger.info(f"Downloaded weights to {target}")
        return target

    def _list_files(self, repo_id: str) -> List[Tuple[str, int]]:
        """Repository files to download with their sizes in bytes."""
        info = HfApi(token=self.token).model_info(repo_id, files_metadata=True)
        siblings = [(s.rfilename, int(s.size or 0)) for s in info.siblings or []]

        def matching(patterns) -> List[Tuple[str, int]]:
            return [
                (name, size)
                for name, size in siblings
                if "/" not in name and any(fnmatch.fnmatch(name, p) for p in patterns)
            ]

        files = matching(WEIGHT_PATTERNS)
        if not any(name.endswith(".safetensors") for name, _ in files):
            files += matching(FALLBACK_PATTERNS)
        return files

    def _download_file(self, url: str, destination: Path, on_chunk: Callable[[int], None]) -> None:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
        partial = destination.with_name(destination.name + ".part")

        with requests.get(url, stream=True, headers=headers, timeout=self.timeout) as response:
            response.raise_for_status()
            with open(partial, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        on_chunk(len(chunk))

        partial.replace(destination)

    def list_cached(self) -> List[str]:
        """List catalog model ids whose snapshots are cached."""
        return [m.id for m in AVAILABLE_MODELS if self.is_cached(m.source_path)]

    def list_available(self) -> List[str]:
        return [m.id for m in AVAILABLE_MODELS]

    def get_model_info(self, model_id: str) -> Dict[str, Any]:
        """Get catalog information about a model plus its cache status.

        Raises:
            UnknownModelError: If the id is not in the catalog.
        """
        descriptor = get_model(model_id)
        cached = self.is_cached(descriptor.source_path)
        return {
            "id": descriptor.id,
            "name": descriptor.display_name,
            "description": descriptor.description,
            "source_path": descriptor.source_path,
            "size_mb": descriptor.size_hint,
            "cached": cached,
            "path": str(self.model_dir(descriptor.source_path)) if cached else None,
        }

    def clear_cache(self, model_id: Optional[str] = None) -> None:
        """Clear cached snapshots.

        Args:
            model_id: Specific catalog model to clear, or None for all.
        """
        if model_id:
            target = self.model_dir(get_model(model_id).source_path)
            if target.exists():
                shutil.rmtree(target)
                logger.info(f"Cleared cache for {model_id}")
        else:
            for entry in self.cache_dir.iterdir():
                if entry.is_dir():
                    shutil.rmtree(entry)
            logger.info("Cleared all cached weights")

    def cache_size(self) -> float:
        """Get total size of cached snapshots in MB."""
        total_bytes = sum(p.stat().st_size for p in self.cache_dir.rglob("*") if p.is_file())
        return total_bytes / (1024 * 1024)
