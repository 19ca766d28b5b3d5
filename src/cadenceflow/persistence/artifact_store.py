"""On-disk storage for compiled pipeline artifacts.

One JSON file per artifact, ``cadenceflow_<id>.json``, in a temporary
directory. Files are written atomically and swept once older than the
retention window.
"""

import logging
import time
from pathlib import Path
from typing import Iterable, List, Optional, Union

from ..exceptions import ArtifactStorageError
from ..pipeline.artifact import ARTIFACT_PREFIX, ARTIFACT_SUFFIX, PipelineArtifact

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 3600.0
_TEMP_SUFFIX = ".tmp"


class ArtifactStore:
    """Directory of artifact files addressed by artifact id.

    Example:
        >>> store = ArtifactStore(Path("/tmp/cadenceflow"))
        >>> path = store.write(artifact)
        >>> store.delete(artifact.artifact_id)
        True
    """

    def __init__(
        self,
        directory: Union[str, Path],
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
    ):
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be positive")
        self.directory = Path(directory).expanduser()
        self.retention_seconds = retention_seconds

    def path_for(self, artifact_id: str) -> Path:
        return self.directory / f"{ARTIFACT_PREFIX}{artifact_id}{ARTIFACT_SUFFIX}"

    def exists(self, artifact_id: str) -> bool:
        return self.path_for(artifact_id).exists()

    def write(self, artifact: PipelineArtifact) -> Path:
        """Write an artifact atomically and record its path on it.

        Raises:
            ArtifactStorageError: If the file could not be written; no
                partial file is left behind
        """
        path = self.path_for(artifact.artifact_id)
        temp_path = path.with_suffix(_TEMP_SUFFIX)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(artifact.to_json())
            temp_path.replace(path)
        except OSError as e:
            for partial in (temp_path, path):
                if partial.exists():
                    partial.unlink()
            raise ArtifactStorageError(
                f"Failed to write artifact {artifact.artifact_id}: {e}",
                path=str(path),
                cause=e,
            ) from e

        artifact.path = path
        logger.debug(f"Wrote artifact {path}")
        return path

    def delete(self, artifact_id: str) -> bool:
        """Delete an artifact file. Returns False if it did not exist.

        Raises:
            ArtifactStorageError: If the file exists but cannot be removed
        """
        path = self.path_for(artifact_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise ArtifactStorageError(f"Failed to delete artifact {path}: {e}", path=str(path), cause=e) from e
        logger.debug(f"Deleted artifact {path}")
        return True

    def list_artifacts(self) -> List[Path]:
        """All artifact files in the directory, oldest first."""
        if not self.directory.is_dir():
            return []
        files = [
            p for p in self.directory.glob(f"{ARTIFACT_PREFIX}*")
            if p.suffix in (ARTIFACT_SUFFIX, _TEMP_SUFFIX) and p.is_file()
        ]
        return sorted(files, key=lambda p: p.stat().st_mtime)

    @staticmethod
    def artifact_id_of(path: Path) -> str:
        return path.stem[len(ARTIFACT_PREFIX):]

    def sweep(
        self,
        live_ids: Iterable[Optional[str]] = (),
        now: Optional[float] = None,
    ) -> List[Path]:
        """Remove artifact files older than the retention window.

        Files belonging to ``live_ids`` are never removed. A file that cannot
        be removed is logged and left for the next sweep.

        Returns:
            Paths that were removed
        """
        now = time.time() if now is None else now
        live = {i for i in live_ids if i}
        removed = []

        for path in self.list_artifacts():
            if self.artifact_id_of(path) in live:
                continue
            try:
                age = now - path.stat().st_mtime
                if age <= self.retention_seconds:
                    continue
                path.unlink()
                removed.append(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Could not remove stale artifact {path}: {e}")

        if removed:
            logger.info(f"Swept {len(removed)} stale artifact(s) from {self.directory}")
        return removed
