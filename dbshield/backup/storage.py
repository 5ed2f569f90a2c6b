"""
Artifact storage for database dumps.

Dump files live in the target's output directory and are named
``{target_name}_{YYYYmmdd_HHMMSS}.sql`` so that they sort chronologically by
name and the owning target can be recovered from the filename.
"""

import filecmp
import logging
import re
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)

ARTIFACT_EXTENSION = '.sql'
TIMESTAMP_FORMAT = '%Y%m%d_%H%M%S'


class StorageError(Exception):
    """Raised when a filesystem operation on artifacts fails."""
    pass


def artifact_filename(target_name: str, timestamp: datetime, sequence: int = 0) -> str:
    """
    Generate the artifact filename for a target and timestamp.

    Args:
        target_name: Name of the backup target
        timestamp: Creation time of the dump
        sequence: Disambiguates dumps created within the same second

    Returns:
        Filename like ``sales_20240101_000000.sql``
    """
    suffix = f"_{sequence:03d}" if sequence else ""
    return f"{target_name}_{timestamp.strftime(TIMESTAMP_FORMAT)}{suffix}{ARTIFACT_EXTENSION}"


class ArtifactStore:
    """
    Handler for the dump files of one target in its output directory.
    """

    def __init__(self, output_dir, target_name: str):
        """
        Initialize artifact store.

        Args:
            output_dir: Directory holding the target's dumps
            target_name: Name of the backup target
        """
        self.output_dir = Path(output_dir)
        self.target_name = target_name
        self._pattern = re.compile(
            rf"^{re.escape(target_name)}_\d{{8}}_\d{{6}}(_\d+)?{re.escape(ARTIFACT_EXTENSION)}$"
        )

    def ensure_directory(self):
        """
        Create the output directory if it doesn't exist.

        Raises:
            StorageError: If the directory cannot be created
        """
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create output directory {self.output_dir}: {e}")

    def owns(self, path: Path) -> bool:
        """Check whether a filename belongs to this target."""
        return bool(self._pattern.match(Path(path).name))

    def new_artifact_path(self, timestamp: datetime) -> Path:
        """
        Reserve a path for a new artifact.

        Args:
            timestamp: Creation time of the dump

        Returns:
            Path that does not exist yet

        Raises:
            StorageError: If the output directory cannot be inspected
        """
        sequence = 0
        while True:
            path = self.output_dir / artifact_filename(self.target_name, timestamp, sequence)
            try:
                if not path.exists():
                    return path
            except OSError as e:
                raise StorageError(f"Failed to reserve backup file {path}: {e}")
            sequence += 1

    @contextmanager
    def pending_artifact(self, timestamp: datetime) -> Iterator[Path]:
        """
        Provide a path for a dump in progress.

        The file is removed if the block raises, so a failed dump never
        leaves a partial artifact behind.

        Args:
            timestamp: Creation time of the dump

        Yields:
            Path the dump should be written to
        """
        path = self.new_artifact_path(timestamp)
        try:
            yield path
        except BaseException:
            self._discard(path)
            raise

    def _discard(self, path: Path):
        try:
            if path.exists():
                path.unlink()
                logger.info(f"Removed incomplete backup file: {path}")
        except OSError as e:
            logger.error(f"Failed to remove incomplete backup file {path}: {e}")

    def list_artifacts(self) -> List[Path]:
        """
        List artifacts of this target ordered by name (oldest first).

        Returns:
            List of artifact paths

        Raises:
            StorageError: If the directory cannot be read
        """
        if not self.output_dir.exists():
            return []

        try:
            artifacts = [
                path for path in self.output_dir.iterdir()
                if path.is_file() and self.owns(path)
            ]
        except OSError as e:
            raise StorageError(f"Failed to list backups in {self.output_dir}: {e}")

        return sorted(artifacts, key=lambda path: path.name)

    def list_by_age(self) -> List[Path]:
        """
        List artifacts ordered by modification time, oldest first.

        Ties are broken by name.

        Raises:
            StorageError: If the directory or a file cannot be read
        """
        artifacts = self.list_artifacts()
        try:
            return sorted(artifacts, key=lambda path: (path.stat().st_mtime, path.name))
        except OSError as e:
            raise StorageError(f"Failed to read backup metadata in {self.output_dir}: {e}")

    def latest_artifact(self) -> Optional[Path]:
        """Return the most recent artifact by name, or None."""
        artifacts = self.list_artifacts()
        return artifacts[-1] if artifacts else None

    def previous_artifact(self, artifact: Path) -> Optional[Path]:
        """
        Find the artifact immediately preceding the given one.

        Args:
            artifact: Reference artifact

        Returns:
            Artifact with the largest name strictly less than the reference, or None
        """
        name = Path(artifact).name
        earlier = [path for path in self.list_artifacts() if path.name < name]
        return earlier[-1] if earlier else None

    def delete(self, path: Path):
        """
        Delete an artifact.

        Args:
            path: Artifact to delete

        Raises:
            StorageError: If deletion fails
        """
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {path}: {e}")
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}")

    @staticmethod
    def files_identical(first: Path, second: Path) -> bool:
        """
        Compare two artifacts byte by byte.

        Raises:
            StorageError: If either file cannot be read
        """
        try:
            return filecmp.cmp(first, second, shallow=False)
        except OSError as e:
            raise StorageError(f"Failed to compare {first} and {second}: {e}")
