"""
Duplicate suppression for consecutive dumps of a target.
"""

import logging
from pathlib import Path

from .storage import ArtifactStore, StorageError

logger = logging.getLogger(__name__)


class Deduplicator:
    """
    Discards a new dump when it is byte-identical to the one before it.

    Only the immediately preceding artifact is compared, which catches the
    common "nothing changed since the last run" case.
    """

    def deduplicate(self, target, new_artifact: Path) -> bool:
        """
        Keep or discard a freshly created artifact.

        Args:
            target: TargetSpec owning the artifact
            new_artifact: Path of the new dump

        Returns:
            True if the artifact was kept, False if it was deleted as a duplicate
        """
        store = ArtifactStore(target.output_dir, target.name)
        new_artifact = Path(new_artifact)

        try:
            previous = store.previous_artifact(new_artifact)
            if previous is None or not new_artifact.exists():
                return True

            if not store.files_identical(new_artifact, previous):
                return True

            store.delete(new_artifact)
        except StorageError as e:
            logger.error(f"Duplicate check failed for {target.name}, keeping {new_artifact.name}: {e}")
            return True

        logger.info(f"Backup skipped (Identical to previous): {target.name} ({previous.name})")
        return False
