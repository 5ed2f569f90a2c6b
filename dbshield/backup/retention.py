"""
Retention policy enforcement for backups.

Keeps the configured number of most recent dumps per target and deletes
the oldest ones beyond it.
"""

import logging
from typing import Any, Dict, List

from .storage import ArtifactStore, StorageError

logger = logging.getLogger(__name__)


class RetentionManager:
    """
    Manages retention policy enforcement for backup targets.
    """

    def rotate(self, target) -> Dict[str, Any]:
        """
        Enforce the retention count of a single target.

        Artifacts are ordered by modification time (oldest first, ties by
        name). Each deletion is independent: a failure is recorded and the
        remaining deletions still run.

        Args:
            target: TargetSpec to rotate

        Returns:
            Dict with keys:
            {
                'deleted': List[str],
                'errors': List[str],
                'remaining': int
            }
        """
        store = ArtifactStore(target.output_dir, target.name)
        result = {
            'deleted': [],
            'errors': [],
            'remaining': 0
        }

        try:
            artifacts = store.list_by_age()
        except StorageError as e:
            logger.error(f"Failed to list backups for {target.name}: {e}")
            result['errors'].append(str(e))
            return result

        excess = len(artifacts) - max(target.retention_count, 0)
        to_remove = artifacts[:excess] if excess > 0 else []

        for path in to_remove:
            try:
                logger.info(f"Rotating backup: Removing {path}")
                store.delete(path)
                result['deleted'].append(path.name)
            except StorageError as e:
                logger.error(f"Failed to rotate backup {path}: {e}")
                result['errors'].append(str(e))

        result['remaining'] = len(artifacts) - len(result['deleted'])
        return result

    def rotate_all(self, targets: List) -> Dict[str, Any]:
        """
        Enforce retention for several targets.

        Returns:
            Dict with summary of cleanup operations:
            {
                'targets_processed': int,
                'deleted': int,
                'errors': List[str]
            }
        """
        summary = {
            'targets_processed': 0,
            'deleted': 0,
            'errors': []
        }

        for target in targets:
            result = self.rotate(target)
            summary['targets_processed'] += 1
            summary['deleted'] += len(result['deleted'])
            summary['errors'].extend(result['errors'])

        logger.info(
            f"Retention enforcement complete. "
            f"Targets: {summary['targets_processed']}, "
            f"Deleted: {summary['deleted']}, "
            f"Errors: {len(summary['errors'])}"
        )
        return summary
