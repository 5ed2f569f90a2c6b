"""
Backup executor - runs the complete backup workflow for a target.

Workflow:
1. Create the output directory
2. Dump the database into a new artifact (kind-specific, with fallback retry)
3. Discard the artifact if identical to the previous one (if the kind allows it)
4. Rotate old artifacts beyond the retention count
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from .dedup import Deduplicator
from .dumpers import DumpRunner, ExecutionError, create_dumper
from .retention import RetentionManager
from .storage import ArtifactStore, StorageError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupSettings:
    """Engine options taken from the application configuration."""
    mysqldump_bin: str = 'mysqldump'
    pg_dump_bin: str = 'pg_dump'
    timeout_seconds: Optional[int] = 3600
    timezone: str = 'UTC'

    @classmethod
    def from_config(cls, config) -> 'BackupSettings':
        timeout = config.get('DUMP_TIMEOUT_SECONDS')
        return cls(
            mysqldump_bin=config.get('MYSQLDUMP_BIN', 'mysqldump'),
            pg_dump_bin=config.get('PG_DUMP_BIN', 'pg_dump'),
            timeout_seconds=timeout if timeout and timeout > 0 else None,
            timezone=config.get('SCHEDULER_TIMEZONE', 'UTC')
        )


@dataclass
class BackupResult:
    """Outcome of one pipeline run for a target."""
    target_name: str
    status: str  # success, duplicate, failed
    artifact_path: Optional[Path] = None
    error: Optional[str] = None
    rotated: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status != 'failed'


class BackupExecutor:
    """
    Produces one dump artifact for a target.
    """

    def __init__(self, target, settings: BackupSettings = None, runner: DumpRunner = None,
                 clock: Callable[[], datetime] = None):
        """
        Initialize backup executor.

        Args:
            target: TargetSpec to back up
            settings: Engine options (defaults to BackupSettings())
            runner: DumpRunner executing dump programs
            clock: Returns the timestamp used in the artifact name
        """
        self.target = target
        self.settings = settings or BackupSettings()
        self.runner = runner or DumpRunner(timeout=self.settings.timeout_seconds)
        self.clock = clock or (lambda: datetime.now(ZoneInfo(self.settings.timezone)))
        self.dumper = create_dumper(target.kind, self.runner, self.settings)
        self.store = ArtifactStore(target.output_dir, target.name)

    def execute(self) -> Path:
        """
        Dump the target into a new artifact.

        Returns:
            Path of the completed artifact

        Raises:
            ExecutionError: If the dump failed (no partial file is left behind)
            StorageError: If the output directory cannot be created
        """
        logger.info(f"Backing up database: {self.target.name} ({self.target.kind.value})")

        self.store.ensure_directory()

        with self.store.pending_artifact(self.clock()) as artifact_path:
            self.dumper.dump(self.target, artifact_path)

        logger.info(f"Backup created at: {artifact_path}")
        return artifact_path


def run_backup(target, settings: BackupSettings = None, runner: DumpRunner = None,
               clock: Callable[[], datetime] = None) -> BackupResult:
    """
    Run execute, deduplicate and rotate for one target.

    Failures are logged and reported in the result; they never propagate,
    so one target cannot affect the processing of others.

    Args:
        target: TargetSpec to back up
        settings: Engine options
        runner: DumpRunner executing dump programs
        clock: Timestamp source for artifact names

    Returns:
        BackupResult describing the outcome
    """
    try:
        executor = BackupExecutor(target, settings, runner, clock)
        artifact_path = executor.execute()
    except (ExecutionError, StorageError, ValueError, OSError) as e:
        logger.error(f"Failed to backup {target.name}: {e}")
        return BackupResult(target.name, 'failed', error=str(e))

    result = BackupResult(target.name, 'success', artifact_path=artifact_path)

    if executor.dumper.deduplicate and not Deduplicator().deduplicate(target, artifact_path):
        result.status = 'duplicate'
        result.artifact_path = None

    rotation = RetentionManager().rotate(target)
    result.rotated = rotation['deleted']

    return result
