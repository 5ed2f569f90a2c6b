"""
Backup module for DB Shield.

This module handles the core backup functionality including:
- Schedule evaluation
- Target snapshots
- Database dumps (MariaDB and PostgreSQL)
- Duplicate suppression
- Retention policy enforcement
"""

from .dedup import Deduplicator
from .dumpers import DumpRunner, ExecutionError, MariaDBDumper, PostgreSQLDumper, create_dumper
from .executor import BackupExecutor, BackupResult, BackupSettings, run_backup
from .retention import RetentionManager
from .schedule import InvalidScheduleError, due_instant, next_firing, parse_schedule
from .storage import ArtifactStore, StorageError
from .targets import ConfigurationError, TargetSpec, load_targets

__all__ = [
    'ArtifactStore',
    'BackupExecutor',
    'BackupResult',
    'BackupSettings',
    'ConfigurationError',
    'Deduplicator',
    'DumpRunner',
    'ExecutionError',
    'InvalidScheduleError',
    'MariaDBDumper',
    'PostgreSQLDumper',
    'RetentionManager',
    'StorageError',
    'TargetSpec',
    'create_dumper',
    'due_instant',
    'load_targets',
    'next_firing',
    'parse_schedule',
    'run_backup'
]
