"""
Dump procedures for the supported database kinds.

Supports:
- MariaDBDumper: mysqldump with a lock-free fallback retry
- PostgreSQLDumper: single pg_dump run configured through libpq environment variables

Each dumper writes the dump stream straight into the artifact file.
Passwords are handed to the dump program through its environment, never
on the command line.
"""

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional

from dbshield.models import DatabaseKind

logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    """Raised when a dump program fails."""
    pass


class DumpCancelled(ExecutionError):
    """Raised when a dump is interrupted by shutdown."""
    pass


class DumpRunner:
    """
    Runs external dump programs with their stdout redirected to a file.

    Enforces an optional timeout and lets another thread cancel the
    process currently running.
    """

    def __init__(self, timeout: Optional[int] = None):
        """
        Initialize dump runner.

        Args:
            timeout: Seconds before a dump process is killed (None = no limit)
        """
        self.timeout = timeout
        self._process = None
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, args: List[str], output_path: Path, env: Optional[Dict[str, str]] = None):
        """
        Run a dump program writing its stdout to ``output_path``.

        The output file is truncated on every call.

        Args:
            args: Program and arguments
            output_path: File receiving the dump stream
            env: Extra environment variables for the process

        Raises:
            DumpCancelled: If the runner was cancelled
            ExecutionError: If the program is missing, times out or exits non-zero
        """
        if self.cancelled:
            raise DumpCancelled(f"{args[0]} not started: shutdown in progress")

        process_env = dict(os.environ)
        if env:
            process_env.update(env)

        try:
            output_file = open(output_path, 'wb')
        except OSError as e:
            raise ExecutionError(f"Failed to open dump output {output_path}: {e}")

        with output_file:
            try:
                with self._lock:
                    # cancel() may have run since the check above
                    if self._cancelled.is_set():
                        raise DumpCancelled(f"{args[0]} not started: shutdown in progress")
                    self._process = subprocess.Popen(
                        args,
                        stdout=output_file,
                        stderr=subprocess.PIPE,
                        env=process_env
                    )
                process = self._process
            except FileNotFoundError:
                raise ExecutionError(f"Failed to execute {args[0]}: program not found")
            except OSError as e:
                raise ExecutionError(f"Failed to execute {args[0]}: {e}")

            try:
                _, stderr = process.communicate(timeout=self.timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.communicate()
                raise ExecutionError(f"{args[0]} timed out after {self.timeout} seconds")
            finally:
                with self._lock:
                    self._process = None

        if self.cancelled:
            raise DumpCancelled(f"{args[0]} interrupted by shutdown")

        if process.returncode != 0:
            message = stderr.decode('utf-8', errors='replace').strip()
            raise ExecutionError(
                f"{args[0]} failed with status {process.returncode}: {message}"
            )

    def cancel(self):
        """Stop the running process and refuse to start new ones."""
        self._cancelled.set()
        with self._lock:
            if self._process is not None and self._process.poll() is None:
                logger.warning(f"Terminating in-flight dump process (pid={self._process.pid})")
                self._process.terminate()


class Dumper:
    """Base class for database-kind specific dump procedures."""

    kind = None
    # Whether byte-identical consecutive dumps should be collapsed
    deduplicate = False

    def __init__(self, runner: DumpRunner, binary: str):
        self.runner = runner
        self.binary = binary

    def dump(self, target, output_path: Path):
        """
        Write a dump of ``target`` to ``output_path``.

        Raises:
            ExecutionError: If the dump fails
        """
        raise NotImplementedError


class MariaDBDumper(Dumper):
    """
    mysqldump based dumps for MySQL/MariaDB.

    A failed standard run is retried once with table locking disabled and
    a consistent snapshot read.
    """

    kind = DatabaseKind.MARIADB
    deduplicate = True

    BASE_FLAGS = ['--column-statistics=0', '--skip-dump-date']
    FALLBACK_FLAGS = ['--skip-lock-tables', '--single-transaction', '--quick']

    def build_command(self, target, relaxed: bool = False) -> List[str]:
        connection = target.connection
        args = [
            self.binary,
            f"-h{connection.host}",
            f"-P{connection.port}",
            f"-u{connection.user}",
        ]
        args.extend(self.BASE_FLAGS)
        if relaxed:
            args.extend(self.FALLBACK_FLAGS)
        args.append(connection.database)
        return args

    def build_env(self, target) -> Dict[str, str]:
        if target.connection.password:
            return {'MYSQL_PWD': target.connection.password}
        return {}

    def dump(self, target, output_path: Path):
        env = self.build_env(target)
        try:
            self.runner.run(self.build_command(target), output_path, env)
        except DumpCancelled:
            raise
        except ExecutionError as e:
            logger.warning(
                f"Standard backup failed for {target.name}. "
                f"Retrying with --skip-lock-tables. Error: {e}"
            )
            try:
                self.runner.run(self.build_command(target, relaxed=True), output_path, env)
            except ExecutionError:
                logger.error(f"Retry with --skip-lock-tables also failed for {target.name}")
                raise
            logger.info(f"Backup succeeded with --skip-lock-tables for {target.name}")


class PostgreSQLDumper(Dumper):
    """pg_dump based dumps for PostgreSQL. No retry."""

    kind = DatabaseKind.POSTGRESQL

    def build_command(self, target) -> List[str]:
        return [self.binary]

    def build_env(self, target) -> Dict[str, str]:
        connection = target.connection
        env = {
            'PGHOST': connection.host,
            'PGPORT': str(connection.port),
            'PGUSER': connection.user,
            'PGDATABASE': connection.database,
        }
        if connection.password:
            env['PGPASSWORD'] = connection.password
        return env

    def dump(self, target, output_path: Path):
        self.runner.run(self.build_command(target), output_path, self.build_env(target))


def create_dumper(kind, runner: DumpRunner, settings) -> Dumper:
    """
    Factory function to create the dumper for a database kind.

    Args:
        kind: DatabaseKind (or its string value)
        runner: DumpRunner executing the dump program
        settings: BackupSettings providing program paths

    Returns:
        MariaDBDumper or PostgreSQLDumper instance

    Raises:
        ValueError: If kind is invalid
    """
    kind = DatabaseKind(kind)
    if kind == DatabaseKind.MARIADB:
        return MariaDBDumper(runner, settings.mysqldump_bin)
    elif kind == DatabaseKind.POSTGRESQL:
        return PostgreSQLDumper(runner, settings.pg_dump_bin)
    else:
        raise ValueError(f"Invalid database kind: {kind}")
