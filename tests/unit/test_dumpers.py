"""
Unit tests for dump procedures (dbshield/backup/dumpers.py).

Tests command construction, credential passing, the MariaDB fallback
retry and the subprocess runner.
"""

import sys
import threading
import time
from unittest.mock import PropertyMock, patch

import pytest

from dbshield.backup.dumpers import (
    DumpCancelled,
    DumpRunner,
    ExecutionError,
    MariaDBDumper,
    PostgreSQLDumper,
    create_dumper,
)
from dbshield.backup.executor import BackupSettings
from dbshield.models import DatabaseKind


class TestMariaDBDumper:
    """Test mysqldump based dumps."""

    def test_build_command(self, make_target, fake_runner):
        """Test standard invocation."""
        dumper = MariaDBDumper(fake_runner, 'mysqldump')

        assert dumper.build_command(make_target()) == [
            'mysqldump',
            '-hdb.example.com',
            '-P3306',
            '-ubackup',
            '--column-statistics=0',
            '--skip-dump-date',
            'sales',
        ]

    def test_build_command_relaxed(self, make_target, fake_runner):
        """Test fallback invocation adds lock-free flags before the database."""
        dumper = MariaDBDumper(fake_runner, 'mysqldump')

        args = dumper.build_command(make_target(), relaxed=True)

        assert args[-4:] == ['--skip-lock-tables', '--single-transaction', '--quick', 'sales']

    def test_password_passed_through_environment(self, make_target, fake_runner):
        """Test password never appears in the argument list."""
        dumper = MariaDBDumper(fake_runner, 'mysqldump')
        target = make_target(password='s3cret')

        assert dumper.build_env(target) == {'MYSQL_PWD': 's3cret'}
        assert not any('s3cret' in arg for arg in dumper.build_command(target))

    def test_no_password(self, make_target, fake_runner):
        dumper = MariaDBDumper(fake_runner, 'mysqldump')

        assert dumper.build_env(make_target(password=None)) == {}

    def test_dump_success_single_attempt(self, make_target, fake_runner, tmp_path):
        """Test a successful standard run is not retried."""
        dumper = MariaDBDumper(fake_runner, 'mysqldump')
        output = tmp_path / 'out.sql'

        dumper.dump(make_target(), output)

        assert len(fake_runner.calls) == 1
        assert '--skip-lock-tables' not in fake_runner.calls[0]['args']
        assert fake_runner.calls[0]['env'] == {'MYSQL_PWD': 's3cret'}

    def test_dump_fallback_succeeds(self, make_target, fake_runner, tmp_path):
        """Test a failed standard run is retried once with the relaxed flags."""
        fake_runner.outcomes = [ExecutionError('Access denied for LOCK TABLES'), b'-- complete dump']
        dumper = MariaDBDumper(fake_runner, 'mysqldump')
        output = tmp_path / 'out.sql'

        dumper.dump(make_target(), output)

        assert len(fake_runner.calls) == 2
        assert '--skip-lock-tables' in fake_runner.calls[1]['args']
        assert fake_runner.calls[1]['output_path'] == output
        assert output.read_bytes() == b'-- complete dump'

    def test_dump_fallback_fails(self, make_target, fake_runner, tmp_path):
        """Test the retry's error is raised when both attempts fail."""
        fake_runner.outcomes = [ExecutionError('first'), ExecutionError('second')]
        dumper = MariaDBDumper(fake_runner, 'mysqldump')

        with pytest.raises(ExecutionError, match='second'):
            dumper.dump(make_target(), tmp_path / 'out.sql')

        assert len(fake_runner.calls) == 2

    def test_cancelled_dump_is_not_retried(self, make_target, fake_runner, tmp_path):
        """Test shutdown interrupts without a fallback attempt."""
        fake_runner.outcomes = [DumpCancelled('interrupted')]
        dumper = MariaDBDumper(fake_runner, 'mysqldump')

        with pytest.raises(DumpCancelled):
            dumper.dump(make_target(), tmp_path / 'out.sql')

        assert len(fake_runner.calls) == 1

    def test_deduplicates(self):
        assert MariaDBDumper.deduplicate is True


class TestPostgreSQLDumper:
    """Test pg_dump based dumps."""

    def test_connection_in_environment(self, make_target, fake_runner):
        """Test connection parameters are passed as libpq variables."""
        dumper = PostgreSQLDumper(fake_runner, 'pg_dump')
        target = make_target(name='inventory', kind=DatabaseKind.POSTGRESQL, password='pw')

        assert dumper.build_command(target) == ['pg_dump']
        assert dumper.build_env(target) == {
            'PGHOST': 'db.example.com',
            'PGPORT': '5432',
            'PGUSER': 'backup',
            'PGDATABASE': 'inventory',
            'PGPASSWORD': 'pw',
        }

    def test_no_password(self, make_target, fake_runner):
        dumper = PostgreSQLDumper(fake_runner, 'pg_dump')
        target = make_target(kind=DatabaseKind.POSTGRESQL, password=None)

        assert 'PGPASSWORD' not in dumper.build_env(target)

    def test_failure_is_not_retried(self, make_target, fake_runner, tmp_path):
        """Test a pg_dump failure is raised after a single attempt."""
        fake_runner.outcomes = [ExecutionError('connection refused')]
        dumper = PostgreSQLDumper(fake_runner, 'pg_dump')

        with pytest.raises(ExecutionError, match='connection refused'):
            dumper.dump(make_target(kind=DatabaseKind.POSTGRESQL), tmp_path / 'out.sql')

        assert len(fake_runner.calls) == 1

    def test_does_not_deduplicate(self):
        assert PostgreSQLDumper.deduplicate is False


class TestCreateDumper:
    """Test dumper factory."""

    def test_create_by_kind(self, fake_runner):
        settings = BackupSettings(mysqldump_bin='/usr/bin/mysqldump', pg_dump_bin='/usr/bin/pg_dump')

        mariadb = create_dumper(DatabaseKind.MARIADB, fake_runner, settings)
        postgres = create_dumper('postgresql', fake_runner, settings)

        assert isinstance(mariadb, MariaDBDumper)
        assert mariadb.binary == '/usr/bin/mysqldump'
        assert isinstance(postgres, PostgreSQLDumper)
        assert postgres.binary == '/usr/bin/pg_dump'

    def test_invalid_kind(self, fake_runner):
        with pytest.raises(ValueError):
            create_dumper('oracle', fake_runner, BackupSettings())


class TestDumpRunner:
    """Test running dump programs as subprocesses."""

    def test_stdout_written_to_file(self, tmp_path):
        output = tmp_path / 'out.sql'

        DumpRunner().run([sys.executable, '-c', 'print("-- dump")'], output)

        assert output.read_text().strip() == '-- dump'

    def test_extra_environment(self, tmp_path):
        """Test extra variables reach the process."""
        output = tmp_path / 'out.sql'
        script = 'import os; print(os.environ["MYSQL_PWD"])'

        DumpRunner().run([sys.executable, '-c', script], output, {'MYSQL_PWD': 's3cret'})

        assert output.read_text().strip() == 's3cret'

    def test_non_zero_exit(self, tmp_path):
        """Test a failing program raises with its stderr."""
        script = 'import sys; sys.stderr.write("Access denied"); sys.exit(2)'

        with pytest.raises(ExecutionError, match='status 2: Access denied'):
            DumpRunner().run([sys.executable, '-c', script], tmp_path / 'out.sql')

    def test_program_not_found(self, tmp_path):
        with pytest.raises(ExecutionError, match='program not found'):
            DumpRunner().run(['/nonexistent/mysqldump'], tmp_path / 'out.sql')

    def test_timeout(self, tmp_path):
        """Test a hanging program is killed."""
        with pytest.raises(ExecutionError, match='timed out'):
            DumpRunner(timeout=1).run([sys.executable, '-c', 'import time; time.sleep(30)'],
                                      tmp_path / 'out.sql')

    def test_cancelled_runner_refuses_new_dumps(self, tmp_path):
        runner = DumpRunner()
        runner.cancel()

        assert runner.cancelled
        with pytest.raises(DumpCancelled):
            runner.run([sys.executable, '-c', 'print(1)'], tmp_path / 'out.sql')

    def test_cancel_between_check_and_start(self, tmp_path):
        """Test a cancel landing after the first check still prevents the start."""
        runner = DumpRunner()
        runner.cancel()

        with patch.object(DumpRunner, 'cancelled', new_callable=PropertyMock, return_value=False):
            with patch('dbshield.backup.dumpers.subprocess.Popen') as mock_popen:
                with pytest.raises(DumpCancelled, match='not started'):
                    runner.run(['mysqldump'], tmp_path / 'out.sql')

        mock_popen.assert_not_called()

    def test_cancel_terminates_running_process(self, tmp_path):
        """Test cancel stops an in-flight process well before it would exit."""
        runner = DumpRunner()
        timer = threading.Timer(1.0, runner.cancel)
        timer.start()
        started = time.monotonic()

        try:
            with pytest.raises(DumpCancelled, match='interrupted'):
                runner.run([sys.executable, '-c', 'import time; time.sleep(30)'], tmp_path / 'out.sql')
        finally:
            timer.cancel()

        assert time.monotonic() - started < 10

    def test_unwritable_output(self, tmp_path):
        """Test an output path that cannot be opened raises ExecutionError."""
        with pytest.raises(ExecutionError, match='Failed to open dump output'):
            DumpRunner().run([sys.executable, '-c', 'print(1)'], tmp_path)
