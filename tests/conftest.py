"""
Shared pytest fixtures for DB Shield tests.

This module provides fixtures for:
- Flask app, CLI runner and test client
- Database setup with in-memory SQLite
- Target fixtures (database rows and in-memory snapshots)
- A fake dump runner standing in for mysqldump/pg_dump
"""

from pathlib import Path

import pytest

from dbshield import create_app, db as _db
from dbshield.backup.targets import ConnectionDetails, TargetSpec
from dbshield.models import DatabaseKind, Target
from dbshield.utils.crypto import SecretCipher


TEST_SECRET_KEY = 'test-secret-key'


class FakeDumpRunner:
    """
    Stand-in for DumpRunner.

    Each call consumes the next scripted outcome: bytes are written to the
    output file as a successful dump, an exception writes a partial file
    and is raised.
    """

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls = []

    def run(self, args, output_path, env=None):
        self.calls.append({
            'args': list(args),
            'output_path': Path(output_path),
            'env': dict(env or {})
        })
        outcome = self.outcomes.pop(0) if self.outcomes else b'-- dump\n'
        if isinstance(outcome, Exception):
            Path(output_path).write_bytes(b'-- partial dump')
            raise outcome
        Path(output_path).write_bytes(outcome)

    def cancel(self):
        pass


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('development', {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SECRET_KEY': TEST_SECRET_KEY,
        'LOG_DIR': str(tmp_path / 'logs'),
        'DEFAULT_OUTPUT_DIR': str(tmp_path / 'backups'),
        'SCHEDULER_AUTOSTART': False,
        'SCHEDULER_TIMEZONE': 'UTC',
    })

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def cipher():
    """SecretCipher matching the test SECRET_KEY."""
    return SecretCipher(TEST_SECRET_KEY)


@pytest.fixture(scope='function')
def mariadb_target(db, cipher, tmp_path):
    """
    Create a MariaDB target with an hourly schedule and a password.
    """
    target = Target(
        name='sales',
        db_kind='mariadb',
        host='db.example.com',
        port=3306,
        user='backup',
        password_encrypted=cipher.encrypt('s3cret'),
        database='sales',
        output_dir=str(tmp_path / 'backups' / 'sales'),
        retention_count=3,
        schedule_cron='0 0 * * * *',
        enabled=True
    )
    db.session.add(target)
    db.session.commit()
    return target


@pytest.fixture(scope='function')
def postgres_target(db, tmp_path):
    """
    Create a PostgreSQL target without password, running daily at 2 AM.
    """
    target = Target(
        name='inventory',
        db_kind='postgresql',
        host='pg.example.com',
        port=5432,
        user='postgres',
        database='inventory',
        output_dir=str(tmp_path / 'backups' / 'inventory'),
        retention_count=5,
        schedule_cron='0 0 2 * * *',
        enabled=True
    )
    db.session.add(target)
    db.session.commit()
    return target


@pytest.fixture
def make_target(tmp_path):
    """
    Factory for in-memory TargetSpec snapshots.
    """
    def _make(name='sales', kind=DatabaseKind.MARIADB, retention_count=3, schedule='0 0 * * * *',
              password='s3cret', output_dir=None):
        return TargetSpec(
            name=name,
            kind=DatabaseKind(kind),
            connection=ConnectionDetails(
                host='db.example.com',
                port=DatabaseKind(kind).default_port,
                user='backup',
                database=name,
                password=password
            ),
            output_dir=Path(output_dir) if output_dir else tmp_path / 'backups' / name,
            retention_count=retention_count,
            schedule=schedule
        )

    return _make


@pytest.fixture
def fake_runner():
    """Fake dump runner that writes '-- dump' unless scripted otherwise."""
    return FakeDumpRunner()


@pytest.fixture
def make_artifacts():
    """
    Create artifact files with increasing modification times.

    Returns a function taking (directory, names, content) and returning the paths.
    """
    import os

    def _make(directory, names, content=b'-- dump\n'):
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for index, name in enumerate(names):
            path = directory / name
            path.write_bytes(content if isinstance(content, bytes) else content[index])
            timestamp = 1_700_000_000 + index * 60
            os.utime(path, (timestamp, timestamp))
            paths.append(path)
        return paths

    return _make
