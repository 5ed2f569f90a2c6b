"""
Unit tests for database models (dbshield/models.py).
"""

import pytest
from sqlalchemy.exc import IntegrityError

from dbshield.models import DatabaseKind, Target


class TestDatabaseKind:
    """Test DatabaseKind enum."""

    def test_values(self):
        assert DatabaseKind.values() == ['mariadb', 'postgresql']

    def test_default_ports(self):
        assert DatabaseKind.MARIADB.default_port == 3306
        assert DatabaseKind.POSTGRESQL.default_port == 5432

    def test_from_string(self):
        assert DatabaseKind('postgresql') is DatabaseKind.POSTGRESQL


class TestTargetModel:
    """Test Target model."""

    def test_create_target_defaults(self, db):
        """Test creating a target applies defaults."""
        target = Target(
            name='sales',
            db_kind='mariadb',
            host='localhost',
            port=3306,
            user='root',
            database='sales',
            output_dir='/backups/sales'
        )
        db.session.add(target)
        db.session.commit()

        assert target.id is not None
        assert target.retention_count == 5
        assert target.enabled is True
        assert target.schedule_cron is None
        assert target.password_encrypted is None
        assert target.created_at is not None
        assert target.kind == DatabaseKind.MARIADB

    def test_unique_name(self, db, mariadb_target):
        """Test two targets cannot share a name."""
        db.session.add(Target(
            name='sales',
            db_kind='postgresql',
            host='localhost',
            port=5432,
            user='postgres',
            database='other',
            output_dir='/backups/other'
        ))

        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_repr(self, mariadb_target):
        assert repr(mariadb_target) == '<Target sales kind=mariadb enabled=True>'
