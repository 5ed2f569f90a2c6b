"""
Database migrations for DB Shield.

Simple migration system to handle schema changes without requiring Alembic.
"""

import logging
from sqlalchemy import text, inspect
from sqlalchemy.exc import SQLAlchemyError
from dbshield import db

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Initialize database schema and run migrations.

    Creates tables that don't exist yet and applies missing column changes.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = inspector.get_table_names()

        if 'targets' not in existing_tables:
            logger.info("No targets table found - creating database schema")
            try:
                db.create_all()
                logger.info("Database schema created successfully")
            except SQLAlchemyError as e:
                # Another process may have created it concurrently
                logger.error(f"Failed to create database schema: {e}")
        else:
            run_migrations(app, inspector)


def run_migrations(app, inspector=None):
    """
    Run all necessary database migrations.

    This function checks the database schema and applies any missing changes.
    """
    if inspector is None:
        inspector = inspect(db.engine)

    # Migration 1: targets created before enable/disable support default to enabled
    if 'targets' in inspector.get_table_names():
        columns = [col['name'] for col in inspector.get_columns('targets')]

        if 'enabled' not in columns:
            logger.info("Running migration: Adding enabled column to targets table")
            try:
                db.session.execute(text(
                    "ALTER TABLE targets ADD COLUMN enabled BOOLEAN NOT NULL DEFAULT 1"
                ))
                db.session.commit()
                logger.info("Successfully added enabled column")
            except SQLAlchemyError as e:
                logger.error(f"Failed to add enabled column: {e}")
                db.session.rollback()
