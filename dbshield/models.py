from datetime import datetime
from enum import Enum

from dbshield import db


class DatabaseKind(str, Enum):
    """Supported database engines"""
    MARIADB = 'mariadb'
    POSTGRESQL = 'postgresql'

    @property
    def default_port(self) -> int:
        return {DatabaseKind.MARIADB: 3306, DatabaseKind.POSTGRESQL: 5432}[self]

    @classmethod
    def values(cls) -> list:
        return [kind.value for kind in cls]


class Target(db.Model):
    """A database to protect with scheduled dumps"""
    __tablename__ = 'targets'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), unique=True, nullable=False)
    db_kind = db.Column(db.String(20), nullable=False)  # 'mariadb' or 'postgresql'
    host = db.Column(db.String(255), nullable=False, default='localhost')
    port = db.Column(db.Integer, nullable=False)
    user = db.Column(db.String(255), nullable=False)
    password_encrypted = db.Column(db.Text, nullable=True)  # Encrypted with SecretCipher
    database = db.Column(db.String(255), nullable=False)
    output_dir = db.Column(db.String(500), nullable=False)
    retention_count = db.Column(db.Integer, nullable=False, default=5)
    schedule_cron = db.Column(db.String(100))  # 6-field cron expression (seconds first)
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def kind(self) -> DatabaseKind:
        return DatabaseKind(self.db_kind)

    def __repr__(self):
        return f'<Target {self.name} kind={self.db_kind} enabled={self.enabled}>'
