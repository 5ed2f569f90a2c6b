"""
Read-only snapshots of the configured backup targets.

The orchestration loop reloads targets from the database on every tick and
works on these immutable snapshots, so configuration edits take effect on
the next tick without a restart.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from cryptography.fernet import InvalidToken
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from dbshield.models import DatabaseKind, Target
from dbshield.utils.crypto import SecretCipher, get_secret_cipher

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when the target configuration cannot be read."""
    pass


@dataclass(frozen=True)
class ConnectionDetails:
    host: str
    port: int
    user: str
    database: str
    password: Optional[str] = None

    def __repr__(self):
        # Keep the secret out of logs and tracebacks
        return (f"ConnectionDetails(host={self.host!r}, port={self.port}, user={self.user!r}, "
                f"database={self.database!r}, password={'***' if self.password else None})")


@dataclass(frozen=True)
class TargetSpec:
    name: str
    kind: DatabaseKind
    connection: ConnectionDetails
    output_dir: Path
    retention_count: int
    schedule: Optional[str] = None
    enabled: bool = True


def snapshot_target(target: Target, cipher: SecretCipher) -> TargetSpec:
    """
    Convert a Target row into an immutable snapshot with the password decrypted.

    Args:
        target: Target model instance
        cipher: SecretCipher used to decrypt the stored password

    Returns:
        TargetSpec snapshot

    Raises:
        ConfigurationError: If the row cannot be interpreted
    """
    try:
        kind = DatabaseKind(target.db_kind)
    except ValueError:
        raise ConfigurationError(f"Unknown database kind '{target.db_kind}' for target {target.name}")

    password = None
    if target.password_encrypted:
        try:
            password = cipher.decrypt(target.password_encrypted)
        except (InvalidToken, ValueError) as e:
            raise ConfigurationError(f"Failed to decrypt password for target {target.name}: {e}")

    return TargetSpec(
        name=target.name,
        kind=kind,
        connection=ConnectionDetails(
            host=target.host,
            port=target.port,
            user=target.user,
            database=target.database,
            password=password
        ),
        output_dir=Path(target.output_dir),
        retention_count=target.retention_count,
        schedule=target.schedule_cron or None,
        enabled=target.enabled
    )


def load_targets(enabled_only: bool = False) -> List[TargetSpec]:
    """
    Load snapshots of all configured targets.

    A target whose row cannot be interpreted is logged and left out; the
    remaining targets are still returned.

    Args:
        enabled_only: Only return enabled targets

    Returns:
        List of TargetSpec ordered by target id

    Raises:
        ConfigurationError: If the target table cannot be read
    """
    try:
        query = Target.query.order_by(Target.id)
        if enabled_only:
            query = query.filter_by(enabled=True)
        rows = query.all()
    except SQLAlchemyError as e:
        raise ConfigurationError(f"Failed to load backup targets: {e}")

    cipher = get_secret_cipher(current_app)
    targets = []
    for row in rows:
        try:
            targets.append(snapshot_target(row, cipher))
        except ConfigurationError as e:
            logger.error(str(e))

    return targets


def find_target(query: str) -> Optional[Target]:
    """
    Resolve a target by 1-based position (ordered by id) or by exact name.

    Args:
        query: Position or name

    Returns:
        Target instance, or None if not found
    """
    if query.isdigit():
        position = int(query)
        targets = Target.query.order_by(Target.id).all()
        if 0 < position <= len(targets):
            return targets[position - 1]

    return Target.query.filter_by(name=query).first()
