import os


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


def validate_schedule_window(poll_interval: int, lookback: int):
    """
    Check that the lookback window covers the gap between two polls.

    Args:
        poll_interval: Seconds between two scheduler ticks
        lookback: Width of the due-time search window in seconds

    Raises:
        ValueError: If the window could let a firing fall between two ticks
    """
    if poll_interval <= 0:
        raise ValueError(f"Poll interval must be positive, got {poll_interval}")
    if lookback <= poll_interval:
        raise ValueError(
            f"Lookback window ({lookback}s) must be greater than the poll interval ({poll_interval}s)"
        )


class Config:
    """Base configuration"""

    # Flask
    # Get SECRET_KEY from environment, or generate a persistent one in development
    SECRET_KEY = os.environ.get('SECRET_KEY')
    if not SECRET_KEY:
        # Try to read from persistent file in /data directory
        secret_file = '/data/.secret_key'
        if os.path.exists(secret_file):
            with open(secret_file, 'r') as f:
                SECRET_KEY = f.read().strip()
        else:
            # Stored target passwords cannot be decrypted after a restart with this key
            import secrets
            SECRET_KEY = secrets.token_hex(32)
            print("WARNING: Using non-persistent SECRET_KEY. Set SECRET_KEY environment variable.")

    # Database holding target configuration
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:////data/dbshield.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Backups and logs
    DEFAULT_OUTPUT_DIR = os.environ.get('BACKUP_DIR') or '/data/backups'
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Scheduler
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or 'UTC'
    POLL_INTERVAL_SECONDS = _env_int('POLL_INTERVAL_SECONDS', 10)
    LOOKBACK_SECONDS = _env_int('LOOKBACK_SECONDS', 61)
    SCHEDULER_AUTOSTART = os.environ.get('SCHEDULER_AUTOSTART', 'false').lower() == 'true'

    # Dump programs
    MYSQLDUMP_BIN = os.environ.get('MYSQLDUMP_BIN') or 'mysqldump'
    PG_DUMP_BIN = os.environ.get('PG_DUMP_BIN') or 'pg_dump'
    DUMP_TIMEOUT_SECONDS = _env_int('DUMP_TIMEOUT_SECONDS', 3600)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = f'sqlite:///{os.path.join(DATA_DIR, "dbshield.db")}'
    DEFAULT_OUTPUT_DIR = os.path.join(DATA_DIR, 'backups')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
