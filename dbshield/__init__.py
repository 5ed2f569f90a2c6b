import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


# Initialize extensions
db = SQLAlchemy()


def configure_logging(app):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'dbshield.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger; module loggers (and app.logger) propagate to it
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler], force=True)
    app.logger.setLevel(log_level)

    # APScheduler logs every job run at INFO
    logging.getLogger('apscheduler').setLevel(logging.WARNING)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, overrides=None):
    """
    Flask application factory

    Args:
        config_name: Key of the configuration class to load
        overrides: Optional dict applied on top of the configuration class
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from dbshield.config import config, validate_schedule_window
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    validate_schedule_window(app.config['POLL_INTERVAL_SECONDS'], app.config['LOOKBACK_SECONDS'])

    # Configure logging
    configure_logging(app)

    # Ensure the SQLite directory exists
    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite:///') and ':memory:' not in database_uri:
        os.makedirs(os.path.dirname(database_uri.replace('sqlite:///', '')) or '.', exist_ok=True)

    # Initialize extensions
    db.init_app(app)

    # Register CLI commands and blueprints
    from dbshield.cli import backup_cli, targets_cli
    app.cli.add_command(targets_cli)
    app.cli.add_command(backup_cli)

    from dbshield.routes import status_routes
    app.register_blueprint(status_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize database schema and run migrations
    from dbshield import models
    from dbshield.migrations import init_database_schema

    init_database_schema(app)

    # Start the background scheduler when this process serves as the backup worker
    from dbshield.scheduler import init_scheduler, start_scheduler, stop_scheduler
    import atexit

    should_start_scheduler = app.config.get('SCHEDULER_AUTOSTART', False)
    if should_start_scheduler and app.config.get('DEBUG', False):
        # Development: only in the Flask reloader child process (not parent)
        should_start_scheduler = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'

    if should_start_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Stop the scheduler (and any running dump) on shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler not started in this process (SCHEDULER_AUTOSTART disabled)")

    return app
