import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy


# Initialize extensions
db = SQLAlchemy()


def configure_logging(app):
    """
    Send log records to stderr and to a rotating file under LOG_DIR.

    LOG_LEVEL overrides the default (DEBUG when app.debug, INFO otherwise).
    """
    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    default_level = 'DEBUG' if app.config.get('DEBUG', False) else 'INFO'
    log_level = logging.getLevelName((app.config.get('LOG_LEVEL') or default_level).upper())

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    ))

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'tuition_backup.log'),
        maxBytes=app.config.get('LOG_MAX_BYTES', 10 * 1024 * 1024),
        backupCount=app.config.get('LOG_BACKUP_COUNT', 10)
    )
    file_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    ))

    for handler in (console_handler, file_handler):
        handler.setLevel(log_level)

    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])
    app.logger.setLevel(log_level)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, with_scheduler=True):
    """
    Flask application factory.

    Args:
        config_name: Key of tuition_backup.config.config (default: $FLASK_ENV or 'production')
        with_scheduler: Start the daily backup scheduler in this process if it is
            the designated scheduler worker. The standalone backup job passes False.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from tuition_backup.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    database_uri = app.config['SQLALCHEMY_DATABASE_URI']
    if database_uri.startswith('sqlite:///') and ':memory:' not in database_uri:
        os.makedirs(os.path.dirname(os.path.abspath(database_uri.replace('sqlite:///', ''))), exist_ok=True)

    # Initialize extensions
    db.init_app(app)

    from tuition_backup.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    if not with_scheduler or app.config.get('TESTING', False):
        app.logger.info("Scheduler initialization skipped in this process")
        return app

    from tuition_backup.scheduler import init_scheduler, start_scheduler, stop_scheduler
    import atexit

    # Determine if this process should initialize the scheduler
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # - Development mode: only in the Flask reloader child process
    # - Production mode: only in the designated gunicorn worker
    if is_development:
        should_init_scheduler = is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
    else:
        should_init_scheduler = is_scheduler_worker
        app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")

    if should_init_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler initialization skipped in this process (not designated scheduler worker)")

    return app
