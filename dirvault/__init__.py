import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(app):
    """Configure application logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler (skipped when no log directory is configured, e.g. tests)
    log_dir = app.config.get('LOG_DIR')
    log_dir_error = None
    if log_dir:
        try:
            os.makedirs(log_dir, exist_ok=True)

            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'dirvault.log'),
                maxBytes=10485760,  # 10MB
                backupCount=10
            )
        except OSError as e:
            # Console logging still works; a backup run must not die here
            file_handler = None
            log_dir_error = e

        if file_handler is not None:
            file_handler.setLevel(log_level)
            file_formatter = logging.Formatter(
                '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
            )
            file_handler.setFormatter(file_formatter)
            handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers)

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    for handler in handlers:
        app.logger.addHandler(handler)

    if log_dir_error is not None:
        app.logger.warning(f"File logging disabled, cannot write to {log_dir}: {log_dir_error}")

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None):
    """Flask application factory"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from dirvault.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    # Register blueprints and CLI commands
    from dirvault.routes import backup_routes
    app.register_blueprint(backup_routes.bp)

    from dirvault.commands import backup_cli
    app.cli.add_command(backup_cli)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize and start scheduler (only in designated worker or development child process)
    from dirvault.scheduler import init_scheduler, start_scheduler, sync_backup_schedule, stop_scheduler
    import atexit

    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # Scheduler initialization logic:
    # - Disabled entirely by SCHEDULER_ENABLED=False (tests, one-shot CLI runs)
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Production mode: Only in designated scheduler worker (SCHEDULER_WORKER=true)
    if not app.config.get('SCHEDULER_ENABLED', True):
        should_init_scheduler = False
    elif is_development:
        should_init_scheduler = is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
    else:
        should_init_scheduler = is_scheduler_worker
        app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")

    if should_init_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)
        start_scheduler()

        # Register the recurring backup from the configuration store
        sync_backup_schedule()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler initialization skipped in this process")

    return app
