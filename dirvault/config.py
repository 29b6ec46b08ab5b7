import os


# Per-user data directory; the console script runs as whoever cron or the timer runs it as
USER_DATA_DIR = os.environ.get('DIRVAULT_HOME') or os.path.join(os.path.expanduser('~'), '.dirvault')


class Config:
    """Base configuration"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dirvault-local'

    # Backup configuration store (JSON)
    BACKUP_CONFIG_FILE = os.environ.get('DIRVAULT_CONFIG') or os.path.join(USER_DATA_DIR, 'backup-config.json')

    # Logging
    LOG_DIR = os.environ.get('DIRVAULT_LOG_DIR') or os.path.join(USER_DATA_DIR, 'logs')

    # Liveness callback interval while a write is running
    PROGRESS_INTERVAL_SECONDS = int(os.environ.get('DIRVAULT_PROGRESS_INTERVAL', 30))

    # Scheduler (off by default so one-shot CLI runs never start it)
    SCHEDULER_ENABLED = os.environ.get('DIRVAULT_SCHEDULER', 'false').lower() == 'true'
    SCHEDULER_TIMEZONE = os.environ.get('DIRVAULT_TIMEZONE') or 'UTC'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    BACKUP_CONFIG_FILE = os.environ.get('DIRVAULT_CONFIG') or os.path.join(DATA_DIR, 'backup-config.json')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    LOG_DIR = None
    SCHEDULER_ENABLED = False
    PROGRESS_INTERVAL_SECONDS = 0


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
