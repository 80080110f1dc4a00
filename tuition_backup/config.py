import os
import tempfile
from dataclasses import dataclass, field
from typing import Optional, Tuple


DEFAULT_EXCLUDE_PATTERNS = (
    'node_modules',
    '.venv',
    'venv',
    '__pycache__',
    '.git',
    'logs',
    'tmp',
    '*.log',
    '.env*',
)


def _env_int(name, default):
    value = os.environ.get(name)
    return int(value) if value else default


def production_engine_options(database_uri):
    """
    Engine options for production.

    MySQL URIs also get driver-level connect/read timeouts so a stalled
    server fails the dump instead of hanging it.
    """
    options = {
        'pool_pre_ping': True,
        'pool_timeout': 30,
        'pool_recycle': 3600,
    }
    if database_uri.startswith('mysql'):
        options['connect_args'] = {
            'connect_timeout': _env_int('DB_CONNECT_TIMEOUT', 10),
            'read_timeout': _env_int('DB_READ_TIMEOUT', 300),
            'write_timeout': _env_int('DB_WRITE_TIMEOUT', 300),
        }
    return options


class Config:
    """Base configuration"""

    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key'

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///tuition.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
    }
    DATABASE_NAME = os.environ.get('DB_NAME') or 'tuition'

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(os.getcwd(), 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL')

    # Backup
    BACKUP_BUCKET_NAME = os.environ.get('BACKUP_BUCKET_NAME') or 'aaradhya-tuition-backups'
    BACKUP_RETENTION_DAYS = _env_int('BACKUP_RETENTION_DAYS', 30)
    BACKUP_REGION = os.environ.get('BACKUP_REGION') or 'ap-south-1'
    BACKUP_PROJECT_LABEL = os.environ.get('BACKUP_PROJECT_LABEL') or 'aaradhya-tuition-system'
    BACKUP_SOURCE_ROOT = os.environ.get('BACKUP_SOURCE_ROOT') or os.getcwd()
    BACKUP_SCRATCH_DIR = os.environ.get('BACKUP_SCRATCH_DIR') or os.path.join(tempfile.gettempdir(), 'backups')
    BACKUP_EXCLUDE_PATTERNS = tuple(
        p.strip() for p in os.environ['BACKUP_EXCLUDE_PATTERNS'].split(',') if p.strip()
    ) if os.environ.get('BACKUP_EXCLUDE_PATTERNS') else DEFAULT_EXCLUDE_PATTERNS
    BACKUP_ARCHIVER = os.environ.get('BACKUP_ARCHIVER') or 'tar'
    BACKUP_ARCHIVE_TIMEOUT = _env_int('BACKUP_ARCHIVE_TIMEOUT', 900)
    BACKUP_S3_ENDPOINT_URL = os.environ.get('BACKUP_S3_ENDPOINT_URL')
    BACKUP_S3_CONNECT_TIMEOUT = _env_int('BACKUP_S3_CONNECT_TIMEOUT', 10)
    BACKUP_S3_READ_TIMEOUT = _env_int('BACKUP_S3_READ_TIMEOUT', 120)
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    BACKUP_API_TOKEN = os.environ.get('BACKUP_API_TOKEN')

    # Notifications
    BACKUP_NOTIFY_EMAIL = os.environ.get('BACKUP_NOTIFY_EMAIL')
    SMTP_HOST = os.environ.get('SMTP_HOST')
    SMTP_PORT = _env_int('SMTP_PORT', 587)
    SMTP_USERNAME = os.environ.get('SMTP_USERNAME')
    SMTP_PASSWORD = os.environ.get('SMTP_PASSWORD')
    SMTP_SENDER = os.environ.get('SMTP_SENDER') or 'backups@localhost'

    # Scheduler
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or 'UTC'
    BACKUP_SCHEDULE_HOUR = _env_int('BACKUP_SCHEDULE_HOUR', 2)
    BACKUP_SCHEDULE_MINUTE = _env_int('BACKUP_SCHEDULE_MINUTE', 0)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = False

    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{os.path.join(DATA_DIR, "tuition.db")}'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ENGINE_OPTIONS = production_engine_options(Config.SQLALCHEMY_DATABASE_URI)


class TestingConfig(Config):
    """Test configuration: in-memory database, no scheduler."""
    TESTING = True
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'tuition_backup_test_logs')
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    BACKUP_BUCKET_NAME = 'test-bucket'
    BACKUP_REGION = 'us-east-1'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


@dataclass(frozen=True)
class BackupSettings:
    """
    Immutable backup configuration handed to the orchestrator.

    Built once at process start from the Flask config so that a running
    backup never observes configuration changes half-way through.
    """

    bucket_name: str
    region: str
    retention_days: int = 30
    project_label: str = 'aaradhya-tuition-system'
    database_name: str = 'tuition'
    source_root: str = '.'
    scratch_dir: str = field(default_factory=tempfile.gettempdir)
    archiver: str = 'tar'
    archive_timeout: int = 900
    exclude_patterns: Tuple[str, ...] = DEFAULT_EXCLUDE_PATTERNS
    endpoint_url: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    connect_timeout: int = 10
    read_timeout: int = 120
    notify_email: Optional[str] = None
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_sender: str = 'backups@localhost'

    @classmethod
    def from_config(cls, app_config) -> 'BackupSettings':
        """
        Build settings from a Flask config mapping.

        Args:
            app_config: Flask ``app.config`` (or any mapping with the same keys)

        Returns:
            Frozen BackupSettings instance
        """
        return cls(
            bucket_name=app_config['BACKUP_BUCKET_NAME'],
            region=app_config['BACKUP_REGION'],
            retention_days=int(app_config['BACKUP_RETENTION_DAYS']),
            project_label=app_config['BACKUP_PROJECT_LABEL'],
            database_name=app_config.get('DATABASE_NAME', 'tuition'),
            source_root=app_config['BACKUP_SOURCE_ROOT'],
            scratch_dir=app_config['BACKUP_SCRATCH_DIR'],
            archiver=app_config.get('BACKUP_ARCHIVER', 'tar'),
            exclude_patterns=tuple(app_config.get('BACKUP_EXCLUDE_PATTERNS', DEFAULT_EXCLUDE_PATTERNS)),
            archive_timeout=int(app_config.get('BACKUP_ARCHIVE_TIMEOUT', 900)),
            endpoint_url=app_config.get('BACKUP_S3_ENDPOINT_URL'),
            access_key=app_config.get('AWS_ACCESS_KEY_ID'),
            secret_key=app_config.get('AWS_SECRET_ACCESS_KEY'),
            connect_timeout=int(app_config.get('BACKUP_S3_CONNECT_TIMEOUT', 10)),
            read_timeout=int(app_config.get('BACKUP_S3_READ_TIMEOUT', 120)),
            notify_email=app_config.get('BACKUP_NOTIFY_EMAIL'),
            smtp_host=app_config.get('SMTP_HOST'),
            smtp_port=int(app_config.get('SMTP_PORT', 587)),
            smtp_username=app_config.get('SMTP_USERNAME'),
            smtp_password=app_config.get('SMTP_PASSWORD'),
            smtp_sender=app_config.get('SMTP_SENDER', 'backups@localhost'),
        )
