import os


PACKAGE_DIR = os.path.abspath(os.path.dirname(__file__))


class ConfigurationError(Exception):
    """Raised when a backup job is configured with an invalid value."""
    pass


def _env_flag(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Base configuration"""

    DEBUG = False

    # Temp storage for archives and dumps (sibling "tmp" directory by default)
    TEMP_DIR = os.environ.get('DAVBACKUP_TEMP_DIR') or os.path.join(PACKAGE_DIR, 'tmp')

    # Logging
    LOG_DIR = os.environ.get('DAVBACKUP_LOG_DIR') or os.path.join(PACKAGE_DIR, 'logs')
    LOG_LEVEL = os.environ.get('DAVBACKUP_LOG_LEVEL', 'INFO').upper()

    # WebDAV
    REQUEST_TIMEOUT = float(os.environ.get('DAVBACKUP_REQUEST_TIMEOUT', 300))
    REMOTE_DIR = os.environ.get('DAVBACKUP_REMOTE_DIR') or 'backup'
    PROVIDER = os.environ.get('DAVBACKUP_PROVIDER') or 'yandex'
    # Explicit endpoint for servers without a preset (takes precedence over PROVIDER)
    BASE_URL = os.environ.get('DAVBACKUP_BASE_URL')
    AUTH_SCHEME = os.environ.get('DAVBACKUP_AUTH_SCHEME') or 'basic'
    LOGIN = os.environ.get('DAVBACKUP_LOGIN')
    PASSWORD = os.environ.get('DAVBACKUP_PASSWORD')
    # Extra values substituted into provider URL templates (e.g. OneDrive cid)
    PROVIDER_CID = os.environ.get('DAVBACKUP_PROVIDER_CID')

    # Backup contents
    SOURCE_PATH = os.environ.get('DAVBACKUP_SOURCE_PATH')
    DATABASE_URL = os.environ.get('DAVBACKUP_DATABASE_URL')
    ARCHIVE_TYPE = os.environ.get('DAVBACKUP_ARCHIVE_TYPE') or 'tar'
    COMPRESSION = _env_flag('DAVBACKUP_COMPRESSION', True)
    REMOVE_LOCAL_FILE = _env_flag('DAVBACKUP_REMOVE_LOCAL_FILE', True)
    PREFIX = os.environ.get('DAVBACKUP_PREFIX')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'DEBUG'

    # Use local data directory for development
    BASE_DIR = os.path.dirname(PACKAGE_DIR)
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    TEMP_DIR = os.path.join(DATA_DIR, 'tmp')
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
