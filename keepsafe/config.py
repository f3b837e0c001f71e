import os
import tempfile


class Config:
    """Base configuration"""

    # Lock resource shared by every invocation of the tool
    LOCK_FILE = os.environ.get('KEEPSAFE_LOCK_FILE') or os.path.join(
        tempfile.gettempdir(), 'keepsafe.lock'
    )

    # Parent of the job's own scratch directory (keepsafe-job), which is
    # removed when the job ends
    TEMP_DIR = os.environ.get('KEEPSAFE_TEMP_DIR') or tempfile.gettempdir()

    # Logging
    LOG_FILE = os.environ.get('KEEPSAFE_LOG_FILE') or None
    LOG_MAX_BYTES = 10485760  # 10MB
    LOG_BACKUP_COUNT = 10

    # Block size used when hashing and scanning archives
    HASH_CHUNK_SIZE = int(os.environ.get('KEEPSAFE_HASH_CHUNK_SIZE', 1024 * 1024))

    DEBUG = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    HASH_CHUNK_SIZE = 4096


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def load_config(config_name=None) -> dict:
    """
    Build a settings dict from one of the configuration classes.

    Args:
        config_name: Key into ``config``; defaults to $KEEPSAFE_ENV or 'production'

    Returns:
        Dict of the UPPERCASE attributes of the selected class
    """
    if config_name is None:
        config_name = os.environ.get('KEEPSAFE_ENV', 'production')

    if config_name not in config:
        raise ValueError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )

    obj = config[config_name]
    return {key: getattr(obj, key) for key in dir(obj) if key.isupper()}
