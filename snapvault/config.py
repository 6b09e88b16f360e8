import os
from typing import Dict, Optional

from snapvault.backup.config import BackupConfig


def _split_paths(value: Optional[str]) -> Optional[list]:
    if not value:
        return None
    return [p for p in value.split(os.pathsep) if p]


class Config:
    """Base configuration"""

    BASE_DIR = os.getcwd()

    # Where artifacts live: {BACKUP_ROOT}/{type}/{name}
    BACKUP_ROOT = os.environ.get('BACKUP_ROOT') or os.path.join(BASE_DIR, 'storage', 'backups')

    # Directories captured by every backup
    BACKUP_SOURCE_DIRS = _split_paths(os.environ.get('BACKUP_SOURCE_DIRS')) or [
        os.path.join(BASE_DIR, 'uploads'),
        os.path.join(BASE_DIR, 'public'),
        os.path.join(BASE_DIR, 'storage'),
    ]
    BACKUP_EXCLUDE_PATTERNS = [
        p.strip() for p in os.environ.get('BACKUP_EXCLUDE_PATTERNS', '').split(',') if p.strip()
    ]

    # Catalog database (defaults to a SQLite file under BACKUP_ROOT)
    BACKUP_HISTORY_URL = os.environ.get('BACKUP_HISTORY_URL')

    # Default parent directory for restores without an explicit target
    BACKUP_RESTORE_DIR = os.environ.get('BACKUP_RESTORE_DIR') or os.path.join(BASE_DIR, 'restored')

    # How long a progress stream waits for the terminal event (seconds)
    BACKUP_STREAM_TIMEOUT = int(os.environ.get('BACKUP_STREAM_TIMEOUT', 30 * 60))

    # Scheduler
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE', 'UTC')

    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(BASE_DIR, 'data', 'logs')

    # Policy; None means "read BACKUP_* variables at app creation"
    BACKUP_POLICY: Optional[BackupConfig] = None


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config: Dict[str, type] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}
