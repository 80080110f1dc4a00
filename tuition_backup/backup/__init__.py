"""
Backup module for the tuition center system.

This module handles the backup pipeline:
- Database dump generation
- Application file archiving
- Upload to S3
- Retention-based pruning
- Outcome notification
"""

from .executor import BackupOrchestrator, perform_backup
from .dumper import DatabaseDumper
from .compression import TarArchiver, TarfileArchiver, create_archiver
from .storage import S3Storage
from .retention import RetentionPruner
from .notifier import LogNotifier, EmailNotifier, CompositeNotifier

__all__ = [
    'BackupOrchestrator',
    'perform_backup',
    'DatabaseDumper',
    'TarArchiver',
    'TarfileArchiver',
    'create_archiver',
    'S3Storage',
    'RetentionPruner',
    'LogNotifier',
    'EmailNotifier',
    'CompositeNotifier'
]
