"""
Exceptions raised by the backup pipeline.

Dump, archive and upload failures are fatal to a run. Prune and cleanup
failures are logged and never change the run's terminal status.
"""


class BackupError(Exception):
    """Base class for backup pipeline errors."""
    pass


class DumpFailure(BackupError):
    """Raised when the database dump cannot be produced."""
    pass


class ArchiveFailure(BackupError):
    """Raised when the application archive cannot be created."""
    pass


class UploadFailure(BackupError):
    """Raised when an artifact cannot be stored in the bucket."""
    pass


class PruneFailure(BackupError):
    """Raised when a single expired object cannot be deleted."""
    pass


class CleanupFailure(BackupError):
    """Raised when the local scratch directory cannot be removed."""
    pass
