"""
Retention policy enforcement for remote backups.

Deletes objects under backups/ whose creation time is older than the
configured retention window. Each object is deleted independently: one failed
delete is logged and the remaining expired objects are still removed.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List

from .errors import PruneFailure
from .storage import BACKUP_PREFIX, StorageError


logger = logging.getLogger(__name__)


class RetentionPruner:
    """
    Removes expired backup objects from a bucket.
    """

    def __init__(self, storage):
        """
        Args:
            storage: S3Storage (or compatible) exposing list_objects/delete
        """
        self.storage = storage
        self.failures: List[PruneFailure] = []

    def prune(self, retention_days: int) -> int:
        """
        Delete remote objects created before now - retention_days.

        Args:
            retention_days: Age threshold in days

        Returns:
            Number of objects deleted
        """
        self.failures = []
        cutoff_date = datetime.now(timezone.utc) - timedelta(days=retention_days)
        logger.info(f"Pruning backups older than {retention_days} days (cutoff {cutoff_date.isoformat()})")

        try:
            objects = self.storage.list_objects(prefix=BACKUP_PREFIX)
        except StorageError as e:
            logger.error(f"Failed to list backup objects: {e}")
            return 0

        to_delete = [
            obj for obj in objects
            if _as_utc(obj['LastModified']) < cutoff_date
        ]

        deleted_count = 0
        for obj in to_delete:
            try:
                self.storage.delete(obj['Key'])
                deleted_count += 1
                logger.info(f"Deleted old backup: {obj['Key']}")
            except StorageError as e:
                failure = PruneFailure(f"Failed to delete {obj['Key']}: {e}")
                self.failures.append(failure)
                logger.warning(str(failure))

        logger.info(f"Cleaned up {deleted_count} old backup files")
        return deleted_count


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are treated as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
