"""
Run state and step outcomes for the backup orchestrator.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional


# Run statuses
PENDING = 'pending'
SUCCESS = 'success'
FAILED = 'failed'

# Orchestrator stages, in execution order
START = 'START'
DUMP_DB = 'DUMP_DB'
ARCHIVE_FILES = 'ARCHIVE_FILES'
UPLOAD = 'UPLOAD'
PRUNE = 'PRUNE'
CLEANUP_LOCAL = 'CLEANUP_LOCAL'
NOTIFY_SUCCESS = 'NOTIFY_SUCCESS'
NOTIFY_FAILURE = 'NOTIFY_FAILURE'


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """
    Generate the run identifier shared by every artifact of a run.

    ISO-8601 UTC time with millisecond precision where ':' and '.' are
    replaced by '-', e.g. ``2024-01-15T02-00-00-000Z``. Sorts
    lexicographically in time order and is safe in file names and keys.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime('%Y-%m-%dT%H-%M-%S-') + f'{now.microsecond // 1000:03d}Z'


@dataclass
class RemoteBackupObject:
    """An artifact stored in the bucket under backups/<timestamp>/."""

    key: str
    timestamp: str
    type: str
    project: str
    size: int = 0

    @property
    def filename(self) -> str:
        return self.key.rsplit('/', 1)[-1]

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'filename': self.filename,
            'timestamp': self.timestamp,
            'type': self.type,
            'project': self.project,
            'size': self.size,
        }


@dataclass
class StepResult:
    """Tagged outcome of a single orchestrator step."""

    ok: bool
    value: Any = None
    error: Optional[Exception] = None

    @classmethod
    def success(cls, value: Any = None) -> 'StepResult':
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: Exception) -> 'StepResult':
        return cls(ok=False, error=error)


@dataclass
class BackupRun:
    """One invocation of the backup pipeline. Never persisted."""

    timestamp: str
    status: str = PENDING
    stage: str = START
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    artifacts: List[str] = field(default_factory=list)
    uploaded: List[RemoteBackupObject] = field(default_factory=list)
    pruned: int = 0
    logs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp,
            'status': self.status,
            'stage': self.stage,
            'error_message': self.error_message,
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'uploaded': [obj.to_dict() for obj in self.uploaded],
            'pruned': self.pruned,
        }
