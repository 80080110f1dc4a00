"""
Backup orchestrator - drives the complete backup workflow.

Workflow:
1. Generate the run timestamp and create a scratch directory
2. Dump the database to database_<timestamp>.sql
3. Archive application files to application_<timestamp>.tar.gz
4. Upload both artifacts to backups/<timestamp>/
5. Prune remote backups older than the retention window
6. Remove the scratch directory (always, best effort)
7. Notify success or failure (exactly once)

A failure in steps 2-4 skips the remaining steps, sends a failure
notification and re-raises the original error.
"""

import logging
import os
import shutil
import sys
import tempfile
from datetime import datetime, timezone
from typing import Optional

from . import results
from .compression import create_archiver, get_archive_size
from .dumper import DatabaseDumper
from .errors import ArchiveFailure, BackupError, CleanupFailure, DumpFailure, UploadFailure
from .notifier import create_notifier
from .results import BackupRun, StepResult, generate_timestamp
from .retention import RetentionPruner
from .storage import S3Storage


logger = logging.getLogger(__name__)

STAGE_ERRORS = {
    results.DUMP_DB: DumpFailure,
    results.ARCHIVE_FILES: ArchiveFailure,
    results.UPLOAD: UploadFailure,
}


class BackupOrchestrator:
    """
    Runs one backup of the database and application files.
    """

    def __init__(self, settings, engine, storage=None, archiver=None, dumper=None, notifier=None):
        """
        Initialize the orchestrator.

        Args:
            settings: BackupSettings for this process
            engine: SQLAlchemy engine of the database to dump
            storage: Bucket handler (default: S3Storage built from settings)
            archiver: Archiver (default: chosen by settings.archiver)
            dumper: DatabaseDumper (default: one labelled with settings.database_name)
            notifier: Notifier (default: log, plus email when configured)
        """
        self.settings = settings
        self.engine = engine
        self.notifier = notifier or create_notifier(settings)
        self.dumper = dumper or DatabaseDumper(database_name=settings.database_name)
        self.storage = storage
        self.archiver = archiver
        self.pruner = RetentionPruner(storage) if storage is not None else None
        self.run: Optional[BackupRun] = None
        self.scratch_dir: Optional[str] = None

    def perform_backup(self) -> BackupRun:
        """
        Execute the backup.

        Returns:
            BackupRun in status 'success'

        Raises:
            DumpFailure, ArchiveFailure, UploadFailure: The error of the failed step
        """
        self.run = BackupRun(timestamp=generate_timestamp())
        self._log(f"Starting automated backup {self.run.timestamp}")

        steps = (
            (results.DUMP_DB, self._dump_database),
            (results.ARCHIVE_FILES, self._archive_files),
            (results.UPLOAD, self._upload),
            (results.PRUNE, self._prune),
        )

        failed = None
        try:
            try:
                self._prepare()
                self.scratch_dir = self._create_scratch_dir()
            except BackupError as e:
                failed = StepResult.failure(e)
            except OSError as e:
                failed = StepResult.failure(BackupError(f"Failed to create scratch directory: {e}"))

            for stage, step in steps:
                if failed is not None:
                    break
                self.run.stage = stage
                outcome = self._run_step(stage, step)
                if not outcome.ok:
                    failed = outcome
        finally:
            self.run.stage = results.CLEANUP_LOCAL
            self._cleanup()

        self.run.completed_at = datetime.now(timezone.utc)

        if failed is None:
            self.run.status = results.SUCCESS
            self.run.stage = results.NOTIFY_SUCCESS
            self._log("Backup completed successfully")
            self.notifier.notify(True, self.run.timestamp)
            return self.run

        self.run.status = results.FAILED
        self.run.stage = results.NOTIFY_FAILURE
        self.run.error_message = str(failed.error)
        self._log(f"Backup failed: {failed.error}")
        self.notifier.notify(False, self.run.timestamp, self.run.error_message)
        raise failed.error

    def _run_step(self, stage: str, step) -> StepResult:
        """
        Execute one step and tag its outcome.

        Unexpected exceptions are wrapped in the failure type of the stage
        so callers always receive a backup error. Pruning never fails the run.
        """
        try:
            return step()
        except (DumpFailure, ArchiveFailure, UploadFailure) as e:
            return StepResult.failure(e)
        except Exception as e:
            logger.exception(f"Unexpected error during {stage}")
            if stage == results.PRUNE:
                self._log(f"Warning: pruning skipped: {e}", level=logging.WARNING)
                return StepResult.success(0)
            error = STAGE_ERRORS[stage](f"{stage} failed: {e}")
            error.__cause__ = e
            return StepResult.failure(error)

    def _prepare(self):
        """
        Build the bucket handler and archiver not supplied by the caller.

        Raises:
            UploadFailure: If the S3 client cannot be created
            ArchiveFailure: If the configured archiver is unknown
        """
        if self.storage is None:
            self.storage = S3Storage.from_settings(self.settings)
        if self.pruner is None:
            self.pruner = RetentionPruner(self.storage)
        if self.archiver is None:
            self.archiver = create_archiver(self.settings.archiver, timeout=self.settings.archive_timeout)

    def _create_scratch_dir(self) -> str:
        os.makedirs(self.settings.scratch_dir, exist_ok=True)
        scratch_dir = tempfile.mkdtemp(prefix=f'{self.run.timestamp}_', dir=self.settings.scratch_dir)
        self._log(f"Scratch directory: {scratch_dir}")
        return scratch_dir

    def _dump_database(self) -> StepResult:
        self._log("Backing up database")
        dump_path = os.path.join(self.scratch_dir, f"database_{self.run.timestamp}.sql")
        self.dumper.write(self.engine, dump_path)
        self.run.artifacts.append(dump_path)
        self._log(f"Database backup saved: {os.path.basename(dump_path)}")
        return StepResult.success(dump_path)

    def _archive_files(self) -> StepResult:
        self._log(f"Backing up application files from {self.settings.source_root}")
        archive_path = os.path.join(self.scratch_dir, f"application_{self.run.timestamp}.tar.gz")
        self.archiver.archive(self.settings.source_root, self.settings.exclude_patterns, archive_path)
        self.run.artifacts.append(archive_path)
        size = get_archive_size(archive_path)
        self._log(f"Application backup saved: {os.path.basename(archive_path)} ({size / 1024 / 1024:.2f} MB)")
        return StepResult.success(archive_path)

    def _upload(self) -> StepResult:
        self._log(f"Uploading backups to bucket {self.settings.bucket_name}")
        uploaded = self.storage.upload_directory(self.scratch_dir, self.run.timestamp)
        self.run.uploaded = uploaded
        self._log(f"Uploaded {len(uploaded)} files")
        return StepResult.success(uploaded)

    def _prune(self) -> StepResult:
        self._log(f"Cleaning up backups older than {self.settings.retention_days} days")
        deleted = self.pruner.prune(self.settings.retention_days)
        self.run.pruned = deleted
        self._log(f"Deleted {deleted} old backup files")
        return StepResult.success(deleted)

    def _cleanup(self):
        """Remove the scratch directory; errors are logged only."""
        if not self.scratch_dir or not os.path.exists(self.scratch_dir):
            return
        try:
            shutil.rmtree(self.scratch_dir)
            self._log("Local backup files cleaned up")
        except OSError as e:
            failure = CleanupFailure(f"Error cleaning up {self.scratch_dir}: {e}")
            self._log(f"Warning: {failure}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Record a run log line and emit it through the module logger.
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.run.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def perform_backup(app=None) -> BackupRun:
    """
    Run a backup against the application's database.

    Args:
        app: Flask app (default: the current app)

    Returns:
        Successful BackupRun

    Raises:
        BackupError: If the run fails
    """
    from flask import current_app
    from tuition_backup import db
    from tuition_backup.config import BackupSettings

    app = app or current_app._get_current_object()

    with app.app_context():
        settings = BackupSettings.from_config(app.config)
        orchestrator = BackupOrchestrator(settings, db.engine)
        return orchestrator.perform_backup()


def main() -> int:
    """
    Standalone backup job. Exit code 0 on success, 1 on failure.
    """
    from tuition_backup import create_app

    config_name = os.environ.get('FLASK_ENV', 'production')
    app = create_app(config_name, with_scheduler=False)

    try:
        run = perform_backup(app)
    except Exception as e:
        app.logger.error(f"Backup script failed: {e}")
        return 1

    app.logger.info(f"Backup script completed successfully ({run.timestamp})")
    return 0


if __name__ == '__main__':
    sys.exit(main())
