"""
Backup outcome notifications.

LogNotifier is always active. EmailNotifier is added when a recipient and an
SMTP host are configured.
"""

import logging
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Iterable, Optional


logger = logging.getLogger(__name__)


def build_message(success: bool, timestamp: Optional[str], database_name: str,
                  bucket_name: str, error_message: Optional[str] = None):
    """
    Build the (subject, body) pair describing a backup run.
    """
    status = 'SUCCESS' if success else 'FAILED'
    subject = f"Aaradhya Tuition System - Backup {status}"

    lines = [
        f"Backup Status: {status}",
        f"Timestamp: {timestamp or datetime.now(timezone.utc).isoformat()}",
        f"Database: {database_name}",
    ]
    if success:
        lines.append("Backup completed successfully and uploaded to cloud storage")
        lines.append(f"Bucket: {bucket_name}")
    else:
        lines.append(f"Backup failed with error: {error_message}")

    return subject, '\n'.join(lines) + '\n'


class LogNotifier:
    """Reports the run outcome through the application log."""

    def __init__(self, database_name: str, bucket_name: str):
        self.database_name = database_name
        self.bucket_name = bucket_name

    def notify(self, success: bool, timestamp: Optional[str], error_message: Optional[str] = None):
        _, body = build_message(success, timestamp, self.database_name, self.bucket_name, error_message)
        if success:
            logger.info(f"Backup notification:\n{body}")
        else:
            logger.error(f"Backup notification:\n{body}")


class EmailNotifier:
    """Sends the run outcome to an administrator over SMTP."""

    def __init__(self, recipient: str, smtp_host: str, smtp_port: int = 587,
                 username: Optional[str] = None, password: Optional[str] = None,
                 sender: str = 'backups@localhost', database_name: str = 'tuition',
                 bucket_name: str = '', timeout: int = 30):
        self.recipient = recipient
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.sender = sender
        self.database_name = database_name
        self.bucket_name = bucket_name
        self.timeout = timeout

    def notify(self, success: bool, timestamp: Optional[str], error_message: Optional[str] = None):
        subject, body = build_message(success, timestamp, self.database_name, self.bucket_name, error_message)

        message = EmailMessage()
        message['Subject'] = subject
        message['From'] = self.sender
        message['To'] = self.recipient
        message.set_content(body)

        # Delivery errors are logged, never raised
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
                smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or '')
                smtp.send_message(message)
            logger.info(f"Backup notification email sent to {self.recipient}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send backup notification email: {e}")


class CompositeNotifier:
    """Fans a notification out to several notifiers."""

    def __init__(self, notifiers: Iterable):
        self.notifiers = list(notifiers)

    def notify(self, success: bool, timestamp: Optional[str], error_message: Optional[str] = None):
        for notifier in self.notifiers:
            notifier.notify(success, timestamp, error_message)


def create_notifier(settings) -> CompositeNotifier:
    """
    Build the notifier chain from BackupSettings.
    """
    notifiers = [LogNotifier(settings.database_name, settings.bucket_name)]

    if settings.notify_email and settings.smtp_host:
        notifiers.append(EmailNotifier(
            recipient=settings.notify_email,
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            sender=settings.smtp_sender,
            database_name=settings.database_name,
            bucket_name=settings.bucket_name
        ))

    return CompositeNotifier(notifiers)
