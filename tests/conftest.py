"""
Shared pytest fixtures for tuition backup tests.

This module provides fixtures for:
- Flask app and test client on an in-memory SQLite database
- A file-backed tuition database engine with sample rows
- Mock S3 via moto
- An application source tree with files that must be excluded
- BackupSettings pointing at temporary directories
"""

import os
import tarfile

import pytest
import boto3
from moto import mock_aws
from sqlalchemy import create_engine, text

from tuition_backup import create_app, db as _db
from tuition_backup.config import BackupSettings


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture(scope='function')
def app(tmp_path):
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    app = create_app('testing')

    app.config.update({
        'BACKUP_SCRATCH_DIR': str(tmp_path / 'scratch'),
        'BACKUP_SOURCE_ROOT': str(tmp_path),
        'BACKUP_API_TOKEN': None,
    })

    yield app


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with a sample table.

    Each test gets a fresh database.
    """
    with app.app_context():
        with _db.engine.begin() as conn:
            conn.execute(text("CREATE TABLE students (id INTEGER PRIMARY KEY, name TEXT NOT NULL)"))
            conn.execute(text("INSERT INTO students (id, name) VALUES (1, 'Asha')"))
        yield _db
        _db.session.remove()
        with _db.engine.begin() as conn:
            conn.execute(text("DROP TABLE IF EXISTS students"))


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture
def tuition_engine(tmp_path):
    """
    File-backed SQLite database resembling the tuition schema.

    - courses: 2 rows
    - students: 3 rows, including a quote in a name and a NULL phone
    - fee_payments: 2 rows with timestamps
    - attendance: empty
    """
    engine = create_engine(f"sqlite:///{tmp_path / 'tuition.db'}")

    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE courses ("
            "id INTEGER PRIMARY KEY, "
            "name TEXT NOT NULL, "
            "monthly_fee NUMERIC NOT NULL)"
        ))
        conn.execute(text(
            "CREATE TABLE students ("
            "id INTEGER PRIMARY KEY, "
            "name TEXT NOT NULL, "
            "phone TEXT, "
            "course_id INTEGER REFERENCES courses(id), "
            "active BOOLEAN NOT NULL DEFAULT 1)"
        ))
        conn.execute(text(
            "CREATE TABLE fee_payments ("
            "id INTEGER PRIMARY KEY, "
            "student_id INTEGER NOT NULL REFERENCES students(id), "
            "amount REAL NOT NULL, "
            "paid_at DATETIME NOT NULL)"
        ))
        conn.execute(text(
            "CREATE TABLE attendance ("
            "id INTEGER PRIMARY KEY, "
            "student_id INTEGER NOT NULL, "
            "day DATE NOT NULL)"
        ))

        conn.execute(text("INSERT INTO courses VALUES (1, 'Mathematics', 1500), (2, 'Science', 1200)"))
        conn.execute(text(
            "INSERT INTO students VALUES "
            "(1, 'Priya Sharma', '9876543210', 1, 1), "
            "(2, 'O''Brien', NULL, 2, 1), "
            "(3, 'Rahul Verma', '9123456780', 1, 0)"
        ))
        conn.execute(text(
            "INSERT INTO fee_payments VALUES "
            "(1, 1, 1500.0, '2024-01-05 10:30:00'), "
            "(2, 2, 1200.0, '2024-01-06 16:45:10')"
        ))

    yield engine

    engine.dispose()


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def source_tree(tmp_path):
    """
    Application source tree.

    Kept: server.py, package.json, public/js/app.js, scripts/backup.sh
    Excluded: node_modules/, .git/, logs/, tmp/, debug.log, .env, .env.production
    """
    root = tmp_path / 'app_src'
    root.mkdir()

    (root / 'server.py').write_text('print("server")')
    (root / 'package.json').write_text('{"name": "tuition"}')
    (root / 'public' / 'js').mkdir(parents=True)
    (root / 'public' / 'js' / 'app.js').write_text('console.log("app")')
    (root / 'scripts').mkdir()
    (root / 'scripts' / 'backup.sh').write_text('#!/bin/sh\n')

    (root / 'node_modules' / 'express').mkdir(parents=True)
    (root / 'node_modules' / 'express' / 'index.js').write_text('module.exports = {}')
    (root / '.git').mkdir()
    (root / '.git' / 'HEAD').write_text('ref: refs/heads/main')
    (root / 'logs').mkdir()
    (root / 'logs' / 'server.txt').write_text('log line')
    (root / 'tmp').mkdir()
    (root / 'tmp' / 'upload.bin').write_bytes(b'\x00\x01')
    (root / 'debug.log').write_text('debug')
    (root / '.env').write_text('DB_PASSWORD=secret')
    (root / '.env.production').write_text('DB_PASSWORD=prod-secret')

    return root


@pytest.fixture
def backup_settings(tmp_path, source_tree):
    """BackupSettings using the pure-Python archiver and temp directories."""
    return BackupSettings(
        bucket_name='test-bucket',
        region='us-east-1',
        retention_days=30,
        project_label='aaradhya-tuition-system',
        database_name='tuition_test',
        source_root=str(source_tree),
        scratch_dir=str(tmp_path / 'scratch'),
        archiver='tarfile',
        access_key='testing',
        secret_key='testing'
    )


@pytest.fixture
def archive_members():
    """Return a function listing normalized member names of a tar.gz archive."""
    def _members(archive_path):
        with tarfile.open(archive_path, 'r:gz') as tar:
            names = {os.path.normpath(m.name) for m in tar.getmembers()}
        names.discard('.')
        return names
    return _members
