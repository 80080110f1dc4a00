"""
Unit tests for S3 storage (tuition_backup/backup/storage.py).

Tests bucket creation, artifact upload layout and metadata, listing and delete.
"""

from unittest.mock import patch

import pytest
import boto3
from botocore.exceptions import ClientError
from moto import mock_aws

from tuition_backup.backup.errors import UploadFailure
from tuition_backup.backup.storage import (
    S3Storage,
    StorageError,
    artifact_type,
    build_key
)


TIMESTAMP = '2024-01-15T02-00-00-000Z'


def _storage(bucket_name='test-bucket', region='us-east-1', **kwargs):
    return S3Storage(
        bucket_name=bucket_name,
        region=region,
        access_key='testing',
        secret_key='testing',
        **kwargs
    )


@pytest.fixture
def artifacts_dir(tmp_path):
    """Scratch directory holding one run's artifacts."""
    scratch = tmp_path / 'run'
    scratch.mkdir()
    (scratch / f'database_{TIMESTAMP}.sql').write_text('-- dump\n')
    (scratch / f'application_{TIMESTAMP}.tar.gz').write_bytes(b'\x1f\x8b' + b'x' * 64)
    return scratch


class TestHelpers:
    """Test key and type helpers."""

    def test_build_key(self):
        assert build_key(TIMESTAMP, 'database.sql') == f'backups/{TIMESTAMP}/database.sql'

    @pytest.mark.parametrize("filename,expected", [
        (f'database_{TIMESTAMP}.sql', 'database'),
        (f'application_{TIMESTAMP}.tar.gz', 'application'),
        ('notes.txt', 'application'),
    ])
    def test_artifact_type(self, filename, expected):
        assert artifact_type(filename) == expected


class TestEnsureBucket:
    """Test idempotent bucket creation."""

    @mock_aws
    def test_creates_missing_bucket(self):
        storage = _storage(bucket_name='new-bucket')

        assert storage.ensure_bucket() is True

        s3 = boto3.client('s3', region_name='us-east-1')
        names = [b['Name'] for b in s3.list_buckets()['Buckets']]
        assert 'new-bucket' in names

    @mock_aws
    def test_creates_bucket_in_configured_region(self):
        storage = _storage(bucket_name='india-bucket', region='ap-south-1')

        storage.ensure_bucket()

        s3 = boto3.client('s3', region_name='ap-south-1')
        location = s3.get_bucket_location(Bucket='india-bucket')['LocationConstraint']
        assert location == 'ap-south-1'

    def test_existing_bucket_is_left_alone(self, mock_s3):
        storage = _storage()

        assert storage.ensure_bucket() is False
        assert storage.ensure_bucket() is False

    def test_already_owned_on_create_is_success(self, mock_s3):
        storage = _storage()
        not_found = ClientError({'Error': {'Code': '404'}}, 'HeadBucket')
        owned = ClientError({'Error': {'Code': 'BucketAlreadyOwnedByYou'}}, 'CreateBucket')

        with patch.object(storage.s3_client, 'head_bucket', side_effect=not_found), \
                patch.object(storage.s3_client, 'create_bucket', side_effect=owned):
            assert storage.ensure_bucket() is False

    def test_access_denied_raises(self, mock_s3):
        storage = _storage()
        denied = ClientError({'Error': {'Code': '403'}}, 'HeadBucket')

        with patch.object(storage.s3_client, 'head_bucket', side_effect=denied):
            with pytest.raises(UploadFailure) as exc_info:
                storage.ensure_bucket()

        assert '403' in str(exc_info.value)


class TestUploadDirectory:
    """Test uploading a run's artifacts."""

    def test_uploads_every_file_under_timestamp_prefix(self, mock_s3, artifacts_dir):
        storage = _storage()

        uploaded = storage.upload_directory(str(artifacts_dir), TIMESTAMP)

        keys = sorted(obj.key for obj in uploaded)
        assert keys == [
            f'backups/{TIMESTAMP}/application_{TIMESTAMP}.tar.gz',
            f'backups/{TIMESTAMP}/database_{TIMESTAMP}.sql',
        ]
        stored = sorted(o.key for o in mock_s3.Bucket('test-bucket').objects.filter(Prefix='backups/'))
        assert stored == keys

    def test_metadata_tags_type_timestamp_and_project(self, mock_s3, artifacts_dir):
        storage = _storage(project_label='aaradhya-tuition-system')

        storage.upload_directory(str(artifacts_dir), TIMESTAMP)

        s3 = boto3.client('s3', region_name='us-east-1')
        db_head = s3.head_object(Bucket='test-bucket', Key=f'backups/{TIMESTAMP}/database_{TIMESTAMP}.sql')
        app_head = s3.head_object(Bucket='test-bucket', Key=f'backups/{TIMESTAMP}/application_{TIMESTAMP}.tar.gz')

        assert db_head['Metadata'] == {
            'timestamp': TIMESTAMP,
            'type': 'database',
            'project': 'aaradhya-tuition-system'
        }
        assert app_head['Metadata']['type'] == 'application'

    def test_returned_objects_describe_uploads(self, mock_s3, artifacts_dir):
        uploaded = _storage().upload_directory(str(artifacts_dir), TIMESTAMP)

        by_type = {obj.type: obj for obj in uploaded}
        assert by_type['database'].timestamp == TIMESTAMP
        assert by_type['database'].size == len('-- dump\n')
        assert by_type['application'].filename == f'application_{TIMESTAMP}.tar.gz'

    @mock_aws
    def test_creates_bucket_before_upload(self, artifacts_dir):
        storage = _storage(bucket_name='fresh-bucket')

        uploaded = storage.upload_directory(str(artifacts_dir), TIMESTAMP)

        assert len(uploaded) == 2

    def test_repeated_upload_against_existing_bucket(self, mock_s3, artifacts_dir):
        storage = _storage()

        storage.upload_directory(str(artifacts_dir), TIMESTAMP)
        storage.upload_directory(str(artifacts_dir), '2024-01-16T02-00-00-000Z')

        assert len(list(mock_s3.Bucket('test-bucket').objects.filter(Prefix='backups/'))) == 4

    def test_upload_error_raises_upload_failure(self, mock_s3, artifacts_dir):
        storage = _storage()
        error = ClientError({'Error': {'Code': 'SlowDown'}}, 'PutObject')

        with patch.object(storage.s3_client, 'put_object', side_effect=error):
            with pytest.raises(UploadFailure) as exc_info:
                storage.upload_directory(str(artifacts_dir), TIMESTAMP)

        assert 'SlowDown' in str(exc_info.value)

    def test_subdirectories_are_skipped(self, mock_s3, artifacts_dir):
        (artifacts_dir / 'nested').mkdir()

        uploaded = _storage().upload_directory(str(artifacts_dir), TIMESTAMP)

        assert len(uploaded) == 2


class TestUpload:
    """Test single-file upload paths."""

    def test_missing_file_raises(self, mock_s3):
        with pytest.raises(UploadFailure):
            _storage().upload('/nonexistent/database.sql', TIMESTAMP)

    def test_multipart_upload_keeps_metadata(self, mock_s3, artifacts_dir):
        storage = _storage(multipart_threshold=10)
        local_path = artifacts_dir / f'application_{TIMESTAMP}.tar.gz'

        remote = storage.upload(str(local_path), TIMESTAMP)

        s3 = boto3.client('s3', region_name='us-east-1')
        head = s3.head_object(Bucket='test-bucket', Key=remote.key)
        assert head['ContentLength'] == local_path.stat().st_size
        assert head['Metadata']['type'] == 'application'

    def test_multipart_failure_aborts_upload(self, mock_s3, artifacts_dir):
        storage = _storage(multipart_threshold=10)
        local_path = artifacts_dir / f'application_{TIMESTAMP}.tar.gz'
        error = ClientError({'Error': {'Code': 'InternalError'}}, 'UploadPart')

        with patch.object(storage.s3_client, 'upload_part', side_effect=error), \
                patch.object(storage.s3_client, 'abort_multipart_upload') as mock_abort:
            with pytest.raises(UploadFailure):
                storage.upload(str(local_path), TIMESTAMP)

        mock_abort.assert_called_once()


class TestListAndDelete:
    """Test listing, grouping and deleting objects."""

    def test_list_objects_filters_by_prefix(self, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key=f'backups/{TIMESTAMP}/database_{TIMESTAMP}.sql', Body=b'1')
        bucket.put_object(Key='other/file.txt', Body=b'2')

        objects = _storage().list_objects('backups/')

        assert [o['Key'] for o in objects] == [f'backups/{TIMESTAMP}/database_{TIMESTAMP}.sql']
        assert set(objects[0].keys()) == {'Key', 'LastModified', 'Size'}

    def test_delete(self, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='backups/old/database_old.sql', Body=b'1')
        storage = _storage()

        storage.delete('backups/old/database_old.sql')

        assert storage.list_objects('backups/') == []

    def test_list_missing_bucket_raises(self, mock_s3):
        with pytest.raises(StorageError):
            _storage(bucket_name='missing-bucket').list_objects('backups/')

    def test_delete_error_raises(self, mock_s3):
        storage = _storage()
        error = ClientError({'Error': {'Code': 'AccessDenied'}}, 'DeleteObject')

        with patch.object(storage.s3_client, 'delete_object', side_effect=error):
            with pytest.raises(StorageError):
                storage.delete('backups/x/y.sql')

    def test_list_backups_groups_by_timestamp(self, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        older = '2024-01-14T02-00-00-000Z'
        for ts in (older, TIMESTAMP):
            bucket.put_object(Key=f'backups/{ts}/database_{ts}.sql', Body=b'sql')
            bucket.put_object(Key=f'backups/{ts}/application_{ts}.tar.gz', Body=b'tgz')

        backups = _storage().list_backups()

        assert [b['timestamp'] for b in backups] == [TIMESTAMP, older]
        assert {o['type'] for o in backups[0]['objects']} == {'database', 'application'}
        assert isinstance(backups[0]['created_at'], str)
