"""
S3 storage for backup artifacts.

Artifacts of one run are stored under a shared prefix:
backups/{timestamp}/{filename}
"""

import logging
import os
from typing import Dict, List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .errors import UploadFailure
from .results import RemoteBackupObject


logger = logging.getLogger(__name__)

BACKUP_PREFIX = 'backups/'
STORAGE_CLASS = 'STANDARD'


class StorageError(Exception):
    """Raised when a bucket listing or delete operation fails."""
    pass


def artifact_type(filename: str) -> str:
    """Classify an artifact by file name: 'database' or 'application'."""
    return 'database' if 'database' in filename else 'application'


def build_key(timestamp: str, filename: str) -> str:
    return f"{BACKUP_PREFIX}{timestamp}/{filename}"


class S3Storage:
    """
    Handler for backup objects in an S3 bucket.
    """

    def __init__(
        self,
        bucket_name: str,
        region: str = 'ap-south-1',
        project_label: str = 'aaradhya-tuition-system',
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        connect_timeout: int = 10,
        read_timeout: int = 120,
        multipart_threshold: int = 100 * 1024 * 1024,
        chunk_size: int = 10 * 1024 * 1024
    ):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            region: Region used for the client and for bucket creation
            project_label: Value of the 'project' metadata on every object
            access_key: AWS access key ID (None = default credential chain)
            secret_key: AWS secret access key
            endpoint_url: Custom endpoint for S3-compatible stores
            connect_timeout: Seconds to wait for a connection
            read_timeout: Seconds to wait for a response
            multipart_threshold: Files larger than this use multipart upload
            chunk_size: Multipart part size in bytes
        """
        self.bucket_name = bucket_name
        self.region = region
        self.project_label = project_label
        self.multipart_threshold = multipart_threshold
        self.chunk_size = chunk_size

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(
                    connect_timeout=connect_timeout,
                    read_timeout=read_timeout,
                    retries={'max_attempts': 3, 'mode': 'standard'}
                )
            )
        except (BotoCoreError, ValueError) as e:
            raise UploadFailure(f"Failed to initialize S3 client: {e}") from e

    @classmethod
    def from_settings(cls, settings) -> 'S3Storage':
        return cls(
            bucket_name=settings.bucket_name,
            region=settings.region,
            project_label=settings.project_label,
            access_key=settings.access_key,
            secret_key=settings.secret_key,
            endpoint_url=settings.endpoint_url,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout
        )

    def ensure_bucket(self) -> bool:
        """
        Create the bucket if it does not exist. Safe to call on every run.

        Returns:
            True if the bucket was created, False if it already existed

        Raises:
            UploadFailure: If the bucket cannot be checked or created
        """
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return False
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code not in ('404', 'NoSuchBucket', 'NotFound'):
                raise UploadFailure(f"Bucket check failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise UploadFailure(f"Bucket check failed: {e}") from e

        params = {'Bucket': self.bucket_name}
        # us-east-1 rejects an explicit location constraint
        if self.region and self.region != 'us-east-1':
            params['CreateBucketConfiguration'] = {'LocationConstraint': self.region}

        try:
            self.s3_client.create_bucket(**params)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code == 'BucketAlreadyOwnedByYou':
                return False
            raise UploadFailure(f"Bucket creation failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise UploadFailure(f"Bucket creation failed: {e}") from e

        logger.info(f"Created backup bucket: {self.bucket_name} ({self.region})")
        return True

    def upload_directory(self, local_dir: str, timestamp: str) -> List[RemoteBackupObject]:
        """
        Upload every file in local_dir under backups/{timestamp}/.

        Files already uploaded are not rolled back if a later file fails.

        Args:
            local_dir: Directory holding the run's artifacts
            timestamp: Run identifier shared by all artifacts

        Returns:
            RemoteBackupObject for each uploaded file

        Raises:
            UploadFailure: If the bucket check or any upload fails
        """
        self.ensure_bucket()

        uploaded = []
        for filename in sorted(os.listdir(local_dir)):
            local_path = os.path.join(local_dir, filename)
            if not os.path.isfile(local_path):
                continue
            uploaded.append(self.upload(local_path, timestamp))
            logger.info(f"Uploaded: {uploaded[-1].key}")

        return uploaded

    def upload(self, local_path: str, timestamp: str) -> RemoteBackupObject:
        """
        Upload a single artifact.

        Args:
            local_path: Path to local artifact file
            timestamp: Run identifier used in the key and metadata

        Returns:
            RemoteBackupObject describing the stored object

        Raises:
            UploadFailure: If upload fails
        """
        if not os.path.exists(local_path):
            raise UploadFailure(f"Local file not found: {local_path}")

        filename = os.path.basename(local_path)
        key = build_key(timestamp, filename)
        metadata = {
            'timestamp': timestamp,
            'type': artifact_type(filename),
            'project': self.project_label
        }

        try:
            file_size = os.path.getsize(local_path)

            if file_size > self.multipart_threshold:
                self._multipart_upload(local_path, key, metadata)
            else:
                self._simple_upload(local_path, key, metadata)

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise UploadFailure(f"S3 upload of {filename} failed ({error_code}): {e}") from e
        except (BotoCoreError, OSError) as e:
            raise UploadFailure(f"S3 upload of {filename} failed: {e}") from e

        return RemoteBackupObject(
            key=key,
            timestamp=timestamp,
            type=metadata['type'],
            project=self.project_label,
            size=file_size
        )

    def _simple_upload(self, local_path: str, key: str, metadata: Dict[str, str]):
        with open(local_path, 'rb') as f:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=f,
                Metadata=metadata,
                StorageClass=STORAGE_CLASS
            )

    def _multipart_upload(self, local_path: str, key: str, metadata: Dict[str, str]):
        """
        Upload a large file in chunk_size parts, aborting the upload on error.
        """
        response = self.s3_client.create_multipart_upload(
            Bucket=self.bucket_name,
            Key=key,
            Metadata=metadata,
            StorageClass=STORAGE_CLASS
        )
        upload_id = response['UploadId']

        parts = []

        try:
            with open(local_path, 'rb') as f:
                part_number = 1

                while True:
                    data = f.read(self.chunk_size)
                    if not data:
                        break

                    response = self.s3_client.upload_part(
                        Bucket=self.bucket_name,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=data
                    )

                    parts.append({
                        'PartNumber': part_number,
                        'ETag': response['ETag']
                    })

                    part_number += 1

            self.s3_client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={'Parts': parts}
            )

        except Exception:
            try:
                self.s3_client.abort_multipart_upload(
                    Bucket=self.bucket_name,
                    Key=key,
                    UploadId=upload_id
                )
            except (ClientError, BotoCoreError) as abort_error:
                logger.warning(f"Failed to abort multipart upload {upload_id}: {abort_error}")
            raise

    def delete(self, key: str):
        """
        Delete an object from the bucket.

        Raises:
            StorageError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=key
            )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 delete failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to delete from S3: {e}") from e

    def list_objects(self, prefix: str = BACKUP_PREFIX) -> list:
        """
        List objects in the bucket with given prefix.

        Returns:
            List of dicts with 'Key', 'LastModified', and 'Size' keys

        Raises:
            StorageError: If listing fails
        """
        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append({
                        'Key': obj['Key'],
                        'LastModified': obj['LastModified'],
                        'Size': obj['Size']
                    })

            return objects

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise StorageError(f"S3 list failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to list S3 objects: {e}") from e

    def list_backups(self) -> List[dict]:
        """
        Group stored backup objects by run timestamp, newest first.

        Returns:
            List of dicts: {'timestamp', 'created_at', 'objects': [...]}
        """
        runs = {}
        for obj in self.list_objects(BACKUP_PREFIX):
            relative = obj['Key'][len(BACKUP_PREFIX):]
            if '/' not in relative:
                continue
            timestamp, filename = relative.split('/', 1)
            run = runs.setdefault(timestamp, {
                'timestamp': timestamp,
                'created_at': obj['LastModified'],
                'objects': []
            })
            run['created_at'] = min(run['created_at'], obj['LastModified'])
            run['objects'].append({
                'key': obj['Key'],
                'filename': filename,
                'type': artifact_type(filename),
                'size': obj['Size']
            })

        backups = sorted(runs.values(), key=lambda r: r['timestamp'], reverse=True)
        for run in backups:
            run['created_at'] = run['created_at'].isoformat()
        return backups
