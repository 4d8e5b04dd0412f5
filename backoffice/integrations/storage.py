"""
Staged file storage for import uploads.

Uploads are staged before an import job reads them. Production deployments
use S3-compatible storage (Backblaze B2, AWS S3, MinIO, ...) through boto3;
local development and tests can stage files in a directory instead.
"""
import io
import logging
import os
import uuid
from typing import BinaryIO, Dict, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from backoffice.core.config import settings

logger = logging.getLogger(__name__)

DEFAULT_FOLDER = "imports"


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Raised when storage connection fails."""
    pass


class StorageUploadError(StorageError):
    """Raised when file upload fails."""
    pass


class SourceFileError(StorageError):
    """Raised when a staged file is missing or cannot be read."""
    pass


def _staged_key(file_name: str, folder: str) -> str:
    safe_name = os.path.basename(file_name or "upload").replace(" ", "_")
    return f"{folder}/{uuid.uuid4().hex}_{safe_name}"


def get_storage_client():
    """
    Get S3-compatible storage client.

    Raises:
        ValueError: If storage configuration is incomplete
        StorageConnectionError: If the client cannot be created
    """
    if not all([settings.storage_access_key_id, settings.storage_secret_access_key, settings.storage_bucket_name]):
        raise ValueError(
            "Storage configuration is incomplete. Please set STORAGE_ACCESS_KEY_ID, "
            "STORAGE_SECRET_ACCESS_KEY, and STORAGE_BUCKET_NAME in your environment."
        )

    config = Config(
        signature_version='s3v4',
        retries={'max_attempts': 3, 'mode': 'standard'}
    )

    client_kwargs = {
        'service_name': 's3',
        'aws_access_key_id': settings.storage_access_key_id,
        'aws_secret_access_key': settings.storage_secret_access_key,
        'config': config,
    }

    # Add endpoint URL for non-AWS providers (B2, MinIO, etc.)
    if settings.storage_endpoint_url:
        client_kwargs['endpoint_url'] = settings.storage_endpoint_url

    if settings.storage_region:
        client_kwargs['region_name'] = settings.storage_region

    try:
        return boto3.client(**client_kwargs)
    except (BotoCoreError, ValueError) as e:
        logger.error("Failed to create storage client: %s", e)
        raise StorageConnectionError(f"Failed to connect to storage: {str(e)}")


class S3FileSource:
    """File source backed by an S3-compatible bucket."""

    def __init__(self, client=None, bucket_name: Optional[str] = None):
        self._client = client
        self.bucket_name = bucket_name or settings.storage_bucket_name

    @property
    def client(self):
        if self._client is None:
            self._client = get_storage_client()
        return self._client

    def open_file(self, reference: str) -> BinaryIO:
        """
        Download a staged object.

        The body is buffered in memory because workbook readers need a
        seekable stream.

        Raises:
            SourceFileError: If the object is missing or the download fails
        """
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=reference)
            return io.BytesIO(response['Body'].read())
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            if error_code in ('NoSuchKey', '404'):
                raise SourceFileError(f"File not found: {reference}")
            logger.error("Storage download failed: %s - %s", error_code, e)
            raise SourceFileError(f"Download failed: {str(e)}")
        except BotoCoreError as e:
            logger.error("Unexpected error during download: %s", e)
            raise SourceFileError(f"Download failed: {str(e)}")

    def stage_file(self, file_content: bytes, file_name: str, folder: str = DEFAULT_FOLDER) -> Dict[str, object]:
        """Upload ``file_content`` and return its reference."""
        key = _staged_key(file_name, folder)
        try:
            response = self.client.put_object(Bucket=self.bucket_name, Key=key, Body=file_content)
        except (ClientError, BotoCoreError) as e:
            logger.error("Storage upload failed: %s", e)
            raise StorageUploadError(f"Upload failed: {str(e)}")
        return {
            "file_reference": key,
            "file_name": file_name,
            "etag": response.get('ETag', '').strip('"'),
            "size": len(file_content),
        }


class LocalFileSource:
    """File source backed by a local directory."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = os.path.abspath(base_dir or settings.storage_local_dir)

    def _resolve(self, reference: str) -> str:
        path = os.path.abspath(os.path.join(self.base_dir, reference))
        if os.path.commonpath([path, self.base_dir]) != self.base_dir:
            raise SourceFileError(f"File reference escapes the storage directory: {reference}")
        return path

    def open_file(self, reference: str) -> BinaryIO:
        path = self._resolve(reference)
        try:
            return open(path, "rb")
        except FileNotFoundError:
            raise SourceFileError(f"File not found: {reference}")
        except OSError as e:
            raise SourceFileError(f"Could not read {reference}: {e}")

    def stage_file(self, file_content: bytes, file_name: str, folder: str = DEFAULT_FOLDER) -> Dict[str, object]:
        key = _staged_key(file_name, folder)
        path = self._resolve(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as handle:
                handle.write(file_content)
        except OSError as e:
            logger.error("Local staging failed: %s", e)
            raise StorageUploadError(f"Upload failed: {str(e)}")
        return {"file_reference": key, "file_name": file_name, "etag": None, "size": len(file_content)}


def get_file_source():
    """Build the file source selected by ``STORAGE_PROVIDER``."""
    if settings.storage_provider == "local":
        logger.info("Staging uploads in local directory %s", settings.storage_local_dir)
        return LocalFileSource()
    logger.info("Staging uploads in %s bucket '%s'", settings.storage_provider, settings.storage_bucket_name)
    return S3FileSource()
