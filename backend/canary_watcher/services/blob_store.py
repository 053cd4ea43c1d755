"""
Blob storage for cleaned document bodies

Two backends behind the same put/get contract:
- S3BlobStore: Cloudflare R2 or any S3-compatible endpoint (boto3)
- LocalBlobStore: a directory on disk (development, tests)

Keys are opaque strings owned by Document rows.
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from canary_watcher.errors import BlobNotFound, ConfigurationError, TransientUpstreamError

logger = logging.getLogger(__name__)


class BlobStore:
    """put(key, content) / get(key) contract"""

    async def put(self, key: str, content: str, content_type: str = 'text/markdown') -> None:
        raise NotImplementedError(f"{self.__class__.__name__} must implement put()")

    async def get(self, key: str) -> str:
        raise NotImplementedError(f"{self.__class__.__name__} must implement get()")


class S3BlobStore(BlobStore):
    """
    S3-compatible blob store

    boto3 is synchronous; calls run in a worker thread so the event loop
    keeps serving sibling fetches.
    """

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        region: str = 'auto',
        timeout_seconds: float = 30.0
    ):
        if not bucket:
            raise ConfigurationError("Blob bucket name is not configured")
        self.bucket = bucket

        client_kwargs: Dict[str, Any] = {
            'region_name': region,
            'config': BotoConfig(
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={'max_attempts': 2},
            ),
        }
        if endpoint_url:
            client_kwargs['endpoint_url'] = endpoint_url
        if aws_access_key_id and aws_secret_access_key:
            client_kwargs['aws_access_key_id'] = aws_access_key_id
            client_kwargs['aws_secret_access_key'] = aws_secret_access_key

        self._client = boto3.client('s3', **client_kwargs)

    @classmethod
    def from_settings(cls, settings) -> 'S3BlobStore':
        if not (settings.r2_access_key_id and settings.r2_secret_access_key):
            raise ConfigurationError("R2_ACCESS_KEY_ID and R2_SECRET_ACCESS_KEY are required")
        endpoint = settings.resolved_r2_endpoint
        if not endpoint:
            raise ConfigurationError("R2_ACCOUNT_ID or R2_ENDPOINT is required")
        return cls(
            bucket=settings.r2_bucket_name,
            endpoint_url=endpoint,
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            timeout_seconds=settings.http_timeout_seconds,
        )

    async def put(self, key: str, content: str, content_type: str = 'text/markdown') -> None:
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=content.encode('utf-8'),
                ContentType=f"{content_type}; charset=utf-8",
            )
        except (ClientError, BotoCoreError) as e:
            raise TransientUpstreamError(f"Blob put failed for {key}: {e}")

    async def get(self, key: str) -> str:
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self.bucket, Key=key)
            body = await asyncio.to_thread(response['Body'].read)
        except ClientError as e:
            if e.response['Error']['Code'] in ('404', 'NoSuchKey'):
                raise BlobNotFound(key)
            raise TransientUpstreamError(f"Blob get failed for {key}: {e}")
        except BotoCoreError as e:
            raise TransientUpstreamError(f"Blob get failed for {key}: {e}")
        return body.decode('utf-8')


class LocalBlobStore(BlobStore):
    """
    Filesystem blob store:
        base_path/
            documents/{item_id}/clean.md
    """

    def __init__(self, base_path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise ValueError(f"Blob key escapes storage root: {key}")
        return path

    async def put(self, key: str, content: str, content_type: str = 'text/markdown') -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding='utf-8')

    async def get(self, key: str) -> str:
        path = self._path(key)
        if not path.exists():
            raise BlobNotFound(key)
        return path.read_text(encoding='utf-8')


def create_blob_store(settings) -> BlobStore:
    """Build the configured backend; configuration problems fail fast"""
    backend = (settings.blob_backend or 's3').lower()
    if backend == 'local':
        logger.info(f"Using local blob store at {settings.blob_local_path}")
        return LocalBlobStore(settings.blob_local_path)
    if backend == 's3':
        return S3BlobStore.from_settings(settings)
    raise ConfigurationError(f"Unknown blob backend: {settings.blob_backend}")
