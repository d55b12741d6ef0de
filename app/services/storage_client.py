"""
Storage clients for persisting media artifacts.

S3StorageClient talks to AWS S3 through boto3. SimulatedStorageClient
returns deterministic example-bucket URLs for development runs.
"""

import logging
from typing import Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config import Settings

logger = logging.getLogger(__name__)


class StorageClient(Protocol):
    """Durably stores bytes under a key and issues retrievable URLs."""

    def put(
        self,
        key: str,
        body: bytes,
        content_type: str,
        content_disposition: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        ...

    def signed_url(
        self,
        key: str,
        expires_in: int,
        content_disposition: Optional[str] = None,
    ) -> str:
        ...

    def object_url(self, key: str) -> str:
        ...


class S3StorageClient:
    """
    Storage client backed by AWS S3.

    Built once from settings and injected into the publisher; no
    process-wide SDK configuration is touched.
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ):
        """
        Initialize S3 client.

        Args:
            bucket: S3 bucket name
            region: AWS region
            access_key_id: AWS access key (falls back to the default credential chain)
            secret_access_key: AWS secret key
        """
        self.bucket = bucket
        self.region = region

        client_kwargs = {"region_name": region}
        if access_key_id and secret_access_key:
            client_kwargs["aws_access_key_id"] = access_key_id
            client_kwargs["aws_secret_access_key"] = secret_access_key

        self._client = boto3.client("s3", **client_kwargs)
        logger.info(f"S3 client initialized for bucket: {self.bucket}")

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3StorageClient":
        return cls(
            bucket=settings.aws_s3_bucket,
            region=settings.aws_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
        )

    def put(
        self,
        key: str,
        body: bytes,
        content_type: str,
        content_disposition: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        """
        Upload bytes to S3.

        Returns:
            Object URL of the stored file

        Raises:
            StorageFailure: If the upload fails
        """
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
        }
        if content_disposition:
            params["ContentDisposition"] = content_disposition
        if metadata:
            params["Metadata"] = {k: _ascii_metadata_value(v) for k, v in metadata.items()}

        try:
            self._client.put_object(**params)
        except (ClientError, BotoCoreError) as e:
            raise StorageFailure(f"Failed to upload s3://{self.bucket}/{key}: {e}") from e

        logger.info(f"Uploaded {len(body) / 1024 / 1024:.2f} MB to s3://{self.bucket}/{key}")
        return self.object_url(key)

    def signed_url(
        self,
        key: str,
        expires_in: int,
        content_disposition: Optional[str] = None,
    ) -> str:
        """Generate a presigned GET URL, optionally overriding the response disposition."""
        params = {"Bucket": self.bucket, "Key": key}
        if content_disposition:
            params["ResponseContentDisposition"] = content_disposition

        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params=params,
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageFailure(f"Failed to sign URL for {key}: {e}") from e

    def object_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key, safe='/')}"


class SimulatedStorageClient:
    """Development stand-in that stores nothing and returns example URLs."""

    base_url = "https://example-bucket.s3.amazonaws.com"

    def __init__(self):
        self.objects: dict[str, int] = {}

    def put(
        self,
        key: str,
        body: bytes,
        content_type: str,
        content_disposition: Optional[str] = None,
        metadata: Optional[dict[str, str]] = None,
    ) -> str:
        logger.info(f"Development mode: simulating upload of {key} ({content_type}, {len(body)} bytes)")
        self.objects[key] = len(body)
        return self.object_url(key)

    def signed_url(
        self,
        key: str,
        expires_in: int,
        content_disposition: Optional[str] = None,
    ) -> str:
        url = f"{self.object_url(key)}?expires={expires_in}"
        if content_disposition:
            url += "&download=true"
        return url

    def object_url(self, key: str) -> str:
        return f"{self.base_url}/{quote(key, safe='/')}"


def _ascii_metadata_value(value) -> str:
    """S3 user metadata must be ASCII; anything else is percent-encoded."""
    value = str(value)
    if value.isascii():
        return value
    return quote(value, safe="")


def build_storage_client(settings: Settings) -> StorageClient:
    """Pick the storage backend for the current environment."""
    if settings.dev_mode:
        logger.info("Development mode: S3 uploads are simulated")
        return SimulatedStorageClient()
    return S3StorageClient.from_settings(settings)


class StorageFailure(Exception):
    """Exception raised when a storage operation fails."""
    pass
