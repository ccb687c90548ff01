"""Storage service for S3/MinIO operations."""
import logging
import os
from typing import Optional, Set

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError, BotoCoreError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from taskhub.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Object storage operation failed."""


def _is_test_mode() -> bool:
    database_url = os.environ.get("DATABASE_URL", "").lower()
    return "test" in database_url or "sqlite" in database_url


_storage_retry = retry(
    retry=retry_if_exception_type(StorageError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)


class StorageService:
    """Service for S3/MinIO operations on proof files."""

    def __init__(self):
        """Initialize S3 client."""
        self.bucket_name = settings.S3_BUCKET_NAME
        # Test mode keeps object keys in memory instead of talking to S3
        self._memory: Set[str] = set()
        if _is_test_mode():
            self.s3_client = None
            return

        self.s3_client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            region_name=settings.S3_REGION,
            use_ssl=settings.S3_USE_SSL,
            config=Config(signature_version="s3v4"),
        )

    def ensure_bucket_exists(self) -> None:
        """Ensure the target bucket exists, creating it if necessary."""
        if self.s3_client is None:
            return
        try:
            self.s3_client.head_bucket(Bucket=self.bucket_name)
            return
        except (ClientError, BotoCoreError) as exc:
            error_code = exc.response.get("Error", {}).get("Code", "") if hasattr(exc, "response") else ""
            if error_code not in {"404", "NoSuchBucket", "NotFound"}:
                raise StorageError(f"Error checking bucket: {exc}") from exc

        create_params = {"Bucket": self.bucket_name}
        if settings.S3_REGION and settings.S3_REGION != "us-east-1":
            create_params["CreateBucketConfiguration"] = {"LocationConstraint": settings.S3_REGION}
        try:
            self.s3_client.create_bucket(**create_params)
        except (ClientError, BotoCoreError) as exc:
            error_code = exc.response.get("Error", {}).get("Code", "") if hasattr(exc, "response") else ""
            if error_code not in {"BucketAlreadyOwnedByYou", "BucketAlreadyExists"}:
                raise StorageError(f"Error creating bucket: {exc}") from exc

    def generate_download_url(self, key: str, expires_in: int = 3600) -> str:
        """Generate presigned URL for downloading a file (GET)."""
        if self.s3_client is None:
            return f"http://localhost:9000/{self.bucket_name}/{key}"
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error generating download URL: {e}") from e

    @_storage_retry
    def upload_file(self, file_path: str, key: str, content_type: Optional[str] = None) -> bool:
        """Upload a local file to S3."""
        if self.s3_client is None:
            self._memory.add(key)
            return True
        try:
            extra_args = {}
            if content_type:
                extra_args["ContentType"] = content_type
            self.s3_client.upload_file(file_path, self.bucket_name, key, ExtraArgs=extra_args)
            return True
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error uploading file {key}: {e}") from e

    @_storage_retry
    def delete_file(self, key: str) -> bool:
        """Delete a file from S3."""
        if self.s3_client is None:
            self._memory.discard(key)
            return True
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            return True
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Error deleting file {key}: {e}") from e

    def file_exists(self, key: str) -> bool:
        """Check if a file exists in S3."""
        if self.s3_client is None:
            return key in self._memory
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except (ClientError, BotoCoreError):
            return False


# Global instance
storage_service = StorageService()
