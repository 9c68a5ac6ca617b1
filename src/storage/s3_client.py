"""
GitLab Backup - S3 Storage Module

Provides S3-compatible storage for saving and fetching export archives.
"""

import logging
import os
import tempfile
from contextlib import closing
from pathlib import Path

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from cancellation import CancelToken
from config import Settings
from exceptions import StorageError

logger = logging.getLogger(__name__)

S3_SCHEME = "s3://"
DOWNLOAD_CHUNK_SIZE = 1024 * 1024


class MultipartUploader:
    """Handles multipart uploads with equal-sized chunks for S3 compatibility."""

    def __init__(
        self,
        s3_client,
        bucket: str,
        chunk_size: int,
        threshold: int,
    ):
        """Initialize multipart uploader.

        Args:
            s3_client: boto3 S3 client.
            bucket: Target bucket name.
            chunk_size: Size of each chunk in bytes (equal for all except last).
            threshold: File size threshold for multipart upload.
        """
        self.s3 = s3_client
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.threshold = threshold

    def upload_file(self, token: CancelToken, local_path: Path, key: str) -> None:
        """Upload file using multipart upload if above threshold.

        All chunks will be equal size except the last one, as required
        by some S3-compatible servers. Cancellation is checked before
        every part; a cancelled upload is aborted.

        Args:
            token: Cancellation token.
            local_path: Path to the local file.
            key: S3 object key.
        """
        token.raise_if_cancelled()
        file_size = local_path.stat().st_size

        if file_size < self.threshold:
            # Use simple upload for small files
            self.s3.upload_file(str(local_path), self.bucket, key)
            return

        logger.debug(
            f"Using multipart upload for {local_path.name} "
            f"({file_size / (1024*1024):.1f} MB)"
        )

        response = self.s3.create_multipart_upload(Bucket=self.bucket, Key=key)
        upload_id = response["UploadId"]

        parts = []
        part_number = 1

        try:
            with open(local_path, "rb") as f:
                while True:
                    chunk = f.read(self.chunk_size)
                    if not chunk:
                        break
                    token.raise_if_cancelled()

                    part_response = self.s3.upload_part(
                        Bucket=self.bucket,
                        Key=key,
                        PartNumber=part_number,
                        UploadId=upload_id,
                        Body=chunk,
                    )

                    parts.append({
                        "PartNumber": part_number,
                        "ETag": part_response["ETag"],
                    })

                    logger.debug(
                        f"Uploaded part {part_number} ({len(chunk) / (1024*1024):.1f} MB)"
                    )
                    part_number += 1

            self.s3.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )

            logger.debug(f"Completed multipart upload with {len(parts)} parts")

        except BaseException as e:
            logger.error(f"Multipart upload failed, aborting: {e}")
            self.s3.abort_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
            )
            raise


class S3Storage:
    """S3-compatible storage backend for export archives."""

    def __init__(self, settings: Settings):
        """Initialize S3 storage client.

        Args:
            settings: Application settings with S3 configuration.
        """
        self.settings = settings
        self.bucket = settings.s3_bucket
        self.prefix = settings.s3_prefix.strip("/")
        self.tmp_dir = settings.tmp_dir

        # Configure boto3 for S3-compatible endpoints
        boto_config = BotoConfig(
            signature_version="s3v4",
            s3={"addressing_style": "path"},  # Required for MinIO
        )

        self.s3 = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key or None,
            aws_secret_access_key=settings.s3_secret_key or None,
            region_name=settings.s3_region or None,
            config=boto_config,
        )

        self.uploader = MultipartUploader(
            s3_client=self.s3,
            bucket=self.bucket,
            chunk_size=settings.s3_multipart_chunk_size,
            threshold=settings.s3_multipart_threshold,
        )

    def key_for(self, dest_key: str) -> str:
        """Object key for ``dest_key`` below the configured prefix."""
        dest_key = dest_key.lstrip("/")
        if self.prefix:
            return f"{self.prefix}/{dest_key}"
        return dest_key

    def save(self, token: CancelToken, local_path: Path, dest_key: str) -> None:
        """Upload an archive to ``<prefix>/<dest_key>``.

        Raises:
            StorageError: If the upload fails.
        """
        key = self.key_for(dest_key)
        logger.debug(f"Uploading {local_path.name} to s3://{self.bucket}/{key}")

        try:
            self.uploader.upload_file(token, local_path, key)
        except (Boto3Error, ClientError, BotoCoreError, OSError) as e:
            raise StorageError(f"failed to upload {local_path} to s3://{self.bucket}/{key}: {e}") from e

        logger.info(f"Saved {local_path.name} to s3://{self.bucket}/{key}")

    def parse_location(self, key: str) -> tuple[str, str]:
        """Split ``s3://bucket/key`` into bucket and key.

        Bare keys refer to the configured bucket and are used as given.
        """
        if not key.startswith(S3_SCHEME):
            return self.bucket, key.lstrip("/")

        bucket, _, object_key = key[len(S3_SCHEME):].partition("/")
        if not bucket or not object_key:
            raise StorageError(f"invalid S3 location: {key}")
        return bucket, object_key

    def get(self, token: CancelToken, key: str) -> Path:
        """Download an archive into a temporary file and return its path.

        The temporary file is removed if the download fails or is cancelled.

        Raises:
            StorageError: If the object cannot be downloaded.
        """
        bucket, object_key = self.parse_location(key)
        token.raise_if_cancelled()

        fd, tmp_name = tempfile.mkstemp(prefix="gitlab-restore-", suffix=".tar.gz", dir=self.tmp_dir)
        tmp_path = Path(tmp_name)
        logger.debug(f"Downloading s3://{bucket}/{object_key} to {tmp_path}")

        try:
            with os.fdopen(fd, "wb") as f:
                body = self.s3.get_object(Bucket=bucket, Key=object_key)["Body"]
                with closing(body):
                    for chunk in body.iter_chunks(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        token.raise_if_cancelled()
                        f.write(chunk)
        except (ClientError, BotoCoreError, OSError) as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"failed to download s3://{bucket}/{object_key}: {e}") from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        return tmp_path

    def ensure_bucket_exists(self) -> bool:
        """Ensure the target bucket exists.

        Returns:
            True if bucket exists or was created.
        """
        try:
            self.s3.head_bucket(Bucket=self.bucket)
            return True
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            if error_code == "404":
                logger.info(f"Bucket {self.bucket} does not exist, creating...")
                try:
                    self.s3.create_bucket(Bucket=self.bucket)
                    return True
                except ClientError as create_error:
                    logger.error(f"Failed to create bucket: {create_error}")
                    return False
            else:
                logger.error(f"Error checking bucket: {e}")
                return False
