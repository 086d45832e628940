from __future__ import annotations

import logging
from pathlib import Path

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from rxflow.core.config import Settings
from rxflow.core.errors import TransientExternalError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
}


def archive_key(job_id: str, filename: str) -> str:
    return f"jobs/{job_id}/{filename}"


class ArchiveStorage:
    """
    Durable object storage for processed source files (S3 or MinIO).

    One instance per process; the boto3 client is created once and reused.
    """

    def __init__(self, bucket: str, client) -> None:
        self.bucket = bucket
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "ArchiveStorage":
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            # MinIO requires path-style addressing
            config=Config(s3={"addressing_style": "path"}, retries={"max_attempts": 3}),
        )
        return cls(settings.s3_bucket, client)

    def upload(self, local_path: str | Path, key: str, ext: str | None = None) -> str:
        """Upload a local file and return its s3:// URI."""
        ext = (ext or Path(local_path).suffix.lstrip(".")).lower()
        content_type = CONTENT_TYPES.get(ext, "application/octet-stream")

        try:
            self.client.upload_file(
                str(local_path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError, S3UploadFailedError) as e:
            raise TransientExternalError(f"archive upload failed for {key}: {e}") from e

        uri = f"s3://{self.bucket}/{key}"
        logger.info("archived %s -> %s", local_path, uri)
        return uri
