import re
from typing import Optional

import boto3
from fastapi.concurrency import run_in_threadpool

from app.config import Settings
from app.logger.logger import logger


class S3FileClient:
    instance_type = "s3"

    def __init__(self, settings: Settings, s3_instance=None):
        self.bucket_name = settings.AWS_S3_BUCKET_NAME
        self.s3_instance = s3_instance or boto3.client(
            self.instance_type,
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region_name=settings.AWS_DEFAULT_REGION,
        )

    @staticmethod
    def sanitize_path(path: str) -> str:
        # keep folder separators, replace anything else unusual with hyphen
        return re.sub(r"[^a-zA-Z0-9./_-]", "-", path)

    def get_public_url(self, path: str) -> str:
        return f"https://{self.bucket_name}.s3.amazonaws.com/{self.sanitize_path(path)}"

    def upload_file_from_buffer_sync(
        self, path: str, file_content: bytes, content_type: str
    ) -> str:
        """Upload bytes to the bucket, overwriting any existing object, and
        return the public URL. Errors propagate to the caller."""
        file_path = self.sanitize_path(path)
        self.s3_instance.put_object(
            Bucket=self.bucket_name,
            Key=file_path,
            Body=file_content,
            ContentType=content_type,
        )
        return self.get_public_url(file_path)

    async def upload(self, path: str, file_content: bytes, content_type: str) -> str:
        logger.info(f"Uploading file to s3: {path}")
        return await run_in_threadpool(
            self.upload_file_from_buffer_sync, path, file_content, content_type
        )

    async def try_upload(
        self, path: str, file_content: bytes, content_type: str
    ) -> Optional[str]:
        try:
            return await self.upload(path, file_content, content_type)
        except Exception as e:
            logger.error(f"Error uploading file to S3: {e}")
            return None
