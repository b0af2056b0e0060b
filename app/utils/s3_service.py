from typing import Optional
from uuid import UUID, uuid4

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.config.config import settings
from app.utils.exceptions import BackendError, InvalidInput
from app.utils.logger_config import setup_logger

logger = setup_logger()


class ObjectStorage:
    """Blob store for message attachments and proof-of-delivery photos"""

    def __init__(self, bucket_name: Optional[str] = None, client=None):
        self.bucket_name = bucket_name or settings.S3_BUCKET_NAME
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_KEY,
            )
        return self._client

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.amazonaws.com/{key}"

    def upload(
        self,
        folder: str,
        owner_id: UUID,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> str:
        """
        Upload a single image and return its public URL.

        Args:
            folder: bucket folder (message images, proof photos)
            owner_id: uploading user, used as key prefix
            filename: original file name
            data: raw bytes
            content_type: MIME type, must be an image

        Returns:
            str: Image URL
        """
        if not content_type or not content_type.startswith("image/"):
            raise InvalidInput(f"File {filename} is not an image")
        if not data:
            raise InvalidInput(f"File {filename} is empty")

        file_key = f"{folder}/{owner_id}/{uuid4()}-{filename}"
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=file_key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {file_key}: {e}")
            raise BackendError(f"Failed to upload image: {str(e)}") from e

        return self.public_url(file_key)
