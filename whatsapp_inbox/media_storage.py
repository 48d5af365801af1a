"""
Cloudflare R2 (S3-compatible) uploads for outbound media.
"""

import logging
import os
import random
import string
import time
from functools import lru_cache
from typing import Optional

import boto3

from whatsapp_inbox.config import settings
from whatsapp_inbox.errors import StorageNotConfiguredError

logger = logging.getLogger(__name__)

UPLOAD_PREFIX = "uploads"


def infer_media_type(content_type: Optional[str]) -> str:
    """Provider media kind for a MIME type: image, video, audio, else document."""
    content_type = content_type or ""
    for prefix in ("image", "video", "audio"):
        if content_type.startswith(f"{prefix}/"):
            return prefix
    return "document"


def generate_object_name(original_filename: Optional[str]) -> str:
    """``<epoch ms>-<random>.<ext>``, keeping the original extension or ``bin``."""
    _, ext = os.path.splitext(original_filename or "")
    ext = ext.lstrip(".") or "bin"
    random_part = "".join(random.choices(string.ascii_lowercase + string.digits, k=13))
    return f"{int(time.time() * 1000)}-{random_part}.{ext}"


class R2Storage:
    def __init__(
        self,
        account_id: str = "",
        access_key_id: str = "",
        secret_access_key: str = "",
        bucket_name: str = "",
        public_url: str = "",
        client=None,
    ):
        self.bucket_name = bucket_name
        self.public_url = public_url.rstrip("/")
        self._client = client

        # Only build a client when every credential is present
        if self._client is None and account_id and access_key_id and secret_access_key and bucket_name:
            self._client = boto3.client(
                "s3",
                region_name="auto",
                endpoint_url=f"https://{account_id}.r2.cloudflarestorage.com",
                aws_access_key_id=access_key_id,
                aws_secret_access_key=secret_access_key,
            )

    def is_configured(self) -> bool:
        return self._client is not None and bool(self.bucket_name) and bool(self.public_url)

    def upload_file(self, data: bytes, filename: str, content_type: str) -> str:
        """
        Store ``data`` under ``uploads/<filename>``.

        Returns:
            The public URL of the stored object.
        """
        if not self.is_configured():
            raise StorageNotConfiguredError("R2 storage is not configured")

        key = f"{UPLOAD_PREFIX}/{filename}"
        self._client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type or "application/octet-stream",
        )
        logger.info(f"Uploaded {len(data)} bytes to {key}")
        return f"{self.public_url}/{key}"

    @staticmethod
    def configuration_instructions() -> str:
        return """
R2 Storage is not configured. Please add the following environment variables:

1. R2_ACCOUNT_ID - Your Cloudflare account ID
2. R2_ACCESS_KEY_ID - Your R2 access key ID
3. R2_SECRET_ACCESS_KEY - Your R2 secret access key
4. R2_BUCKET_NAME - Your R2 bucket name
5. R2_PUBLIC_URL - Your R2 bucket public URL (e.g., https://pub-xxxxx.r2.dev)

To set up R2:
1. Go to Cloudflare Dashboard > R2
2. Create a new bucket
3. Create API tokens with "Object Read & Write" permissions
4. Enable public access to your bucket or set up a custom domain
5. Add the credentials to your .env file
""".strip()


@lru_cache()
def get_media_storage() -> R2Storage:
    """FastAPI dependency, built once per process; tests override it with a fake."""
    return R2Storage(
        account_id=settings.R2_ACCOUNT_ID,
        access_key_id=settings.R2_ACCESS_KEY_ID,
        secret_access_key=settings.R2_SECRET_ACCESS_KEY,
        bucket_name=settings.R2_BUCKET_NAME,
        public_url=settings.R2_PUBLIC_URL,
    )
