import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict

import boto3

from funplanet.config.settings import get_env_or_raise

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 120


def sanitize_filename(filename: str) -> str:
    """Keep [a-zA-Z0-9._-], replace the rest with `_`, collapse runs, cap length."""
    safe = re.sub(r"[^a-zA-Z0-9._-]", "_", filename or "file")
    safe = re.sub(r"_+", "_", safe)
    return safe[:MAX_FILENAME_LENGTH] or "file"


def build_object_key(folder: str, filename: str) -> str:
    return f"{folder}/{uuid.uuid4()}-{sanitize_filename(filename)}"


@dataclass
class R2Storage:
    """Cloudflare R2 bucket reached through its S3-compatible API."""

    client: Any
    bucket: str
    public_url: str

    @classmethod
    def from_env(cls) -> "R2Storage":
        client = boto3.client(
            "s3",
            endpoint_url=get_env_or_raise("R2_ENDPOINT"),
            aws_access_key_id=get_env_or_raise("R2_ACCESS_KEY_ID"),
            aws_secret_access_key=get_env_or_raise("R2_SECRET_ACCESS_KEY"),
            region_name="auto",
        )
        return cls(
            client=client,
            bucket=get_env_or_raise("R2_BUCKET_NAME"),
            public_url=get_env_or_raise("R2_PUBLIC_URL").rstrip("/"),
        )

    def upload(self, content: bytes, filename: str, content_type: str, folder: str) -> Dict[str, Any]:
        key = build_object_key(folder, filename)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=content,
            ContentType=content_type,
            CacheControl="public, max-age=31536000",
        )
        logger.info(f"✅ Uploaded {key} ({len(content)} bytes)")
        return {
            "success": True,
            "url": f"{self.public_url}/{key}",
            "key": key,
            "size": len(content),
            "type": content_type,
            "folder": folder,
        }

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)
        logger.info(f"🗑️ Deleted {key}")
