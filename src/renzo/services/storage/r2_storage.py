"""Async Cloudflare R2 storage client (S3-compatible).

Uses aioboto3 so uploads do not block the event loop.
"""

from typing import Optional

import aioboto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from renzo.services.exceptions import ResultStorageError

logger = structlog.get_logger(__name__)


class R2Storage:
    """Upload-only wrapper around an R2 bucket served from a public base URL."""

    def __init__(
        self,
        account_id: str,
        access_key_id: str,
        secret_access_key: str,
        bucket_name: str,
        public_base_url: str,
        session: Optional[aioboto3.Session] = None,
    ):
        self.bucket_name = bucket_name
        self.endpoint_url = f"https://{account_id}.r2.cloudflarestorage.com"
        self.public_base_url = public_base_url.rstrip("/")
        self._session = session or aioboto3.Session()
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key

    def _client(self):
        """Return an async context-manager S3 client."""
        return self._session.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self._access_key_id,
            aws_secret_access_key=self._secret_access_key,
            config=BotoConfig(signature_version="s3v4"),
        )

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    async def upload_bytes(self, data: bytes, key: str, content_type: str) -> str:
        """Upload bytes under ``key`` (overwriting) and return the public URL.

        Raises:
            ResultStorageError: If the bucket rejects the upload or is unreachable
        """
        try:
            async with self._client() as client:
                await client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=data,
                    ContentType=content_type,
                )
        except (ClientError, BotoCoreError) as e:
            raise ResultStorageError(f"Upload of {key} failed: {e}") from e

        logger.debug("storage.uploaded", key=key, size=len(data))
        return self.public_url(key)
