"""Re-hosting of generated images.

Provider result URLs are temporary. When a job completes, the image is
downloaded, resized to the exact dimensions of the uploaded photo (when they
are known) and stored under a key derived from the job, so re-hosting the
same job twice overwrites one object instead of creating a second.
"""

import asyncio
import io
from typing import Optional, Protocol

import httpx
import structlog
from PIL import Image, UnidentifiedImageError

from renzo.core.config import Settings
from renzo.models.job import Job
from renzo.services.exceptions import ResultStorageError

logger = structlog.get_logger(__name__)


class ImageStorage(Protocol):
    async def upload_bytes(self, data: bytes, key: str, content_type: str) -> str: ...


def result_key(job: Job) -> str:
    return f"{job.project_id}/transformed-{job.id}.png"


def target_size(job: Job) -> Optional[tuple[int, int]]:
    """Original photo dimensions recorded at submission, if any."""
    metadata = job.input_metadata or {}
    width, height = metadata.get("width"), metadata.get("height")
    if isinstance(width, int) and isinstance(height, int) and width > 0 and height > 0:
        return width, height
    return None


def resize_to_png(raw: bytes, size: Optional[tuple[int, int]]) -> bytes:
    """Decode an image, stretch it to ``size`` and re-encode it as PNG.

    The aspect ratio is not preserved: the result must match the original
    photo pixel for pixel so before/after views line up.

    Raises:
        ResultStorageError: If the bytes are not a decodable image
    """
    try:
        img = Image.open(io.BytesIO(raw))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ResultStorageError(f"Generated image could not be decoded: {e}") from e

    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    if size is not None and img.size != size:
        img = img.resize(size, Image.Resampling.LANCZOS)

    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class ResultStore:
    """Downloads provider results and stores them permanently."""

    def __init__(
        self,
        storage: ImageStorage,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storage = storage
        self.timeout = timeout
        self.transport = transport

    async def _download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport, follow_redirects=True
            ) as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise ResultStorageError(f"Download of generated image failed: {e}") from e

        if response.status_code != 200:
            raise ResultStorageError(
                f"Download of generated image failed ({response.status_code})"
            )
        return response.content

    async def rehost(self, job: Job, source_url: str) -> str:
        """Copy a job's generated image to permanent storage.

        Returns:
            Public URL of the stored PNG

        Raises:
            ResultStorageError: Download, decoding or upload failed
        """
        raw = await self._download(source_url)
        size = target_size(job)
        png = await asyncio.to_thread(resize_to_png, raw, size)
        url = await self.storage.upload_bytes(png, result_key(job), "image/png")

        logger.info(
            "job.result_rehosted",
            job_id=str(job.id),
            resized_to=f"{size[0]}x{size[1]}" if size else None,
            size_bytes=len(png),
        )
        return url


def build_result_store(settings: Settings) -> Optional[ResultStore]:
    """Build the result store, or None when R2 is not configured.

    Without it, jobs keep the provider's own result URL.
    """
    if not settings.result_storage_configured:
        logger.warning("storage.not_configured", detail="provider result URLs are kept as-is")
        return None

    from renzo.services.storage.r2_storage import R2Storage

    storage = R2Storage(
        account_id=settings.r2_account_id,
        access_key_id=settings.r2_access_key_id,
        secret_access_key=settings.r2_secret_access_key,
        bucket_name=settings.r2_bucket_name,
        public_base_url=settings.r2_public_base_url,
    )
    return ResultStore(storage, timeout=settings.http_timeout_seconds)
