"""Provider-neutral types for AI image generation.

Every provider reports one of four statuses. Provider-specific codes are
mapped to these in the client, so nothing above this layer sees raw provider
responses.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol

from renzo.core.config import Settings
from renzo.models.job import JobStatus

# Aspect ratios accepted by image-to-image providers
SUPPORTED_ASPECT_RATIOS: dict[str, float] = {
    "1:1": 1.0,
    "16:9": 16 / 9,
    "9:16": 9 / 16,
    "4:3": 4 / 3,
    "3:4": 3 / 4,
    "3:2": 3 / 2,
    "2:3": 2 / 3,
    "5:4": 5 / 4,
    "4:5": 4 / 5,
    "21:9": 21 / 9,
}
DEFAULT_ASPECT_RATIO = "16:9"


@dataclass
class GenerationRequest:
    """Input for one image transformation."""

    prompt: str
    image_url: str
    width: Optional[int] = None
    height: Optional[int] = None
    extra: dict = field(default_factory=dict)


@dataclass
class GenerationTicket:
    """Provider acknowledgement of a submitted transformation.

    Providers either hand back a task handle to poll, or the finished image
    directly (``output_url`` set).
    """

    external_task_id: Optional[str]
    output_url: Optional[str] = None


@dataclass
class GenerationStatus:
    """Provider-reported state of a task."""

    status: JobStatus
    output_url: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


class ImageGenerationProvider(Protocol):
    """Operations the synchronizer and job submission need from a provider."""

    name: str

    async def generate(self, request: GenerationRequest) -> GenerationTicket: ...

    async def check_status(self, external_task_id: str) -> GenerationStatus: ...


def closest_aspect_ratio(width: Optional[int], height: Optional[int]) -> str:
    """Pick the supported aspect ratio nearest to the source image.

    Falls back to 16:9 when dimensions are unknown.
    """
    if not width or not height:
        return DEFAULT_ASPECT_RATIO
    ratio = width / height
    return min(SUPPORTED_ASPECT_RATIOS, key=lambda name: abs(SUPPORTED_ASPECT_RATIOS[name] - ratio))


def build_provider(settings: Settings) -> ImageGenerationProvider:
    """Instantiate the provider selected by ``AI_PROVIDER``.

    Raises:
        ValueError: If the provider name is unknown
    """
    if settings.ai_provider == "nanobanana":
        from renzo.services.image_generation.nanobanana_client import NanoBananaClient

        return NanoBananaClient(
            api_key=settings.nanobanana_api_key,
            base_url=settings.nanobanana_base_url,
            timeout=settings.http_timeout_seconds,
            callback_url=settings.nanobanana_callback_url or None,
        )
    if settings.ai_provider == "replicate":
        from renzo.services.image_generation.replicate_client import ReplicateClient

        return ReplicateClient(
            api_token=settings.replicate_api_token,
            model_version=settings.replicate_model_version,
            timeout=settings.http_timeout_seconds,
        )
    raise ValueError(f"Unknown AI provider: {settings.ai_provider}")
