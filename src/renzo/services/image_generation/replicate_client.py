"""Replicate predictions client for image transformations with error classification."""

import asyncio
from typing import Any, Optional

import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from renzo.models.job import JobStatus
from renzo.services.exceptions import (
    PermanentError,
    ProviderAuthError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderValidationError,
    ServiceError,
    TransientError,
)
from renzo.services.image_generation.base import (
    GenerationRequest,
    GenerationStatus,
    GenerationTicket,
    closest_aspect_ratio,
)

PREDICTION_STATUS_MAP = {
    "starting": JobStatus.PENDING,
    "processing": JobStatus.PROCESSING,
    "succeeded": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
    "canceled": JobStatus.FAILED,
}


def classify_error(exception: Exception) -> ServiceError:
    """Classify exception into retry category.

    Classification rules:
        - Timeout errors -> ProviderNetworkError
        - 429 (rate limit) -> ProviderRateLimitError
        - 5xx (service unavailable) -> TransientError
        - 401/403 (authentication) -> ProviderAuthError
        - Connection errors -> ProviderNetworkError
        - Everything else -> PermanentError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    status = getattr(exception, "status", None)

    if isinstance(exception, TimeoutError) or "timeout" in error_message_lower:
        return ProviderNetworkError(f"Network timeout: {error_message}")

    if status == 429 or "429" in error_message or "rate limit" in error_message_lower:
        return ProviderRateLimitError(f"Rate limit exceeded: {error_message}")

    if (isinstance(status, int) and status >= 500) or "503" in error_message:
        return TransientError(f"Service unavailable: {error_message}")

    if (
        status in (401, 403)
        or "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderAuthError(f"Authentication failed: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return ProviderNetworkError(f"Connection error: {error_message}")

    return PermanentError(f"Permanent error: {error_message}")


def _first_output_url(output: Any) -> Optional[str]:
    # Output format varies by model
    if isinstance(output, list) and len(output) > 0:
        return str(output[0])
    if isinstance(output, str) and output:
        return output
    return None


class ReplicateClient:
    """Image-to-image client for Replicate's predictions API.

    The SDK is synchronous, so every call runs in a worker thread.
    """

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        model_version: str = "black-forest-labs/flux-kontext-pro",
        timeout: float = 30.0,
        client: Optional[replicate.Client] = None,
    ):
        if not api_token and client is None:
            raise PermanentError("REPLICATE_API_TOKEN not configured")
        self.model_version = model_version
        self.client = client or replicate.Client(api_token=api_token, timeout=timeout)

    async def _call(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except (ReplicateAPIError, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e

    async def generate(self, request: GenerationRequest) -> GenerationTicket:
        """Create a prediction and return its id as the task handle."""
        model_input = {
            "prompt": request.prompt,
            "input_image": request.image_url,
            "aspect_ratio": closest_aspect_ratio(request.width, request.height),
            **request.extra,
        }
        if ":" in self.model_version:
            # owner/name:version pins an exact version
            kwargs = {"version": self.model_version.split(":", 1)[1]}
        else:
            kwargs = {"model": self.model_version}

        prediction = await self._call(
            self.client.predictions.create, input=model_input, **kwargs
        )
        if not getattr(prediction, "id", None):
            raise ProviderValidationError("Replicate returned a prediction without an id")
        return GenerationTicket(external_task_id=prediction.id)

    async def check_status(self, external_task_id: str) -> GenerationStatus:
        """Fetch a prediction and map its status.

        Unknown statuses are treated as still processing.
        """
        prediction = await self._call(self.client.predictions.get, external_task_id)
        status = PREDICTION_STATUS_MAP.get(prediction.status, JobStatus.PROCESSING)

        if status == JobStatus.COMPLETED:
            url = _first_output_url(prediction.output)
            if not url:
                return GenerationStatus(
                    status=JobStatus.FAILED,
                    error_message="Task completed but no image URL returned",
                )
            return GenerationStatus(status=status, output_url=url)

        if status == JobStatus.FAILED:
            error = prediction.error or f"Prediction {prediction.status}"
            return GenerationStatus(status=status, error_message=str(error))

        return GenerationStatus(status=status)
