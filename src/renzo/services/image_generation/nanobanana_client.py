"""NanoBanana API client for image-to-image transformations."""

from typing import Any, Optional

import httpx

from renzo.models.job import JobStatus
from renzo.services.exceptions import (
    ProviderAuthError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderValidationError,
    TransientError,
)
from renzo.services.image_generation.base import (
    GenerationRequest,
    GenerationStatus,
    GenerationTicket,
    closest_aspect_ratio,
)

# The provider's API spells the image-to-image mode this way
IMAGE_TO_IMAGE_TYPE = "IMAGETOIAMGE"

SUCCESS_FLAG_PROCESSING = 0
SUCCESS_FLAG_COMPLETED = 1
SUCCESS_FLAG_CREATE_FAILED = 2
SUCCESS_FLAG_GENERATE_FAILED = 3


def extract_result_url(payload: dict[str, Any]) -> Optional[str]:
    """Find the result image URL in a record-info response.

    The provider has returned it under several keys over time, so each known
    location is tried in order.
    """
    data = payload.get("data") or {}
    response = data.get("response") or {}
    candidates = (
        response.get("resultImageUrl"),
        response.get("originImageUrl"),
        data.get("originImageUrl"),
        data.get("resultImageUrl"),
        data.get("url"),
        data.get("imageUrl"),
        payload.get("url"),
        payload.get("imageUrl"),
        payload.get("resultImageUrl"),
    )
    for url in candidates:
        if url:
            return url
    return None


def parse_status(payload: dict[str, Any]) -> GenerationStatus:
    """Map a record-info response to a GenerationStatus.

    successFlag mapping:
        0 -> processing
        1 -> completed (failed if no URL is present)
        2 -> failed ("Task creation failed")
        3 -> failed ("Generation failed")
        anything else -> processing
    """
    data = payload.get("data") or {}
    flag = data.get("successFlag", payload.get("successFlag"))

    if flag == SUCCESS_FLAG_COMPLETED:
        url = extract_result_url(payload)
        if not url:
            return GenerationStatus(
                status=JobStatus.FAILED,
                error_message="Task completed but no image URL returned",
            )
        return GenerationStatus(status=JobStatus.COMPLETED, output_url=url)

    if flag == SUCCESS_FLAG_CREATE_FAILED:
        return GenerationStatus(
            status=JobStatus.FAILED,
            error_message=data.get("errorMessage") or "Task creation failed",
        )

    if flag == SUCCESS_FLAG_GENERATE_FAILED:
        return GenerationStatus(
            status=JobStatus.FAILED,
            error_message=data.get("errorMessage") or "Generation failed",
        )

    return GenerationStatus(status=JobStatus.PROCESSING)


class NanoBananaClient:
    """Image-to-image client for the NanoBanana task API."""

    name = "nanobanana"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.nanobananaapi.ai/api/v1/nanobanana",
        timeout: float = 30.0,
        callback_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize NanoBanana client.

        Args:
            api_key: API key (from NANOBANANA_API_KEY env var)
            base_url: API root, without trailing slash
            timeout: Request timeout in seconds for every call
            callback_url: Optional completion callback passed to the provider
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.callback_url = callback_url
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    def _raise_for_status(self, response: httpx.Response) -> None:
        # Error classification
        if response.status_code == 429:
            raise ProviderRateLimitError(f"Rate limit exceeded: {response.text}")
        elif response.status_code >= 500:
            raise TransientError(f"Service unavailable ({response.status_code}): {response.text}")
        elif response.status_code in (401, 403):
            raise ProviderAuthError(
                f"Authentication failed ({response.status_code}). "
                "Check NANOBANANA_API_KEY configuration in .env file."
            )
        elif response.status_code >= 400:
            raise ProviderValidationError(f"Bad request ({response.status_code}): {response.text}")

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(
                    method, f"{self.base_url}{path}", headers=self.headers, **kwargs
                )
        except httpx.TimeoutException as e:
            raise ProviderNetworkError(f"Request timeout after {self.timeout}s: {str(e)}")
        except httpx.HTTPError as e:
            raise ProviderNetworkError(f"Network error: {str(e)}")

        self._raise_for_status(response)
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderValidationError(f"Malformed response: {str(e)}")
        if not isinstance(payload, dict):
            raise ProviderValidationError(f"Unexpected response type: {type(payload).__name__}")
        return payload

    async def generate(self, request: GenerationRequest) -> GenerationTicket:
        """Submit an image-to-image task.

        Returns:
            Ticket with the task id, or with the image URL when the provider
            answered synchronously

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid API key (401/403), bad request (400), no task id
        """
        body: dict[str, Any] = {
            "prompt": request.prompt,
            "numImages": 1,
            "type": IMAGE_TO_IMAGE_TYPE,
            "image_size": closest_aspect_ratio(request.width, request.height),
            "imageUrls": [request.image_url],
        }
        if self.callback_url:
            body["callBackUrl"] = self.callback_url
        body.update(request.extra)

        payload = await self._request("POST", "/generate", json=body)
        data = payload.get("data") or {}

        image_url = data.get("imageUrl") or payload.get("imageUrl") or payload.get("url")
        task_id = data.get("taskId") or payload.get("taskId")
        if image_url:
            return GenerationTicket(external_task_id=task_id, output_url=image_url)
        if not task_id:
            raise ProviderValidationError(
                f"No task id in generate response: {payload.get('msg') or payload}"
            )
        return GenerationTicket(external_task_id=str(task_id))

    async def check_status(self, external_task_id: str) -> GenerationStatus:
        """Ask the provider for the state of a task.

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid API key (401/403), bad request (400), malformed body
        """
        payload = await self._request(
            "GET", "/record-info", params={"taskId": external_task_id}
        )
        return parse_status(payload)
