"""
SealDeal - Generative Model Client
Calls the Vertex AI generateContent endpoint with application-default credentials
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import google.auth
import httpx
from google.auth.transport.requests import Request

from exceptions import ModelAPIError, ModelResponseError, ServiceUnavailableError

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
RATE_LIMITED = 429

T = TypeVar("T")


def build_request_body(parts: List[Dict[str, Any]], web_grounded: bool = False) -> Dict[str, Any]:
    body: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
    if web_grounded:
        body["tools"] = [{"googleSearchRetrieval": {}}]
    return body


def extract_candidate_text(data: Dict[str, Any]) -> str:
    """candidates[0].content.parts[0].text"""
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = None

    if not text:
        raise ModelResponseError("Model returned an invalid response.")
    return text


class GenerativeModelClient:
    """Thin async wrapper around one hosted model"""

    def __init__(
        self,
        project_id: str,
        location: str,
        model: str,
        credentials=None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 540.0,
    ):
        self.model = model
        self.endpoint = (
            f"https://{location}-aiplatform.googleapis.com/v1/projects/{project_id}"
            f"/locations/{location}/publishers/google/models/{model}:generateContent"
        )
        self._credentials = credentials
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    def _access_token_sync(self) -> str:
        if self._credentials is None:
            self._credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
        if not self._credentials.valid:
            self._credentials.refresh(Request())
        return self._credentials.token

    async def access_token(self) -> str:
        # google-auth refresh is blocking
        return await asyncio.to_thread(self._access_token_sync)

    async def generate(self, parts: List[Dict[str, Any]], web_grounded: bool = False) -> str:
        """Send parts, return the first candidate's text"""
        token = await self.access_token()
        response = await self._http.post(
            self.endpoint,
            json=build_request_body(parts, web_grounded),
            headers={"Authorization": f"Bearer {token}"},
        )

        if not response.is_success:
            logger.error(f"[Model] {self.model} returned HTTP {response.status_code}")
            raise ModelAPIError(response.status_code, response.text)

        return extract_candidate_text(response.json())

    async def generate_text(self, prompt: str, web_grounded: bool = False) -> str:
        return await self.generate([{"text": prompt}], web_grounded=web_grounded)

    async def aclose(self):
        await self._http.aclose()


async def generate_with_retry(
    call: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Retry only on HTTP 429, backing off 2s then 4s.
    Any other error propagates on the first occurrence.
    """
    last_error: Optional[ModelAPIError] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return await call()
        except ModelAPIError as e:
            if e.http_status != RATE_LIMITED:
                raise
            last_error = e
            if attempt < max_attempts:
                delay = base_delay * (2 ** attempt)
                logger.warning(f"[Model] Rate limit hit. Retrying in {delay:g}s...")
                await sleep(delay)

    logger.error(f"[Model] Still rate limited after {max_attempts} attempts")
    raise ServiceUnavailableError() from last_error
