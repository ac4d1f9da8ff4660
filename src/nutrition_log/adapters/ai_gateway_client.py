"""HTTPX client for the shared AI gateway (parse, TEF, suggestion stream)."""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from nutrition_log.domain.errors import (
    AIServiceError,
    AITimeoutError,
    AITransportError,
    api_error_from_response,
)
from nutrition_log.domain.profile import AIConfig
from nutrition_log.domain.records import FoodEntry
from nutrition_log.services.parsing import (
    ParseClient,
    ParseRequest,
    detect_mime_type,
)
from nutrition_log.services.suggestions import (
    SuggestionRequest,
    SuggestionStreamClient,
)
from nutrition_log.services.tef import TEFAnalysisClient

PARSE_PATH = "/api/openai/parse-shared"
PARSE_WITH_IMAGES_PATH = "/api/openai/parse-with-images"
TEF_ANALYSIS_PATH = "/api/openai/tef-analysis-shared"
SUGGESTIONS_PATH = "/api/openai/smart-suggestions-shared"


@dataclass
class HttpxAIGatewayClient(ParseClient, TEFAnalysisClient, SuggestionStreamClient):
    """HTTPX-backed gateway client."""

    base_url: str
    http_client: httpx.AsyncClient
    token: str | None = None
    timeout_seconds: float = 60

    @classmethod
    def create(cls, base_url: str, token: str | None = None) -> "HttpxAIGatewayClient":
        """Create a gateway client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            token=token,
        )

    async def parse(self, request: ParseRequest) -> dict[str, object]:
        """Parse text (JSON body) or text with photos (multipart body)."""
        ai_config = request.ai_config.model_dump(mode="json", by_alias=True)
        if request.images:
            files = [
                (f"image{index}", (f"image{index}", image, detect_mime_type(image)))
                for index, image in enumerate(request.images)
            ]
            data = {
                "text": request.text,
                "lang": request.lang,
                "type": request.kind,
                "userWeight": str(request.user_weight),
                "aiConfig": json.dumps(ai_config),
            }
            return await self._post(PARSE_WITH_IMAGES_PATH, data=data, files=files)
        payload = {
            "text": request.text,
            "lang": request.lang,
            "type": request.kind,
            "userWeight": request.user_weight,
            "aiConfig": ai_config,
        }
        return await self._post(PARSE_PATH, payload=payload)

    async def analyze_tef(
        self, food_entries: list[FoodEntry], ai_config: AIConfig
    ) -> dict[str, object]:
        """Request the enhancement multiplier and factors for a food list."""
        payload = {
            "foodEntries": [entry.model_dump(mode="json") for entry in food_entries],
            "aiConfig": ai_config.model_dump(mode="json", by_alias=True),
        }
        return await self._post(TEF_ANALYSIS_PATH, payload=payload)

    @asynccontextmanager
    async def stream_suggestions(
        self, request: SuggestionRequest
    ) -> AsyncIterator[AsyncIterator[str]]:
        """Open the suggestion event stream and yield its text chunks."""
        payload = request.model_dump(mode="json", by_alias=True)
        try:
            async with self.http_client.stream(
                "POST",
                f"{self.base_url}{SUGGESTIONS_PATH}",
                json=payload,
                headers=self._headers(),
                timeout=httpx.Timeout(self.timeout_seconds, read=None),
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise api_error_from_response(
                        response.status_code, _json_body(response)
                    )
                yield _guarded_chunks(response)
        except httpx.TimeoutException as exc:
            raise AITimeoutError("AI gateway request timed out") from exc
        except httpx.TransportError as exc:
            raise AITransportError(f"AI gateway unreachable: {exc}") from exc

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _post(
        self,
        path: str,
        *,
        payload: dict[str, object] | None = None,
        data: dict[str, str] | None = None,
        files: list[tuple[str, tuple[str, bytes, str]]] | None = None,
    ) -> dict[str, object]:
        try:
            response = await self.http_client.post(
                f"{self.base_url}{path}",
                json=payload,
                data=data,
                files=files,
                headers=self._headers(),
                timeout=self.timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise AITimeoutError("AI gateway request timed out") from exc
        except httpx.TransportError as exc:
            raise AITransportError(f"AI gateway unreachable: {exc}") from exc
        if response.is_error:
            raise api_error_from_response(response.status_code, _json_body(response))
        body = _json_body(response)
        if body is None:
            raise AIServiceError(
                "AI gateway returned a non-JSON response",
                status_code=response.status_code,
            )
        return body

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}


async def _guarded_chunks(response: httpx.Response) -> AsyncIterator[str]:
    """Yield decoded chunks, mapping mid-stream transport failures."""
    try:
        async for chunk in response.aiter_text():
            yield chunk
    except httpx.TimeoutException as exc:
        raise AITimeoutError("AI gateway stream timed out") from exc
    except httpx.TransportError as exc:
        raise AITransportError(f"AI gateway stream broke: {exc}") from exc


def _json_body(response: httpx.Response) -> dict[str, object] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None
