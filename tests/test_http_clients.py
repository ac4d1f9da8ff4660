"""Tests for HTTP-based adapters."""

import asyncio
import json

import httpx
import pytest
from openai import APIConnectionError

from nutrition_log.adapters.ai_gateway_client import HttpxAIGatewayClient
from nutrition_log.adapters.openai_parse_client import OpenAIParseClient
from nutrition_log.domain.errors import (
    AIServiceError,
    AITransportError,
    RateLimitedError,
    UnauthorizedError,
)
from nutrition_log.domain.profile import AIConfig, ModelSettings, UserProfile
from nutrition_log.domain.records import DailyRecord
from nutrition_log.services.parsing import ParseRequest
from nutrition_log.services.suggestions import SuggestionRequest
from tests.conftest import food_entry

PNG = b"\x89PNG\r\n\x1a\nrest-of-image"


def _gateway(handler) -> HttpxAIGatewayClient:  # type: ignore[no-untyped-def]
    transport = httpx.MockTransport(handler)
    return HttpxAIGatewayClient(
        base_url="https://gateway.test",
        http_client=httpx.AsyncClient(transport=transport),
        token="user-token",
    )


def _request(**kwargs) -> ParseRequest:  # type: ignore[no-untyped-def]
    return ParseRequest(
        text="two eggs", kind="food", user_weight=70.0, ai_config=AIConfig(), **kwargs
    )


class _FakeResponses:
    def __init__(self, output_text: str = '{"food": [], "exercise": []}') -> None:
        self.output_text = output_text
        self.last_payload: dict[str, object] | None = None
        self.error: Exception | None = None

    async def create(self, **kwargs):  # type: ignore[no-untyped-def]
        self.last_payload = kwargs
        if self.error is not None:
            raise self.error
        return type("Resp", (), {"output_text": self.output_text})()


class _FakeOpenAI:
    def __init__(self) -> None:
        self.responses = _FakeResponses()


def test_gateway_parse_sends_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/openai/parse-shared"
        assert request.headers["Authorization"] == "Bearer user-token"
        payload = json.loads(request.content.decode())
        assert payload["text"] == "two eggs"
        assert payload["type"] == "food"
        assert payload["userWeight"] == 70.0
        assert payload["aiConfig"]["agentModel"]["source"] == "shared"
        return httpx.Response(200, json={"food": [{"food_name": "Egg"}]})

    result = asyncio.run(_gateway(handler).parse(_request()))

    assert result == {"food": [{"food_name": "Egg"}]}


def test_gateway_parse_with_images_sends_multipart() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/openai/parse-with-images"
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'name="image0"' in body
        assert b"image/png" in body
        assert b'name="userWeight"' in body
        return httpx.Response(200, json={"food": [], "exercise": []})

    result = asyncio.run(_gateway(handler).parse(_request(images=[PNG])))

    assert result == {"food": [], "exercise": []}


def test_gateway_maps_structured_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={
                "error": "Daily limit reached",
                "code": "LIMIT_EXCEEDED",
                "details": {"currentUsage": 10, "dailyLimit": 10},
            },
        )

    with pytest.raises(RateLimitedError) as excinfo:
        asyncio.run(_gateway(handler).parse(_request()))

    assert excinfo.value.daily_limit == 10


def test_gateway_rejects_non_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(AIServiceError, match="non-JSON"):
        asyncio.run(_gateway(handler).parse(_request()))


def test_gateway_maps_transport_failures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(AITransportError):
        asyncio.run(_gateway(handler).parse(_request()))


def test_gateway_tef_analysis_posts_food_entries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/openai/tef-analysis-shared"
        payload = json.loads(request.content.decode())
        assert payload["foodEntries"][0]["food_name"] == "Rice"
        return httpx.Response(200, json={"enhancementMultiplier": 1.1})

    result = asyncio.run(
        _gateway(handler).analyze_tef([food_entry("a")], AIConfig())
    )

    assert result == {"enhancementMultiplier": 1.1}


def _suggestion_request() -> SuggestionRequest:
    return SuggestionRequest(
        daily_log=DailyRecord(date="2024-05-01"),
        user_profile=UserProfile(),
        ai_config=AIConfig(),
        selected_experts=["nutrition"],
    )


def test_gateway_streams_suggestion_chunks() -> None:
    body = 'data: {"type": "init"}\n\ndata: {"type": "complete"}\n\n'

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/openai/smart-suggestions-shared"
        payload = json.loads(request.content.decode())
        assert payload["selectedExperts"] == ["nutrition"]
        assert payload["dailyLog"]["date"] == "2024-05-01"
        return httpx.Response(
            200, text=body, headers={"content-type": "text/event-stream"}
        )

    client = _gateway(handler)

    async def scenario() -> str:
        async with client.stream_suggestions(_suggestion_request()) as chunks:
            return "".join([chunk async for chunk in chunks])

    assert asyncio.run(scenario()) == body


def test_gateway_stream_raises_on_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "Login required"})

    client = _gateway(handler)

    async def scenario() -> None:
        async with client.stream_suggestions(_suggestion_request()):
            pass

    with pytest.raises(UnauthorizedError, match="Login required"):
        asyncio.run(scenario())


def test_openai_parse_client_sends_schema_and_images() -> None:
    fake = _FakeOpenAI()
    client = OpenAIParseClient(client=fake, model="gpt-4o")  # type: ignore[arg-type]

    result = asyncio.run(client.parse(_request(images=[PNG])))

    assert result == {"food": [], "exercise": []}
    payload = fake.responses.last_payload
    assert payload["model"] == "gpt-4o"
    assert payload["store"] is False
    assert payload["text"]["format"]["name"] == "entry_parse"
    content = payload["input"][0]["content"]
    assert content[0]["type"] == "input_text"
    assert content[1]["image_url"].startswith("data:image/png;base64,")


def test_openai_parse_client_maps_connection_errors() -> None:
    fake = _FakeOpenAI()
    fake.responses.error = APIConnectionError(
        request=httpx.Request("POST", "https://api.openai.com/v1/responses")
    )
    client = OpenAIParseClient(client=fake, model="gpt-4o")  # type: ignore[arg-type]

    with pytest.raises(AITransportError):
        asyncio.run(client.parse(_request()))


def test_openai_parse_client_create_targets_v1_base() -> None:
    client = OpenAIParseClient.create(
        ModelSettings(
            name="llama3",
            base_url="http://localhost:11434/",
            api_key="local-key",
            source="private",
        )
    )

    assert str(client.client.base_url).rstrip("/") == "http://localhost:11434/v1"
    assert client.model == "llama3"
    asyncio.run(client.close())
