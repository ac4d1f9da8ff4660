"""OpenAI Responses API client for parsing with a private model configuration."""

import json
from dataclasses import dataclass

from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI

from nutrition_log.domain.errors import (
    AITimeoutError,
    AITransportError,
    ServerError,
    UnauthorizedError,
)
from nutrition_log.domain.profile import ModelSettings
from nutrition_log.services.parsing import (
    PARSE_SCHEMA,
    ParseClient,
    ParseRequest,
    parse_prompt,
    to_data_url,
)


@dataclass
class OpenAIParseClient(ParseClient):
    """Parse client backed by the user's own OpenAI-compatible endpoint."""

    client: AsyncOpenAI
    model: str
    store: bool = False

    @classmethod
    def create(cls, settings: ModelSettings) -> "OpenAIParseClient":
        """Create a client for a private model configuration."""
        return cls(
            client=AsyncOpenAI(
                api_key=settings.api_key, base_url=_api_base(settings.base_url)
            ),
            model=settings.name,
        )

    async def parse(self, request: ParseRequest) -> dict[str, object]:
        """Call the Responses API with structured outputs."""
        content: list[dict[str, str]] = [
            {"type": "input_text", "text": parse_prompt(request)}
        ]
        content.extend(
            {"type": "input_image", "image_url": to_data_url(image)}
            for image in request.images
        )
        request_payload: dict[str, object] = {
            "model": self.model,
            "input": [{"role": "user", "content": content}],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "entry_parse",
                    "strict": True,
                    "schema": PARSE_SCHEMA,
                }
            },
            "store": self.store,
        }
        try:
            response = await self.client.responses.create(**request_payload)
        except APITimeoutError as exc:
            raise AITimeoutError("Private model request timed out") from exc
        except APIConnectionError as exc:
            raise AITransportError(f"Private model unreachable: {exc}") from exc
        except APIStatusError as exc:
            if exc.status_code == 401:
                raise UnauthorizedError(
                    "Private model rejected the API key", status_code=401
                ) from exc
            raise ServerError(
                f"Private model error ({exc.status_code})",
                status_code=exc.status_code,
            ) from exc
        output_text = response.output_text
        if not output_text:
            raise ServerError("Private model returned an empty response")
        return json.loads(output_text)

    async def close(self) -> None:
        await self.client.close()


def _api_base(base_url: str) -> str:
    base = base_url.rstrip("/")
    return base if base.endswith("/v1") else f"{base}/v1"
