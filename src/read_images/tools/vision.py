"""VisionClient — async client for an OpenAI-compatible chat-completions endpoint.

Sends one user message holding the question and the image as an inline data
URI, and returns the first choice's text.  Every failure is raised as
:class:`VisionAPIError` so ``tools/call`` can turn it into an ``isError``
tool result.
"""
from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from ..config import DEFAULT_MODEL, ServerConfig
from .errors import VisionAPIError
from .imaging import MIME_TYPE

log = logging.getLogger(__name__)

DEFAULT_QUESTION = "What's in this image?"

# Models known to accept image input.  Anything else is sent anyway, with a warning.
KNOWN_VISION_MODELS = (
    "gpt-4.1",
    "gpt-4.1-mini",
    "gpt-4.1-nano",
    "gpt-4o",
    "gpt-4o-mini",
    "gpt-4-turbo",
    "gpt-4",
    "gpt-4-vision-preview",
)


class VisionClient:
    def __init__(
        self,
        config: ServerConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self._timeout = httpx.Timeout(config.timeout, connect=min(15.0, config.timeout))

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url}/chat/completions"

    def resolve_model(self, model: str | None = None) -> str:
        selected = (model or "").strip() or self.config.default_model or DEFAULT_MODEL
        if selected not in KNOWN_VISION_MODELS:
            log.warning(
                "Model '%s' may not support vision. Supported models: %s",
                selected, ", ".join(KNOWN_VISION_MODELS),
            )
        return selected

    def build_payload(self, image_b64: str, question: str | None, model: str) -> dict[str, Any]:
        return {
            "model": model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": question or DEFAULT_QUESTION},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": f"data:{MIME_TYPE};base64,{image_b64}",
                                "detail": self.config.image_detail,
                            },
                        },
                    ],
                }
            ],
            "max_tokens": self.config.max_tokens,
        }

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
                # Read the whole body before inspecting the status so it can be
                # quoted in the error message.
                await response.aread()
                return response
        except httpx.TimeoutException as exc:
            raise VisionAPIError(f"Request to {self.endpoint} timed out after {self.config.timeout:g}s") from exc
        except httpx.HTTPError as exc:
            raise VisionAPIError(f"Network error calling {self.endpoint}: {exc}") from exc

    async def analyze(
        self,
        image_b64: str,
        question: str | None = None,
        model: str | None = None,
    ) -> str:
        selected = self.resolve_model(model)
        payload = self.build_payload(image_b64, question, selected)
        log.info("Sending request to %s (model=%s)", self.endpoint, selected)
        response = await self._post(payload)
        body = response.text
        log.info("Response status: %s", response.status_code)
        log.debug("Response body: %s", body)

        if not response.is_success:
            raise VisionAPIError(
                f"OpenAI API error: {response.status_code} {response.reason_phrase}\nDetails: {body}",
                status_code=response.status_code,
            )
        try:
            message = json.loads(body)["choices"][0]["message"]
            content = message["content"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as exc:
            raise VisionAPIError("Malformed chat response", status_code=response.status_code) from exc
        if not isinstance(content, str) or not content:
            raise VisionAPIError("Empty response from vision model", status_code=response.status_code)
        return content
