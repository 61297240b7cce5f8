# processly_sdk/generation/anthropic_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
Anthropic adapter for the SOP generation protocol.

Targets the official `anthropic` Python client (async API via
`AsyncAnthropic`) and the Messages endpoint.

Goals
-----
- Map the normalized prompt payload → Messages API request.
- Respect Anthropic-specific nuances: required ``max_tokens`` and the
  pinned ``anthropic-version`` header.
- Normalize SDK errors into the generation error taxonomy.

Anthropic has no JSON response mode on the Messages endpoint, so the system
directive is folded into the single user turn and the reply is recovered
with the shared embedded-JSON extraction (degraded brace scanning when the
model wraps the object in prose).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

import anthropic
from anthropic import AsyncAnthropic

from processly_sdk.generation.generation_base import (
    DEFAULT_ANTHROPIC_BASE_URL,
    BaseProviderAdapter,
    Model,
    Provider,
)
from processly_sdk.generation.prompt import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
ANTHROPIC_MAX_TOKENS = 4000
ANTHROPIC_TEMPERATURE = 0.2


class AnthropicAdapter(BaseProviderAdapter):
    """
    Provider adapter backed by the Anthropic Messages API.

    Parameters mirror `OpenAIAdapter`: an optional pre-built `AsyncAnthropic`
    client, an optional base URL, the model, a per-attempt timeout and an
    optional `httpx.AsyncClient` for a lazily built client.
    """

    provider = Provider.ANTHROPIC
    endpoint = "/v1/messages"

    _timeout_errors = (anthropic.APITimeoutError,)
    _connection_errors = (anthropic.APIConnectionError,)
    _status_errors = (anthropic.APIStatusError,)

    def __init__(
        self,
        *,
        client: Optional[AsyncAnthropic] = None,
        base_url: Optional[str] = None,
        model: str = Model.CLAUDE_SONNET.value,
        timeout_s: float = 30.0,
        http_client: Any = None,
    ) -> None:
        super().__init__(model=model, timeout_s=timeout_s)
        self._client = client
        self._owns_client = client is None
        self._base_url = base_url or DEFAULT_ANTHROPIC_BASE_URL
        self._http_client = http_client

    def build_request(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        content = SYSTEM_PROMPT + "\n\n" + self._encode_user_content(payload)
        return {
            "model": self.model,
            "max_tokens": ANTHROPIC_MAX_TOKENS,
            "messages": [{"role": "user", "content": content}],
            "temperature": ANTHROPIC_TEMPERATURE,
        }

    def _bound_client(self, api_key: str) -> AsyncAnthropic:
        if self._client is None:
            self._client = AsyncAnthropic(
                api_key=api_key,
                base_url=self._base_url,
                max_retries=0,
                timeout=self._timeout_s,
                http_client=self._http_client,
            )
        return self._client.with_options(
            api_key=api_key,
            max_retries=0,
            timeout=self._timeout_s,
        )

    async def call(self, wire_request: Mapping[str, Any], *, api_key: str) -> bytes:
        client = self._bound_client(api_key)
        try:
            raw = await client.messages.with_raw_response.create(
                **wire_request,
                extra_headers={"anthropic-version": ANTHROPIC_VERSION},
            )
        except anthropic.AnthropicError as exc:
            raise self._translate_error(exc) from exc

        if not 200 <= raw.status_code < 300:
            raise self._error_for_status(raw.status_code)
        return raw.content

    def _extract_text(self, envelope: Any) -> Optional[str]:
        # content[0].text
        if not isinstance(envelope, dict):
            return None
        blocks = envelope.get("content")
        if not isinstance(blocks, list) or not blocks:
            return None
        first = blocks[0]
        text = first.get("text") if isinstance(first, dict) else None
        return text if isinstance(text, str) else None

    async def close(self) -> None:
        if self._client is None or not self._owns_client:
            return
        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception:  # noqa: BLE001
            logger.debug("AnthropicAdapter close() failed", exc_info=True)
        finally:
            self._client = None


__all__ = [
    "ANTHROPIC_VERSION",
    "AnthropicAdapter",
]
