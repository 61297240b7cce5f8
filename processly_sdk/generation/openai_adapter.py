# processly_sdk/generation/openai_adapter.py
# SPDX-License-Identifier: Apache-2.0
"""
OpenAI adapter for the SOP generation protocol.

Targets the official `openai` Python client (v1+ async API via
`AsyncOpenAI`) and the Chat Completions endpoint.

Goals
-----
- Map the normalized prompt payload → Chat Completions request
  (system + user messages, JSON response mode, low temperature).
- Read the raw response bytes so parsing stays provider-neutral.
- Normalize SDK errors into the generation error taxonomy.
- Leave retries to GenerationClient (SDK retries are disabled).

Usage
-----
    from processly_sdk.generation.openai_adapter import OpenAIAdapter

    adapter = OpenAIAdapter(model="gpt-4o-mini")
    wire = adapter.build_request(payload)
    body = await adapter.call(wire, api_key="sk-...")
    raw = adapter.parse_response(body)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

import openai
from openai import AsyncOpenAI

from processly_sdk.generation.generation_base import (
    DEFAULT_OPENAI_BASE_URL,
    BaseProviderAdapter,
    Model,
    Provider,
)
from processly_sdk.generation.prompt import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

OPENAI_TEMPERATURE = 0.2


class OpenAIAdapter(BaseProviderAdapter):
    """
    Provider adapter backed by the OpenAI Chat Completions API.

    Parameters
    ----------
    client:
        Pre-configured `AsyncOpenAI` instance. Optional; when omitted one is
        created lazily on the first call using that call's API key.
    base_url:
        Custom base URL (proxies, gateways). Ignored if `client` is given.
    model:
        Chat model identifier; defaults to ``gpt-4o-mini``.
    timeout_s:
        Per-attempt request timeout.
    http_client:
        Optional `httpx.AsyncClient` handed to a lazily built client.

    Notes
    -----
    The API key is supplied per call (credentials are looked up by the
    client immediately before each generation), so the underlying client is
    re-bound with ``with_options(api_key=...)`` for every request.
    """

    provider = Provider.OPENAI
    endpoint = "/chat/completions"

    _timeout_errors = (openai.APITimeoutError,)
    _connection_errors = (openai.APIConnectionError,)
    _status_errors = (openai.APIStatusError,)

    def __init__(
        self,
        *,
        client: Optional[AsyncOpenAI] = None,
        base_url: Optional[str] = None,
        model: str = Model.GPT_4O_MINI.value,
        timeout_s: float = 30.0,
        http_client: Any = None,
    ) -> None:
        super().__init__(model=model, timeout_s=timeout_s)
        self._client = client
        self._owns_client = client is None
        self._base_url = base_url or DEFAULT_OPENAI_BASE_URL
        self._http_client = http_client

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------

    def build_request(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Chat Completions body: system + JSON-encoded user payload."""
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self._encode_user_content(payload)},
            ],
            "temperature": OPENAI_TEMPERATURE,
            "response_format": {"type": "json_object"},
        }

    def _bound_client(self, api_key: str) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(
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
            raw = await client.chat.completions.with_raw_response.create(**wire_request)
        except openai.OpenAIError as exc:
            raise self._translate_error(exc) from exc

        if not 200 <= raw.status_code < 300:
            raise self._error_for_status(raw.status_code)
        return raw.content

    # ------------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------------

    def _extract_text(self, envelope: Any) -> Optional[str]:
        # choices[0].message.content
        if not isinstance(envelope, dict):
            return None
        choices = envelope.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        first = choices[0]
        if not isinstance(first, dict):
            return None
        message = first.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else None

    # ------------------------------------------------------------------
    # Resource cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying client if this adapter created it."""
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
            logger.debug("OpenAIAdapter close() failed", exc_info=True)
        finally:
            self._client = None


__all__ = [
    "OpenAIAdapter",
]
