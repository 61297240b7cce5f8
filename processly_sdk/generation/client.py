# processly_sdk/generation/client.py
# SPDX-License-Identifier: Apache-2.0
"""
GenerationClient: orchestrates one SOP generation end to end.

Flow per call
-------------
    limiter.try_consume()          -> LocallyRateLimited (no I/O)
    breaker.is_open()              -> CircuitOpen (no I/O)
    credential_provider(provider)  -> NoCredential (no I/O)
    make_user_payload / build_request
    retry loop (RetryPolicy):
        adapter.call -> adapter.parse_response -> validator.validate
        5xx feeds the breaker; a trip aborts the loop with CircuitOpen
        retriable failures sleep backoff_ms(attempt - 1) and try again
    latency sample + metrics
    sanitizer.sanitize -> SanitizedResult

All mutable policy state (tokens, failure timestamps, latency samples) is
owned by the objects this client is constructed with. Two clients built
independently never share state; share a limiter or breaker explicitly if
that is wanted.

Example
-------
    from processly_sdk.generation import GenerationClient, GenerationRequest
    from processly_sdk.generation.openai_adapter import OpenAIAdapter

    async with GenerationClient(
        OpenAIAdapter(model="gpt-4o-mini"),
        credential_provider=lambda provider: "sk-...",
    ) as client:
        result = await client.generate(
            GenerationRequest(raw_text="mix batter then bake"),
            locale="en_US",
        )
        print(result.response.title)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from processly_sdk.generation.generation_base import (
    EVENT_ERROR,
    EVENT_GEN_LATENCY,
    EVENT_LATENCY_SAMPLE,
    EVENT_SOP_GENERATED,
    CircuitOpen,
    Clock,
    CredentialProvider,
    GenerationError,
    GenerationRequest,
    GenerationResponse,
    LatencyTracker,
    LocallyRateLimited,
    MetricsSink,
    NoCredential,
    NoopMetrics,
    Provider,
    ProviderAdapter,
    RetryPolicy,
    SanitizedResult,
    TokenBucketLimiter,
    UpstreamServerError,
    UpstreamTimeout,
    WindowedCircuitBreaker,
)
from processly_sdk.generation.prompt import estimate_tokens, make_user_payload
from processly_sdk.generation.sanitizer import Sanitizer
from processly_sdk.generation.validator import ResponseValidator

LOG = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def make_adapter(provider: Any, **kwargs: Any) -> ProviderAdapter:
    """
    Construct the concrete adapter for ``provider`` (enum or string).

    Adapter modules are imported lazily so constructing one provider's
    adapter does not pay for the other SDK's import.
    """
    selected = Provider.parse(provider)
    if selected is Provider.OPENAI:
        from processly_sdk.generation.openai_adapter import OpenAIAdapter

        return OpenAIAdapter(**kwargs)
    if selected is Provider.ANTHROPIC:
        from processly_sdk.generation.anthropic_adapter import AnthropicAdapter

        return AnthropicAdapter(**kwargs)
    raise ValueError(f"no adapter for provider {selected!r}")


class GenerationClient:
    """
    Entry point for generating a sanitized SOP from free-form notes.

    Parameters
    ----------
    adapter:
        ProviderAdapter fixing the active provider and model.
    credential_provider:
        Callable returning the API key for a provider (or None). Consulted
        immediately before each generation so key rotation takes effect on
        the next call.
    metrics:
        MetricsSink; NoopMetrics by default. Sink failures never affect the
        generation outcome.
    limiter / breaker / latency / retry_policy / validator / sanitizer:
        Policy objects; fresh defaults when omitted.
    sleep:
        Awaitable sleep used between attempts (injectable for tests).
    clock:
        Monotonic clock used for latency samples.
    attempt_timeout_s:
        Optional outer bound per attempt, enforced with asyncio.wait_for on
        top of the adapter's own HTTP timeout.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        *,
        credential_provider: CredentialProvider,
        metrics: Optional[MetricsSink] = None,
        limiter: Optional[TokenBucketLimiter] = None,
        breaker: Optional[WindowedCircuitBreaker] = None,
        latency: Optional[LatencyTracker] = None,
        retry_policy: Optional[RetryPolicy] = None,
        validator: Optional[ResponseValidator] = None,
        sanitizer: Optional[Sanitizer] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
        attempt_timeout_s: Optional[float] = None,
    ) -> None:
        if attempt_timeout_s is not None and attempt_timeout_s <= 0:
            raise ValueError("attempt_timeout_s must be positive")
        self._adapter = adapter
        self._credential_provider = credential_provider
        self._metrics: MetricsSink = metrics or NoopMetrics()
        self._limiter = limiter or TokenBucketLimiter()
        self._breaker = breaker or WindowedCircuitBreaker()
        self._latency = latency or LatencyTracker()
        self._retry = retry_policy or RetryPolicy()
        self._validator = validator or ResponseValidator()
        self._sanitizer = sanitizer or Sanitizer(validator=self._validator)
        self._sleep = sleep
        self._clock = clock
        self._attempt_timeout_s = attempt_timeout_s

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(
        cls,
        settings: Any = None,
        *,
        credential_provider: Optional[CredentialProvider] = None,
        metrics: Optional[MetricsSink] = None,
        **adapter_kwargs: Any,
    ) -> "GenerationClient":
        """
        Build a client (adapter + policies) from GenerationSettings.

        Defaults to ``GenerationSettings.from_env()`` and the environment
        credential provider.
        """
        from processly_sdk.config import (
            GenerationSettings,
            env_credential_provider,
        )

        settings = settings or GenerationSettings.from_env()
        base_url = (
            settings.openai_base_url
            if settings.provider is Provider.OPENAI
            else settings.anthropic_base_url
        )
        adapter = make_adapter(
            settings.provider,
            model=settings.model,
            base_url=base_url,
            timeout_s=settings.request_timeout_s,
            **adapter_kwargs,
        )
        if metrics is None and settings.metrics_enabled:
            from processly_sdk.metrics_console import ConsoleMetrics

            metrics = ConsoleMetrics(name=f"processly.{settings.provider.value}")
        validator = ResponseValidator()
        return cls(
            adapter,
            credential_provider=credential_provider or env_credential_provider,
            metrics=metrics,
            limiter=TokenBucketLimiter(
                capacity=settings.rate_limit_capacity,
                refill_interval_s=settings.rate_limit_interval_s,
            ),
            breaker=WindowedCircuitBreaker(
                threshold=settings.breaker_threshold,
                window_s=settings.breaker_window_s,
            ),
            latency=LatencyTracker(capacity=settings.latency_capacity),
            retry_policy=RetryPolicy(
                max_attempts=settings.max_attempts,
                base_ms=settings.backoff_base_ms,
                max_ms=settings.backoff_max_ms,
            ),
            validator=validator,
            sanitizer=Sanitizer(validator=validator, max_steps=settings.max_steps),
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def adapter(self) -> ProviderAdapter:
        return self._adapter

    @property
    def provider(self) -> Provider:
        return self._adapter.provider

    @property
    def model(self) -> str:
        return self._adapter.model

    @property
    def limiter(self) -> TokenBucketLimiter:
        return self._limiter

    @property
    def breaker(self) -> WindowedCircuitBreaker:
        return self._breaker

    @property
    def latency(self) -> LatencyTracker:
        return self._latency

    # ------------------------------------------------------------------
    # Metrics helpers
    # ------------------------------------------------------------------

    def _track(self, event: str, properties: Mapping[str, Any]) -> None:
        try:
            self._metrics.track(event=event, properties=dict(properties))
        except Exception:  # noqa: BLE001
            LOG.debug("metrics sink failed for event %s", event, exc_info=True)

    def _track_error(self, err: GenerationError) -> None:
        self._track(EVENT_ERROR, {"error_type": "llm", "context": err.reason})

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _attempt(self, wire_request: Mapping[str, Any], api_key: str) -> Dict[str, Any]:
        call = self._adapter.call(wire_request, api_key=api_key)
        if self._attempt_timeout_s is None:
            body = await call
        else:
            try:
                body = await asyncio.wait_for(call, timeout=self._attempt_timeout_s)
            except asyncio.TimeoutError as e:
                raise UpstreamTimeout(
                    "generation attempt timed out",
                    details={
                        "provider": self.provider.value,
                        "timeout_s": self._attempt_timeout_s,
                    },
                ) from e
        raw = self._adapter.parse_response(body)
        return self._validator.validate(raw)

    async def generate_response(
        self,
        request: GenerationRequest,
        *,
        locale: Optional[str] = None,
    ) -> GenerationResponse:
        """
        Run admission control and the retry loop; return the validated,
        unsanitized response.

        Raises a GenerationError subclass on terminal failure.
        """
        if not self._limiter.try_consume():
            err = LocallyRateLimited(
                "local generation rate limit reached",
                details={"capacity": self._limiter.capacity},
            )
            self._track_error(err)
            raise err

        if self._breaker.is_open():
            err = CircuitOpen(
                "circuit breaker open; refusing generation",
                details={"failures": self._breaker.failure_count()},
            )
            self._track_error(err)
            raise err

        provider = self._adapter.provider
        api_key = self._credential_provider(provider)
        if not api_key:
            err = NoCredential(
                f"no API key configured for {provider.display_name}",
                details={"provider": provider.value},
            )
            self._track_error(err)
            raise err

        payload = make_user_payload(request, locale=locale)
        wire_request = self._adapter.build_request(payload)

        started = self._clock()
        attempt = 0
        while True:
            attempt += 1
            try:
                raw = await self._attempt(wire_request, api_key)
                response = GenerationResponse.from_wire(raw)
                break
            except GenerationError as err:
                if isinstance(err, UpstreamServerError) and (
                    self._breaker.record_failure_and_check_open()
                ):
                    LOG.warning(
                        "circuit breaker opened after %s upstream failure (attempt %d)",
                        err.reason,
                        attempt,
                    )
                    tripped = CircuitOpen(
                        "circuit breaker opened during generation",
                        details={"last_reason": err.reason, "attempt": attempt},
                    )
                    self._track_error(tripped)
                    raise tripped from err

                if err.retriable and attempt < self._retry.max_attempts:
                    delay_s = self._retry.backoff_ms(attempt - 1) / 1000.0
                    LOG.warning(
                        "generation attempt %d/%d failed (%s); retrying in %.2fs",
                        attempt,
                        self._retry.max_attempts,
                        err.reason,
                        delay_s,
                    )
                    await self._sleep(delay_s)
                    continue

                self._track_error(err)
                raise

        elapsed_s = self._clock() - started
        self._latency.record(elapsed_s)
        p50, p90 = self._latency.snapshot()
        latency_ms = int(round(elapsed_s * 1000))
        self._track(
            EVENT_SOP_GENERATED,
            {"tokens_in": estimate_tokens(request.raw_text), "steps": len(response.steps)},
        )
        self._track(EVENT_LATENCY_SAMPLE, {"latency_ms": latency_ms})
        self._track(
            EVENT_GEN_LATENCY,
            {"p50": int(round(p50 * 1000)), "p90": int(round(p90 * 1000))},
        )
        return response

    async def generate(
        self,
        request: GenerationRequest,
        *,
        locale: Optional[str] = None,
    ) -> SanitizedResult:
        """
        Generate, validate and sanitize an SOP for ``request``.

        ``locale`` (e.g. ``en_US``, ``he_IL``) selects the prompt language
        hint and gates compound-step splitting.
        """
        response = await self.generate_response(request, locale=locale)
        return self._sanitizer.sanitize(
            response,
            source=request.raw_text,
            locale=locale,
            max_steps=request.max_steps,
        )

    # ------------------------------------------------------------------
    # Resource cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        await self._adapter.close()

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = [
    "make_adapter",
    "GenerationClient",
]
