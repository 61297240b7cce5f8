# SPDX-License-Identifier: Apache-2.0
"""
Generation — GenerationClient orchestration.

Covers:
  • Happy path: payload → adapter → validation → sanitization + metrics
  • Retry loop: exactly 3 attempts on persistent 5xx, 1 s then 2 s backoff
  • Terminal errors are not retried (401/429, unexpected status)
  • Malformed / schema-violating output is retried
  • Circuit breaker trips mid-loop and refuses later calls
  • Local rate limit and missing credential fail before any I/O
  • Per-attempt timeout, cancellation, metrics sink failures
"""

import asyncio

import pytest

from processly_sdk.generation.client import GenerationClient, make_adapter
from processly_sdk.generation.anthropic_adapter import AnthropicAdapter
from processly_sdk.generation.generation_base import (
    CircuitOpen,
    GenerationRequest,
    InvalidResponseShape,
    LocallyRateLimited,
    MalformedJSON,
    NoCredential,
    Provider,
    RetryPolicy,
    TokenBucketLimiter,
    TransportFailure,
    UnauthorizedOrRateLimited,
    UpstreamServerError,
    UpstreamTimeout,
    WindowedCircuitBreaker,
)
from processly_sdk.generation.openai_adapter import OpenAIAdapter
from processly_sdk.generation.sanitizer import REDACTION_WARNING
from tests.mock.mock_provider_adapter import ScriptedAdapter, valid_payload

pytestmark = pytest.mark.asyncio


def build_client(adapter, *, clock, sleep, metrics, key="sk-test", **kwargs):
    kwargs.setdefault("limiter", TokenBucketLimiter(clock=clock))
    kwargs.setdefault("breaker", WindowedCircuitBreaker(clock=clock))
    return GenerationClient(
        adapter,
        credential_provider=lambda provider: key,
        metrics=metrics,
        sleep=sleep,
        clock=clock,
        **kwargs,
    )


async def test_happy_path_returns_sanitized_result(clock, sleep, metrics, request_notes):
    payload = valid_payload(
        summary="Questions go to ops@processly.com",
        steps=1,
    )
    payload["steps"][0]["instruction"] = "Mix batter and preheat oven then bake"
    adapter = ScriptedAdapter([payload])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    result = await client.generate(request_notes, locale="en_US")

    assert [s.instruction for s in result.response.steps] == ["Mix batter", "preheat oven", "bake"]
    assert result.response.summary == "Questions go to [REDACTED]"
    assert REDACTION_WARNING in result.response.warnings
    assert result.cleaned_source == request_notes.raw_text
    assert adapter.api_keys == ["sk-test"]
    assert adapter.requests[0]["payload"]["title_hint"] == "Cupcakes"
    assert sleep.delays == []


async def test_success_emits_metrics(clock, sleep, metrics, request_notes):
    client = build_client(ScriptedAdapter([valid_payload(steps=4)]), clock=clock, sleep=sleep, metrics=metrics)
    await client.generate_response(request_notes)

    (generated,) = metrics.named("sop_generated")
    assert generated == {"tokens_in": len(request_notes.raw_text) // 4, "steps": 4}
    (sample,) = metrics.named("generation_latency_sample")
    assert sample == {"latency_ms": 0}
    (latency,) = metrics.named("gen_latency")
    assert set(latency) == {"p50", "p90"}
    assert len(client.latency) == 1


async def test_persistent_server_error_exhausts_three_attempts(clock, sleep, metrics, request_notes):
    adapter = ScriptedAdapter([UpstreamServerError(500)] * 3)
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    with pytest.raises(UpstreamServerError) as excinfo:
        await client.generate(request_notes)

    assert excinfo.value.status_code == 500
    assert adapter.calls == 3
    assert sleep.delays == [1.0, 2.0]
    assert client.breaker.failure_count() == 3
    assert metrics.named("error") == [{"error_type": "llm", "context": "server_500"}]


async def test_transient_failure_then_success(clock, sleep, metrics, request_notes):
    adapter = ScriptedAdapter([TransportFailure("reset"), UpstreamTimeout("slow"), valid_payload()])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    result = await client.generate(request_notes)

    assert adapter.calls == 3
    assert sleep.delays == [1.0, 2.0]
    assert len(result.response.steps) == 3
    assert metrics.named("error") == []


@pytest.mark.parametrize("err", [UnauthorizedOrRateLimited("401"), InvalidResponseShape("404")])
async def test_terminal_errors_are_not_retried(clock, sleep, metrics, request_notes, err):
    adapter = ScriptedAdapter([err])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    with pytest.raises(type(err)):
        await client.generate(request_notes)

    assert adapter.calls == 1
    assert sleep.delays == []
    assert client.breaker.failure_count() == 0


async def test_malformed_output_is_retried(clock, sleep, metrics, request_notes):
    adapter = ScriptedAdapter(["not json at all", valid_payload()])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    await client.generate(request_notes)
    assert adapter.calls == 2
    assert sleep.delays == [1.0]


async def test_schema_violation_is_retried_then_surfaces(clock, sleep, metrics, request_notes):
    bad = valid_payload(title="t" * 61)
    adapter = ScriptedAdapter([bad, bad, bad])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    with pytest.raises(InvalidResponseShape):
        await client.generate(request_notes)
    assert adapter.calls == 3


def payload_with_step_value(key, value):
    payload = valid_payload(steps=2)
    payload["steps"][0][key] = value
    return payload


@pytest.mark.parametrize("value", [float("nan"), float("inf")])
async def test_non_finite_step_number_is_a_retriable_shape_error(clock, sleep, metrics, request_notes, value):
    bad = payload_with_step_value("number", value)
    adapter = ScriptedAdapter([bad, bad, bad])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    with pytest.raises(InvalidResponseShape) as excinfo:
        await client.generate(request_notes)
    assert excinfo.value.retriable is True
    assert adapter.calls == 3
    assert sleep.delays == [1.0, 2.0]


async def test_non_finite_step_number_then_success(clock, sleep, metrics, request_notes):
    adapter = ScriptedAdapter([payload_with_step_value("number", float("nan")), valid_payload()])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    result = await client.generate(request_notes)
    assert adapter.calls == 2
    assert [s.number for s in result.response.steps] == [1, 2, 3]


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
async def test_non_finite_est_minutes_is_dropped(clock, sleep, metrics, request_notes, value):
    adapter = ScriptedAdapter([payload_with_step_value("est_minutes", value)])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    result = await client.generate(request_notes)
    assert result.response.steps[0].est_minutes is None
    assert result.response.steps[1].est_minutes == 4


async def test_malformed_json_surfaces_after_last_attempt(clock, sleep, metrics, request_notes):
    adapter = ScriptedAdapter(["{oops"] * 3)
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics)

    with pytest.raises(MalformedJSON):
        await client.generate(request_notes)
    assert metrics.named("error") == [{"error_type": "llm", "context": "invalid_json"}]


async def test_breaker_opens_mid_loop_and_refuses_new_calls(clock, sleep, metrics, request_notes):
    breaker = WindowedCircuitBreaker(threshold=2, window_s=300.0, clock=clock)
    adapter = ScriptedAdapter([UpstreamServerError(502)] * 3)
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics, breaker=breaker)

    with pytest.raises(CircuitOpen) as excinfo:
        await client.generate(request_notes)

    assert adapter.calls == 2
    assert isinstance(excinfo.value.__cause__, UpstreamServerError)
    assert metrics.named("error") == [{"error_type": "llm", "context": "circuit_breaker"}]

    with pytest.raises(CircuitOpen):
        await client.generate(request_notes)
    assert adapter.calls == 2, "an open breaker must not reach the network"


async def test_breaker_recloses_after_window(clock, sleep, metrics, request_notes):
    breaker = WindowedCircuitBreaker(threshold=1, window_s=300.0, clock=clock)
    adapter = ScriptedAdapter([UpstreamServerError(500), valid_payload()])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics, breaker=breaker)

    with pytest.raises(CircuitOpen):
        await client.generate(request_notes)

    clock.advance(301.0)
    result = await client.generate(request_notes)
    assert result.response.title == "Weekly Cupcake SOP"


async def test_local_rate_limit_before_any_io(clock, sleep, metrics, request_notes):
    adapter = ScriptedAdapter([valid_payload()])
    limiter = TokenBucketLimiter(capacity=1, refill_interval_s=60.0, clock=clock)
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics, limiter=limiter)

    await client.generate(request_notes)
    with pytest.raises(LocallyRateLimited) as excinfo:
        await client.generate(request_notes)

    assert adapter.calls == 1
    assert excinfo.value.user_message == "You're going too fast. Please wait a moment."
    assert metrics.named("error") == [{"error_type": "llm", "context": "rate_limited_local"}]


async def test_concurrent_generations_share_the_bucket(clock, sleep, metrics, request_notes):
    adapter = ScriptedAdapter([valid_payload() for _ in range(5)])
    limiter = TokenBucketLimiter(capacity=5, refill_interval_s=60.0, clock=clock)
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics, limiter=limiter)

    results = await asyncio.gather(
        *(client.generate(request_notes) for _ in range(8)),
        return_exceptions=True,
    )

    refused = [r for r in results if isinstance(r, LocallyRateLimited)]
    assert len(refused) == 3
    assert len(results) - len(refused) == 5
    assert adapter.calls == 5


@pytest.mark.parametrize("key", [None, ""])
async def test_missing_credential_before_any_io(clock, sleep, metrics, request_notes, key):
    adapter = ScriptedAdapter([valid_payload()])
    client = build_client(adapter, clock=clock, sleep=sleep, metrics=metrics, key=key)

    with pytest.raises(NoCredential) as excinfo:
        await client.generate(request_notes)

    assert adapter.calls == 0
    assert excinfo.value.retriable is False
    assert excinfo.value.reason == "no_api_key"


async def test_credential_looked_up_per_call(clock, sleep, metrics, request_notes):
    keys = iter(["sk-1", "sk-2"])
    adapter = ScriptedAdapter([valid_payload(), valid_payload()])
    client = GenerationClient(
        adapter,
        credential_provider=lambda provider: next(keys),
        sleep=sleep,
        clock=clock,
        limiter=TokenBucketLimiter(clock=clock),
    )
    await client.generate(request_notes)
    await client.generate(request_notes)
    assert adapter.api_keys == ["sk-1", "sk-2"]


async def test_attempt_timeout_is_retriable(clock, sleep, metrics, request_notes):
    async def hang(wire, key):
        await asyncio.sleep(10)

    adapter = ScriptedAdapter([hang, valid_payload()])
    client = build_client(
        adapter, clock=clock, sleep=sleep, metrics=metrics, attempt_timeout_s=0.01
    )

    await client.generate(request_notes)
    assert adapter.calls == 2
    assert sleep.delays == [1.0]


async def test_attempt_timeout_surfaces_as_upstream_timeout(clock, sleep, metrics, request_notes):
    async def hang(wire, key):
        await asyncio.sleep(10)

    client = build_client(
        ScriptedAdapter([hang]),
        clock=clock,
        sleep=sleep,
        metrics=metrics,
        retry_policy=RetryPolicy(max_attempts=1),
        attempt_timeout_s=0.01,
    )
    with pytest.raises(UpstreamTimeout):
        await client.generate(request_notes)


async def test_cancellation_propagates(clock, metrics, request_notes):
    async def cancelling_sleep(seconds):
        raise asyncio.CancelledError()

    adapter = ScriptedAdapter([TransportFailure("reset"), valid_payload()])
    client = build_client(adapter, clock=clock, sleep=cancelling_sleep, metrics=metrics)

    with pytest.raises(asyncio.CancelledError):
        await client.generate(request_notes)
    assert adapter.calls == 1
    assert client.limiter.tokens == 4, "a consumed token is not refunded"


async def test_metrics_sink_failures_are_ignored(clock, sleep, request_notes):
    class BrokenMetrics:
        def track(self, **_):
            raise RuntimeError("sink down")

    client = build_client(
        ScriptedAdapter([valid_payload()]), clock=clock, sleep=sleep, metrics=BrokenMetrics()
    )
    result = await client.generate(request_notes)
    assert len(result.response.steps) == 3


async def test_request_max_steps_clamps_result(clock, sleep, metrics):
    client = build_client(ScriptedAdapter([valid_payload(steps=10)]), clock=clock, sleep=sleep, metrics=metrics)
    result = await client.generate(GenerationRequest(raw_text="notes", max_steps=4))
    assert [s.number for s in result.response.steps] == [1, 2, 3, 4]


async def test_async_context_manager_closes_adapter(clock, sleep, metrics):
    adapter = ScriptedAdapter()
    async with build_client(adapter, clock=clock, sleep=sleep, metrics=metrics) as client:
        assert client.provider is Provider.OPENAI
        assert client.model == "gpt-4o-mini"
    assert adapter.closed


async def test_make_adapter_selects_provider():
    openai_adapter = make_adapter("openai", model="gpt-4o")
    anthropic_adapter = make_adapter(Provider.ANTHROPIC)

    assert isinstance(openai_adapter, OpenAIAdapter)
    assert openai_adapter.model == "gpt-4o"
    assert isinstance(anthropic_adapter, AnthropicAdapter)
    assert anthropic_adapter.model == "claude-3-5-sonnet-latest"
    with pytest.raises(ValueError):
        make_adapter("cohere")
