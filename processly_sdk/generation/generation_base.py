# processly_sdk/generation/generation_base.py
# SPDX-License-Identifier: Apache-2.0
"""
Processly SDK — SOP Generation Protocol V1 (public contract + policy base)

Purpose
-------
A stable, provider-neutral contract for turning free-form notes into a
structured standard-operating-procedure (SOP) record through a generative
text API, with:

- Structured, normalized error taxonomy (retriable flag, telemetry reason,
  localized user message)
- Immutable request / response models matching the PromptResponse contract
- Local admission control (full-reset token bucket)
- Time-windowed failure detector (passive-expiry circuit breaker)
- Rolling latency statistics (bounded FIFO, interpolated percentiles)
- A single ProviderAdapter interface with shared embedded-JSON extraction
  and HTTP status normalization

Design Philosophy
-----------------
- Async-first: the network call and backoff sleeps are the only suspension
  points; every policy object is synchronous and lock-guarded so it is safe
  to share between concurrent callers.
- Provider-neutral: adapters translate a normalized payload into a wire
  request and parse wire bytes back into a raw JSON object; no provider
  conditionals leak into the client.
- Instance-owned state: limiter tokens, breaker timestamps and latency
  samples belong to the policy objects a GenerationClient is built with.
  Nothing here is process-global.

Deliberate Non-Goals
--------------------
- No persistence, rendering, speech capture or entitlement checks.
- No half-open probing in the breaker: it re-closes only as failures age
  out of the trailing window.
- No streaming; generation is a single unary round trip per attempt.

Wire Contract (PromptResponse)
------------------------------
The model is asked to answer with a single JSON object:

    {
        "title": "<= 60 chars",
        "summary": "...",
        "tools_needed": ["..."],
        "steps": [
            {"number": 1, "instruction": "...", "notes": "...", "est_minutes": 5}
        ],
        "warnings": ["..."],
        "tags": ["..."]
    }

`notes` and `est_minutes` are optional and omitted when absent.
"""

from __future__ import annotations

import json
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

LOG = logging.getLogger(__name__)

GENERATION_PROTOCOL_VERSION = "1.0.0"
GENERATION_PROTOCOL_ID = "sop-generation/v1.0"

MAX_STEPS = 15
MAX_TITLE_LENGTH = 60
DEFAULT_TONE = "clear, concise, imperative"

Clock = Callable[[], float]

# =============================================================================
# User-facing messages (message key -> default English text)
# =============================================================================

DEFAULT_MESSAGES: Dict[str, str] = {
    "llm.error.no_api_key": "Add an AI key in Settings to generate steps.",
    "llm.error.unauthorized_or_rate_limited": (
        "Key invalid or rate-limited. Try again or check your plan."
    ),
    "llm.error.rate_limited_local": "You're going too fast. Please wait a moment.",
    "llm.error.invalid_response": "We could not understand the AI response. Please retry.",
    "llm.error.timeout": "The AI call is taking too long. Check your connection and retry.",
    "llm.error.network": "Network issue. We'll retry automatically.",
    "llm.error.circuit_breaker": "The AI service is busy. We'll retry shortly.",
    "llm.error.generation_failed": "We couldn't generate your SOP. Please try again.",
}


def localize(key: str, catalog: Optional[Mapping[str, str]] = None) -> str:
    """
    Resolve a message key against a caller catalog, then the English defaults.

    Unknown keys resolve to the key itself so callers always get a string.
    """
    if catalog and key in catalog:
        return catalog[key]
    return DEFAULT_MESSAGES.get(key, key)


# =============================================================================
# Normalized Errors (tagged by ErrorKind, with retry semantics)
# =============================================================================

class ErrorKind(str, Enum):
    """Machine-readable failure categories surfaced by the generation pipeline."""

    NO_CREDENTIAL = "NO_CREDENTIAL"
    UNAUTHORIZED_OR_RATE_LIMITED = "UNAUTHORIZED_OR_RATE_LIMITED"
    LOCALLY_RATE_LIMITED = "LOCALLY_RATE_LIMITED"
    MALFORMED_JSON = "MALFORMED_JSON"
    INVALID_RESPONSE_SHAPE = "INVALID_RESPONSE_SHAPE"
    TIMEOUT = "TIMEOUT"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    UPSTREAM_SERVER_ERROR = "UPSTREAM_SERVER_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    INVALID_CONTRACT = "INVALID_CONTRACT"


class GenerationError(Exception):
    """
    Base exception for all generation pipeline errors.

    Every failure the client surfaces is a subclass of this error so callers,
    the retry loop and telemetry can make consistent decisions without
    inspecting provider-specific exceptions.

    Attributes:
        message:
            Human-readable description (safe for logs; never contains secrets
            or the caller's raw notes).
        code:
            Upper-snake-case machine code; defaults to the error kind.
        retriable:
            Whether the retry loop may attempt the call again. Each kind has a
            class-level default; a few call sites override it per instance.
        details:
            Additional JSON-safe context (provider, status, schema path...).
    """

    kind: Optional[ErrorKind] = None
    retriable: bool = False
    message_key: str = "llm.error.generation_failed"
    _reason: str = "generation_failed"

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retriable: Optional[bool] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or (self.kind.value if self.kind else "GENERATION_ERROR")
        if retriable is not None:
            self.retriable = bool(retriable)
        self.details = dict(details or {})

    @property
    def reason(self) -> str:
        """Low-cardinality telemetry reason (e.g. ``no_api_key``, ``server_503``)."""
        return self._reason

    @property
    def user_message(self) -> str:
        """Localized, user-facing message using the default catalog."""
        return self.localized_message()

    def localized_message(self, catalog: Optional[Mapping[str, str]] = None) -> str:
        return localize(self.message_key, catalog)

    def __str__(self) -> str:
        base = self.message or self.__class__.__name__
        if self.code:
            base += f" [code={self.code}]"
        if self.details:
            base += f" details={self.details}"
        return base


class NoCredential(GenerationError):
    """No API key is configured for the active provider. Never retried."""

    kind = ErrorKind.NO_CREDENTIAL
    message_key = "llm.error.no_api_key"
    _reason = "no_api_key"


class UnauthorizedOrRateLimited(GenerationError):
    """
    Upstream answered 401 or 429.

    Treated as a terminal credential / plan problem rather than a transient
    failure, so the loop does not burn attempts against a rejected key.
    """

    kind = ErrorKind.UNAUTHORIZED_OR_RATE_LIMITED
    message_key = "llm.error.unauthorized_or_rate_limited"
    _reason = "unauthorized_or_rate_limited"


class LocallyRateLimited(GenerationError):
    """The local token bucket is empty; no network I/O was attempted."""

    kind = ErrorKind.LOCALLY_RATE_LIMITED
    message_key = "llm.error.rate_limited_local"
    _reason = "rate_limited_local"


class MalformedJSON(GenerationError):
    """
    The provider envelope or the embedded PromptResponse JSON could not be
    located or parsed. Retriable: a second attempt may come back well-formed.
    """

    kind = ErrorKind.MALFORMED_JSON
    retriable = True
    message_key = "llm.error.invalid_response"
    _reason = "invalid_json"


class InvalidResponseShape(GenerationError):
    """
    The response is not what the contract allows.

    Raised terminally for unexpected HTTP statuses, and (with
    ``retriable=True``) by the structural validator when the model's JSON
    parses but violates the PromptResponse shape.
    """

    kind = ErrorKind.INVALID_RESPONSE_SHAPE
    message_key = "llm.error.invalid_response"
    _reason = "invalid_response"


class UpstreamTimeout(GenerationError):
    """A single attempt exceeded its per-request timeout."""

    kind = ErrorKind.TIMEOUT
    retriable = True
    message_key = "llm.error.timeout"
    _reason = "timeout"


class TransportFailure(GenerationError):
    """Connection-level failure between the SDK and the provider."""

    kind = ErrorKind.TRANSPORT_FAILURE
    retriable = True
    message_key = "llm.error.network"
    _reason = "transport"


class UpstreamServerError(GenerationError):
    """
    Provider answered with a 5xx status.

    Retriable, and every occurrence is fed to the circuit breaker.
    """

    kind = ErrorKind.UPSTREAM_SERVER_ERROR
    retriable = True
    message_key = "llm.error.network"

    def __init__(self, status_code: int, message: str = "", **kwargs: Any):
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("status", int(status_code))
        super().__init__(
            message or f"upstream server error (status={status_code})",
            details=details,
            **kwargs,
        )
        self.status_code = int(status_code)

    @property
    def reason(self) -> str:
        return f"server_{self.status_code}"


class CircuitOpen(GenerationError):
    """
    Synthetic, locally raised error: too many upstream failures inside the
    breaker window. Supersedes the retry loop.
    """

    kind = ErrorKind.CIRCUIT_OPEN
    message_key = "llm.error.circuit_breaker"
    _reason = "circuit_breaker"


class InvalidContract(GenerationError):
    """
    The sanitized record failed re-validation.

    Indicates a bug in the sanitization pipeline itself; surfaced as a hard
    failure and never retried.
    """

    kind = ErrorKind.INVALID_CONTRACT
    message_key = "llm.error.generation_failed"
    _reason = "invalid_contract"


# =============================================================================
# Providers & models
# =============================================================================

class Provider(str, Enum):
    """Upstream generative-text providers with a concrete adapter."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"

    @property
    def display_name(self) -> str:
        return {"openai": "OpenAI", "anthropic": "Anthropic"}[self.value]

    @classmethod
    def parse(cls, value: Any) -> "Provider":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        raise ValueError(f"unknown provider: {value!r}")


class Model(str, Enum):
    """Known model identifiers; adapters accept any string."""

    GPT_4O_MINI = "gpt-4o-mini"
    GPT_4O = "gpt-4o"
    O3_MINI = "o3-mini"
    CLAUDE_SONNET = "claude-3-5-sonnet-latest"


DEFAULT_MODELS: Dict[Provider, str] = {
    Provider.OPENAI: Model.GPT_4O_MINI.value,
    Provider.ANTHROPIC: Model.CLAUDE_SONNET.value,
}

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"

#: Consumed collaborator: returns the secret for a provider, or None.
CredentialProvider = Callable[[Provider], Optional[str]]


# =============================================================================
# Data models (immutable, JSON-safe)
# =============================================================================

@dataclass(frozen=True)
class GenerationRequest:
    """
    One user-initiated generation, consumed exactly once.

    Attributes:
        raw_text:
            Free-form notes. Unbounded from the caller; truncated before
            transmission by the prompt builder.
        title_hint:
            Optional title suggestion passed through to the model.
        include_tools:
            Whether a "tools needed" section is requested.
        max_steps:
            Step-count ceiling; the model is asked for at most
            ``min(15, max_steps)`` and the sanitizer clamps to it.
        tone:
            Free-form tone descriptor.
    """
    raw_text: str
    title_hint: Optional[str] = None
    include_tools: bool = True
    max_steps: int = MAX_STEPS
    tone: str = DEFAULT_TONE

    def __post_init__(self) -> None:
        if not isinstance(self.raw_text, str):
            raise TypeError("raw_text must be a string")
        if int(self.max_steps) < 1:
            raise ValueError("max_steps must be >= 1")


@dataclass(frozen=True)
class Step:
    """One numbered instruction in an SOP."""
    number: int
    instruction: str
    notes: Optional[str] = None
    est_minutes: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"number": self.number, "instruction": self.instruction}
        if self.notes is not None:
            out["notes"] = self.notes
        if self.est_minutes is not None:
            out["est_minutes"] = self.est_minutes
        return out

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> "Step":
        notes = raw.get("notes")
        return cls(
            number=_coerce_step_number(raw.get("number")),
            instruction=str(raw["instruction"]),
            notes=notes if isinstance(notes, str) else None,
            est_minutes=_coerce_minutes(raw.get("est_minutes")),
        )


def _is_finite(value: Any) -> bool:
    return isinstance(value, int) or math.isfinite(value)


def _coerce_step_number(value: Any) -> int:
    # json.loads accepts NaN and 1e999 and the schema "number" type admits both.
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not _is_finite(value):
        raise InvalidResponseShape(
            "step number must be a finite number",
            retriable=True,
            details={"path": "$.steps[].number", "value": repr(value)},
        )
    return int(value)


def _coerce_minutes(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not _is_finite(value) or value < 0:
        return None
    return int(value)


def _as_str_tuple(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Sequence):
        return tuple(str(v) for v in value if v is not None)
    return ()


@dataclass(frozen=True)
class GenerationResponse:
    """
    Normalized, already-parsed model output.

    Sequences are stored as tuples so a response can be shared freely
    between the client, the sanitizer and a persistence collaborator.
    """
    title: str
    summary: str
    tools_needed: Tuple[str, ...] = ()
    steps: Tuple[Step, ...] = ()
    warnings: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()

    def to_wire(self) -> Dict[str, Any]:
        """Serialize back into the PromptResponse JSON contract."""
        return {
            "title": self.title,
            "summary": self.summary,
            "tools_needed": list(self.tools_needed),
            "steps": [s.to_wire() for s in self.steps],
            "warnings": list(self.warnings),
            "tags": list(self.tags),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False, sort_keys=True)

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any]) -> "GenerationResponse":
        """
        Build a response from a structurally validated PromptResponse object.

        Optional list fields tolerate null / scalar values; callers are
        expected to run ResponseValidator first.
        """
        return cls(
            title=str(raw.get("title") or ""),
            summary=str(raw.get("summary") or ""),
            tools_needed=_as_str_tuple(raw.get("tools_needed")),
            steps=tuple(Step.from_wire(s) for s in raw.get("steps") or ()),
            warnings=_as_str_tuple(raw.get("warnings")),
            tags=_as_str_tuple(raw.get("tags")),
        )


@dataclass(frozen=True)
class SanitizedResult:
    """Final safe record plus redacted provenance text, ready for storage."""
    response: GenerationResponse
    cleaned_source: str


# =============================================================================
# Metrics Interface (named events, low-cardinality properties)
# =============================================================================

EVENT_SOP_GENERATED = "sop_generated"
EVENT_LATENCY_SAMPLE = "generation_latency_sample"
EVENT_GEN_LATENCY = "gen_latency"
EVENT_ERROR = "error"


class MetricsSink(Protocol):
    """
    Metrics collection protocol.

    Implementations MUST:
        - Avoid PII (never pass raw notes or model output).
        - Keep property values to strings and numbers.
    """
    def track(self, *, event: str, properties: Optional[Mapping[str, Any]] = None) -> None: ...


class NoopMetrics:
    """No-op metrics sink for tests or minimal deployments."""
    def track(self, **_: Any) -> None: ...


# =============================================================================
# Retry policy
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration with capped exponential backoff.

    Attributes:
        max_attempts: Total tries including the first attempt.
        base_ms:      Delay before the second attempt.
        max_ms:       Backoff cap.
        multiplier:   Growth factor per retry.
    """

    max_attempts: int = 3
    base_ms: int = 1_000
    max_ms: int = 2_000
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_ms < 0 or self.max_ms < 0:
            raise ValueError("backoff times must be non-negative")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.base_ms > self.max_ms:
            raise ValueError("base_ms cannot exceed max_ms")

    def backoff_ms(self, attempt_index: int) -> int:
        """Backoff after the ``attempt_index``-th failed attempt (0-based)."""
        raw = int(self.base_ms * (self.multiplier ** attempt_index))
        return min(raw, self.max_ms)


# =============================================================================
# Policy implementations (instance-owned, lock-guarded)
# =============================================================================

class TokenBucketLimiter:
    """
    Full-reset token bucket for local admission control.

    Unlike a leaky bucket, tokens are not dripped back: once
    ``refill_interval_s`` has elapsed since the last refill the bucket is
    reset to ``capacity`` in one step.
    """

    def __init__(
        self,
        *,
        capacity: int = 5,
        refill_interval_s: float = 60.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        if float(refill_interval_s) <= 0:
            raise ValueError("refill_interval_s must be positive")
        self._capacity = int(capacity)
        self._refill_interval_s = float(refill_interval_s)
        self._clock = clock
        self._tokens = self._capacity
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def tokens(self) -> int:
        with self._lock:
            return self._tokens

    def try_consume(self) -> bool:
        """Take one token; False (and nothing consumed) when the bucket is empty."""
        with self._lock:
            now = self._clock()
            if now - self._last_refill >= self._refill_interval_s:
                self._tokens = self._capacity
                self._last_refill = now
            if self._tokens <= 0:
                return False
            self._tokens -= 1
            return True


class WindowedCircuitBreaker:
    """
    Time-windowed failure detector.

    Records upstream failure timestamps and reports "open" while at least
    ``threshold`` of them fall inside the trailing ``window_s``. There is no
    half-open state: the breaker closes passively as failures age out.
    """

    def __init__(
        self,
        *,
        threshold: int = 5,
        window_s: float = 300.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if int(threshold) < 1:
            raise ValueError("threshold must be >= 1")
        if float(window_s) <= 0:
            raise ValueError("window_s must be positive")
        self._threshold = int(threshold)
        self._window_s = float(window_s)
        self._clock = clock
        self._failures: Deque[float] = deque()
        self._lock = threading.Lock()

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def window_s(self) -> float:
        return self._window_s

    def _prune(self, now: float) -> None:
        while self._failures and now - self._failures[0] > self._window_s:
            self._failures.popleft()

    def record_failure_and_check_open(self) -> bool:
        with self._lock:
            now = self._clock()
            self._failures.append(now)
            self._prune(now)
            return len(self._failures) >= self._threshold

    def is_open(self) -> bool:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures) >= self._threshold

    def failure_count(self) -> int:
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)


def interpolated_percentile(sorted_samples: Sequence[float], p: float) -> float:
    """
    Linear-interpolation percentile over an already sorted sequence.

    ``p`` is a fraction in [0, 1] (clamped); an empty sequence yields 0.0.
    """
    if not sorted_samples:
        return 0.0
    p = min(max(float(p), 0.0), 1.0)
    position = p * (len(sorted_samples) - 1)
    lower = int(position)
    upper = min(lower + 1, len(sorted_samples) - 1)
    if position == lower:
        return float(sorted_samples[lower])
    weight = position - lower
    lo, hi = sorted_samples[lower], sorted_samples[upper]
    return float(lo + (hi - lo) * weight)


class LatencyTracker:
    """
    Bounded rolling buffer of call durations (seconds).

    Percentiles are recomputed from the retained window on every query; this
    is not a streaming estimator.
    """

    def __init__(self, *, capacity: int = 50) -> None:
        if int(capacity) < 1:
            raise ValueError("capacity must be >= 1")
        self._samples: Deque[float] = deque(maxlen=int(capacity))
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    def record(self, duration_s: float) -> None:
        with self._lock:
            self._samples.append(max(0.0, float(duration_s)))

    def samples(self) -> List[float]:
        with self._lock:
            return list(self._samples)

    def percentile(self, p: float) -> float:
        with self._lock:
            ordered = sorted(self._samples)
        return interpolated_percentile(ordered, p)

    def snapshot(self) -> Tuple[float, float]:
        """(p50, p90) over the retained samples."""
        with self._lock:
            ordered = sorted(self._samples)
        return interpolated_percentile(ordered, 0.5), interpolated_percentile(ordered, 0.9)


# =============================================================================
# Provider adapter interface
# =============================================================================

@runtime_checkable
class ProviderAdapter(Protocol):
    """
    Translates the normalized prompt payload to one provider's wire format.

    Implementations MUST:
        - Raise GenerationError subclasses from ``call`` and
          ``parse_response``; never leak SDK exceptions.
        - Keep ``build_request`` and ``parse_response`` pure.
    """

    provider: Provider
    model: str

    def build_request(self, payload: Mapping[str, Any]) -> Dict[str, Any]: ...

    async def call(self, wire_request: Mapping[str, Any], *, api_key: str) -> bytes: ...

    def parse_response(self, wire_bytes: bytes) -> Dict[str, Any]: ...

    async def close(self) -> None: ...


def extract_embedded_json(content: str) -> Optional[str]:
    """
    Locate the PromptResponse object inside model text.

    A string that already starts with ``{`` (after trimming) is trusted as-is.
    Otherwise the slice from the first ``{`` to the last ``}`` is returned.
    That fallback is a degraded mode: prose containing braces around the
    object will defeat it, which is why adapters prefer a provider-side
    JSON response mode where one exists.
    """
    trimmed = content.strip()
    if trimmed.startswith("{"):
        return trimmed
    first = content.find("{")
    last = content.rfind("}")
    if first < 0 or last < first:
        return None
    return content[first:last + 1]


class BaseProviderAdapter:
    """
    Shared plumbing for concrete adapters.

    Subclasses set the SDK exception tuples used by ``_translate_error`` and
    implement ``build_request``, ``call`` and ``_extract_text``.
    """

    provider: Provider
    endpoint: str = ""

    _timeout_errors: Tuple[type, ...] = ()
    _connection_errors: Tuple[type, ...] = ()
    _status_errors: Tuple[type, ...] = ()

    def __init__(self, *, model: str, timeout_s: float = 30.0) -> None:
        if not model or not isinstance(model, str):
            raise ValueError("model must be a non-empty string")
        if float(timeout_s) <= 0:
            raise ValueError("timeout_s must be positive")
        self.model = model
        self._timeout_s = float(timeout_s)

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    async def __aenter__(self) -> "BaseProviderAdapter":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        return None

    # --- request side --------------------------------------------------------

    @staticmethod
    def _encode_user_content(payload: Mapping[str, Any]) -> str:
        return json.dumps(dict(payload), ensure_ascii=False)

    # --- response side -------------------------------------------------------

    def _extract_text(self, envelope: Any) -> Optional[str]:
        raise NotImplementedError

    def parse_response(self, wire_bytes: bytes) -> Dict[str, Any]:
        """Decode a 2xx body and return the embedded PromptResponse object."""
        name = self.provider.display_name
        try:
            envelope = json.loads(wire_bytes)
        except (TypeError, ValueError) as e:
            raise MalformedJSON(
                f"{name} response body is not JSON",
                details={"provider": self.provider.value},
            ) from e

        text = self._extract_text(envelope)
        if not text:
            raise MalformedJSON(
                f"{name} response carried no text content",
                details={"provider": self.provider.value},
            )

        embedded = extract_embedded_json(text)
        if embedded is None:
            raise MalformedJSON(
                f"no JSON object found in {name} output",
                details={"provider": self.provider.value},
            )
        try:
            obj = json.loads(embedded)
        except ValueError as e:
            raise MalformedJSON(
                f"{name} output contained invalid JSON",
                details={"provider": self.provider.value},
            ) from e
        if not isinstance(obj, dict):
            raise MalformedJSON(
                f"{name} output is not a JSON object",
                details={"provider": self.provider.value},
            )
        return obj

    # --- error normalization ---------------------------------------------------

    def _error_for_status(self, status: int) -> GenerationError:
        """Map a non-2xx HTTP status onto the taxonomy."""
        details = {"provider": self.provider.value, "status": status}
        name = self.provider.display_name
        if status in (401, 429):
            return UnauthorizedOrRateLimited(
                f"{name} rejected the key or rate limited the request",
                details=details,
            )
        if 500 <= status <= 599:
            return UpstreamServerError(
                status,
                f"{name} service error (status={status})",
                details=details,
            )
        return InvalidResponseShape(
            f"unexpected {name} status {status}",
            retriable=False,
            details=details,
        )

    def _translate_error(self, err: Exception) -> GenerationError:
        """
        Map SDK exceptions onto the taxonomy.

        Timeout types are checked before connection types because both SDKs
        derive their timeout error from the connection error.
        """
        name = self.provider.display_name
        if self._timeout_errors and isinstance(err, self._timeout_errors):
            return UpstreamTimeout(
                f"{name} request timed out",
                details={"provider": self.provider.value, "timeout_s": self._timeout_s},
            )
        if self._connection_errors and isinstance(err, self._connection_errors):
            return TransportFailure(
                f"{name} connection error",
                details={"provider": self.provider.value},
            )
        if self._status_errors and isinstance(err, self._status_errors):
            status = int(getattr(err, "status_code", 0) or 0)
            return self._error_for_status(status)
        return TransportFailure(
            str(err) or f"{name} client error",
            details={"provider": self.provider.value},
        )


__all__ = [
    "GENERATION_PROTOCOL_VERSION",
    "GENERATION_PROTOCOL_ID",
    "MAX_STEPS",
    "MAX_TITLE_LENGTH",
    "DEFAULT_TONE",
    "DEFAULT_MESSAGES",
    "localize",
    "ErrorKind",
    "GenerationError",
    "NoCredential",
    "UnauthorizedOrRateLimited",
    "LocallyRateLimited",
    "MalformedJSON",
    "InvalidResponseShape",
    "UpstreamTimeout",
    "TransportFailure",
    "UpstreamServerError",
    "CircuitOpen",
    "InvalidContract",
    "Provider",
    "Model",
    "DEFAULT_MODELS",
    "DEFAULT_OPENAI_BASE_URL",
    "DEFAULT_ANTHROPIC_BASE_URL",
    "CredentialProvider",
    "GenerationRequest",
    "Step",
    "GenerationResponse",
    "SanitizedResult",
    "EVENT_SOP_GENERATED",
    "EVENT_LATENCY_SAMPLE",
    "EVENT_GEN_LATENCY",
    "EVENT_ERROR",
    "MetricsSink",
    "NoopMetrics",
    "RetryPolicy",
    "TokenBucketLimiter",
    "WindowedCircuitBreaker",
    "interpolated_percentile",
    "LatencyTracker",
    "ProviderAdapter",
    "extract_embedded_json",
    "BaseProviderAdapter",
]
