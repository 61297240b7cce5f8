# processly_sdk/config.py
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for the generation client.

Values come from constructor arguments or, via `GenerationSettings.from_env()`,
from PROCESSLY_* environment variables:

    PROCESSLY_PROVIDER               openai | anthropic        (openai)
    PROCESSLY_MODEL                  model id                  (provider default)
    PROCESSLY_OPENAI_BASE_URL        https://api.openai.com/v1
    PROCESSLY_ANTHROPIC_BASE_URL     https://api.anthropic.com
    PROCESSLY_REQUEST_TIMEOUT_S      30
    PROCESSLY_RATE_LIMIT_CAPACITY    5
    PROCESSLY_RATE_LIMIT_INTERVAL_S  60
    PROCESSLY_BREAKER_THRESHOLD      5
    PROCESSLY_BREAKER_WINDOW_S       300
    PROCESSLY_MAX_ATTEMPTS           3
    PROCESSLY_BACKOFF_BASE_MS        1000
    PROCESSLY_BACKOFF_MAX_MS         2000
    PROCESSLY_LATENCY_CAPACITY       50
    PROCESSLY_MAX_STEPS              15
    PROCESSLY_METRICS                0 / 1

Credentials are never part of the settings object; they are read per call by
a credential provider (see `env_credential_provider`).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, TypeVar

from processly_sdk.generation.generation_base import (
    DEFAULT_ANTHROPIC_BASE_URL,
    DEFAULT_MODELS,
    DEFAULT_OPENAI_BASE_URL,
    MAX_STEPS,
    Provider,
)

T = TypeVar("T")

ENV_PREFIX = "PROCESSLY_"

_CREDENTIAL_ENV: Mapping[Provider, tuple] = {
    Provider.OPENAI: ("PROCESSLY_OPENAI_API_KEY", "OPENAI_API_KEY"),
    Provider.ANTHROPIC: ("PROCESSLY_ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY"),
}


def _env_flag(name: str, default: str = "0", environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    Parse a boolean-ish environment variable, case-insensitively.

    Truthy values: "1", "true", "yes", "on". Everything else is False.
    """
    env = os.environ if environ is None else environ
    val = env.get(name, default)
    if not isinstance(val, str):
        return False
    return val.strip().lower() in {"1", "true", "yes", "on"}


def _env_value(
    name: str,
    cast: Callable[[str], T],
    default: T,
    environ: Mapping[str, str],
) -> T:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError as e:
        raise ValueError(f"invalid value for {name}: {raw!r}") from e


def env_credential_provider(provider: Provider) -> Optional[str]:
    """Look up the API key for ``provider`` in the process environment."""
    for name in _CREDENTIAL_ENV.get(Provider.parse(provider), ()):
        value = os.environ.get(name, "").strip()
        if value:
            return value
    return None


@dataclass(frozen=True)
class GenerationSettings:
    """
    Immutable, validated client configuration.

    ``model`` defaults to the provider's default model when left empty.
    """

    provider: Provider = Provider.OPENAI
    model: str = ""
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    anthropic_base_url: str = DEFAULT_ANTHROPIC_BASE_URL
    request_timeout_s: float = 30.0
    rate_limit_capacity: int = 5
    rate_limit_interval_s: float = 60.0
    breaker_threshold: int = 5
    breaker_window_s: float = 300.0
    max_attempts: int = 3
    backoff_base_ms: int = 1_000
    backoff_max_ms: int = 2_000
    latency_capacity: int = 50
    max_steps: int = MAX_STEPS
    metrics_enabled: bool = field(default=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider", Provider.parse(self.provider))
        if not self.model:
            object.__setattr__(self, "model", DEFAULT_MODELS[self.provider])
        if self.request_timeout_s <= 0:
            raise ValueError("request_timeout_s must be positive")
        if self.rate_limit_capacity < 1:
            raise ValueError("rate_limit_capacity must be >= 1")
        if self.rate_limit_interval_s <= 0:
            raise ValueError("rate_limit_interval_s must be positive")
        if self.breaker_threshold < 1:
            raise ValueError("breaker_threshold must be >= 1")
        if self.breaker_window_s <= 0:
            raise ValueError("breaker_window_s must be positive")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_base_ms < 0 or self.backoff_max_ms < self.backoff_base_ms:
            raise ValueError("backoff must satisfy 0 <= base_ms <= max_ms")
        if self.latency_capacity < 1:
            raise ValueError("latency_capacity must be >= 1")
        if not 1 <= self.max_steps <= MAX_STEPS:
            raise ValueError(f"max_steps must be between 1 and {MAX_STEPS}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GenerationSettings":
        env = os.environ if environ is None else environ
        p = ENV_PREFIX
        return cls(
            provider=Provider.parse(env.get(p + "PROVIDER") or Provider.OPENAI.value),
            model=(env.get(p + "MODEL") or "").strip(),
            openai_base_url=env.get(p + "OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL,
            anthropic_base_url=env.get(p + "ANTHROPIC_BASE_URL") or DEFAULT_ANTHROPIC_BASE_URL,
            request_timeout_s=_env_value(p + "REQUEST_TIMEOUT_S", float, 30.0, env),
            rate_limit_capacity=_env_value(p + "RATE_LIMIT_CAPACITY", int, 5, env),
            rate_limit_interval_s=_env_value(p + "RATE_LIMIT_INTERVAL_S", float, 60.0, env),
            breaker_threshold=_env_value(p + "BREAKER_THRESHOLD", int, 5, env),
            breaker_window_s=_env_value(p + "BREAKER_WINDOW_S", float, 300.0, env),
            max_attempts=_env_value(p + "MAX_ATTEMPTS", int, 3, env),
            backoff_base_ms=_env_value(p + "BACKOFF_BASE_MS", int, 1_000, env),
            backoff_max_ms=_env_value(p + "BACKOFF_MAX_MS", int, 2_000, env),
            latency_capacity=_env_value(p + "LATENCY_CAPACITY", int, 50, env),
            max_steps=_env_value(p + "MAX_STEPS", int, MAX_STEPS, env),
            metrics_enabled=_env_flag(p + "METRICS", "0", env),
        )


__all__ = [
    "ENV_PREFIX",
    "GenerationSettings",
    "env_credential_provider",
]
