# processly_sdk/generation/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
SOP Generation Protocol V1 - Public API

This module provides the public interface for SOP generation.
Provider adapters are imported from their own modules (or built with
`make_adapter`) so each SDK is only imported when used.
"""

from processly_sdk.generation.generation_base import (
    # Protocol version
    GENERATION_PROTOCOL_VERSION,
    GENERATION_PROTOCOL_ID,

    # Limits
    MAX_STEPS,
    MAX_TITLE_LENGTH,
    DEFAULT_TONE,

    # Error types
    ErrorKind,
    GenerationError,
    NoCredential,
    UnauthorizedOrRateLimited,
    LocallyRateLimited,
    MalformedJSON,
    InvalidResponseShape,
    UpstreamTimeout,
    TransportFailure,
    UpstreamServerError,
    CircuitOpen,
    InvalidContract,
    localize,

    # Providers
    Provider,
    Model,
    CredentialProvider,

    # Data models
    GenerationRequest,
    Step,
    GenerationResponse,
    SanitizedResult,

    # Metrics
    MetricsSink,
    NoopMetrics,

    # Policy implementations
    RetryPolicy,
    TokenBucketLimiter,
    WindowedCircuitBreaker,
    LatencyTracker,

    # Adapter interface
    ProviderAdapter,
    BaseProviderAdapter,
    extract_embedded_json,
)
from processly_sdk.generation.validator import ResponseValidator
from processly_sdk.generation.sanitizer import Sanitizer
from processly_sdk.generation.client import GenerationClient, make_adapter

__all__ = [
    # Protocol version
    "GENERATION_PROTOCOL_VERSION",
    "GENERATION_PROTOCOL_ID",

    # Limits
    "MAX_STEPS",
    "MAX_TITLE_LENGTH",
    "DEFAULT_TONE",

    # Error types
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
    "localize",

    # Providers
    "Provider",
    "Model",
    "CredentialProvider",

    # Data models
    "GenerationRequest",
    "Step",
    "GenerationResponse",
    "SanitizedResult",

    # Metrics
    "MetricsSink",
    "NoopMetrics",

    # Policy implementations
    "RetryPolicy",
    "TokenBucketLimiter",
    "WindowedCircuitBreaker",
    "LatencyTracker",

    # Adapter interface
    "ProviderAdapter",
    "BaseProviderAdapter",
    "extract_embedded_json",

    # Pipeline
    "ResponseValidator",
    "Sanitizer",
    "GenerationClient",
    "make_adapter",
]

__version__ = GENERATION_PROTOCOL_VERSION
