# SPDX-License-Identifier: Apache-2.0
"""
Generation — normalized error taxonomy.

Covers:
  • Retry classification per kind
  • Telemetry reasons (including server_<status>)
  • Localized user messages with catalog override
  • String form carries code and details
"""

import pytest

from processly_sdk.generation.generation_base import (
    DEFAULT_MESSAGES,
    CircuitOpen,
    ErrorKind,
    GenerationError,
    InvalidContract,
    InvalidResponseShape,
    LocallyRateLimited,
    MalformedJSON,
    NoCredential,
    TransportFailure,
    UnauthorizedOrRateLimited,
    UpstreamServerError,
    UpstreamTimeout,
    localize,
)


@pytest.mark.parametrize(
    "err,retriable,reason",
    [
        (NoCredential("x"), False, "no_api_key"),
        (UnauthorizedOrRateLimited("x"), False, "unauthorized_or_rate_limited"),
        (LocallyRateLimited("x"), False, "rate_limited_local"),
        (MalformedJSON("x"), True, "invalid_json"),
        (InvalidResponseShape("x"), False, "invalid_response"),
        (UpstreamTimeout("x"), True, "timeout"),
        (TransportFailure("x"), True, "transport"),
        (UpstreamServerError(503), True, "server_503"),
        (CircuitOpen("x"), False, "circuit_breaker"),
        (InvalidContract("x"), False, "invalid_contract"),
    ],
)
def test_classification(err, retriable, reason):
    assert isinstance(err, GenerationError)
    assert err.retriable is retriable
    assert err.reason == reason
    assert err.code == err.kind.value


def test_retriable_can_be_overridden_per_instance():
    err = InvalidResponseShape("schema", retriable=True)
    assert err.retriable is True
    assert InvalidResponseShape.retriable is False


def test_server_error_carries_status():
    err = UpstreamServerError(502)
    assert err.status_code == 502
    assert err.details["status"] == 502
    assert err.kind is ErrorKind.UPSTREAM_SERVER_ERROR


def test_user_messages_come_from_catalog():
    assert NoCredential().user_message == "Add an AI key in Settings to generate steps."
    assert CircuitOpen().user_message == DEFAULT_MESSAGES["llm.error.circuit_breaker"]
    override = {"llm.error.timeout": "Zu langsam."}
    assert UpstreamTimeout().localized_message(override) == "Zu langsam."
    assert localize("unknown.key") == "unknown.key"


def test_str_includes_code_and_details():
    err = TransportFailure("connection reset", details={"provider": "openai"})
    text = str(err)
    assert "connection reset" in text
    assert "[code=TRANSPORT_FAILURE]" in text
    assert "openai" in text
