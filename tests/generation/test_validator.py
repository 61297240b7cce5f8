# SPDX-License-Identifier: Apache-2.0
"""
Generation — structural validation of model output.

Covers:
  • Conforming payloads pass and are returned
  • Missing keys, long titles, too many steps and bad step fields are rejected
  • Rejections are retriable InvalidResponseShape with a JSON path
  • Undecodable bytes raise MalformedJSON
"""

import json

import pytest

from processly_sdk.generation.generation_base import InvalidResponseShape, MalformedJSON
from processly_sdk.generation.validator import ResponseValidator
from tests.mock.mock_provider_adapter import valid_payload


@pytest.fixture
def validator():
    return ResponseValidator()


def test_valid_payload_passes(validator):
    payload = valid_payload()
    assert validator.validate(payload) == payload


def test_accepts_bytes_and_str(validator):
    payload = valid_payload(steps=1)
    assert validator.validate(json.dumps(payload).encode()) == payload
    assert validator.validate(json.dumps(payload)) == payload


@pytest.mark.parametrize(
    "key", ["title", "summary", "tools_needed", "steps", "warnings", "tags"]
)
def test_missing_required_key(validator, key):
    payload = valid_payload()
    del payload[key]
    with pytest.raises(InvalidResponseShape) as excinfo:
        validator.validate(payload)
    assert excinfo.value.retriable is True
    assert excinfo.value.details["validator"] == "required"


def test_title_longer_than_60(validator):
    with pytest.raises(InvalidResponseShape) as excinfo:
        validator.validate(valid_payload(title="x" * 61))
    assert excinfo.value.details["path"] == "$.title"


def test_title_of_exactly_60_is_fine(validator):
    validator.validate(valid_payload(title="x" * 60))


def test_more_than_15_steps(validator):
    with pytest.raises(InvalidResponseShape):
        validator.validate(valid_payload(steps=16))


@pytest.mark.parametrize(
    "step",
    [
        {"instruction": "no number"},
        {"number": 1},
        {"number": "1", "instruction": "string number"},
        {"number": 1, "instruction": 42},
        "not an object",
    ],
)
def test_bad_step_shape(validator, step):
    payload = valid_payload()
    payload["steps"] = [step]
    with pytest.raises(InvalidResponseShape) as excinfo:
        validator.validate(payload)
    assert excinfo.value.details["path"].startswith("$.steps[0]")


def test_non_object_root(validator):
    with pytest.raises(InvalidResponseShape):
        validator.validate([])


def test_undecodable_bytes(validator):
    with pytest.raises(MalformedJSON):
        validator.validate(b"{not json")
