# processly_sdk/generation/validator.py
# SPDX-License-Identifier: Apache-2.0
"""
Structural validation of model output (Draft 2020-12).

The PromptResponse contract is expressed as an inline JSON Schema and
checked with `jsonschema`. Validation is purely structural: required keys,
the title length bound, the step-count bound and per-step field types.
Content rules (PII, numbering, compound steps) belong to the Sanitizer.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Union

from jsonschema import Draft202012Validator
from jsonschema.exceptions import best_match

from processly_sdk.generation.generation_base import (
    MAX_STEPS,
    MAX_TITLE_LENGTH,
    InvalidResponseShape,
    MalformedJSON,
)

LOG = logging.getLogger(__name__)

PROMPT_RESPONSE_SCHEMA_ID = "https://processly.app/schemas/prompt-response.json"

PROMPT_RESPONSE_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "$id": PROMPT_RESPONSE_SCHEMA_ID,
    "title": "PromptResponse",
    "type": "object",
    "required": ["title", "summary", "tools_needed", "steps", "warnings", "tags"],
    "properties": {
        "title": {"type": "string", "maxLength": MAX_TITLE_LENGTH},
        "steps": {
            "type": "array",
            "maxItems": MAX_STEPS,
            "items": {
                "type": "object",
                "required": ["number", "instruction"],
                "properties": {
                    "number": {"type": "number"},
                    "instruction": {"type": "string"},
                },
            },
        },
    },
}


class ResponseValidator:
    """
    Checks a decoded PromptResponse object against PROMPT_RESPONSE_SCHEMA.

    Violations raise InvalidResponseShape marked retriable, since a fresh
    attempt may produce a conforming object. ``details`` carries the JSON
    path of the most relevant violation and the total violation count.
    """

    def __init__(self, schema: Mapping[str, Any] = PROMPT_RESPONSE_SCHEMA) -> None:
        Draft202012Validator.check_schema(schema)
        self._schema = dict(schema)
        self._validator = Draft202012Validator(self._schema)

    @property
    def schema(self) -> Dict[str, Any]:
        return self._schema

    def validate(self, payload: Union[Mapping[str, Any], bytes, str]) -> Dict[str, Any]:
        """
        Validate and return the decoded object.

        `bytes` / `str` input is decoded first; undecodable input raises
        MalformedJSON.
        """
        if isinstance(payload, (bytes, bytearray, str)):
            try:
                obj = json.loads(payload)
            except ValueError as e:
                raise MalformedJSON("response payload is not valid JSON") from e
        else:
            obj = payload

        errors = list(self._validator.iter_errors(obj))
        if not errors:
            return obj

        top = best_match(errors)
        path = "$" + "".join(
            f"[{p}]" if isinstance(p, int) else f".{p}" for p in top.absolute_path
        )
        LOG.debug("response failed schema validation at %s (%s)", path, top.validator)
        raise InvalidResponseShape(
            f"response violates PromptResponse schema at {path}: {top.message}",
            retriable=True,
            details={
                "path": path,
                "validator": str(top.validator),
                "violations": len(errors),
            },
        )


__all__ = [
    "PROMPT_RESPONSE_SCHEMA_ID",
    "PROMPT_RESPONSE_SCHEMA",
    "ResponseValidator",
]
