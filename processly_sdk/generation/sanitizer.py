# processly_sdk/generation/sanitizer.py
# SPDX-License-Identifier: Apache-2.0
"""
Sanitization of validated model output into an app-safe SOP record.

Pipeline (applied in order)
---------------------------
1. Title: strip emoji, redact, trim, truncate to 60 characters, fall back
   to a default title when nothing is left.
2. PII redaction (email addresses, phone numbers) across every text field.
   Any real redaction appends a single fixed warning.
3. Compound splitting of step instructions at whitespace-delimited
   "and" / "then", for English (or unspecified) locales only.
4. Clamp to the step ceiling.
5. Renumber 1..N.
6. Re-serialize and re-validate; a failure here is a pipeline bug and is
   raised as InvalidContract.

Running `sanitize` on its own output returns an equal record.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from processly_sdk.generation.generation_base import (
    MAX_STEPS,
    MAX_TITLE_LENGTH,
    GenerationError,
    GenerationResponse,
    InvalidContract,
    SanitizedResult,
    Step,
)
from processly_sdk.generation.prompt import language_code
from processly_sdk.generation.validator import ResponseValidator

logger = logging.getLogger(__name__)

REDACTED_PLACEHOLDER = "[REDACTED]"
REDACTION_WARNING = "Sensitive contact details were removed."
DEFAULT_TITLE = "Standard Operating Procedure"

EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
PHONE_PATTERN = re.compile(
    r"\b(?:\+?\d{1,3}[\s-]?)?(?:\(\d{3}\)|\d{3})[\s-]?\d{3}[\s-]?\d{4}\b"
)
COMPOUND_PATTERN = re.compile(r"\s+(?:and|then)\s+", re.IGNORECASE)

# Pictographic and symbol blocks plus the joiners/selectors that glue emoji
# sequences together. Plain digits, '#' and '*' are kept.
EMOJI_PATTERN = re.compile(
    "["
    "\U0001F000-\U0001FAFF"  # mahjong .. symbols & pictographs extended-A
    "\u2300-\u23FF"  # misc technical
    "\u2600-\u27BF"  # misc symbols, dingbats
    "\u2B00-\u2BFF"  # arrows, stars
    "\u200D"  # zero-width joiner
    "\uFE0F"  # variation selector-16
    "\u20E3"  # combining keycap
    "]"
)


def redact_pii(text: str) -> Tuple[str, bool]:
    """
    Replace email addresses and phone numbers with the placeholder.

    Returns the new text and whether anything was replaced.
    """
    if not text:
        return text, False
    text, emails = EMAIL_PATTERN.subn(REDACTED_PLACEHOLDER, text)
    text, phones = PHONE_PATTERN.subn(REDACTED_PLACEHOLDER, text)
    return text, bool(emails or phones)


def strip_emoji(text: str) -> str:
    return EMOJI_PATTERN.sub("", text)


def split_compound(instruction: str) -> List[str]:
    """Split at whitespace-surrounded 'and'/'then'; empty fragments dropped."""
    return [piece.strip() for piece in COMPOUND_PATTERN.split(instruction) if piece.strip()]


def should_split_compound(locale: Optional[str]) -> bool:
    code = language_code(locale)
    return code is None or code.startswith("en")


def sanitize_title(title: str) -> Tuple[str, bool]:
    """
    Strip emoji, redact, trim and truncate the title.

    Redaction repeats after truncation until the cut text holds no match.
    """
    cleaned, redacted = redact_pii(strip_emoji(title))
    while True:
        cleaned = cleaned.strip()
        if len(cleaned) > MAX_TITLE_LENGTH:
            cleaned = cleaned[:MAX_TITLE_LENGTH].strip()
        cleaned, again = redact_pii(cleaned)
        if not again:
            break
        redacted = True
    return (cleaned or DEFAULT_TITLE), redacted


def _redact_all(values: Iterable[str]) -> Tuple[Tuple[str, ...], bool]:
    out: List[str] = []
    any_redacted = False
    for value in values:
        cleaned, redacted = redact_pii(value)
        any_redacted = any_redacted or redacted
        out.append(cleaned)
    return tuple(out), any_redacted


class Sanitizer:
    """
    Turns a structurally valid GenerationResponse into the final record.

    Parameters
    ----------
    validator:
        Used for the final re-validation pass; a fresh ResponseValidator by
        default.
    max_steps:
        Instance-wide step ceiling, never above 15.
    """

    def __init__(
        self,
        *,
        validator: Optional[ResponseValidator] = None,
        max_steps: int = MAX_STEPS,
    ) -> None:
        if int(max_steps) < 1:
            raise ValueError("max_steps must be >= 1")
        self._validator = validator or ResponseValidator()
        self._max_steps = min(MAX_STEPS, int(max_steps))

    @property
    def max_steps(self) -> int:
        return self._max_steps

    def _split_steps(
        self,
        steps: Iterable[Step],
        *,
        split: bool,
    ) -> Tuple[List[Step], bool]:
        out: List[Step] = []
        any_redacted = False
        for step in steps:
            instruction, redacted_instruction = redact_pii(step.instruction)
            notes: Optional[str] = None
            redacted_notes = False
            if step.notes is not None:
                cleaned_notes, redacted_notes = redact_pii(step.notes)
                notes = cleaned_notes.strip() or None
            any_redacted = any_redacted or redacted_instruction or redacted_notes

            fragments = split_compound(instruction) if split else []
            if len(fragments) <= 1:
                fragments = [instruction.strip()]
            for idx, piece in enumerate(fragments):
                out.append(
                    Step(
                        number=len(out) + 1,
                        instruction=piece,
                        notes=notes if idx == 0 else None,
                        est_minutes=step.est_minutes,
                    )
                )
        return out, any_redacted

    def sanitize(
        self,
        response: GenerationResponse,
        *,
        source: str = "",
        locale: Optional[str] = None,
        max_steps: Optional[int] = None,
    ) -> SanitizedResult:
        """
        Sanitize ``response`` and redact ``source`` into ``cleaned_source``.

        ``locale`` gates compound splitting; ``max_steps`` lowers the step
        ceiling for this call only.
        """
        limit = self._max_steps if max_steps is None else min(self._max_steps, int(max_steps))
        limit = max(1, limit)

        title, title_redacted = sanitize_title(response.title)
        summary, summary_redacted = redact_pii(response.summary)
        tools, tools_redacted = _redact_all(response.tools_needed)
        tags, tags_redacted = _redact_all(response.tags)
        warnings, warnings_redacted = _redact_all(response.warnings)

        steps, steps_redacted = self._split_steps(
            response.steps, split=should_split_compound(locale)
        )
        steps = [replace(s, number=i) for i, s in enumerate(steps[:limit], start=1)]

        if any(
            (title_redacted, summary_redacted, tools_redacted,
             tags_redacted, warnings_redacted, steps_redacted)
        ) and REDACTION_WARNING not in warnings:
            warnings = warnings + (REDACTION_WARNING,)

        sanitized = GenerationResponse(
            title=title,
            summary=summary,
            tools_needed=tools,
            steps=tuple(steps),
            warnings=warnings,
            tags=tags,
        )

        try:
            self._validator.validate(json.dumps(sanitized.to_wire(), ensure_ascii=False))
        except GenerationError as e:
            logger.error("sanitized record failed re-validation: %s", e)
            raise InvalidContract(
                "sanitized record violates the PromptResponse contract",
                details=e.details,
            ) from e

        cleaned_source, _ = redact_pii(source)
        return SanitizedResult(response=sanitized, cleaned_source=cleaned_source)


__all__ = [
    "REDACTED_PLACEHOLDER",
    "REDACTION_WARNING",
    "DEFAULT_TITLE",
    "redact_pii",
    "strip_emoji",
    "split_compound",
    "should_split_compound",
    "sanitize_title",
    "Sanitizer",
]
