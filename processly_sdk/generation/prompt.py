# processly_sdk/generation/prompt.py
# SPDX-License-Identifier: Apache-2.0
"""
Prompt construction for SOP generation.

Builds the provider-neutral user payload that adapters JSON-encode into the
user turn. The caller's notes are wrapped with a documentation directive and
a language hint, and clamped to MAX_PROMPT_CHARS before transmission.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from processly_sdk.generation.generation_base import MAX_STEPS, GenerationRequest

SYSTEM_PROMPT = "You transform messy notes into a concise, actionable SOP."

DOCUMENTATION_DIRECTIVE = (
    "You are a process documentation expert. Create clear, actionable steps."
)

MAX_PROMPT_CHARS = 4000


def language_code(locale: Optional[str]) -> Optional[str]:
    """
    Lower-case language part of a locale identifier.

    ``en_US`` / ``en-GB`` / ``EN`` → ``en``; empty or None → None.
    """
    if not locale:
        return None
    code = locale.strip().replace("-", "_").split("_", 1)[0].lower()
    return code or None


def build_prompt_text(
    raw_text: str,
    *,
    locale: Optional[str] = None,
    max_chars: int = MAX_PROMPT_CHARS,
) -> str:
    clamped = raw_text[:max_chars]
    lang = language_code(locale) or "en"
    return f"{DOCUMENTATION_DIRECTIVE}\n\nUse {lang} language conventions.\n\n{clamped}"


def make_user_payload(
    request: GenerationRequest,
    *,
    locale: Optional[str] = None,
) -> Dict[str, Any]:
    """Payload consumed by ProviderAdapter.build_request()."""
    return {
        "raw_text": build_prompt_text(request.raw_text, locale=locale),
        "title_hint": request.title_hint,
        "include_tools": bool(request.include_tools),
        "max_steps": min(MAX_STEPS, int(request.max_steps)),
        "tone": request.tone,
    }


def estimate_tokens(text: str) -> int:
    # Rough four-characters-per-token heuristic; telemetry only.
    return max(1, len(text) // 4)


__all__ = [
    "SYSTEM_PROMPT",
    "DOCUMENTATION_DIRECTIVE",
    "MAX_PROMPT_CHARS",
    "language_code",
    "build_prompt_text",
    "make_user_payload",
    "estimate_tokens",
]
