# processly_sdk/cli.py
# SPDX-License-Identifier: Apache-2.0
"""
Processly SDK CLI

Generate a sanitized SOP from a notes file (or stdin) with one command, or
re-run validation and sanitization on a saved model payload.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import replace
from typing import List, Optional

from processly_sdk.config import GenerationSettings
from processly_sdk.generation.client import GenerationClient
from processly_sdk.generation.generation_base import (
    DEFAULT_TONE,
    MAX_STEPS,
    GenerationError,
    GenerationRequest,
    GenerationResponse,
    Provider,
    SanitizedResult,
)
from processly_sdk.generation.sanitizer import Sanitizer
from processly_sdk.generation.validator import ResponseValidator

LOG = logging.getLogger("processly_sdk.cli")

# Configuration from environment
LOG_LEVEL = os.environ.get("PROCESSLY_LOG_LEVEL", "WARNING")
DEFAULT_LOCALE = os.environ.get("PROCESSLY_LOCALE") or None


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #

def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    with open(path, "r", encoding="utf-8") as fh:
        return fh.read()


def _result_json(result: SanitizedResult) -> str:
    return json.dumps(
        {"sop": result.response.to_wire(), "cleaned_source": result.cleaned_source},
        ensure_ascii=False,
        indent=2,
    )


def _report_error(err: GenerationError) -> int:
    print(f"error: {err.reason}: {err.user_message}", file=sys.stderr)
    LOG.info("generation failed: %s", err)
    return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="processly-generate",
        description="Processly SDK CLI - turn free-form notes into a structured SOP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  processly-generate notes.txt
  cat notes.txt | processly-generate - --provider anthropic --locale en_US
  processly-generate notes.txt --max-steps 8 --no-tools --metrics
  processly-generate --sanitize-only saved_response.json --source notes.txt

Configuration (environment variables):
  PROCESSLY_OPENAI_API_KEY / OPENAI_API_KEY        OpenAI credential
  PROCESSLY_ANTHROPIC_API_KEY / ANTHROPIC_API_KEY  Anthropic credential
  PROCESSLY_PROVIDER, PROCESSLY_MODEL, PROCESSLY_*  see processly_sdk.config
  PROCESSLY_LOG_LEVEL=INFO                         Logging level (default: WARNING)
        """.strip(),
    )
    parser.add_argument(
        "notes", nargs="?", default=None,
        help="Notes file to generate from ('-' for stdin)",
    )
    parser.add_argument(
        "--provider", choices=[p.value for p in Provider],
        help="Provider override (default: PROCESSLY_PROVIDER or openai)",
    )
    parser.add_argument("--model", help="Model override")
    parser.add_argument("--title-hint", default=None, help="Optional title suggestion")
    parser.add_argument(
        "--no-tools", action="store_true",
        help="Do not request a tools-needed section",
    )
    parser.add_argument(
        "--max-steps", type=int, default=MAX_STEPS,
        help=f"Step ceiling (1-{MAX_STEPS}, default: {MAX_STEPS})",
    )
    parser.add_argument("--tone", default=DEFAULT_TONE, help="Tone descriptor")
    parser.add_argument(
        "--locale", default=DEFAULT_LOCALE,
        help="Locale such as en_US or he_IL (controls compound-step splitting)",
    )
    parser.add_argument(
        "--metrics", action="store_true",
        help="Print metrics events to stderr",
    )
    parser.add_argument("--log-level", default=LOG_LEVEL, help="Logging level")
    parser.add_argument(
        "--sanitize-only", metavar="FILE",
        help="Validate and sanitize a saved PromptResponse JSON file (no network)",
    )
    parser.add_argument(
        "--source", metavar="FILE",
        help="With --sanitize-only: source notes to redact into cleaned_source",
    )
    return parser


def _input_error(e: Exception) -> int:
    print(f"error: {e}", file=sys.stderr)
    return 2


def _sanitize_only(args: argparse.Namespace) -> int:
    try:
        saved = _read_text(args.sanitize_only)
        source = _read_text(args.source) if args.source else ""
    except (OSError, UnicodeDecodeError) as e:
        return _input_error(e)

    validator = ResponseValidator()
    sanitizer = Sanitizer(validator=validator, max_steps=args.max_steps)
    try:
        raw = validator.validate(saved.encode("utf-8"))
        result = sanitizer.sanitize(
            GenerationResponse.from_wire(raw),
            source=source,
            locale=args.locale,
        )
    except GenerationError as err:
        return _report_error(err)
    print(_result_json(result))
    return 0


async def _generate(args: argparse.Namespace, settings: GenerationSettings) -> SanitizedResult:
    request = GenerationRequest(
        raw_text=_read_text(args.notes),
        title_hint=args.title_hint,
        include_tools=not args.no_tools,
        max_steps=args.max_steps,
        tone=args.tone,
    )
    async with GenerationClient.from_settings(settings) as client:
        return await client.generate(request, locale=args.locale)


# --------------------------------------------------------------------------- #
# main
# --------------------------------------------------------------------------- #

def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return int(e.code or 0)

    _configure_logging(args.log_level)

    if not 1 <= args.max_steps <= MAX_STEPS:
        print(f"error: --max-steps must be between 1 and {MAX_STEPS}", file=sys.stderr)
        return 2

    if args.sanitize_only:
        return _sanitize_only(args)

    if args.notes is None:
        parser.print_usage(sys.stderr)
        print("error: a notes file (or '-') is required", file=sys.stderr)
        return 2

    try:
        settings = GenerationSettings.from_env()
        overrides = {}
        if args.provider:
            overrides["provider"] = Provider.parse(args.provider)
            if not args.model and args.provider != settings.provider.value:
                overrides["model"] = ""
        if args.model:
            overrides["model"] = args.model
        if args.metrics:
            overrides["metrics_enabled"] = True
        settings = replace(settings, **overrides)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    try:
        result = asyncio.run(_generate(args, settings))
    except GenerationError as err:
        return _report_error(err)
    except (OSError, UnicodeDecodeError) as e:
        return _input_error(e)

    print(_result_json(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
