# processly_sdk/metrics_console.py
# SPDX-License-Identifier: Apache-2.0
"""
A simple console MetricsSink for the CLI and local debugging.

Implements the `track(*, event, properties=None)` shape used by
GenerationClient and prints one structured line per event:

    [EVT] {"ts":"2025-01-01T00:00:00Z","event":"sop_generated","properties":{"steps":5,"tokens_in":42}}

Features:
  • Thread-safe printing
  • Optional ANSI colors (error events in red)
  • Low-cardinality guarding of properties
"""

from __future__ import annotations

import json
import sys
import threading
import time
from typing import Any, Dict, Mapping, Optional, TextIO

__all__ = ["ConsoleMetrics"]

_LOCK = threading.Lock()
_JSON_ENCODER = json.JSONEncoder(separators=(",", ":"), ensure_ascii=False, check_circular=False)


class ConsoleMetrics:
    """
    Metrics sink that prints structured lines (stderr by default, so the CLI
    keeps stdout for the generated record).

    Args:
        colored: Enable ANSI colors when the output is a TTY.
        flush:   Force flush() on each write.
        name:    Optional instance name to include in lines.
        output_file: File-like object to write to.
        max_properties: Maximum number of properties kept per event.
    """

    def __init__(
        self,
        *,
        colored: bool = True,
        flush: bool = True,
        name: Optional[str] = None,
        output_file: Optional[TextIO] = None,
        max_properties: int = 10,
    ) -> None:
        self.output_file = output_file or sys.stderr
        isatty = getattr(self.output_file, "isatty", None)
        self.colored = bool(colored and isatty is not None and isatty())
        self.flush = flush
        self.name = name
        self.max_properties = max_properties

    def track(self, *, event: str, properties: Optional[Mapping[str, Any]] = None) -> None:
        if not event:
            return

        payload: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "event": event,
            **({"instance": self.name} if self.name else {}),
        }
        safe = self._safe_properties(properties)
        if safe:
            payload["properties"] = safe

        self._write(self._format_line(payload, ok=event != "error"))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _write(self, s: str) -> None:
        with _LOCK:
            print(s, file=self.output_file, flush=self.flush)

    def _format_line(self, payload: Mapping[str, Any], *, ok: bool) -> str:
        if self.colored:
            color = "\x1b[32m" if ok else "\x1b[31m"
            prefix = f"{color}[EVT]\x1b[0m"
        else:
            prefix = "[EVT]"
        return f"{prefix} {_JSON_ENCODER.encode(payload)}"

    def _safe_properties(self, properties: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
        """Keep only short string keys with scalar values."""
        if not properties:
            return None

        safe: Dict[str, Any] = {}
        for i, (k, v) in enumerate(sorted(properties.items(), key=lambda kv: str(kv[0]))):
            if i >= self.max_properties:
                break
            if not isinstance(k, str) or len(k) > 100:
                continue
            if v is None or isinstance(v, (str, int, float, bool)):
                if len(str(v)) <= 1000:
                    safe[k] = v
        return safe or None
