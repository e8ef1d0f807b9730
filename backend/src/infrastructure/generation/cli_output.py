# src/infrastructure/generation/cli_output.py
"""
Turns decoded CLI stdout into stream chunks.
- "text": stdout is the generation itself, forwarded as-is
- "json" / "stream-json": one JSON event per line; text blocks/deltas are forwarded,
  the final "result" event carries token usage and the error flag
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from infrastructure.generation.models import TokenUsage

logger = logging.getLogger(__name__)

JSON_FORMATS = ("json", "stream-json")


def detect_output_format(cli_args: Sequence[str]) -> str:
    args = list(cli_args)
    for i, arg in enumerate(args):
        if arg == "--output-format" and i + 1 < len(args):
            return args[i + 1]
        if arg.startswith("--output-format="):
            return arg.split("=", 1)[1]
    return "text"


class CliOutput:
    usage: Optional[TokenUsage] = None
    # set when the CLI reports a failed run inside its own output
    error: Optional[str] = None

    def feed(self, text: str) -> List[str]:
        return [text] if text else []

    def finish(self) -> List[str]:
        return []


class StreamJsonOutput(CliOutput):
    def __init__(self) -> None:
        self._buf = ""
        self._emitted = False
        # partial-message deltas and full assistant messages carry the same text
        self._deltas = False

    def feed(self, text: str) -> List[str]:
        self._buf += text
        *lines, self._buf = self._buf.split("\n")
        return [chunk for line in lines for chunk in self._line(line)]

    def finish(self) -> List[str]:
        line, self._buf = self._buf, ""
        return self._line(line)

    def _line(self, line: str) -> List[str]:
        line = line.strip()
        if not line:
            return []
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("cli.non_json_line size=%d", len(line))
            return []
        if not isinstance(event, dict):
            return []

        kind = event.get("type")
        if kind == "stream_event":
            return self._emit(_delta_text(event.get("event")), delta=True)
        if kind == "assistant" and not self._deltas:
            return self._emit(_message_text(event.get("message")))
        if kind == "result":
            return self._result(event)
        return []

    def _result(self, event: Dict[str, Any]) -> List[str]:
        self.usage = TokenUsage.from_cli(event.get("usage"), cost_usd=event.get("total_cost_usd"))
        result = event.get("result")
        if event.get("is_error"):
            self.error = result if isinstance(result, str) and result else str(event.get("subtype") or "error")
            return []
        # single-object "json" format: nothing was streamed before the result
        if not self._emitted and isinstance(result, str):
            return self._emit(result)
        return []

    def _emit(self, text: str, *, delta: bool = False) -> List[str]:
        if not text:
            return []
        if delta:
            self._deltas = True
        self._emitted = True
        return [text]


def _message_text(message: Any) -> str:
    if not isinstance(message, dict):
        return ""
    blocks = message.get("content") or []
    return "".join(b.get("text") or "" for b in blocks if isinstance(b, dict) and b.get("type") == "text")


def _delta_text(event: Any) -> str:
    if not isinstance(event, dict) or event.get("type") != "content_block_delta":
        return ""
    delta = event.get("delta") or {}
    if delta.get("type") != "text_delta":
        return ""
    return delta.get("text") or ""


def make_cli_output(cli_args: Sequence[str]) -> CliOutput:
    if detect_output_format(cli_args) in JSON_FORMATS:
        return StreamJsonOutput()
    return CliOutput()
