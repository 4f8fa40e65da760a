"""Structured-output extraction and repair for backend answers.

Backends are asked for a bare JSON object but answer in several shapes:
plain JSON, JSON inside a markdown fence, JSON surrounded by prose, or (for
reasoning models) an empty answer with the object at the end of the
chain-of-thought. :func:`extract_document` handles all of them and applies
at most one repair transformation, flagging its result as ``recovered``.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from localagents.backend import ChatResponse
from localagents.errors import MalformedOutputError

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?[ \t]*\n?(.*?)```", re.DOTALL | re.IGNORECASE)
_CLOSERS = {"{": "}", "[": "]"}


@dataclass(slots=True)
class ExtractedDocument:
    """A parsed JSON object plus where it came from."""

    data: dict[str, Any]
    recovered: bool = False
    source: str = "content"


@dataclass(slots=True)
class RepairOutcome:
    text: str
    closers_added: int
    closed_string: bool


def _try_load_dict(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def fenced_blocks(text: str) -> list[str]:
    """Contents of every markdown code fence, in order."""
    return [m.group(1).strip() for m in _FENCED_BLOCK.finditer(text)]


def object_literals(text: str) -> list[tuple[str, dict[str, Any]]]:
    """Top-level well-formed JSON objects embedded in free text, in order."""
    decoder = json.JSONDecoder()
    found: list[tuple[str, dict[str, Any]]] = []
    idx = text.find("{")
    while idx != -1:
        try:
            obj, end = decoder.raw_decode(text, idx)
        except json.JSONDecodeError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            found.append((text[idx:end], obj))
        idx = text.find("{", end)
    return found


def salvage_from_reasoning(reasoning: str, key: str | None = None) -> str:
    """Pull the trailing structured answer out of a chain-of-thought.

    Last fenced block, else the last well-formed object literal (preferring
    one containing *key*), else the whole text.
    """
    blocks = fenced_blocks(reasoning)
    if blocks:
        return blocks[-1]
    literals = object_literals(reasoning)
    if key is not None:
        keyed = [raw for raw, obj in literals if key in obj]
        if keyed:
            return keyed[-1]
    if literals:
        return literals[-1][0]
    return reasoning


def select_answer_text(response: ChatResponse, key: str | None = None) -> tuple[str, str]:
    """Return ``(text, source)`` where source is content, reasoning or none."""
    if not response.is_empty:
        return response.content.strip(), "content"
    reasoning = response.reasoning.strip()
    if not reasoning:
        return "", "none"
    return salvage_from_reasoning(reasoning, key).strip(), "reasoning"


def repair_json(raw: str) -> RepairOutcome:
    """Apply the one bounded repair transformation.

    Drops a rogue quote in ``}"]``, turns raw newlines into spaces, closes an
    unterminated string and appends exactly the missing closers in nesting
    order. Delimiters inside strings are ignored.
    """
    text = raw.replace('}"]', "}]")
    text = text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ")

    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]" and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()

    closed_string = in_string
    if in_string:
        if escaped:
            text = text[:-1]
        text += '"'
    if stack:
        text = text.rstrip()
        while text.endswith(","):
            text = text[:-1].rstrip()
    closers = "".join(_CLOSERS[opener] for opener in reversed(stack))
    return RepairOutcome(
        text=text + closers,
        closers_added=len(closers),
        closed_string=closed_string,
    )


def parse_document(text: str) -> tuple[dict[str, Any], bool]:
    """Parse a JSON object out of *text*; returns ``(data, recovered)``.

    Order: whole text, fenced block, first ``{`` to last ``}``, then one
    repair pass. Raises MalformedOutputError when nothing parses.
    """
    stripped = text.strip()
    if not stripped:
        raise MalformedOutputError("Empty response from LLM", raw_content=text)

    direct = _try_load_dict(stripped)
    if direct is not None:
        return direct, False

    blocks = fenced_blocks(stripped)
    for block in blocks:
        payload = _try_load_dict(block)
        if payload is not None:
            return payload, False

    start = stripped.find("{")
    end = stripped.rfind("}")
    if start != -1 and end > start:
        payload = _try_load_dict(stripped[start : end + 1])
        if payload is not None:
            return payload, False

    candidate = blocks[0] if blocks else stripped
    brace = candidate.find("{")
    if brace > 0:
        candidate = candidate[brace:]
    outcome = repair_json(candidate)
    payload = _try_load_dict(outcome.text)
    if payload is not None:
        logger.warning(
            "[JSON-REPAIR] Recovered malformed JSON (%d closer(s) appended%s)",
            outcome.closers_added,
            ", unterminated string closed" if outcome.closed_string else "",
        )
        return payload, True

    raise MalformedOutputError("Failed to parse JSON from LLM response", raw_content=text)


def extract_document(response: ChatResponse, key: str | None = None) -> ExtractedDocument:
    """Full extraction discipline over one backend response."""
    text, source = select_answer_text(response, key)
    if not text:
        raise MalformedOutputError(
            response.error or "Empty response from LLM",
            raw_content=response.reasoning,
        )
    data, recovered = parse_document(text)
    return ExtractedDocument(data=data, recovered=recovered, source=source)
