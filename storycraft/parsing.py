"""Robust JSON extraction from generation-service output.

The service is asked for "JSON only" and usually complies, but it can still
wrap the object in a code fence or prose, leave trailing commas or comment
lines behind, or stop mid-object when it hits its token ceiling. Parsing is
an escalating ladder that stops at the first rung that succeeds:

  1. strip code fences and whitespace
  2. slice from the first "{" to the last "}"
  3. strict json.loads, then the complete object at the first "{" alone
     (trailing prose may contain braces of its own)
  4. textual repairs (comment lines, trailing commas, control characters)
  5. close unbalanced strings/brackets/braces
  6. give up with MalformedOutputError
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_FENCE_OPEN = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_COMMENT_LINE = re.compile(r"^[ \t]*//[^\n]*$", re.MULTILINE)
_TRAILING_COMMA = re.compile(r",\s*([\]}])")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")

_CLOSERS = {"{": "}", "[": "]"}

_DECODER = json.JSONDecoder()


class MalformedOutputError(ValueError):
    """Raised when model output cannot be turned into the expected structure."""


def strip_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_OPEN.sub("", cleaned)
    cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def _open_depth(text: str) -> int:
    """Brace depth left open at the end of text, ignoring string contents."""
    depth = 0
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
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
    return depth


def slice_object(text: str) -> str:
    """Cut leading/trailing prose around the outermost object (first "{" to last "}")."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1:
        return text
    if end < start:
        return text[start:]
    return text[start:end + 1]


def truncated_tail(text: str) -> str | None:
    """Everything from the first "{" when the object is left open at the end.

    Slicing to the last "}" would cut a truncated object at an inner brace,
    so the balancing rung works on the whole tail instead.
    """
    start = text.find("{")
    if start == -1 or _open_depth(text[start:]) <= 0:
        return None
    return text[start:]


def _leading_object(text: str) -> Any:
    """Decode a complete object at the first "{", ignoring whatever follows it."""
    start = text.find("{")
    if start == -1:
        return None
    try:
        data, _ = _DECODER.raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    logger.debug("Ignored trailing text after the JSON object")
    return data


def repair_text(text: str) -> str:
    repaired = _COMMENT_LINE.sub("", text)
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    repaired = _CONTROL_CHARS.sub("", repaired)
    return repaired


def balance_brackets(text: str) -> str:
    """Append whatever closers are needed to finish a truncated document.

    Tracks a stack of open brackets/braces outside string literals; an
    unterminated string is closed first, then the stack is unwound.
    """
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
        elif ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]") and stack and stack[-1] == ch:
            stack.pop()

    balanced = text.rstrip()
    if in_string:
        if escaped:
            balanced = balanced[:-1]
        balanced += '"'
    balanced += "".join(reversed(stack))
    return _TRAILING_COMMA.sub(r"\1", balanced)


def parse_json_output(text: str) -> dict[str, Any]:
    """Parse a JSON object out of raw model output.

    Raises MalformedOutputError when no rung of the ladder yields an object.
    """
    stripped = strip_fences(text)
    cleaned = slice_object(stripped)

    try:
        return _as_object(json.loads(cleaned))
    except json.JSONDecodeError:
        pass

    # trailing prose can itself contain braces
    leading = _leading_object(stripped)
    if leading is not None:
        return _as_object(leading)

    repaired = repair_text(cleaned)
    try:
        data = json.loads(repaired, strict=False)
        logger.debug("JSON parsed after textual repair")
        return _as_object(data)
    except json.JSONDecodeError:
        pass

    tail = truncated_tail(stripped)
    balanced = balance_brackets(repair_text(tail) if tail is not None else repaired)
    try:
        data = json.loads(balanced, strict=False)
    except json.JSONDecodeError as e:
        raise MalformedOutputError(
            f"Model output is not valid JSON after repair: {e}"
        ) from e
    logger.warning("JSON parsed only after closing unbalanced brackets (truncated output?)")
    return _as_object(data)


def parse_model(text: str, model: type[M]) -> M:
    """Parse model output into a pydantic model, folding shape errors into MalformedOutputError."""
    data = parse_json_output(text)
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise MalformedOutputError(
            f"Model output does not match {model.__name__}: {e.error_count()} error(s)"
        ) from e


def _as_object(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise MalformedOutputError(
            f"Expected a JSON object, got {type(data).__name__}"
        )
    return data
