"""Best-effort repair of malformed JSON returned by models

Handles the usual ways chat models break JSON: code fences and chatter
around the payload, Python literals, unquoted keys, trailing commas and
output cut off before the closing brackets. All rewrites skip the inside
of string literals.
"""

import json
import re

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_\-]*)(\s*:)")
_LITERALS = {"True": "true", "False": "false", "None": "null"}
_LITERAL_RE = re.compile(r"\b(True|False|None)\b")


class JSONRepairError(ValueError):
    """The text could not be turned into valid JSON"""


def _split_strings(text: str) -> tuple[list[tuple[str, bool]], bool]:
    """Split text into (segment, is_string) pieces.

    Returns the pieces and whether the text ends inside an open string.
    """
    parts: list[tuple[str, bool]] = []
    buf: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            buf.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                parts.append(("".join(buf), True))
                buf = []
                in_string = False
        elif ch == '"':
            if buf:
                parts.append(("".join(buf), False))
            buf = [ch]
            in_string = True
        else:
            buf.append(ch)
    if buf:
        parts.append(("".join(buf), in_string))
    return parts, in_string


def _map_outside_strings(text: str, fn) -> str:
    parts, _ = _split_strings(text)
    return "".join(segment if is_string else fn(segment) for segment, is_string in parts)


def _strip_fences(text: str) -> str:
    match = _FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    # Opening fence without a closing one (truncated output)
    if text.startswith("```"):
        return text.split("\n", 1)[1] if "\n" in text else ""
    return text


def _extract_json_region(text: str) -> str:
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        raise JSONRepairError("No JSON object or array found in text")
    start = min(starts)
    closer = "}" if text[start] == "{" else "]"
    end = text.rfind(closer)
    if end > start:
        return text[start:end + 1]
    return text[start:]


def _normalize_literals(segment: str) -> str:
    return _LITERAL_RE.sub(lambda m: _LITERALS[m.group(1)], segment)


def _quote_keys(segment: str) -> str:
    return _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', segment)


def _remove_trailing_commas(segment: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", segment)


def _close_open_structures(text: str) -> str:
    parts, open_string = _split_strings(text)
    stack: list[str] = []
    for segment, is_string in parts:
        if is_string:
            continue
        for ch in segment:
            if ch == "{":
                stack.append("}")
            elif ch == "[":
                stack.append("]")
            elif ch in "}]" and stack and stack[-1] == ch:
                stack.pop()
    if open_string:
        text += '"'
    return text + "".join(reversed(stack))


def repair_json(text: str) -> str:
    """Return a repaired JSON document.

    Raises:
        JSONRepairError: if the result still does not parse.
    """
    if text is None or not text.strip():
        raise JSONRepairError("No content to repair")

    candidate = _strip_fences(text.strip())
    candidate = _extract_json_region(candidate)
    candidate = _map_outside_strings(candidate, _normalize_literals)
    candidate = _map_outside_strings(candidate, _quote_keys)
    candidate = _close_open_structures(candidate)
    candidate = _map_outside_strings(candidate, _remove_trailing_commas)

    try:
        json.loads(candidate)
    except json.JSONDecodeError as e:
        raise JSONRepairError(f"Could not repair JSON: {e.msg} at position {e.pos}") from e
    return candidate
