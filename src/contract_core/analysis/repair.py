"""Best-effort repair of almost-JSON text returned by language models.

The repair is an ordered pipeline of pure ``str -> str`` steps. Every step
leaves the inside of string literals alone, so text that is already valid
JSON parses to the same structure before and after the pipeline.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

RepairStep = Callable[[str], str]

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)(?:```|$)", re.DOTALL)
_UNQUOTED_KEY_RE = re.compile(r"([{,]\s*)([^\s\"'{}\[\],:]+)(\s*:)")
_BARE_VALUE_RE = re.compile(
    r"(:\s*)([^\s\"{}\[\],:][^\"{}\[\],:\n]*?)(\s*)(?=[,}\]\n]|$)"
)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_NUMBER_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?")
_JSON_LITERALS = frozenset({"true", "false", "null"})
_CLOSERS = {"{": "}", "[": "]"}
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}


@dataclass(frozen=True)
class _Segment:
    text: str
    is_string: bool
    terminated: bool = True


def _split_segments(text: str) -> list[_Segment]:
    """Split ``text`` into string-literal and structural segments."""
    segments: list[_Segment] = []
    length = len(text)
    start = 0
    index = 0
    while index < length:
        if text[index] != '"':
            index += 1
            continue
        if index > start:
            segments.append(_Segment(text[start:index], is_string=False))
        cursor = index + 1
        escaped = False
        terminated = False
        while cursor < length:
            char = text[cursor]
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                terminated = True
                break
            cursor += 1
        end = cursor + 1 if terminated else length
        segments.append(
            _Segment(text[index:end], is_string=True, terminated=terminated)
        )
        index = end
        start = end
    if start < length:
        segments.append(_Segment(text[start:], is_string=False))
    return segments


def _map_structure(text: str, transform: Callable[[str], str]) -> str:
    return "".join(
        segment.text if segment.is_string else transform(segment.text)
        for segment in _split_segments(text)
    )


def strip_code_fences(text: str) -> str:
    """Return the body of a markdown code fence, or ``text`` trimmed."""
    stripped = text.strip()
    if stripped[:1] in {"{", "["}:
        return stripped
    match = _FENCE_RE.search(stripped)
    if match is None:
        return stripped
    return match.group(1).strip()


def extract_json_body(text: str) -> str:
    """Drop prose before the first opener and after the last closer."""
    starts = [pos for pos in (text.find("{"), text.find("[")) if pos >= 0]
    if not starts:
        return text
    body = text[min(starts) :]
    end = max(body.rfind("}"), body.rfind("]"))
    if end >= 0:
        body = body[: end + 1]
    return body


def escape_control_characters(text: str) -> str:
    """Escape raw newlines and tabs that appear inside string literals."""
    parts: list[str] = []
    for segment in _split_segments(text):
        if not segment.is_string:
            parts.append(segment.text)
            continue
        parts.append(
            "".join(_CONTROL_ESCAPES.get(char, char) for char in segment.text)
        )
    return "".join(parts)


def close_unterminated_string(text: str) -> str:
    """Close a string literal left open at the end of ``text``."""
    segments = _split_segments(text)
    if not segments:
        return text
    last = segments[-1]
    if not last.is_string or last.terminated:
        return text
    body = last.text
    trailing_backslashes = len(body) - len(body.rstrip("\\"))
    if trailing_backslashes % 2 == 1:
        body = body[:-1]
    prefix = "".join(segment.text for segment in segments[:-1])
    return f'{prefix}{body}"'


def quote_unquoted_keys(text: str) -> str:
    """Wrap bare object keys such as ``{name: 1}`` in double quotes."""

    return _map_structure(
        text, lambda chunk: _UNQUOTED_KEY_RE.sub(r'\1"\2"\3', chunk)
    )


def quote_bare_values(text: str) -> str:
    """Wrap bare word values such as ``{"level": high}`` in double quotes."""

    def _quote(match: re.Match[str]) -> str:
        value = match.group(2).rstrip()
        if value in _JSON_LITERALS or _NUMBER_RE.fullmatch(value):
            return match.group(0)
        escaped = value.replace("\\", "\\\\")
        return f'{match.group(1)}"{escaped}"{match.group(3)}'

    return _map_structure(text, lambda chunk: _BARE_VALUE_RE.sub(_quote, chunk))


def balance_brackets(text: str) -> str:
    """Append closers for objects and arrays left open by truncation."""
    stack: list[str] = []
    for segment in _split_segments(text):
        if segment.is_string:
            continue
        for char in segment.text:
            if char in _CLOSERS:
                stack.append(_CLOSERS[char])
            elif char in ("}", "]") and stack and stack[-1] == char:
                stack.pop()
    if not stack:
        return text
    return text.rstrip() + "".join(reversed(stack))


def remove_trailing_commas(text: str) -> str:
    """Remove commas directly before a closing brace or bracket."""
    return _map_structure(text, lambda chunk: _TRAILING_COMMA_RE.sub(r"\1", chunk))


REPAIR_STEPS: tuple[RepairStep, ...] = (
    strip_code_fences,
    extract_json_body,
    escape_control_characters,
    close_unterminated_string,
    quote_unquoted_keys,
    quote_bare_values,
    balance_brackets,
    remove_trailing_commas,
)


def repair_json_text(text: str, steps: Sequence[RepairStep] = REPAIR_STEPS) -> str:
    """Run ``text`` through every repair step in order."""
    for step in steps:
        text = step(text)
    return text
