"""
JSON utilities for cleaning and repairing LLM responses.

The pipeline is pure: raw text -> ``clean_json_response`` -> ``repair_json`` ->
``parse_json_response``. Nothing here touches the network.
"""

import json
import re
from typing import Any, List, Tuple

# Fields the extraction schema types as strings but models like to emit as numbers
ID_LIKE_FIELDS = ('user_id', 'sentiment_delta')

_FENCE_RE = re.compile(r'^```[A-Za-z0-9_-]*\s*')
_BARE_KEY_RE = re.compile(r'([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)')
_NUMERIC_VALUE_RE = re.compile(r'^(\s*:\s*)([+-]?\d+(?:\.\d+)?)')
_TRAILING_COMMA_RE = re.compile(r',(\s*[}\]])')
_MISSING_OBJECT_COMMA_RE = re.compile(r'}(\s*){')
_MISSING_ARRAY_COMMA_RE = re.compile(r'](\s*)\[')
_UNESCAPED_DOUBLE_QUOTE_RE = re.compile(r'(?<!\\)"')


class JSONRepairError(ValueError):
    """Raised when a response cannot be parsed even after repair."""

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def clean_json_response(response: str) -> str:
    """Clean LLM response by removing code block markers.

    Args:
        response: Raw LLM response

    Returns:
        Cleaned JSON string
    """
    response = response.strip()

    # Remove ```json / ``` markers
    response = _FENCE_RE.sub('', response)
    if response.endswith('```'):
        response = response[:-3]
    response = response.strip()

    # Drop chatter around the payload
    if response and response[0] not in '{[':
        start = response.find('{')
        end = response.rfind('}')
        if start != -1 and end > start:
            response = response[start:end + 1]

    return response


def _split_strings(text: str) -> List[Tuple[bool, str]]:
    """Split text into (is_string, segment) pairs.

    Single-quoted strings are rewritten as double-quoted JSON strings so the
    later passes only ever see one quoting style.
    """
    segments: List[Tuple[bool, str]] = []
    plain: List[str] = []
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if ch not in '"\'':
            plain.append(ch)
            i += 1
            continue

        if plain:
            segments.append((False, ''.join(plain)))
            plain = []

        quote = ch
        j = i + 1
        body: List[str] = []
        while j < n and text[j] != quote:
            if text[j] == '\\' and j + 1 < n:
                body.append(text[j:j + 2])
                j += 2
                continue
            body.append(text[j])
            j += 1

        value = ''.join(body)
        if quote == "'":
            value = _UNESCAPED_DOUBLE_QUOTE_RE.sub('\\"', value.replace("\\'", "'"))
        segments.append((True, f'"{value}"'))
        i = j + 1

    if plain:
        segments.append((False, ''.join(plain)))

    return segments


def repair_json(json_str: str) -> str:
    """Attempt to repair common JSON issues from LLM output.

    Handles unquoted object keys, single-quoted strings, bare numbers in
    id-like fields, trailing commas and missing commas between adjacent
    objects or arrays. Text inside string literals is never rewritten.

    Args:
        json_str: JSON-ish text

    Returns:
        Repaired text (not guaranteed to be valid JSON)
    """
    segments = _split_strings(json_str)
    repaired: List[str] = []
    previous_string = None

    for is_string, segment in segments:
        if is_string:
            repaired.append(segment)
            previous_string = segment
            continue

        if previous_string is not None and previous_string.strip('"') in ID_LIKE_FIELDS:
            segment = _NUMERIC_VALUE_RE.sub(r'\1"\2"', segment)

        segment = _BARE_KEY_RE.sub(r'\1"\2"\3', segment)
        # Bare keys followed by a numeric id value live in the same segment
        for field in ID_LIKE_FIELDS:
            segment = re.sub(rf'("{field}"\s*:\s*)([+-]?\d+(?:\.\d+)?)', r'\1"\2"', segment)
        segment = _TRAILING_COMMA_RE.sub(r'\1', segment)
        segment = _MISSING_OBJECT_COMMA_RE.sub(r'},\1{', segment)
        segment = _MISSING_ARRAY_COMMA_RE.sub(r'],\1[', segment)

        repaired.append(segment)
        previous_string = None

    return ''.join(repaired)


def parse_json_response(response: str) -> Any:
    """Clean, repair and parse an LLM response.

    Args:
        response: Raw LLM response

    Returns:
        Parsed JSON value

    Raises:
        JSONRepairError: If the text is not valid JSON after repair
    """
    cleaned = clean_json_response(response)
    repaired = repair_json(cleaned)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as e:
        raise JSONRepairError(f'Invalid JSON after repair: {e}', raw=response)
