"""
Response Decoder for vision model output.

Models wrap JSON in prose, put it in code fences, or emit LaTeX with single
backslashes that are not valid JSON escapes. Decoding therefore runs in two
stages:

1. Locate: the first-to-last bracketed span, else a ```json fenced block
2. Parse: strict json.loads, else one repair pass and a second parse

Every outcome is a DecodeResult. Nothing here raises on bad model output;
"no questions on this page" is a normal result.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import ValidationError

from .models import ExtractedQuestion, PageStructuralFindings


logger = logging.getLogger(__name__)


_ARRAY_SPAN = re.compile(r"\[[\s\S]*\]")
_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")
_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)

# A run of backslashes plus the character it escapes. \uXXXX is kept whole.
_BACKSLASH_RUN = re.compile(r"(\\+)(u[0-9a-fA-F]{4}|.?)", re.DOTALL)

MAX_BACKSLASH_PAIRS = 2

_CONTROL_ESCAPES = {
    "\n": "\\n",
    "\t": "\\t",
    "\r": "\\r",
}


# =============================================================================
# RESULT TYPE
# =============================================================================


class DecodeStatus(str, Enum):
    DECODED = "decoded"
    EMPTY = "empty"


@dataclass(frozen=True)
class DecodeResult:
    """
    Outcome of decoding one model response.

    Attributes:
        status: DECODED when a payload was parsed, EMPTY otherwise
        payload: Parsed JSON (or typed records for decode_questions)
        repaired: True if the payload only parsed after repair
        diagnostics: Human-readable notes on what was dropped or failed
    """

    status: DecodeStatus
    payload: Any = None
    repaired: bool = False
    diagnostics: tuple[str, ...] = ()

    @classmethod
    def decoded(cls, payload: Any, repaired: bool = False, diagnostics: tuple[str, ...] = ()) -> "DecodeResult":
        return cls(DecodeStatus.DECODED, payload, repaired, diagnostics)

    @classmethod
    def empty(cls, diagnostic: Optional[str] = None) -> "DecodeResult":
        return cls(DecodeStatus.EMPTY, None, False, (diagnostic,) if diagnostic else ())

    @property
    def is_empty(self) -> bool:
        return self.status is DecodeStatus.EMPTY

    @property
    def items(self) -> list:
        """The payload as a list ([] when empty or not a list)."""
        return self.payload if isinstance(self.payload, list) else []


# =============================================================================
# STAGE 1: LOCATE
# =============================================================================


def locate_json(text: str, kind: str = "array") -> Optional[str]:
    """
    Find the JSON candidate in free text.

    Args:
        text: Raw model output
        kind: "array" to look for [...], "object" to look for {...}

    Returns:
        The candidate text, or None if neither a bracketed span nor a
        fenced json block exists
    """
    if not text:
        return None

    span = _ARRAY_SPAN if kind == "array" else _OBJECT_SPAN
    match = span.search(text)
    if match:
        return match.group(0)

    fence = _JSON_FENCE.search(text)
    if fence:
        return fence.group(1)

    return None


# =============================================================================
# STAGE 2: REPAIR + PARSE
# =============================================================================


def _fix_backslash_run(match: re.Match) -> str:
    run, following = match.group(1), match.group(2)
    pairs, odd = divmod(len(run), 2)

    keeps_escape = following == '"' or (len(following) == 5 and following[0] == "u")
    if odd and not keeps_escape:
        pairs += 1
        odd = 0

    pairs = min(pairs, MAX_BACKSLASH_PAIRS)
    return "\\" * (pairs * 2 + odd) + following


def _escape_control_characters(text: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            elif char in _CONTROL_ESCAPES:
                out.append(_CONTROL_ESCAPES[char])
                continue
        elif char == '"':
            in_string = True
        out.append(char)

    return "".join(out)


def _strip_trailing_commas(text: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False

    for char in text:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "]}":
            end = len(out)
            while end and out[end - 1].isspace():
                end -= 1
            if end and out[end - 1] == ",":
                del out[end - 1]
        out.append(char)

    return "".join(out)


def repair_json_text(text: str) -> str:
    """
    Fix the malformations models typically produce in JSON strings.

    - unescaped backslashes (LaTeX such as \\int) are escaped
    - over-escaped runs collapse to at most four backslashes
    - literal newlines, tabs and carriage returns inside strings are escaped
    - trailing commas before a closing bracket or brace are dropped

    Escaped quotes and \\uXXXX sequences are left alone. Pure function.
    """
    text = _BACKSLASH_RUN.sub(_fix_backslash_run, text)
    return _strip_trailing_commas(_escape_control_characters(text))


def _try_parse(candidate: str) -> tuple[Any, Optional[str]]:
    try:
        return json.loads(candidate), None
    except json.JSONDecodeError as e:
        return None, str(e)


def parse_json(candidate: str, expected: type = list) -> DecodeResult:
    """Strict parse, then one repair attempt."""
    payload, error = _try_parse(candidate)
    repaired = False

    if error is not None:
        payload, repair_error = _try_parse(repair_json_text(candidate))
        if repair_error is not None:
            return DecodeResult.empty(
                f"JSON parsing failed twice: {error}; after repair: {repair_error}"
            )
        repaired = True

    if not isinstance(payload, expected):
        return DecodeResult.empty(
            f"Expected JSON {expected.__name__}, got {type(payload).__name__}"
        )

    return DecodeResult.decoded(payload, repaired=repaired)


def decode_json_array(text: str) -> DecodeResult:
    candidate = locate_json(text, "array")
    if candidate is None:
        return DecodeResult.empty("No JSON array found in response")
    return parse_json(candidate, list)


def decode_json_object(text: str) -> DecodeResult:
    candidate = locate_json(text, "object")
    if candidate is None:
        return DecodeResult.empty("No JSON object found in response")
    return parse_json(candidate, dict)


# =============================================================================
# TYPED DECODERS
# =============================================================================


def decode_questions(text: str, page_number: int) -> DecodeResult:
    """
    Decode a page's question array into ExtractedQuestion records.

    Every record is stamped with page_number, whatever the model reported.
    Items that are not objects or fail validation are dropped one by one.

    Returns:
        DecodeResult whose payload is a list[ExtractedQuestion]
    """
    raw = decode_json_array(text)
    if raw.is_empty:
        for diagnostic in raw.diagnostics:
            logger.warning(f"Page {page_number}: {diagnostic}")
        return DecodeResult(DecodeStatus.EMPTY, [], False, raw.diagnostics)

    if raw.repaired:
        logger.info(f"Page {page_number}: JSON parsed after repair")

    questions: list[ExtractedQuestion] = []
    diagnostics: list[str] = []
    for index, item in enumerate(raw.payload):
        if not isinstance(item, dict):
            diagnostics.append(f"Item {index} is not an object")
            continue
        try:
            questions.append(ExtractedQuestion.model_validate({**item, "page_number": page_number}))
        except ValidationError as e:
            diagnostics.append(f"Item {index} rejected: {e.error_count()} validation error(s)")

    for diagnostic in diagnostics:
        logger.warning(f"Page {page_number}: {diagnostic}")

    return DecodeResult.decoded(questions, repaired=raw.repaired, diagnostics=tuple(diagnostics))


def decode_structure(text: str, page_number: int) -> PageStructuralFindings:
    """
    Decode the structural pass response for one page.

    Missing or unparseable JSON yields empty findings.
    """
    raw = decode_json_object(text)
    if raw.is_empty:
        for diagnostic in raw.diagnostics:
            logger.debug(f"Page {page_number} structure: {diagnostic}")
        return PageStructuralFindings.empty(page_number)

    try:
        return PageStructuralFindings.model_validate({**raw.payload, "page_number": page_number})
    except ValidationError as e:
        logger.warning(f"Page {page_number} structure rejected: {e.error_count()} validation error(s)")
        return PageStructuralFindings.empty(page_number)
