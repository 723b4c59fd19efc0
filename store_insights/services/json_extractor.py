"""
Best-effort JSON extraction from free-form model output.

Model responses are never schema-guaranteed: they arrive wrapped in markdown
fences, surrounded by prose, with trailing commas, or cut off mid-generation
when the output ceiling is hit. ``JsonExtractor.extract`` runs a fixed ladder
of recovery strategies and returns either a fully parsed structure or None.

Strategies (first success wins):
    1. Fenced code block
    2. Direct parse of the trimmed text
    3. Balanced-brace substring from the first ``{``
    4. Light normalization (trailing commas, line endings)
    5. Truncation repair (close strings and open containers)

Example:
    >>> JsonExtractor.extract('Sure! ```json\\n{"a": 1}\\n```', "analyst")
    {'a': 1}
    >>> JsonExtractor.extract("not json at all") is None
    True
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from store_insights.utils.logger import get_logger

logger = get_logger(__name__)

ExtractionResult = Optional[Union[dict[str, Any], list[Any]]]

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_TRAILING_COMMA = re.compile(r",\s*([\]}])")
_DANGLING_COMMA = re.compile(r",\s*$")
_DANGLING_COLON = re.compile(r":\s*$")

_CLOSERS = {"{": "}", "[": "]"}

# Upper bound on how many element boundaries truncation repair will back off through.
MAX_REPAIR_BACKOFF = 25


# =============================================================================
# Scanner
# =============================================================================

class ScanState(str, Enum):
    """Lexical state of the JSON scanner."""
    NORMAL = "normal"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


def next_state(state: ScanState, char: str) -> ScanState:
    """Transition function of the scanner state machine."""
    if state is ScanState.ESCAPED:
        return ScanState.IN_STRING
    if state is ScanState.IN_STRING:
        if char == "\\":
            return ScanState.ESCAPED
        if char == '"':
            return ScanState.NORMAL
        return ScanState.IN_STRING
    if char == '"':
        return ScanState.IN_STRING
    return ScanState.NORMAL


@dataclass
class ScanResult:
    """Outcome of scanning text from an opening brace."""
    end_state: ScanState = ScanState.NORMAL
    match_end: Optional[int] = None
    open_closers: list[str] = field(default_factory=list)
    boundaries: list[tuple[int, tuple[str, ...]]] = field(default_factory=list)


def scan(text: str) -> ScanResult:
    """
    Scan ``text`` tracking string boundaries and container nesting.

    Records the index of the brace that closes the first object, the stack of
    closers still open at end of input, and every structural comma with the
    closers open at that point.
    """
    result = ScanResult()
    stack: list[str] = []
    state = ScanState.NORMAL

    for index, char in enumerate(text):
        structural = state is ScanState.NORMAL and char != '"'
        state = next_state(state, char)
        if not structural:
            continue

        if char in _CLOSERS:
            stack.append(_CLOSERS[char])
        elif char in ("}", "]"):
            if stack and stack[-1] == char:
                stack.pop()
                if not stack and result.match_end is None and char == "}":
                    result.match_end = index
        elif char == ",":
            result.boundaries.append((index, tuple(stack)))

    result.end_state = state
    result.open_closers = stack
    return result


# =============================================================================
# Extractor
# =============================================================================

class JsonExtractor:
    """Recover structured data from model responses."""

    @classmethod
    def extract(cls, text: Optional[str], label: str = "unknown") -> ExtractionResult:
        """
        Extract a JSON object or array from ``text``.

        Never raises. Returns None when no strategy yields a valid structure.
        """
        if not text or not text.strip():
            logger.warning("Empty response, nothing to extract", label=label)
            return None

        strategies = (
            ("code_block", cls._from_code_block),
            ("direct", cls._from_direct_parse),
            ("balanced_braces", cls._from_balanced_braces),
            ("normalized", cls._from_normalized),
        )
        for name, strategy in strategies:
            parsed = strategy(text)
            if parsed is not None:
                logger.debug("JSON extracted", label=label, strategy=name)
                return parsed

        parsed = cls._from_truncation_repair(text)
        if parsed is not None:
            logger.warning(
                "JSON extracted after truncation repair, possibly incomplete",
                label=label,
            )
            return parsed

        counts = cls.bracket_counts(text)
        logger.error(
            "All JSON extraction strategies failed",
            label=label,
            truncated=cls.looks_truncated(text),
            snippet=text[:500],
            **counts,
        )
        return None

    # -------------------------------------------------------------------------
    # Strategies
    # -------------------------------------------------------------------------

    @staticmethod
    def _from_code_block(text: str) -> ExtractionResult:
        match = _FENCE_PATTERN.search(text)
        if not match:
            return None
        return _loads(match.group(1).strip())

    @staticmethod
    def _from_direct_parse(text: str) -> ExtractionResult:
        return _loads(text.strip())

    @staticmethod
    def _from_balanced_braces(text: str) -> ExtractionResult:
        start = text.find("{")
        if start == -1:
            return None
        candidate = text[start:]
        end = scan(candidate).match_end
        if end is None:
            return None
        return _loads(candidate[: end + 1])

    @staticmethod
    def _from_normalized(text: str) -> ExtractionResult:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end < start:
            return None
        candidate = text[start : end + 1]
        candidate = candidate.replace("\r\n", "\n").replace("\r", "\n")
        candidate = _TRAILING_COMMA.sub(r"\1", candidate)
        return _loads(candidate)

    @staticmethod
    def _from_truncation_repair(text: str) -> ExtractionResult:
        start = text.find("{")
        if start == -1:
            return None
        body = text[start:].rstrip()
        result = scan(body)

        if not result.open_closers and result.end_state is ScanState.NORMAL:
            return None

        repaired = body
        if result.end_state is ScanState.ESCAPED:
            repaired = repaired[:-1] + '"'
        elif result.end_state is ScanState.IN_STRING:
            repaired += '"'
        repaired = _DANGLING_COMMA.sub("", repaired)
        repaired = _DANGLING_COLON.sub(": null", repaired)
        parsed = _loads(repaired + "".join(reversed(result.open_closers)))
        if parsed is not None:
            return parsed

        # Drop the incomplete trailing element and close what was open there.
        for index, closers in reversed(result.boundaries[-MAX_REPAIR_BACKOFF:]):
            parsed = _loads(body[:index] + "".join(reversed(closers)))
            if parsed is not None:
                return parsed
        return None

    # -------------------------------------------------------------------------
    # Diagnostics
    # -------------------------------------------------------------------------

    @staticmethod
    def bracket_counts(text: str) -> dict[str, int]:
        return {
            "open_braces": text.count("{"),
            "close_braces": text.count("}"),
            "open_brackets": text.count("["),
            "close_brackets": text.count("]"),
        }

    @classmethod
    def looks_truncated(cls, text: str) -> bool:
        """More opening than closing braces or brackets."""
        counts = cls.bracket_counts(text)
        return (
            counts["open_braces"] > counts["close_braces"]
            or counts["open_brackets"] > counts["close_brackets"]
        )


def _loads(candidate: str) -> ExtractionResult:
    """Parse candidate text, accepting only objects and arrays."""
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except ValueError:
        return None
    if isinstance(parsed, (dict, list)):
        return parsed
    return None


__all__ = [
    "ExtractionResult",
    "JsonExtractor",
    "ScanState",
    "ScanResult",
    "next_state",
    "scan",
]
