"""Structured-output extraction for unreliable LLM responses.

Text that is supposed to be JSON goes through a fixed sequence of tiers,
each more aggressive (and more lossy) than the previous one:

1. direct parse
2. normalisation: code fences, outer braces, smart quotes, trailing commas
3. structural repair: close an open string and any unbalanced brackets,
   falling back to cutting the last incomplete value
4. salvage: recover the well-formed objects of a known array field
5. delegation: ask a secondary text port to rewrite the text as strict JSON

Every tier is a plain function returning the parsed value or ``MISSING``.
The first tier that yields a value fitting the expected shape wins. When
none does, :class:`ExtractionError` is raised; partial data is never
returned as if it were complete.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Iterator, List, Optional, Tuple

from articlebot.core.errors import ExtractionError
from articlebot.core.utils import head_tail

logger = logging.getLogger(__name__)

SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "„": '"',
    "‘": "'",
    "’": "'",
}

# Cutting back to the last complete value is only attempted when it keeps
# at least this share of the text.
MIN_KEPT_RATIO = 0.5

CLOSER_AHEAD = re.compile(r"\s*[}\]]")


class ExtractionTier(IntEnum):
    DIRECT = 1
    NORMALIZED = 2
    REPAIRED = 3
    SALVAGED = 4
    DELEGATED = 5


@dataclass(frozen=True)
class ShapeHint:
    """What the caller expects the JSON to look like."""

    name: str
    root_key: Optional[str] = None
    array_field: Optional[str] = None
    allow_delegate: bool = False
    schema_hint: str = ""

    def fit(self, value: Any) -> Optional[Any]:
        """Return ``value`` in the expected form, or ``None`` if it does not fit."""
        if isinstance(value, list) and self.array_field:
            return {self.array_field: value}
        if not isinstance(value, dict):
            return None
        if self.root_key and self.root_key not in value:
            return None
        return value


TOPICS_SHAPE = ShapeHint(
    name="topics",
    root_key="topics",
    array_field="topics",
    schema_hint='{"topics": [{"titre": str, "resume": str, "impact": str, '
    '"categorie": str, "publishDate": str, "sources": [{"titre": str, "url": str}]}]}',
)

DOSSIER_SHAPE = ShapeHint(
    name="dossier",
    allow_delegate=True,
    schema_hint='{"dossierEditorial": {"angleEditorial": str, "questionsCentrales": [str], '
    '"sourcesComplementaires": [{"titre": str, "url": str}], "donneesChiffrees": {}, '
    '"citationsExperts": [], "syntheseRecherche": {}}}',
)


@dataclass
class Extraction:
    """A successfully extracted value and how it was obtained."""

    value: Any
    tier: ExtractionTier
    dropped_fragments: int = 0
    notes: List[str] = field(default_factory=list)

    @property
    def repaired(self) -> bool:
        return self.tier != ExtractionTier.DIRECT


class _Missing:
    """Marks a failed parse; ``None`` is a valid JSON value."""

    def __repr__(self):
        return "MISSING"


MISSING = _Missing()


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, TypeError):
        return MISSING


def parse_direct(raw: str) -> Any:
    """Tier 1."""
    return _loads(raw)


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index closing the container opened at ``start``, or None if truncated."""
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return index
    return None


def strip_trailing_commas(text: str) -> str:
    """Drop commas directly followed by a closing bracket, outside strings."""
    out: List[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == ",":
            if CLOSER_AHEAD.match(text, index + 1):
                continue
        out.append(char)
    return "".join(out)


def normalize(raw: str) -> str:
    """Strip fences and surrounding prose, fix quotes and trailing commas."""
    text = raw.strip()
    fenced = re.search(r"```(?:json|JSON)?\s*\n?(.*?)(?:```|\Z)", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()

    for smart, plain in SMART_QUOTES.items():
        text = text.replace(smart, plain)

    # A truncated value has no balanced end and is kept up to the end of text.
    opening = re.search(r"\[\s*\{|\{", text)
    if opening:
        end = _balanced_end(text, opening.start())
        text = text[opening.start() : end + 1] if end is not None else text[opening.start() :]

    return strip_trailing_commas(text)


def parse_normalized(raw: str) -> Any:
    """Tier 2."""
    return _loads(normalize(raw))


@dataclass
class _ScanState:
    stack: List[str]
    in_string: bool
    escaped: bool
    last_comma: Optional[Tuple[int, List[str]]]


def _scan(text: str) -> _ScanState:
    """Walk the text tracking string/escape state and open containers."""
    stack: List[str] = []
    in_string = False
    escaped = False
    last_comma = None

    for index, char in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "{[":
            stack.append(char)
        elif char in "}]":
            if stack:
                stack.pop()
        elif char == ",":
            last_comma = (index, list(stack))

    return _ScanState(stack, in_string, escaped, last_comma)


def _closers(stack: List[str]) -> str:
    return "".join("}" if opener == "{" else "]" for opener in reversed(stack))


def close_structure(text: str) -> str:
    """Terminate an open string and append the missing closing brackets."""
    state = _scan(text)
    repaired = text
    if state.in_string:
        if state.escaped:
            repaired = repaired[:-1]
        repaired += '"'
    repaired = re.sub(r"[,:\s]+\Z", "", repaired)
    return repaired + _closers(state.stack)


def cut_to_last_complete_value(text: str) -> Optional[str]:
    """Drop the trailing incomplete value and close what remains open.

    Only commas outside strings are considered, so everything before the
    cut is made of complete values; the cut can only lose the last element
    of the innermost open container.
    """
    state = _scan(text)
    if not state.last_comma:
        return None
    index, stack = state.last_comma
    if index < len(text) * MIN_KEPT_RATIO:
        return None
    return text[:index] + _closers(stack)


def parse_repaired(raw: str) -> Any:
    """Tier 3."""
    text = normalize(raw)
    value = _loads(close_structure(text))
    if value is not MISSING:
        return value
    cut = cut_to_last_complete_value(text)
    return _loads(cut) if cut else MISSING


def _iter_object_fragments(text: str, start: int) -> Iterator[str]:
    """Yield top-level ``{...}`` fragments of the array opening at ``start``."""
    depth = 0
    in_string = False
    escaped = False
    fragment_start = None

    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            if depth == 0:
                fragment_start = index
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0 and fragment_start is not None:
                yield text[fragment_start : index + 1]
                fragment_start = None
            elif depth < 0:
                return
        elif char == "]" and depth == 0:
            return


def salvage_array(raw: str, array_field: str) -> Tuple[Optional[List[Any]], int]:
    """Tier 4: parse each well-formed object of ``array_field`` on its own.

    Returns:
        (recovered objects or None, number of fragments discarded)
    """
    text = normalize(raw)
    match = re.search(rf'"{re.escape(array_field)}"\s*:\s*\[', text)
    if not match:
        return None, 0

    recovered, dropped = [], 0
    for fragment in _iter_object_fragments(text, match.end()):
        value = _loads(fragment)
        if isinstance(value, dict):
            recovered.append(value)
        else:
            dropped += 1
    return (recovered or None), dropped


def extract(raw: str, shape: Optional[ShapeHint] = None) -> Extraction:
    """Turn LLM output into a JSON value using tiers 1 to 4.

    Args:
        raw: Text returned by a generation port
        shape: Expected shape; ``None`` accepts any JSON value

    Returns:
        Extraction holding the value and the tier that produced it

    Raises:
        ExtractionError: No tier produced a value fitting ``shape``
    """
    raw = raw or ""
    tiers: List[Tuple[ExtractionTier, Callable[[str], Any]]] = [
        (ExtractionTier.DIRECT, parse_direct),
        (ExtractionTier.NORMALIZED, parse_normalized),
        (ExtractionTier.REPAIRED, parse_repaired),
    ]

    mismatch = False
    for tier, parser in tiers:
        value = parser(raw)
        if value is MISSING:
            continue
        if shape is None:
            return Extraction(value, tier)
        fitted = shape.fit(value)
        if fitted is not None:
            if tier != ExtractionTier.DIRECT:
                logger.info(f"🔧 JSON recovered at tier {tier.name.lower()}")
            return Extraction(fitted, tier)
        mismatch = True

    if shape and shape.array_field:
        items, dropped = salvage_array(raw, shape.array_field)
        if items:
            logger.warning(
                f"⚠️ Salvaged {len(items)} '{shape.array_field}' entries, dropped {dropped}"
            )
            return Extraction(
                {shape.array_field: items},
                ExtractionTier.SALVAGED,
                dropped_fragments=dropped,
                notes=["partial array recovered from malformed response"],
            )

    reason = f"missing expected '{shape.root_key}' field" if mismatch and shape else "unparseable"
    logger.debug(f"Extraction failed ({reason}): {head_tail(raw)}")
    raise ExtractionError(reason, head_tail(raw))


async def extract_with_delegate(raw: str, shape: ShapeHint, delegate=None) -> Extraction:
    """Run :func:`extract`, then ask ``delegate`` to rewrite the text as JSON.

    Args:
        raw: Text returned by a generation port
        shape: Expected shape; delegation only happens if ``shape.allow_delegate``
        delegate: Secondary TextPort, or None

    Raises:
        ExtractionError: Every tier failed, delegation included
    """
    try:
        return extract(raw, shape)
    except ExtractionError as error:
        if not (shape.allow_delegate and delegate is not None and delegate.is_configured()):
            raise
        first_error = error

    from articlebot.core.prompts import json_conversion_prompt
    from articlebot.clients.errors import PortError

    logger.info(f"🔁 Asking {delegate.provider_name} to convert the response into strict JSON")
    try:
        response = await delegate.generate(
            json_conversion_prompt(raw, shape.schema_hint),
            temperature=0.0,
            response_format="json",
        )
    except PortError as e:
        logger.warning(f"JSON conversion call failed: {e}")
        raise first_error from e

    for tier_parser in (parse_direct, parse_normalized):
        value = tier_parser(response.text)
        fitted = shape.fit(value) if value is not MISSING else None
        if fitted is not None:
            return Extraction(fitted, ExtractionTier.DELEGATED)

    raise ExtractionError("unparseable after delegation", head_tail(raw))
