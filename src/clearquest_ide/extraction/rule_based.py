"""
Deterministic fact extraction.

Pulls common background-investigation anchors (dates, agencies, positions,
locations, outcomes, amounts, frequencies) out of an answer with regular
expressions. Used as the default extractor and as the fallback when the LLM
extractor is unavailable.
"""

from __future__ import annotations

import logging
import re

from clearquest_ide.extraction.base import (
    ExtractionContext,
    ExtractionResult,
    FactExtractor,
)

logger = logging.getLogger(__name__)

_MONTHS = (
    r"(?:January|February|March|April|May|June|July|August|September|October|November|December"
    r"|Jan|Feb|Mar|Apr|Jun|Jul|Aug|Sept|Sep|Oct|Nov|Dec)"
)

DATE_PATTERNS = [
    re.compile(rf"\b({_MONTHS})\.?\s+(?:of\s+)?((?:19|20)\d{{2}})\b", re.IGNORECASE),
    re.compile(r"\b(\d{1,2})/((?:19|20)\d{2})\b"),
    re.compile(r"\b((?:19|20)\d{2})\b"),
]

AGENCY_NAME_PATTERN = re.compile(
    r"\b((?:[A-Z][\w.'-]*\s+){1,4}"
    r"(?:Police Department|Police Dept\.?|Sheriff'?s? (?:Office|Department)|Highway Patrol"
    r"|State Police|Marshal'?s? Office|Department of Public Safety|Department of Corrections|PD))"
)

AGENCY_TYPE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("sheriff's office", ("sheriff",)),
    (
        "federal agency",
        ("federal", "fbi", "dea", "atf", "border patrol", "customs", "secret service", "u.s. marshal"),
    ),
    (
        "state agency",
        ("state agency", "state police", "highway patrol", "department of public safety", "corrections"),
    ),
    ("city police", ("city police", "police department", "police dept", "pd")),
]

POSITION_PATTERNS = [
    re.compile(r"\bfor (?:a|an|the)\s+([A-Za-z][\w /-]*?)\s+(?:position|role|job|opening)\b", re.IGNORECASE),
    re.compile(r"\bapplied (?:as|to be) (?:a|an)\s+([A-Za-z][\w /-]*?)(?=[.,;]| at | with | in |$)", re.IGNORECASE),
]

LOCATION_PATTERN = re.compile(
    r"\bin\s+([A-Z][a-zA-Z.'-]+(?:\s+[A-Z][a-zA-Z.'-]+)*,\s*(?:[A-Z]{2}\b|[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?))"
)

OUTCOME_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("not selected", ("not selected", "wasn't selected", "was not selected", "didn't get", "did not get", "rejected")),
    ("disqualified", ("disqualified", "dq'd", "dq'ed")),
    ("withdrew", ("withdrew", "withdrawn", "pulled my application", "backed out")),
    ("hired", ("was hired", "got hired", "got the job", "was offered", "accepted the offer")),
    ("still pending", ("pending", "still in process", "haven't heard")),
    ("charges dismissed", ("dismissed", "charges dropped", "charges were dropped")),
    ("convicted", ("convicted", "found guilty", "pleaded guilty", "pled guilty")),
    ("acquitted", ("acquitted", "found not guilty")),
    ("terminated", ("terminated", "was fired", "got fired", "let go")),
    ("resigned", ("resigned", "quit")),
    ("paid fine", ("paid a fine", "paid the fine", "fined")),
    ("warning", ("warning",)),
    ("citation", ("citation", "ticket", "cited")),
    ("probation", ("probation",)),
]

AMOUNT_PATTERN = re.compile(r"\$\s?\d[\d,]*(?:\.\d{2})?|\b\d[\d,]*\s?dollars\b", re.IGNORECASE)

FREQUENCY_PATTERN = re.compile(
    r"\b(once|twice|one time|two times|\d+\s+times?|(?:a\s+)?few times|several times"
    r"|daily|weekly|monthly|every (?:day|week|month|weekend))\b",
    re.IGNORECASE,
)

# Key-name fragments mapped to the extractor family that fills them, checked in order.
KEY_FAMILIES: list[tuple[str, tuple[str, ...]]] = [
    ("agency_type", ("agency_type",)),
    ("agency_name", ("agency", "department")),
    ("outcome", ("outcome", "result", "disposition")),
    ("position", ("position", "role", "job_title")),
    ("date", ("month", "year", "date", "when")),
    ("location", ("location", "city", "state", "where")),
    ("amount", ("amount", "value", "cost")),
    ("frequency", ("frequency", "count", "times")),
]


def family_for_key(fact_key: str) -> str | None:
    """Get the extractor family responsible for a fact key, if any."""
    key = fact_key.lower()
    for family, fragments in KEY_FAMILIES:
        if any(fragment in key for fragment in fragments):
            return family
    return None


def extract_date(text: str) -> str | None:
    """Extract a month/year or year mention."""
    match = DATE_PATTERNS[0].search(text)
    if match:
        return f"{match.group(1).capitalize()} {match.group(2)}"
    match = DATE_PATTERNS[1].search(text)
    if match:
        return f"{int(match.group(1)):02d}/{match.group(2)}"
    match = DATE_PATTERNS[2].search(text)
    return match.group(1) if match else None


def extract_agency_name(text: str) -> str | None:
    """Extract a named law-enforcement agency."""
    match = AGENCY_NAME_PATTERN.search(text)
    if not match:
        return None
    name = match.group(1).strip()
    # Drop a leading connective captured as a capitalised word at sentence start.
    return re.sub(r"^(?:The|To|At|With|For)\s+", "", name)


def _contains_phrase(text: str, phrases: tuple[str, ...]) -> bool:
    return any(re.search(rf"\b{re.escape(phrase)}\b", text) for phrase in phrases)


def extract_agency_type(text: str) -> str | None:
    """Classify the agency type from keywords."""
    lowered = text.lower()
    for agency_type, keywords in AGENCY_TYPE_KEYWORDS:
        if _contains_phrase(lowered, keywords):
            return agency_type
    return None


def extract_position(text: str) -> str | None:
    """Extract the position applied for or held."""
    for pattern in POSITION_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1).strip()
    return None


def extract_location(text: str) -> str | None:
    """Extract a "City, ST" style location."""
    match = LOCATION_PATTERN.search(text)
    return match.group(1).strip() if match else None


def extract_outcome(text: str) -> str | None:
    """Extract a normalized outcome."""
    lowered = text.lower()
    for outcome, keywords in OUTCOME_KEYWORDS:
        if _contains_phrase(lowered, keywords):
            return outcome
    return None


def extract_amount(text: str) -> str | None:
    """Extract a monetary amount."""
    match = AMOUNT_PATTERN.search(text)
    return match.group(0).strip() if match else None


def extract_frequency(text: str) -> str | None:
    """Extract how often something happened."""
    match = FREQUENCY_PATTERN.search(text)
    return match.group(1).lower() if match else None


FAMILY_EXTRACTORS = {
    "agency_type": extract_agency_type,
    "agency_name": extract_agency_name,
    "position": extract_position,
    "date": extract_date,
    "location": extract_location,
    "outcome": extract_outcome,
    "amount": extract_amount,
    "frequency": extract_frequency,
}


class RuleBasedFactExtractor(FactExtractor):
    """
    Regex-based fact extractor.

    When the clarifier asked for exactly one key and nothing matched it, the
    whole answer is attributed to that key. Callers must screen out
    non-substantive answers first.
    """

    def __init__(self, attribute_single_target: bool = True) -> None:
        """
        Initialize the extractor.

        Args:
            attribute_single_target: Attribute an unmatched answer to the
                single requested key.
        """
        self._attribute_single_target = attribute_single_target

    async def extract(
        self,
        answer_text: str,
        fact_keys: list[str],
        context: ExtractionContext | None = None,
    ) -> ExtractionResult:
        text = (answer_text or "").strip()
        facts: dict[str, str] = {}
        if not text:
            return ExtractionResult(facts={}, missing=list(fact_keys))

        cache: dict[str, str | None] = {}
        for key in fact_keys:
            family = family_for_key(key)
            if family is None:
                continue
            if family not in cache:
                cache[family] = FAMILY_EXTRACTORS[family](text)
            if cache[family]:
                facts[key] = cache[family]

        single_target = self._single_target(fact_keys, context)
        if self._attribute_single_target and single_target and single_target not in facts:
            facts[single_target] = text

        missing = [key for key in fact_keys if key not in facts]
        logger.debug(f"Rule-based extraction matched {sorted(facts)}; missing {missing}")
        return ExtractionResult(facts=facts, missing=missing)

    def _single_target(self, fact_keys: list[str], context: ExtractionContext | None) -> str | None:
        targets = [key for key in (context.target_keys if context else []) if key in fact_keys]
        if len(targets) == 1:
            return targets[0]
        if not targets and len(fact_keys) == 1:
            return fact_keys[0]
        return None
