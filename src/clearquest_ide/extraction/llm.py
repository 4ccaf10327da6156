"""
LLM-backed fact extraction.

Asks the model for the anchors an answer clearly states, with no inference
and no narrative expansion.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from clearquest_ide.extraction.base import (
    ExtractionContext,
    ExtractionError,
    ExtractionResult,
    FactExtractor,
)
from clearquest_ide.models.llm_client import LLMClientBase, Message

logger = logging.getLogger(__name__)


class LLMFactExtractor(FactExtractor):
    """Fact extractor that delegates to an LLM and validates its JSON."""

    EXTRACTION_PROMPT = """You are a FACT EXTRACTOR for a law-enforcement background investigation system.

Extract ONLY factual background-investigation details from the candidate's answer.
Do NOT generate stories. Do NOT guess. Do NOT fill in missing details.

Candidate answer:
"{answer}"

Incident category: {category_id}
Follow-up pack: {pack_id}
Expected anchors: {expected_anchors}

Rules:
1. Look only at the candidate's words.
2. Extract a value only if it is clearly stated: agency or organization, month and/or year,
   location, position or role, outcome or disposition, who else was involved,
   frequency or count, amounts, and any anchor listed above.
3. Leave an anchor out if the answer does not provide it.
4. Never infer or assume. Never expand with narrative.
5. Partial dates are valid (e.g., "2021" alone is valid for month_year).
6. For agency_type accept general terms like "sheriff's office", "city police",
   "state agency", "federal agency".

Return JSON with exactly these keys:
- collectedAnchors: object mapping anchor names to extracted values
- stillMissingAnchors: array of anchor names not provided in the answer"""

    RESPONSE_SCHEMA: dict[str, Any] = {
        "type": "object",
        "properties": {
            "collectedAnchors": {"type": "object"},
            "stillMissingAnchors": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["collectedAnchors", "stillMissingAnchors"],
    }

    def __init__(self, llm_client: LLMClientBase) -> None:
        """
        Initialize the extractor.

        Args:
            llm_client: Client used for JSON chat completions.
        """
        self._llm = llm_client

    async def extract(
        self,
        answer_text: str,
        fact_keys: list[str],
        context: ExtractionContext | None = None,
    ) -> ExtractionResult:
        context = context or ExtractionContext()
        prompt = self.EXTRACTION_PROMPT.format(
            answer=answer_text.replace('"', "'"),
            category_id=context.category_id or "unknown",
            pack_id=context.pack_id or "unknown",
            expected_anchors=json.dumps(fact_keys),
        )

        data = await self._llm.chat_with_json(
            [Message(role="user", content=prompt)],
            schema=self.RESPONSE_SCHEMA,
            temperature=0.0,
        )

        collected = data.get("collectedAnchors")
        if not isinstance(collected, dict):
            raise ExtractionError("LLM returned no collectedAnchors object")

        facts: dict[str, Any] = {}
        for key, value in collected.items():
            if key not in fact_keys or value is None:
                continue
            text = str(value).strip() if not isinstance(value, (int, float, bool)) else value
            if text == "":
                continue
            facts[key] = text

        missing = [key for key in fact_keys if key not in facts]
        logger.debug(f"LLM extraction collected {sorted(facts)}; missing {missing}")
        return ExtractionResult(facts=facts, missing=missing)
