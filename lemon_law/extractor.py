"""Fact extraction from conversations using the language model."""

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from lemon_law.circuit_breaker import CircuitBreakerOpenError
from lemon_law.conversation_state import ControlState, FactRecord
from lemon_law.llm_client import LanguageModelClient, LanguageModelError
from lemon_law.memory import recent_messages
from lemon_law.observability import trace_span
from lemon_law.prompts import ANALYSIS_HUMAN_TEMPLATE, analysis_system_prompt

logger = logging.getLogger(__name__)


class ExtractionError(RuntimeError):
    """Raised when extraction fails or the reply does not match the schema."""


class ExtractionResult(BaseModel):
    """Structured-output contract for the extraction call."""

    model_config = ConfigDict(populate_by_name=True)

    next_step: ControlState = Field(alias="nextStep")
    collected_info: FactRecord = Field(default_factory=FactRecord, alias="collectedInfo")

    @field_validator("next_step", mode="before")
    @classmethod
    def _upper_step(cls, value):
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("collected_info", mode="before")
    @classmethod
    def _empty_info(cls, value):
        return {} if value is None else value


def strip_code_fences(content: str) -> str:
    """Remove a Markdown code fence the model may wrap JSON in."""
    text = content.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines)
    return text.strip()


def parse_extraction(content: str) -> ExtractionResult:
    """
    Validate a raw model reply against the extraction schema.

    Raises:
        ExtractionError: If the reply is not JSON or does not match the schema
    """
    try:
        return ExtractionResult.model_validate_json(strip_code_fences(content))
    except ValidationError as e:
        logger.warning(f"Extraction reply rejected: {e.error_count()} errors (raw: {content[:200]})")
        raise ExtractionError(f"Extraction reply does not match schema: {e}") from e


class FactExtractor:
    """Extracts vehicle facts and a control signal from a conversation."""

    def __init__(self, llm: LanguageModelClient, window_turns: int = 10, rule_groups=None) -> None:
        """
        Initialize the extractor.

        Args:
            llm: The language model delegate.
            window_turns: How many recent turns (user + assistant) to analyze.
            rule_groups: Rule table override; the active table when None.
        """
        self.llm = llm
        self.window_turns = window_turns
        self.rule_groups = rule_groups

    def build_messages(self, messages: list[dict[str, Any]]) -> list[dict[str, str]]:
        window = recent_messages(messages, self.window_turns)
        transcript = json.dumps(
            [{"role": m["role"], "content": m["content"]} for m in window], indent=2
        )
        return [
            {"role": "system", "content": analysis_system_prompt(self.rule_groups)},
            {"role": "user", "content": ANALYSIS_HUMAN_TEMPLATE + transcript},
        ]

    async def extract(self, messages: list[dict[str, Any]]) -> ExtractionResult:
        """
        Extract facts from a conversation.

        Args:
            messages: The session history (role-tagged dicts).

        Returns:
            The control signal and the facts stated so far.

        Raises:
            ExtractionError: If the model call fails or its reply is malformed.
        """
        with trace_span("fact_extraction", messages=len(messages)) as span:
            try:
                content = await self.llm.complete(
                    self.build_messages(messages),
                    temperature=0.0,
                    response_schema=ExtractionResult,
                    screen_user_messages=False,
                )
            except (LanguageModelError, CircuitBreakerOpenError) as e:
                raise ExtractionError(f"Extraction call failed: {e}") from e

            result = parse_extraction(content)
            span["next_step"] = result.next_step.value
            logger.info(
                f"Extracted next_step={result.next_step.value} "
                f"facts={result.collected_info.to_wire()}"
            )
            return result
