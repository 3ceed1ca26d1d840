"""
Dialogue state machine for lemon law assessments.
"""

import json
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any

from lemon_law.brands import normalize_manufacturer
from lemon_law.callbacks import InvalidInputError, validate_user_input
from lemon_law.circuit_breaker import CircuitBreakerOpenError
from lemon_law.config import settings
from lemon_law.conversation_state import (
    FIELD_LABELS,
    ControlState,
    FactRecord,
    get_group,
    missing_fields,
    resolve_next_state,
)
from lemon_law.extractor import ExtractionError, FactExtractor
from lemon_law.llm_client import LanguageModelClient, LanguageModelError
from lemon_law.memory import ConversationMemory, recent_messages
from lemon_law.observability import trace_span
from lemon_law.prompts import (
    CLARIFY_INSTRUCTION,
    CLOSING_INSTRUCTION,
    NOT_COVERED_INSTRUCTION,
    VERDICT_INSTRUCTION,
    collect_info_system_prompt,
)
from lemon_law.session_store import Session, SessionStore
from lemon_law.tools import Verdict, evaluate_fact_record

logger = logging.getLogger(__name__)

# Error codes carried on "error" events
INVALID_INPUT = "invalid_input"
MODEL_UNAVAILABLE = "model_unavailable"
INTERNAL_ERROR = "internal_error"


def token_event(text: str) -> dict[str, Any]:
    return {"type": "token", "data": text}


def error_event(message: str, code: str) -> dict[str, Any]:
    return {"type": "error", "data": message, "code": code}


def end_event(session: Session) -> dict[str, Any]:
    return {
        "type": "end",
        "data": {
            "sessionId": session.session_id,
            "state": session.state.value,
            "facts": session.facts.to_wire(),
            "verdict": session.verdict.model_dump() if session.verdict else None,
        },
    }


@dataclass
class TurnResult:
    """Outcome of one non-streaming turn."""

    session_id: str
    response: str = ""
    state: ControlState | None = None
    facts: dict[str, Any] = field(default_factory=dict)
    verdict: Verdict | None = None
    error: str | None = None
    error_code: str | None = None


class LemonLawAssistant:
    """
    Deterministic wrapper around a probabilistic language model.

    Responsibilities:
    - extract vehicle facts from free-form chat and accumulate them per session
    - decide COLLECT / ASSESS / END from the facts, not from the model's say-so
    - obtain every verdict from the rule engine and ground the reply in it
    - serialize turns per session and commit each turn all-or-nothing

    The LLM generates language and extracts facts only.
    """

    def __init__(
        self,
        llm: LanguageModelClient | None = None,
        store: SessionStore | None = None,
        rule_groups=None,
    ):
        logger.info("Initializing LemonLawAssistant")

        self.llm = llm or LanguageModelClient()
        self.store = store or SessionStore(
            max_sessions=settings.max_sessions, ttl_seconds=settings.session_ttl_seconds
        )
        self.rule_groups = rule_groups
        self.window_turns = settings.extraction_window_turns
        self.memory = ConversationMemory(self.llm, max_messages=settings.memory_max_messages)
        self.extractor = FactExtractor(
            self.llm, window_turns=self.window_turns, rule_groups=rule_groups
        )

        logger.info("LemonLawAssistant initialized successfully")

    # Prompt assembly

    def _base_messages(self, history: list[dict[str, str]]) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": collect_info_system_prompt(self.rule_groups)},
            *recent_messages(history, self.window_turns),
        ]

    def _clarify_messages(self, history, facts: FactRecord) -> list[dict[str, str]]:
        missing = missing_fields(facts, get_group(facts, self.rule_groups))
        instruction = CLARIFY_INSTRUCTION.format(
            facts=json.dumps(facts.to_wire()),
            missing=", ".join(FIELD_LABELS[name] for name in missing) or "nothing",
        )
        return self._base_messages(history) + [{"role": "system", "content": instruction}]

    def _verdict_messages(self, history, verdict: Verdict) -> list[dict[str, str]]:
        instruction = VERDICT_INSTRUCTION.format(verdict=verdict.model_dump_json())
        return self._base_messages(history) + [{"role": "system", "content": instruction}]

    def _not_covered_messages(self, history, facts: FactRecord) -> list[dict[str, str]]:
        manufacturer = (
            normalize_manufacturer(facts.manufacturer) if facts.manufacturer else "not provided"
        )
        instruction = NOT_COVERED_INSTRUCTION.format(manufacturer=manufacturer)
        return self._base_messages(history) + [{"role": "system", "content": instruction}]

    def _closing_messages(self, history, session: Session) -> list[dict[str, str]]:
        if session.verdict is not None:
            outcome = session.verdict.model_dump_json()
        else:
            outcome = f"manufacturer {session.facts.manufacturer or 'not provided'} is not covered"
        instruction = CLOSING_INSTRUCTION.format(outcome=outcome)
        return self._base_messages(history) + [{"role": "system", "content": instruction}]

    # Turn processing

    async def _generate(self, messages, parts: list[str]) -> AsyncIterator[dict[str, Any]]:
        async with aclosing(self.llm.stream(messages)) as chunks:
            async for text in chunks:
                parts.append(text)
                yield token_event(text)

    async def _run_turn(self, session_id: str, message: str, span: dict) -> AsyncIterator[dict]:
        session = self.store.get_or_create(session_id)
        user_message = {"role": "user", "content": message}
        parts: list[str] = []

        if session.state == ControlState.END:
            history = [*session.messages, user_message]
            prompt = self._closing_messages(history, session)
            async with aclosing(self._generate(prompt, parts)) as events:
                async for event in events:
                    yield event

            session = self.store.commit(
                session,
                messages=(*history, {"role": "assistant", "content": "".join(parts)}),
            )
            span["state"] = session.state.value
            yield end_event(session)
            return

        # 1. history: compact what is already there, then add the new utterance
        history, compacted = await self.memory.compact_if_needed(list(session.messages))
        history.append(user_message)
        span["compacted"] = compacted

        # 2. extract
        extraction = await self.extractor.extract(history)

        # 3. merge (union, never erase)
        facts = session.facts.merge(extraction.collected_info)

        # 4-6. transition
        next_state = resolve_next_state(extraction.next_step, facts, self.rule_groups)
        verdict = session.verdict

        if next_state == ControlState.ASSESS:
            verdict = evaluate_fact_record(facts, self.rule_groups)
            prompt = self._verdict_messages(history, verdict)
            final_state = ControlState.END
        elif next_state == ControlState.END:
            prompt = self._not_covered_messages(history, facts)
            final_state = ControlState.END
        else:
            prompt = self._clarify_messages(history, facts)
            final_state = ControlState.COLLECT

        async with aclosing(self._generate(prompt, parts)) as events:
            async for event in events:
                yield event

        # commit: nothing above has touched the stored session
        session = self.store.commit(
            session,
            messages=(*history, {"role": "assistant", "content": "".join(parts)}),
            facts=facts,
            state=final_state,
            verdict=verdict,
        )
        span["next_step"] = next_state.value
        span["state"] = session.state.value
        logger.info(
            f"Turn complete for session {session_id}: {next_state.value} -> {final_state.value}"
        )
        yield end_event(session)

    async def stream_turn(self, session_id: str, message: str) -> AsyncIterator[dict[str, Any]]:
        """
        Process one inbound message and stream events.

        Yields "token" events while the reply is generated, then one "end"
        event. Any failure yields a single "error" event instead of "end" and
        leaves the session exactly as it was before the turn. Closing the
        iterator early abandons the turn without committing anything.
        """
        try:
            validate_user_input(session_id, message, settings.max_input_chars)
        except InvalidInputError as e:
            logger.warning(f"Rejected inbound message for session {session_id!r}: {e}")
            yield error_event(str(e), INVALID_INPUT)
            return

        self.store.prune()
        logger.info(f"Processing message for session {session_id}")

        async with self.store.locked(session_id):
            with trace_span("dialogue_turn", session=session_id) as span:
                try:
                    async with aclosing(self._run_turn(session_id, message, span)) as events:
                        async for event in events:
                            yield event
                except (ExtractionError, LanguageModelError, CircuitBreakerOpenError) as e:
                    logger.error(f"Turn failed for session {session_id}: {e}")
                    yield error_event(
                        "The assistant is temporarily unavailable. Please try again.",
                        MODEL_UNAVAILABLE,
                    )
                except InvalidInputError as e:
                    yield error_event(str(e), INVALID_INPUT)
                except Exception as e:
                    logger.error(f"Error in stream_turn: {str(e)}", exc_info=True)
                    yield error_event(
                        "I apologize, but I encountered an error processing your message. "
                        "Please try again.",
                        INTERNAL_ERROR,
                    )

    async def chat(self, session_id: str, message: str) -> TurnResult:
        """Run a turn to completion and return the concatenated reply."""
        result = TurnResult(session_id=session_id)
        parts = []

        async for event in self.stream_turn(session_id, message):
            if event["type"] == "token":
                parts.append(event["data"])
            elif event["type"] == "error":
                result.error = event["data"]
                result.error_code = event["code"]
            elif event["type"] == "end":
                data = event["data"]
                result.state = ControlState(data["state"])
                result.facts = data["facts"]
                result.verdict = Verdict(**data["verdict"]) if data["verdict"] else None

        # A failed turn commits nothing, so partial text is not a reply
        result.response = "" if result.error else "".join(parts)
        return result

    async def reset_conversation(self, session_id: str) -> bool:
        """
        Forget a session so the next message starts a new assessment.

        Waits for a turn in flight on the session to commit first.
        """
        async with self.store.locked(session_id):
            return self.store.reset(session_id)

    def get_session(self, session_id: str) -> Session | None:
        return self.store.get(session_id)


# Global assistant instance
lemon_law_assistant = None


def get_assistant() -> LemonLawAssistant:
    """Get or create global assistant instance."""
    global lemon_law_assistant
    if lemon_law_assistant is None:
        lemon_law_assistant = LemonLawAssistant()
    return lemon_law_assistant
