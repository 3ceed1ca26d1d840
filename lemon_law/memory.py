"""
Conversation memory: history windowing and compaction.

Long conversations are summarized so every model call stays bounded while the
facts needed for qualification survive.
"""

import logging
from typing import Any

from lemon_law.observability import trace_span
from lemon_law.prompts import SUMMARY_PROMPT

logger = logging.getLogger(__name__)


def recent_messages(messages: list[dict[str, Any]], max_turns: int = 10) -> list[dict[str, Any]]:
    """
    System messages plus the last `max_turns` turns (two messages per turn).

    Relative order of the kept messages is preserved.
    """
    system = [m for m in messages if m.get("role") == "system"]
    dialogue = [m for m in messages if m.get("role") != "system"]
    if max_turns <= 0:
        return system
    return system + dialogue[-max_turns * 2 :]


def format_transcript(messages: list[dict[str, Any]]) -> str:
    """Flatten non-system messages into `role: content` lines."""
    return "\n".join(
        f"{m['role']}: {m['content']}" for m in messages if m.get("role") != "system"
    )


class ConversationMemory:
    """Summarizes and truncates history once it grows past a threshold."""

    def __init__(self, llm, max_messages: int = 10) -> None:
        """
        Args:
            llm: The language model delegate used for summaries.
            max_messages: Non-system messages allowed before compaction.
        """
        self.llm = llm
        self.max_messages = max_messages

    def needs_compaction(self, messages: list[dict[str, Any]]) -> bool:
        dialogue = sum(1 for m in messages if m.get("role") != "system")
        return dialogue > self.max_messages

    async def compact(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Replace the dialogue with a single synthetic assistant summary.

        System messages are kept, in order, ahead of the summary. The input list
        is not modified. Delegate failures propagate.
        """
        transcript = format_transcript(messages)

        with trace_span("memory_compaction", messages=len(messages)):
            summary = await self.llm.complete(
                [
                    {"role": "system", "content": SUMMARY_PROMPT},
                    {"role": "user", "content": transcript},
                ],
                temperature=0.0,
                screen_user_messages=False,
            )

        system = [m for m in messages if m.get("role") == "system"]
        logger.info(f"Compacted {len(messages)} messages into a {len(summary)}-char summary")
        return system + [{"role": "assistant", "content": summary.strip()}]

    async def compact_if_needed(
        self, messages: list[dict[str, Any]]
    ) -> tuple[list[dict[str, Any]], bool]:
        if not self.needs_compaction(messages):
            return messages, False
        return await self.compact(messages), True
