"""
Context relevance selection.

Long conversations are narrowed to the turns that matter for the new
message before they are sent to the primary model. Short histories are
passed through untouched, and any failure of the agent falls back to the
full history.
"""

from __future__ import annotations

from convoroute.agents.base import AgentClient, AgentUsage, format_transcript
from convoroute.agents.indices import expand_indices
from convoroute.agents.prompts import (
    CONTEXT_SELECTION_INSTRUCTION,
    CONTEXT_SELECTION_PROMPT,
    render,
)
from convoroute.config.logging import get_logger
from convoroute.context.models import ConversationTurn

logger = get_logger(__name__)

# Histories this short are not worth an extra LLM call
MIN_HISTORY_FOR_SELECTION = 5


def complete_pairs(history: list[ConversationTurn], indices: list[int]) -> list[int]:
    """
    Add the other half of every selected user/assistant exchange.

    A selected user turn pulls in the assistant turn right after it, and a
    selected assistant turn pulls in the user turn right before it.

    Returns:
        Sorted, deduplicated indices
    """
    selected = set(indices)
    for index in indices:
        turn = history[index]
        if turn.role == "user" and index + 1 < len(history):
            if history[index + 1].role == "assistant":
                selected.add(index + 1)
        elif turn.role == "assistant" and index > 0:
            if history[index - 1].role == "user":
                selected.add(index - 1)
    return sorted(selected)


class ContextSelector:
    """
    Picks the history turns relevant to a new message.

    Args:
        client: Agent model used for the selection call
        prompt: Prompt template with ``{history}`` and ``{message}`` placeholders
    """

    def __init__(self, client: AgentClient, prompt: str = CONTEXT_SELECTION_PROMPT):
        self._client = client
        self._prompt = prompt

    async def select(
        self,
        history: list[ConversationTurn],
        new_text: str,
        grade: str,
        usage: AgentUsage | None = None,
    ) -> list[ConversationTurn]:
        """
        Return the relevant subset of ``history`` in chronological order.

        Never raises; on any problem the full history is returned.
        """
        if len(history) < MIN_HISTORY_FOR_SELECTION:
            return history

        system_prompt = render(
            self._prompt, history=format_transcript(history), message=new_text
        )

        try:
            payload = await self._client.ask_json(
                system_prompt, CONTEXT_SELECTION_INSTRUCTION, usage
            )
        except Exception as e:
            logger.warning(f"Context selection failed for {grade} turn, using full history: {e}")
            return history

        raw_indices = payload.get("relevant_indices")
        if not isinstance(raw_indices, list):
            logger.warning("Context selection reply has no relevant_indices list, using full history")
            return history

        try:
            indices = expand_indices(raw_indices, max_index=len(history) - 1)
        except Exception as e:
            logger.warning(f"Could not expand context indices {raw_indices!r}, using full history: {e}")
            return history
        if not indices:
            logger.info("Context selection returned no usable indices, using full history")
            return history

        selected = [history[index] for index in complete_pairs(history, indices)]
        logger.info(
            f"Context selection kept {len(selected)}/{len(history)} turns "
            f"(raw: {raw_indices}, grade: {grade})"
        )
        return selected
