"""
Context window management for conversation history.

Sizes history against the model's context window using a character-based
token estimate and, when only a handful of recent messages fit into a long
conversation, replaces the older part with a single summary message.
"""
import logging
from typing import Any, Dict, List, Optional

from localchat.schemas.chat import ContextBudget, Message
from localchat.services.summarization import SummarizationService, estimate_tokens

logger = logging.getLogger(__name__)

MESSAGE_OVERHEAD_TOKENS = 10
MIN_RECENT_MESSAGES = 6
LONG_HISTORY_MESSAGES = 10
KEEP_RECENT = 4
MIN_SUMMARY_SPACE = 200
SUMMARY_PREFIX = "Previous conversation summary: "


class ContextManager:
    """
    Fits conversation history into a model's token budget.

    Args:
        model_name: Model the request is for; selects the context window size
        summarizer: Service used to compress older history
        budget: Explicit budget, overriding the one derived from the model name
    """

    def __init__(
        self,
        model_name: Optional[str] = None,
        summarizer: Optional[SummarizationService] = None,
        budget: Optional[ContextBudget] = None,
    ):
        self.budget = budget or ContextBudget.for_model(model_name)
        self.summarizer = summarizer

    @property
    def max_context_tokens(self) -> int:
        return self.budget.max_context_tokens

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text)

    def estimate_message_tokens(self, message: Message) -> int:
        """Content plus role plus a fixed formatting overhead."""
        return (
            estimate_tokens(message.text)
            + estimate_tokens(message.role)
            + MESSAGE_OVERHEAD_TOKENS
        )

    def available_tokens(self, system_prompt: str) -> int:
        """Tokens left for history after the system prompt and both reserves."""
        used = (
            estimate_tokens(system_prompt)
            + self.budget.system_prompt_reserve
            + self.budget.response_reserve
        )
        return max(0, self.budget.max_context_tokens - used)

    def needs_optimization(self, messages: List[Message], system_prompt: str) -> bool:
        current = sum(
            self.estimate_message_tokens(m) for m in messages if m.role != "tool"
        )
        return current > self.available_tokens(system_prompt)

    def _fit_newest_first(self, messages: List[Message], available: int) -> List[Message]:
        """Newest messages that fit, stopping at the first that doesn't; chronological."""
        fitted: List[Message] = []
        total = 0
        for message in reversed(messages):
            cost = self.estimate_message_tokens(message)
            if total + cost > available:
                break
            total += cost
            fitted.append(message)
        fitted.reverse()
        return fitted

    async def optimize(self, messages: List[Message], system_prompt: str) -> List[Dict[str, Any]]:
        """
        Select the history to send with the next request.

        Tool-role messages are never carried over. The result is in
        conversation order and its estimated cost never exceeds
        ``available_tokens(system_prompt)``.

        Returns:
            Chat-format message dicts
        """
        if not messages:
            return []

        available = self.available_tokens(system_prompt)
        history = [m for m in messages if m.role != "tool"]
        recent = self._fit_newest_first(history, available)

        if len(recent) >= MIN_RECENT_MESSAGES or len(messages) <= LONG_HISTORY_MESSAGES:
            logger.info(
                f"Context optimization: {len(messages)} messages -> {len(recent)} entries"
            )
            return [m.to_chat_dict() for m in recent]

        logger.info("Context window full, attempting summarization")
        kept = self._fit_newest_first(history[-KEEP_RECENT:], available)
        kept_tokens = sum(self.estimate_message_tokens(m) for m in kept)
        older = history[:len(history) - len(kept)]

        optimized: List[Dict[str, Any]] = []
        summary_space = max(0, available - kept_tokens)
        if summary_space > MIN_SUMMARY_SPACE and older and self.summarizer is not None:
            summary = await self.summarizer.summarize_messages(older)
            if summary:
                summary_message = Message(role="system", text=f"{SUMMARY_PREFIX}{summary}")
                if self.estimate_message_tokens(summary_message) <= summary_space:
                    optimized.append(summary_message.to_chat_dict())
                else:
                    logger.info("Summary does not fit the remaining space, dropping it")

        optimized.extend(m.to_chat_dict() for m in kept)
        logger.info(
            f"Context optimization: {len(messages)} messages -> {len(optimized)} entries "
            f"({len(older)} summarized)"
        )
        return optimized
