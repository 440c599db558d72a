"""
Classification Service
=======================

Decides whether a message is ticket-worthy and which category it belongs to.
"""

import time
from typing import TYPE_CHECKING, Optional, Sequence

from ticketdedup.config import TicketCategory
from ticketdedup.core import LLMException
from ticketdedup.grouping.application.dto import ClassificationPayload, parse_structured
from ticketdedup.grouping.application.interfaces import ILLMClient
from ticketdedup.grouping.domain import ClassificationPromptBuilder, ClassificationResult
from ticketdedup.shared.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from ticketdedup.grouping.infrastructure.cache import ClassificationCache

logger = get_logger(__name__)


def fallback_classification(text: str) -> ClassificationResult:
    """Result used whenever the model cannot give a valid answer."""
    return ClassificationResult(
        is_relevant=False,
        category=TicketCategory.IRRELEVANT,
        confidence=0.0,
        short_title=(text or "")[:50],
    )


class ClassificationService:
    """
    Classifies messages with the LLM, caching context-free results.

    Never raises: any failure is logged and yields the irrelevant fallback.
    Failures are not cached, so the next identical message tries again.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        cache: Optional["ClassificationCache"] = None,
        temperature: float = 0.3,
        max_tokens: int = 500
    ):
        self._llm = llm_client
        self._cache = cache
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def classify(
        self,
        raw_text: str,
        normalized_text: str,
        thread_context: Optional[Sequence[str]] = None,
        channel_context: Optional[Sequence[str]] = None
    ) -> ClassificationResult:
        """
        Classify a message.

        Args:
            raw_text: Message as written
            normalized_text: Cache key
            thread_context: Earlier replies in the same thread
            channel_context: Recent messages in the channel

        Returns:
            ClassificationResult, or the fallback on any failure
        """
        # Context can change relevance, so contextual results bypass the cache
        has_context = bool(thread_context) or bool(channel_context)
        if not has_context and self._cache is not None:
            cached = self._cache.get(normalized_text)
            if cached is not None:
                logger.debug("Classification cache hit", extra={"cache_key": normalized_text[:50]})
                return cached

        start_time = time.perf_counter()
        messages = [
            {"role": "system", "content": ClassificationPromptBuilder.get_system_prompt()},
            {
                "role": "user",
                "content": ClassificationPromptBuilder.build_prompt(
                    raw_text, thread_context, channel_context
                ),
            },
        ]

        try:
            response = await self._llm.chat_completion(
                messages=messages,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                operation="classification",
                json_schema=ClassificationPromptBuilder.SCHEMA
            )
            result = parse_structured(response.content, ClassificationPayload).to_result()
        except (LLMException, ValueError) as e:
            logger.warning(
                "Classification failed, using fallback",
                extra={"error": str(e), "has_context": has_context}
            )
            return fallback_classification(raw_text)

        if not has_context and self._cache is not None:
            self._cache.set(normalized_text, result)

        logger.info(
            "Message classified",
            extra={
                "category": result.category,
                "is_relevant": result.is_relevant,
                "confidence": result.confidence,
                "latency_ms": int((time.perf_counter() - start_time) * 1000),
            }
        )
        return result
