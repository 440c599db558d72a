"""
Grouping External Service Adapters
===================================

Adapts the infrastructure LLM client to the grouping ILLMClient port.

Every call goes through the process-wide ConcurrencyLimiter and is bounded
by a timeout; any failure surfaces as LLMException.
"""

import asyncio
from typing import List, Optional

from ticketdedup.config import settings
from ticketdedup.core import LLMException
from ticketdedup.grouping.application.interfaces import ILLMClient
from ticketdedup.infrastructure.llm import (
    ChatCompletionResult,
    ConcurrencyLimiter,
    ILLMClient as IProviderClient,
    get_llm_limiter,
)


class LLMClientAdapter(ILLMClient):
    """
    Adapter that wraps the infrastructure LLM client.

    Args:
        client: Provider client (OpenAI, Z.AI or mock)
        limiter: Concurrency limiter; the process-wide one by default
        timeout_seconds: Upper bound for one call, including time queued
            behind the limiter
    """

    def __init__(
        self,
        client: IProviderClient,
        limiter: Optional[ConcurrencyLimiter] = None,
        timeout_seconds: Optional[float] = None
    ):
        self._client = client
        self._limiter = limiter or get_llm_limiter()
        self._timeout = timeout_seconds or settings.llm_timeout_seconds

    async def _call(self, coro_factory, operation: str):
        async def limited():
            async with self._limiter:
                return await coro_factory()

        try:
            return await asyncio.wait_for(limited(), timeout=self._timeout)
        except LLMException:
            raise
        except asyncio.TimeoutError:
            raise LLMException(f"{operation} timed out after {self._timeout}s")
        except Exception as e:
            raise LLMException(f"{operation} failed: {str(e)}")

    async def generate_embedding(self, text: str) -> List[float]:
        result = await self._call(lambda: self._client.generate_embedding(text), "embedding")
        return result.embedding

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_schema: Optional[dict] = None
    ) -> ChatCompletionResult:
        return await self._call(
            lambda: self._client.chat_completion(
                messages,
                temperature=temperature,
                max_tokens=max_tokens,
                operation=operation,
                json_schema=json_schema
            ),
            operation
        )
