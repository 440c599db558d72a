"""
LLM Client Infrastructure
==========================

Wrappers for LLM providers (OpenAI, Z.AI) providing a clean interface for
chat completions with structured JSON output and for text embeddings.

Also holds the process-wide ConcurrencyLimiter that caps how many calls to
the provider may be in flight at once.
"""

import asyncio
import hashlib
import json
import math
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from openai import AsyncOpenAI
from zai import ZaiClient

from ticketdedup.config import settings
from ticketdedup.core import ConfigurationException, LLMException
from ticketdedup.shared.infrastructure.grafana import get_grafana_exporter
from ticketdedup.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class EmbeddingResult:
    """Result of an embedding generation."""

    def __init__(self, embedding: List[float], model: str, prompt_tokens: int = 0):
        self.embedding = embedding
        self.model = model
        self.dimension = len(embedding)
        self.prompt_tokens = prompt_tokens


class ChatCompletionResult:
    """Result of a chat completion."""

    def __init__(
        self,
        content: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: int
    ):
        self.content = content
        self.model = model
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.total_tokens = prompt_tokens + completion_tokens
        self.latency_ms = latency_ms


class ConcurrencyLimiter:
    """
    Counting semaphore around the LLM provider boundary.

    Waiters are woken in FIFO order. It caps concurrency only, not request rate.

    Usage:
        async with limiter:
            await client.embeddings.create(...)
    """

    def __init__(self, max_concurrency: int = 3):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight = 0
        self._waiting = 0

    @property
    def in_flight(self) -> int:
        """Number of calls currently holding a slot."""
        return self._in_flight

    @property
    def waiting(self) -> int:
        """Number of callers queued for a slot."""
        return self._waiting

    async def __aenter__(self) -> "ConcurrencyLimiter":
        self._waiting += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._waiting -= 1
        self._in_flight += 1
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self._in_flight -= 1
        self._semaphore.release()

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run an async callable once a slot is free."""
        async with self:
            return await func(*args, **kwargs)


_llm_limiter: Optional[ConcurrencyLimiter] = None


def get_llm_limiter() -> ConcurrencyLimiter:
    """Get or create the process-wide limiter sized by settings.llm_concurrency."""
    global _llm_limiter
    if _llm_limiter is None:
        _llm_limiter = ConcurrencyLimiter(settings.llm_concurrency)
    return _llm_limiter


class ILLMClient(ABC):
    """
    Interface for LLM client operations.

    Only the two capabilities the grouping pipeline needs are defined.
    """

    @abstractmethod
    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text."""

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_schema: Optional[dict] = None
    ) -> ChatCompletionResult:
        """Generate chat completion, optionally constrained to a JSON schema."""


async def _export_metrics(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    latency_ms: int,
    operation: str
) -> None:
    exporter = get_grafana_exporter()
    if exporter and exporter.is_enabled():
        await exporter.export_llm_metrics(
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
            operation=operation
        )


class OpenAILLMClient(ILLMClient):
    """
    OpenAI client implementation.

    Structured calls use response_format=json_schema with strict mode. SDK
    retries are disabled: a failed call falls back instead of retrying.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise ConfigurationException("OpenAI API key not configured")

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            timeout=settings.llm_timeout_seconds,
            max_retries=0
        )
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for text using the OpenAI embedding model.

        Raises:
            LLMException: If embedding generation fails
        """
        start_time = time.perf_counter()
        try:
            response = await self._client.embeddings.create(
                model=self._embedding_model,
                input=text
            )
        except Exception as e:
            raise LLMException(f"Embedding generation failed: {str(e)}")

        prompt_tokens = response.usage.prompt_tokens if response.usage else 0
        await _export_metrics(
            self._embedding_model, prompt_tokens, 0,
            int((time.perf_counter() - start_time) * 1000), "embedding"
        )
        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._embedding_model,
            prompt_tokens=prompt_tokens
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_schema: Optional[dict] = None
    ) -> ChatCompletionResult:
        """
        Generate chat completion.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens to generate
            operation: Operation type for metrics
            json_schema: {"name", "schema"} dict for structured output

        Raises:
            LLMException: If completion fails
        """
        start_time = time.perf_counter()

        request: dict = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_schema is not None:
            request["response_format"] = {
                "type": "json_schema",
                "json_schema": {**json_schema, "strict": True},
            }

        try:
            response = await self._client.chat.completions.create(**request)
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMException("No content in chat completion response")

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        prompt_tokens = response.usage.prompt_tokens if response.usage else 0
        completion_tokens = response.usage.completion_tokens if response.usage else 0

        await _export_metrics(self._model, prompt_tokens, completion_tokens, latency_ms, operation)

        return ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )


class ZAILLMClient(ILLMClient):
    """
    Z.AI SDK client implementation for GLM models.

    The SDK is synchronous, so calls run in a worker thread. GLM has no strict
    schema mode; structured calls rely on the prompt and on validation by the
    caller.
    """

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.zai_api_key
        if not self._api_key:
            raise ConfigurationException("Z.AI API key not configured")

        self._client = ZaiClient(api_key=self._api_key)
        self._model = settings.llm_model
        self._embedding_model = settings.embedding_model

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Generate embedding for text using the Z.AI embedding model."""
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self._embedding_model,
                input=text
            )
        except Exception as e:
            raise LLMException(f"Embedding generation failed: {str(e)}")

        return EmbeddingResult(
            embedding=list(response.data[0].embedding),
            model=self._embedding_model
        )

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_schema: Optional[dict] = None
    ) -> ChatCompletionResult:
        """Generate chat completion using GLM."""
        start_time = time.perf_counter()

        try:
            response = await asyncio.to_thread(
                self._client.chat.completions.create,
                model=self._model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens
            )
        except Exception as e:
            raise LLMException(f"Chat completion failed: {str(e)}")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMException("No content in chat completion response")

        latency_ms = int((time.perf_counter() - start_time) * 1000)

        # Z.AI doesn't return token usage, so we estimate
        prompt_tokens = len(str(messages))
        completion_tokens = len(content)

        await _export_metrics(self._model, prompt_tokens, completion_tokens, latency_ms, operation)

        return ChatCompletionResult(
            content=content,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms
        )


_WORD_RE = re.compile(r"[a-z0-9_#]+")


class MockLLMClient(ILLMClient):
    """
    Mock LLM client for local development without API keys.

    Embeddings are hashed bag-of-words vectors, so texts sharing words land
    close together. Completions are keyword heuristics shaped like the real
    structured responses.
    """

    def __init__(self, dimension: Optional[int] = None):
        self._dimension = dimension or settings.embedding_dimension

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Return a deterministic, L2-normalised hashed embedding."""
        vector = [0.0] * self._dimension
        for word in _WORD_RE.findall(text.lower()):
            digest = hashlib.sha256(word.encode()).digest()
            index = int.from_bytes(digest[:4], "big") % self._dimension
            vector[index] += 1.0 if digest[4] % 2 == 0 else -1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm:
            vector = [v / norm for v in vector]
        return EmbeddingResult(embedding=vector, model="mock-embedding")

    async def chat_completion(
        self,
        messages: List[dict],
        temperature: float = 0.3,
        max_tokens: int = 1000,
        operation: str = "chat_completion",
        json_schema: Optional[dict] = None
    ) -> ChatCompletionResult:
        """Return a mock response based on operation type."""
        user_content = str(messages[-1].get("content", "")) if messages else ""
        lowered = user_content.lower()

        if operation == "classification":
            if any(w in lowered for w in ("error", "broken", "crash", "fail", "bug", "500")):
                category = "bug_report"
            elif any(w in lowered for w in ("can you add", "feature", "would be nice", "please add")):
                category = "feature_request"
            elif "?" in lowered:
                category = "support_question"
            else:
                category = "product_question"
            payload: dict = {
                "is_relevant": len(lowered.split()) > 2,
                "category": category,
                "confidence": 0.8,
                "short_title": user_content.strip().splitlines()[-1][:100] if user_content.strip() else "",
                "signals": [],
                "inferred_assignees": re.findall(r"@(\w+)", user_content),
            }
        elif operation in ("summary", "conversation_summary"):
            payload = {
                "description": user_content.strip()[:200],
                "action_items": [],
                "technical_details": None,
                "priority_hint": "medium",
            }
        elif operation == "arbitration":
            payload = {"should_merge": False, "confidence": 0.5, "reason": "Mock arbitration"}
        else:
            return ChatCompletionResult(
                content="This is a mock LLM response for testing purposes.",
                model="mock-model",
                prompt_tokens=100,
                completion_tokens=10,
                latency_ms=1
            )

        content = json.dumps(payload)
        return ChatCompletionResult(
            content=content,
            model="mock-model",
            prompt_tokens=100,
            completion_tokens=len(content.split()),
            latency_ms=1
        )


def create_llm_client(provider: Optional[str] = None) -> ILLMClient:
    """
    Build the LLM client for the configured provider.

    Raises:
        ConfigurationException: If the provider's API key is missing
    """
    provider = (provider or settings.llm_provider).lower()
    if provider == "mock":
        return MockLLMClient()
    if provider == "zai":
        return ZAILLMClient()
    return OpenAILLMClient()
