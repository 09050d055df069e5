"""
Model endpoint implementations for NovelForge
Chat, streaming chat and embeddings over the OpenAI and Anthropic SDKs.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Optional, Tuple

from ..config import LLMConfiguration, LLMProvider
from ..core.errors import InvalidInputError, UpstreamError

logger = logging.getLogger("novelforge.endpoint")

ChatMessage = Dict[str, str]


@dataclass
class ChatResponse:
    content: str
    tokens_in: int = 0
    tokens_out: int = 0
    finish_reason: Optional[str] = None
    model: Optional[str] = None


class ModelEndpoint(ABC):
    """Abstract chat-completion + embedding endpoint."""

    @abstractmethod
    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        """Single completion."""
        pass

    @abstractmethod
    def chat_stream(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Async iterator of content deltas, ending at end-of-stream."""
        pass

    @abstractmethod
    async def embed(self, texts: List[str]) -> List[List[float]]:
        """One vector per input text, all of the same dimension."""
        pass


class OpenAIEndpoint(ModelEndpoint):
    """OpenAI API endpoint. Also serves OpenRouter, which is OpenAI-compatible."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        embedding_model: str = "text-embedding-3-small",
        max_retries: int = 3,
        timeout: float = 120,
        embedder: Optional[ModelEndpoint] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.embedding_model = embedding_model
        self.max_retries = max_retries
        self.timeout = timeout
        self.embedder = embedder
        self._client = None

    async def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                max_retries=self.max_retries,
                timeout=self.timeout,
            )
        return self._client

    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        client = await self._get_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except Exception as e:
            logger.error(f"[chat] OpenAI call failed for model {model}: {e}")
            raise UpstreamError("model_endpoint", str(e)) from e

        choice = response.choices[0]
        usage = response.usage
        return ChatResponse(
            content=choice.message.content or "",
            tokens_in=usage.prompt_tokens if usage else 0,
            tokens_out=usage.completion_tokens if usage else 0,
            finish_reason=choice.finish_reason,
            model=response.model,
        )

    async def chat_stream(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        client = await self._get_client()
        try:
            stream = await client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
        except Exception as e:
            logger.error(f"[chat_stream] OpenAI stream failed to open for model {model}: {e}")
            raise UpstreamError("model_endpoint", str(e)) from e

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"[chat_stream] OpenAI stream broke for model {model}: {e}")
            raise UpstreamError("model_endpoint", str(e)) from e
        finally:
            await stream.close()

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if self.embedder is not None:
            return await self.embedder.embed(texts)
        client = await self._get_client()
        try:
            response = await client.embeddings.create(model=self.embedding_model, input=texts)
        except Exception as e:
            logger.error(f"[embed] Embedding call failed: {e}")
            raise UpstreamError("embedding", str(e)) from e
        return [item.embedding for item in response.data]


def _split_system(messages: List[ChatMessage]) -> Tuple[str, List[ChatMessage]]:
    """Anthropic takes the system prompt as a separate parameter."""
    system_parts = [m["content"] for m in messages if m["role"] == "system"]
    rest = [m for m in messages if m["role"] != "system"]
    return "\n\n".join(system_parts), rest


class ClaudeEndpoint(ModelEndpoint):
    """Anthropic Claude endpoint; embeddings go to an OpenAI-compatible embedder."""

    def __init__(
        self,
        api_key: str,
        embedder: Optional[ModelEndpoint] = None,
        max_retries: int = 3,
        timeout: float = 120,
    ):
        self.api_key = api_key
        self.embedder = embedder
        self.max_retries = max_retries
        self.timeout = timeout
        self._client = None

    async def _get_client(self):
        if self._client is None:
            from anthropic import AsyncAnthropic
            self._client = AsyncAnthropic(
                api_key=self.api_key,
                max_retries=self.max_retries,
                timeout=self.timeout,
            )
        return self._client

    async def chat(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> ChatResponse:
        client = await self._get_client()
        system, rest = _split_system(messages)
        try:
            response = await client.messages.create(
                model=model,
                max_tokens=max_tokens or 4096,
                system=system,
                messages=rest,
                temperature=temperature,
            )
        except Exception as e:
            logger.error(f"[chat] Claude call failed for model {model}: {e}")
            raise UpstreamError("model_endpoint", str(e)) from e

        content = "".join(block.text for block in response.content if block.type == "text")
        return ChatResponse(
            content=content,
            tokens_in=response.usage.input_tokens,
            tokens_out=response.usage.output_tokens,
            finish_reason=response.stop_reason,
            model=response.model,
        )

    async def chat_stream(
        self,
        messages: List[ChatMessage],
        model: str,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        client = await self._get_client()
        system, rest = _split_system(messages)
        try:
            async with client.messages.stream(
                model=model,
                max_tokens=max_tokens or 4096,
                system=system,
                messages=rest,
                temperature=temperature,
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except UpstreamError:
            raise
        except Exception as e:
            logger.error(f"[chat_stream] Claude stream failed for model {model}: {e}")
            raise UpstreamError("model_endpoint", str(e)) from e

    async def embed(self, texts: List[str]) -> List[List[float]]:
        if self.embedder is None:
            raise UpstreamError("embedding", "no embedding endpoint configured for Claude")
        return await self.embedder.embed(texts)


def create_model_endpoint(
    config: LLMConfiguration,
    provider: Optional[LLMProvider] = None,
) -> ModelEndpoint:
    """Factory function to create the endpoint for a provider."""
    provider = provider or config.default_provider

    openai_embedder = None
    if config.openai:
        openai_embedder = OpenAIEndpoint(
            api_key=config.openai.api_key.get_secret_value(),
            base_url=config.openai.base_url,
            embedding_model=config.embedding_model,
            max_retries=config.max_retries,
            timeout=config.timeout_seconds,
        )

    if provider == LLMProvider.OPENAI:
        if openai_embedder is None:
            raise InvalidInputError("OpenAI configuration not provided")
        return openai_embedder

    elif provider == LLMProvider.OPENROUTER:
        if not config.openrouter:
            raise InvalidInputError("OpenRouter configuration not provided")
        return OpenAIEndpoint(  # OpenRouter uses OpenAI-compatible API
            api_key=config.openrouter.api_key.get_secret_value(),
            base_url=config.openrouter.base_url,
            embedding_model=config.embedding_model,
            max_retries=config.max_retries,
            timeout=config.timeout_seconds,
            embedder=openai_embedder,
        )

    elif provider == LLMProvider.CLAUDE:
        if not config.claude:
            raise InvalidInputError("Claude configuration not provided")
        return ClaudeEndpoint(
            api_key=config.claude.api_key.get_secret_value(),
            embedder=openai_embedder,
            max_retries=config.max_retries,
            timeout=config.timeout_seconds,
        )

    else:
        raise InvalidInputError(f"Unsupported provider: {provider}")
