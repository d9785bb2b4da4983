"""
Remote model clients for contextchat.

The session engine only needs two things from the remote side: "send a turn,
get a token stream back" and "list models". Anthropic and OpenAI adapters
implement that contract; MultiProviderClient routes by model name.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Protocol

import anthropic
import openai

from .errors import TransportError

logger = logging.getLogger(__name__)


class Provider(Enum):
    """LLM provider."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"


# Model registry with provider info
MODEL_REGISTRY: dict[str, tuple[Provider, str]] = {
    # Anthropic models
    "opus": (Provider.ANTHROPIC, "claude-opus-4-5-20251101"),
    "sonnet": (Provider.ANTHROPIC, "claude-sonnet-4-20250514"),
    "haiku": (Provider.ANTHROPIC, "claude-haiku-4-5-20251001"),
    # OpenAI models
    "gpt-4o": (Provider.OPENAI, "gpt-4o"),
    "gpt-4o-mini": (Provider.OPENAI, "gpt-4o-mini"),
    "gpt-5.2": (Provider.OPENAI, "gpt-5.2"),
    "o3-mini": (Provider.OPENAI, "o3-mini"),
    # Shortcuts
    "codex": (Provider.OPENAI, "gpt-5.2"),
}


def resolve_model(model: str) -> tuple[Provider, str]:
    """Resolve model shorthand to (provider, full_model_id)."""
    if model in MODEL_REGISTRY:
        return MODEL_REGISTRY[model]
    if model.startswith("claude"):
        return (Provider.ANTHROPIC, model)
    if model.startswith(("gpt-", "o1", "o3", "o4")):
        return (Provider.OPENAI, model)
    # Default to Anthropic
    return (Provider.ANTHROPIC, model)


@dataclass(frozen=True)
class ModelDescriptor:
    """A model the remote side offers."""

    id: str
    provider: Provider
    display_name: str | None = None

    def __str__(self) -> str:
        if self.display_name and self.display_name != self.id:
            return f"{self.id} ({self.display_name})"
        return self.id


@dataclass
class TurnRequest:
    """
    Everything the remote needs for one turn.

    history: prior messages in API shape ({"role", "content"})
    user_message: the new user message, context payload already attached
    """

    model: str
    user_message: str
    history: list[dict[str, str]] = field(default_factory=list)
    system: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.1

    def messages(self) -> list[dict[str, str]]:
        return [*self.history, {"role": "user", "content": self.user_message}]


TokenStream = AsyncIterator[str]


class RemoteClient(Protocol):
    """Contract consumed by StreamingSession."""

    def send_turn(self, request: TurnRequest) -> TokenStream:
        """Stream the response as ordered text fragments; raises TransportError."""
        ...

    async def list_models(self) -> list[ModelDescriptor]:
        ...


class BaseRemoteClient(ABC):
    """Abstract base class for provider clients."""

    provider: Provider

    @abstractmethod
    def send_turn(self, request: TurnRequest) -> TokenStream:
        ...

    @abstractmethod
    async def list_models(self) -> list[ModelDescriptor]:
        ...


class AnthropicClient(BaseRemoteClient):
    """Anthropic Claude API client."""

    provider = Provider.ANTHROPIC

    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        # Support both ANTHROPIC_API_KEY and ANTHROPIC_AUTH_TOKEN
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("ANTHROPIC_AUTH_TOKEN")
        if not self.api_key:
            raise ValueError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY or ANTHROPIC_AUTH_TOKEN environment variable."
            )
        # Support custom base URL for alternative endpoints
        self.base_url = base_url or os.environ.get("ANTHROPIC_BASE_URL")
        client_kwargs: dict[str, Any] = {"api_key": self.api_key}
        if self.base_url:
            client_kwargs["base_url"] = self.base_url
        self.client = anthropic.AsyncAnthropic(**client_kwargs)

    async def send_turn(self, request: TurnRequest) -> TokenStream:
        request_params: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": request.messages(),
        }
        if request.system:
            request_params["system"] = request.system

        try:
            async with self.client.messages.stream(**request_params) as stream:
                async for text in stream.text_stream:
                    yield text
                final_message = await stream.get_final_message()
                logger.debug(
                    f"Anthropic usage: in={final_message.usage.input_tokens} "
                    f"out={final_message.usage.output_tokens}"
                )
        except anthropic.APIError as e:
            raise TransportError(f"Anthropic API error: {e}", provider=self.provider.value) from e

    async def list_models(self) -> list[ModelDescriptor]:
        try:
            return [
                ModelDescriptor(id=model.id, provider=self.provider, display_name=model.display_name)
                async for model in self.client.models.list()
            ]
        except anthropic.APIError as e:
            raise TransportError(f"Anthropic API error: {e}", provider=self.provider.value) from e


class OpenAIClient(BaseRemoteClient):
    """OpenAI GPT API client."""

    provider = Provider.OPENAI

    def __init__(self, api_key: str | None = None, base_url: str | None = None):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError("OpenAI API key required. Set OPENAI_API_KEY environment variable.")
        self.base_url = base_url or os.environ.get("OPENAI_BASE_URL")
        client_kwargs: dict[str, Any] = {"api_key": self.api_key}
        if self.base_url:
            client_kwargs["base_url"] = self.base_url
        self.client = openai.AsyncOpenAI(**client_kwargs)

    async def send_turn(self, request: TurnRequest) -> TokenStream:
        # OpenAI uses system message in messages array
        full_messages: list[dict[str, str]] = []
        if request.system:
            full_messages.append({"role": "system", "content": request.system})
        full_messages.extend(request.messages())

        params: dict[str, Any] = {
            "model": request.model,
            "messages": full_messages,
            "temperature": request.temperature,
            "stream": True,
        }
        # GPT-5+ and reasoning models use max_completion_tokens instead of max_tokens
        if request.model.startswith(("gpt-5", "o1", "o3", "o4")):
            params["max_completion_tokens"] = request.max_tokens
        else:
            params["max_tokens"] = request.max_tokens

        try:
            stream = await self.client.chat.completions.create(**params)
            async for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.OpenAIError as e:
            raise TransportError(f"OpenAI API error: {e}", provider=self.provider.value) from e

    async def list_models(self) -> list[ModelDescriptor]:
        try:
            models = [model async for model in self.client.models.list()]
        except openai.OpenAIError as e:
            raise TransportError(f"OpenAI API error: {e}", provider=self.provider.value) from e
        return [ModelDescriptor(id=m.id, provider=self.provider) for m in sorted(models, key=lambda m: m.id)]


class MultiProviderClient:
    """
    Unified remote client that routes to the appropriate provider.

    Providers without credentials are skipped; at least one must be available.
    """

    def __init__(
        self,
        default_model: str = "sonnet",
        anthropic_key: str | None = None,
        openai_key: str | None = None,
        clients: dict[Provider, BaseRemoteClient] | None = None,
    ):
        self.default_model = default_model
        self._clients: dict[Provider, BaseRemoteClient] = dict(clients or {})

        if clients is None:
            try:
                self._clients[Provider.ANTHROPIC] = AnthropicClient(api_key=anthropic_key)
            except ValueError:
                logger.debug("No Anthropic credentials")

            try:
                self._clients[Provider.OPENAI] = OpenAIClient(api_key=openai_key)
            except ValueError:
                logger.debug("No OpenAI credentials")

        if not self._clients:
            raise TransportError(
                "No LLM provider available. Set ANTHROPIC_API_KEY or OPENAI_API_KEY environment variable."
            )

    @property
    def providers(self) -> list[Provider]:
        return list(self._clients)

    def _get_client(self, model: str) -> tuple[BaseRemoteClient, str]:
        """Get appropriate client for model."""
        provider, full_model = resolve_model(model)
        if provider not in self._clients:
            raise TransportError(
                f"Model {model!r} needs {provider.value} credentials, "
                f"available: {', '.join(p.value for p in self._clients)}",
                provider=provider.value,
            )
        return self._clients[provider], full_model

    async def send_turn(self, request: TurnRequest) -> TokenStream:
        client, full_model = self._get_client(request.model or self.default_model)
        logger.info(f"Sending turn to {client.provider.value}/{full_model}")
        async for text in client.send_turn(replace(request, model=full_model)):
            yield text

    async def list_models(self) -> list[ModelDescriptor]:
        models: list[ModelDescriptor] = []
        for client in self._clients.values():
            models.extend(await client.list_models())
        return models


__all__ = [
    "AnthropicClient",
    "BaseRemoteClient",
    "MODEL_REGISTRY",
    "ModelDescriptor",
    "MultiProviderClient",
    "OpenAIClient",
    "Provider",
    "RemoteClient",
    "TokenStream",
    "TurnRequest",
    "resolve_model",
]
