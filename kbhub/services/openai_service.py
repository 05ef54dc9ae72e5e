"""OpenAI chat-completion service used for grounded answers."""
import logging
from dataclasses import dataclass
from typing import List, Dict, Optional
from openai import OpenAI, OpenAIError

from kbhub.core.config import settings
from kbhub.core.errors import ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


@dataclass
class TokenCounts:
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatCompletion:
    text: str
    model: str
    usage: Optional[TokenCounts] = None


class ChatClient:
    """Service for interacting with the OpenAI chat completions API."""

    provider = "OpenAI"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ):
        """Build the client; an empty key leaves it unconfigured."""
        self.model = model or settings.OPENAI_MODEL
        if client is not None:
            self.client = client
        else:
            self.client = OpenAI(api_key=api_key) if api_key else None

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def complete(
        self,
        messages: List[Dict[str, str]],
        temperature: float,
        max_tokens: int,
        tenant_id: Optional[str] = None,
    ) -> ChatCompletion:
        """
        Run one chat completion.

        Args:
            messages: OpenAI-style ``{"role", "content"}`` messages
            temperature: Sampling temperature
            max_tokens: Output length cap
            tenant_id: Only used for diagnostics

        Returns:
            ChatCompletion with the text and, when reported, token usage

        Raises:
            ConfigurationError: If no API key is configured
            ProviderError: If the API call fails or returns no choices
        """
        if not self.is_configured:
            raise ConfigurationError("OpenAI API key is not configured")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as e:
            logger.error("Chat completion failed (model=%s, tenant=%s): %s", self.model, tenant_id, e)
            raise ProviderError(f"Chat completion failed: {e}", model=self.model) from e

        if not response.choices:
            logger.error("Chat completion returned no choices (model=%s, tenant=%s)", self.model, tenant_id)
            raise ProviderError("Chat completion returned no choices", model=self.model)

        content = response.choices[0].message.content or "Sorry, I could not generate a response."

        usage = None
        if response.usage is not None:
            usage = TokenCounts(
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )

        return ChatCompletion(text=content, model=self.model, usage=usage)
