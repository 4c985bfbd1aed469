# src/patchpilot/api/client.py
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol
import logging

import httpx

if TYPE_CHECKING:
    from patchpilot.config import AssistantConfig

logger = logging.getLogger(__name__)


DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "deepseek/deepseek-chat"


@dataclass(frozen=True)
class Completion:
    """One model answer. finish_reason 'length' means the output was cut off."""
    text: str
    finish_reason: Optional[str] = None
    model: Optional[str] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == "length"

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


class ModelClient(Protocol):
    """Anything that can turn a (system, user) prompt pair into a Completion."""

    async def complete(self, system: str, user: str) -> Completion:
        ...


class ChatCompletionClient:
    """Client for an OpenAI-compatible /chat/completions endpoint."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL,
                 model: str = DEFAULT_MODEL, max_tokens: int = 4096,
                 temperature: float = 0.3, timeout: float = 60.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        if not api_key or api_key == "your_api_key_here":
            raise ConfigurationError("PATCHPILOT_API_KEY not configured. Please set it in .env file or config.yaml")

        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        self.client = http_client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: "AssistantConfig",
                    http_client: Optional[httpx.AsyncClient] = None) -> "ChatCompletionClient":
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.model,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout=config.model_timeout_seconds,
            http_client=http_client
        )

    async def complete(self, system: str, user: str) -> Completion:
        """Send one non-streaming chat completion request."""
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user}
        ]
        data = await self._post(messages, self.max_tokens, self.temperature)

        try:
            choice = data["choices"][0]
            text = choice.get("message", {}).get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError):
            raise APIError("Malformed completion response")

        completion = Completion(
            text=text,
            finish_reason=choice.get("finish_reason"),
            model=data.get("model", self.model)
        )
        logger.debug(f"Completion from {completion.model}: {len(text)} chars, finish_reason={completion.finish_reason}")
        return completion

    async def _post(self, messages: List[Dict[str, str]], max_tokens: int,
                    temperature: float) -> Dict[str, Any]:
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False
        }

        try:
            response = await self.client.post(
                f"{self.base_url}/chat/completions",
                headers=self.headers,
                json=payload
            )
        except httpx.TimeoutException:
            raise APIError("Request timeout")
        except httpx.RequestError as e:
            raise APIError(f"Request failed: {str(e)}")

        if response.status_code == 401:
            raise AuthenticationError("Invalid API key")
        elif response.status_code == 429:
            raise RateLimitError("Rate limit exceeded")
        elif response.status_code >= 400:
            raise APIError(f"API error: {response.status_code}", response.status_code)

        try:
            return response.json()
        except ValueError:
            raise APIError("Response was not valid JSON", response.status_code)

    async def test_connection(self) -> bool:
        """Check that the endpoint answers. Auth and rate-limit failures raise."""
        logger.info(f"Testing connection to {self.base_url} with model {self.model}")
        try:
            await self._post([{"role": "user", "content": "Hello"}], max_tokens=10, temperature=0.0)
        except (AuthenticationError, RateLimitError):
            raise
        except APIError as e:
            logger.error(f"Connection test failed: {e}")
            return False
        return True

    async def close(self):
        """Close the HTTP client"""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Error classes
class ModelClientError(Exception):
    """Base exception for model client errors."""
    pass

class AuthenticationError(ModelClientError):
    """Raised when API authentication fails."""
    pass

class RateLimitError(ModelClientError):
    """Raised when rate limit is exceeded."""
    pass

class APIError(ModelClientError):
    """Raised for general API errors."""
    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)

class ConfigurationError(ModelClientError):
    """Raised for configuration errors."""
    pass
