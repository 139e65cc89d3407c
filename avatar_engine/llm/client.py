"""
LLM clients used by the engine.

Two roles share one transport:
- classification: names the user's intent (short, near-deterministic)
- generation: writes the avatar's reply from the assembled prompts

Each provider only describes its wire format (endpoint, headers, request
body, how to read the reply); the base class owns timing, retries and
logging. A timeout or HTTP 429 is retried once after a backoff delay;
other HTTP errors surface immediately.

Providers: anthropic (Messages API), openai and deepseek (chat completions).
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

import httpx
import structlog

from avatar_engine.core.config import settings
from avatar_engine.core.exceptions import (
    ConfigurationError,
    LLMRateLimitError,
    LLMResponseParseError,
    LLMTimeoutError,
)

log = structlog.get_logger(__name__)


LLMClientType = Literal["classification", "generation"]


@dataclass(frozen=True)
class ProviderInfo:
    """Static facts about one provider."""

    key_setting: str
    env_var: str
    base_url: str
    models: Dict[str, str]


PROVIDERS: Dict[str, ProviderInfo] = {
    "anthropic": ProviderInfo(
        key_setting="anthropic_api_key",
        env_var="ANTHROPIC_API_KEY",
        base_url="https://api.anthropic.com/v1",
        models={"classification": "claude-haiku-4-5", "generation": "claude-sonnet-4-6"},
    ),
    "openai": ProviderInfo(
        key_setting="openai_api_key",
        env_var="OPENAI_API_KEY",
        base_url="https://api.openai.com/v1",
        models={"classification": "gpt-4o-mini", "generation": "gpt-4o"},
    ),
    "deepseek": ProviderInfo(
        key_setting="deepseek_api_key",
        env_var="DEEPSEEK_API_KEY",
        base_url="https://api.deepseek.com",
        models={"classification": "deepseek-chat", "generation": "deepseek-chat"},
    ),
}

# Sampling defaults per role; provider comes from settings or "anthropic"
ROLE_DEFAULTS: Dict[str, Dict[str, float]] = {
    "classification": {"temperature": 0.1, "max_tokens": 20, "timeout": 10.0},
    "generation": {"temperature": 0.7, "max_tokens": 300, "timeout": 30.0},
}
DEFAULT_PROVIDER = "anthropic"


@dataclass
class LLMResponse:
    """What a completion call hands back to services."""

    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    latency_ms: float = 0.0
    raw_response: Optional[Dict[str, Any]] = None


class LLMClient(ABC):
    """Provider-agnostic completion client.

    Subclasses implement the four wire-format hooks below.
    """

    provider_name: str = "unknown"

    max_retries = 1
    base_delay = 1.0  # seconds, doubled per retry

    def __init__(
        self,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
        client_type: LLMClientType,
        api_key: Optional[str],
        base_url: str,
    ):
        if not api_key:
            env_var = PROVIDERS[self.provider_name].env_var
            raise ConfigurationError(f"{env_var} not configured. Set it in .env.")

        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.client_type = client_type
        self.api_key = api_key
        self.base_url = base_url

        log.info(
            "llm_client_initialized",
            provider=self.provider_name,
            client_type=client_type,
            model=model,
            timeout=timeout,
        )

    # ------------------------------------------------------------------
    # Wire format
    # ------------------------------------------------------------------

    @abstractmethod
    def _endpoint(self) -> str: ...

    @abstractmethod
    def _headers(self) -> Dict[str, str]: ...

    @abstractmethod
    def _body(
        self, prompt: str, system: Optional[str], temperature: float, max_tokens: int
    ) -> Dict[str, Any]: ...

    @abstractmethod
    def _read(self, data: Dict[str, Any]) -> tuple[str, Dict[str, int]]:
        """Return (text, {"input_tokens", "output_tokens"}) from a reply body."""

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def complete(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> LLMResponse:
        """
        Run one completion.

        Args:
            prompt: User-role message
            system: Optional system prompt
            temperature: Overrides the client's sampling temperature
            max_tokens: Overrides the client's output cap
            timeout: Overrides the client's timeout in seconds

        Raises:
            LLMTimeoutError, LLMRateLimitError: Retries exhausted
            LLMResponseParseError: The reply body is not the expected JSON
            httpx.HTTPStatusError: Any other non-2xx reply
        """
        body = self._body(
            prompt,
            system,
            self.temperature if temperature is None else temperature,
            self.max_tokens if max_tokens is None else max_tokens,
        )

        started = time.perf_counter()
        data = await self._send(body, timeout or self.timeout)
        latency_ms = (time.perf_counter() - started) * 1000

        try:
            content, usage = self._read(data)
        except (AttributeError, IndexError, KeyError, TypeError) as e:
            raise LLMResponseParseError(
                f"Unexpected {self.provider_name} response shape: {e}"
            ) from e
        log.info(
            "llm_call_complete",
            provider=self.provider_name,
            client_type=self.client_type,
            model=self.model,
            latency_ms=round(latency_ms, 2),
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
        )
        return LLMResponse(
            content=content,
            model=data.get("model") or self.model,
            usage=usage,
            latency_ms=latency_ms,
            raw_response=data,
        )

    async def _send(self, body: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.post(
                        self._endpoint(), headers=self._headers(), json=body
                    )
                    response.raise_for_status()
                    try:
                        return response.json()
                    except ValueError as e:
                        raise LLMResponseParseError(
                            f"{self.provider_name} returned a non-JSON body"
                        ) from e
            except httpx.TimeoutException as e:
                log.warning(
                    "llm_timeout",
                    provider=self.provider_name,
                    attempt=attempt,
                    timeout_seconds=timeout,
                )
                if attempt == attempts:
                    raise LLMTimeoutError(
                        f"LLM call timed out after {attempts} attempts (timeout={timeout}s)"
                    ) from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status != 429:
                    log.error("llm_http_error", provider=self.provider_name, status_code=status)
                    raise
                log.warning("llm_rate_limit", provider=self.provider_name, attempt=attempt)
                if attempt == attempts:
                    raise LLMRateLimitError(
                        f"Rate limit exceeded after {attempts} attempts"
                    ) from e

            delay = self.base_delay * 2 ** (attempt - 1)
            log.info("llm_retry", delay_seconds=delay, next_attempt=attempt + 1)
            await asyncio.sleep(delay)

        raise AssertionError("retry loop exited without a result")


class AnthropicClient(LLMClient):
    """Anthropic Messages API."""

    provider_name = "anthropic"
    api_version = "2023-06-01"

    def __init__(
        self,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
        client_type: LLMClientType,
        api_key: Optional[str] = None,
    ):
        super().__init__(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            client_type=client_type,
            api_key=api_key or settings.anthropic_api_key,
            base_url=PROVIDERS["anthropic"].base_url,
        )

    def _endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }

    def _body(self, prompt, system, temperature, max_tokens):
        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            body["system"] = system
        return body

    def _read(self, data):
        blocks = data.get("content") or []
        text = blocks[0].get("text", "") if blocks else ""
        usage = data.get("usage") or {}
        return text, {
            "input_tokens": usage.get("input_tokens", 0),
            "output_tokens": usage.get("output_tokens", 0),
        }


class OpenAICompatibleClient(LLMClient):
    """Chat-completions API shared by OpenAI and DeepSeek."""

    def __init__(
        self,
        model: str,
        temperature: float,
        max_tokens: int,
        timeout: float,
        client_type: LLMClientType,
        base_url: str,
        provider_name: str,
        api_key: Optional[str],
    ):
        # Instance attribute: one class serves several providers
        self.provider_name = provider_name
        super().__init__(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            client_type=client_type,
            api_key=api_key,
            base_url=base_url,
        )

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _body(self, prompt, system, temperature, max_tokens):
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

    def _read(self, data):
        choices = data.get("choices") or []
        text = (choices[0].get("message") or {}).get("content") or "" if choices else ""
        usage = data.get("usage") or {}
        return text, {
            "input_tokens": usage.get("prompt_tokens", 0),
            "output_tokens": usage.get("completion_tokens", 0),
        }


# =============================================================================
# Factories
# =============================================================================


def resolve_provider(client_type: LLMClientType) -> str:
    """Provider configured for ``client_type`` (settings override first)."""
    provider = getattr(settings, f"llm_{client_type}_provider", None) or DEFAULT_PROVIDER
    if provider not in PROVIDERS:
        raise ConfigurationError(
            f"Unknown LLM provider '{provider}' for {client_type}. "
            f"Supported providers: {', '.join(PROVIDERS)}"
        )
    return provider


def get_llm_client(client_type: LLMClientType) -> LLMClient:
    """
    Build the client for ``client_type`` from settings.

    Raises:
        ConfigurationError: Unknown provider, or its API key is missing
    """
    provider = resolve_provider(client_type)
    info = PROVIDERS[provider]
    role = ROLE_DEFAULTS[client_type]
    common = dict(
        model=info.models[client_type],
        temperature=role["temperature"],
        max_tokens=int(role["max_tokens"]),
        timeout=role["timeout"],
        client_type=client_type,
    )

    if provider == "anthropic":
        return AnthropicClient(**common)
    return OpenAICompatibleClient(
        **common,
        base_url=info.base_url,
        provider_name=provider,
        api_key=getattr(settings, info.key_setting, None),
    )


def get_optional_llm_client(client_type: LLMClientType) -> Optional[LLMClient]:
    """Like get_llm_client, but None when the provider's API key is absent.

    An absent classification client means keyword matching only; an absent
    generation client means turns return prompts without a reply.
    """
    provider = resolve_provider(client_type)
    info = PROVIDERS[provider]
    if not getattr(settings, info.key_setting, None):
        log.warning(
            "llm_client_not_configured",
            client_type=client_type,
            provider=provider,
            missing=info.env_var,
        )
        return None
    return get_llm_client(client_type)
