# infrastructure/llm_providers.py
"""
Language model backends behind ILLMProvider, plus the registry that picks the
active and fallback provider from configuration.
"""
import asyncio
import logging
import re
from typing import Any, Dict, List, Optional

import requests

from config import Settings, settings
from core.domain import GenerationResult
from core.exceptions import EmptyResponseError, InvalidInputError, LLMProviderError
from core.interfaces import ILLMProvider

logger = logging.getLogger(settings.LOGGER_NAME)

LOCAL_PROVIDER_NAME = "local"

# Keys copied verbatim from .env templates are treated as "not configured"
PLACEHOLDER_KEY_PATTERNS = [
    re.compile(r'^your_.*_here$', re.IGNORECASE),
    re.compile(r'^your_.*_api_key$', re.IGNORECASE),
    re.compile(r'^your_.*_key$', re.IGNORECASE),
    re.compile(r'^your_.*_id$', re.IGNORECASE),
    re.compile(r'^placeholder_.*$', re.IGNORECASE),
    re.compile(r'^test_.*$', re.IGNORECASE),
    re.compile(r'^dummy_.*$', re.IGNORECASE),
    re.compile(r'^api_.*_key$', re.IGNORECASE),
]


def is_valid_api_key(key: Optional[str]) -> bool:
    if not key or not key.strip():
        return False
    return not any(p.match(key.strip()) for p in PLACEHOLDER_KEY_PATTERNS)


# ============= Providers =============

class HTTPProvider(ILLMProvider):
    """Shared request/response handling for HTTP JSON model APIs."""

    def __init__(self, name: str, model: str, base_url: str, api_key: Optional[str] = None,
                 timeout: int = settings.LLM_REQUEST_TIMEOUT, is_local: bool = False):
        self.name = name
        self.model = model
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout
        self.is_local = is_local

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    def _payload(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        raise NotImplementedError

    def _parse(self, data: Dict[str, Any]) -> GenerationResult:
        raise NotImplementedError

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Blocking POST; every transport failure becomes LLMProviderError."""
        url = self._endpoint()
        try:
            response = requests.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
            response.raise_for_status()  # Raises an HTTPError for bad responses (4xx or 5xx)
            return response.json()
        except requests.exceptions.Timeout as e:
            logger.error(f"[LLM:{self.name}] Request timed out after {self.timeout} seconds.")
            raise LLMProviderError(f"{self.name} request timed out", provider=self.name) from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"[LLM:{self.name}] Cannot connect to {self.base_url}. Is the service running?")
            raise LLMProviderError(f"Cannot connect to {self.name}", provider=self.name) from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            body = e.response.text[:500] if e.response is not None else ""
            logger.error(f"[LLM:{self.name}] Service returned an error: {status} {body}")
            raise LLMProviderError(f"{self.name} error: {status}", provider=self.name) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"[LLM:{self.name}] Request failed: {e}")
            raise LLMProviderError(f"{self.name} request failed: {e}", provider=self.name) from e
        except ValueError as e:
            logger.error(f"[LLM:{self.name}] Response was not valid JSON: {e}")
            raise LLMProviderError(f"Malformed response from {self.name}", provider=self.name) from e

    async def generate(self, prompt: str, max_tokens: Optional[int] = None,
                       temperature: Optional[float] = None) -> GenerationResult:
        if not prompt or not prompt.strip():
            raise InvalidInputError("Empty prompt provided")

        payload = self._payload(
            prompt,
            max_tokens if max_tokens is not None else settings.LLM_MAX_TOKENS,
            temperature if temperature is not None else settings.LLM_TEMPERATURE
        )
        logger.info(f"[LLM:{self.name}] Sending prompt to model '{self.model}'...")
        data = await asyncio.to_thread(self._post, payload)

        try:
            result = self._parse(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            logger.error(f"[LLM:{self.name}] Response was malformed: {e}")
            raise EmptyResponseError(f"Malformed response from {self.name}", provider=self.name) from e

        if not result.text or not result.text.strip():
            logger.error(f"[LLM:{self.name}] Response was empty.")
            raise EmptyResponseError(f"Empty response from {self.name}", provider=self.name)

        logger.info(f"[LLM:{self.name}] Successfully received response.")
        return GenerationResult(text=result.text.strip(), model_id=result.model_id, usage=result.usage)

    async def test_connection(self) -> bool:
        try:
            await self.generate("Hello", max_tokens=10, temperature=0)
            return True
        except LLMProviderError as e:
            logger.warning(f"[LLM:{self.name}] Connection test failed: {e}")
            return False


class OpenAICompatibleProvider(HTTPProvider):
    """`/chat/completions` APIs: OpenAI, Qwen (compatible mode), Zhipu, Kimi, Doubao, LM Studio."""

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _payload(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": False
        }

    def _parse(self, data: Dict[str, Any]) -> GenerationResult:
        text = data["choices"][0]["message"]["content"]
        return GenerationResult(
            text=text or "",
            model_id=data.get("model") or self.model,
            usage=data.get("usage") or {}
        )


class AzureOpenAIProvider(OpenAICompatibleProvider):
    """Azure OpenAI deployment; the model name is the deployment name."""

    def __init__(self, endpoint: str, deployment: str, api_key: str,
                 api_version: str = settings.AZURE_OPENAI_API_VERSION,
                 timeout: int = settings.LLM_REQUEST_TIMEOUT):
        super().__init__("azure", deployment, endpoint, api_key=api_key, timeout=timeout)
        self.api_version = api_version

    def _endpoint(self) -> str:
        return (
            f"{self.base_url}/openai/deployments/{self.model}/chat/completions"
            f"?api-version={self.api_version}"
        )

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "api-key": self.api_key or ""}

    def _payload(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        payload = super()._payload(prompt, max_tokens, temperature)
        payload.pop("model")
        return payload


class AnthropicProvider(HTTPProvider):
    """Anthropic Messages API."""

    API_VERSION = "2023-06-01"

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1/messages"

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["x-api-key"] = self.api_key or ""
        headers["anthropic-version"] = self.API_VERSION
        return headers

    def _payload(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}]
        }

    def _parse(self, data: Dict[str, Any]) -> GenerationResult:
        return GenerationResult(
            text=data["content"][0]["text"] or "",
            model_id=data.get("model") or self.model,
            usage=data.get("usage") or {}
        )


class OllamaProvider(HTTPProvider):
    """A local Ollama server (`/api/generate`)."""

    def __init__(self, base_url: str, model: str, timeout: int = settings.LLM_REQUEST_TIMEOUT,
                 name: str = LOCAL_PROVIDER_NAME):
        super().__init__(name, model, base_url, timeout=timeout, is_local=True)

    def _endpoint(self) -> str:
        return f"{self.base_url}/api/generate"

    def _payload(self, prompt: str, max_tokens: int, temperature: float) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"num_predict": max_tokens, "temperature": temperature}
        }

    def _parse(self, data: Dict[str, Any]) -> GenerationResult:
        usage = {}
        if "prompt_eval_count" in data:
            usage["prompt_tokens"] = data["prompt_eval_count"]
        if "eval_count" in data:
            usage["completion_tokens"] = data["eval_count"]
        return GenerationResult(
            text=data.get("response") or "",
            model_id=data.get("model") or self.model,
            usage=usage
        )


# ============= Registry =============

class ProviderRegistry:
    """
    Named providers with one active choice and at most one fallback.

    Active: `preferred` when registered, else the first registered name in
    `priority`, else the local provider. Fallback: `fallback` when registered,
    else the local provider if `fallback_to_local`; never the active one.
    """

    def __init__(self, providers: Dict[str, ILLMProvider], priority: Optional[List[str]] = None,
                 preferred: Optional[str] = None, fallback: Optional[str] = None,
                 fallback_to_local: bool = True):
        if not providers:
            raise InvalidInputError("At least one LLM provider must be registered")
        self._providers = dict(providers)
        self._priority = list(priority or [])
        self._fallback_name = fallback
        self._fallback_to_local = fallback_to_local
        self._active_name = self._select_active(preferred)
        logger.info(
            f"[LLM] Active provider: {self._active_name}; "
            f"fallback: {self.fallback.name if self.fallback else 'none'}"
        )

    def _select_active(self, preferred: Optional[str]) -> str:
        if preferred:
            if preferred in self._providers:
                return preferred
            logger.warning(f"[LLM] Preferred provider '{preferred}' is not configured, ignoring.")

        for name in self._priority:
            if name in self._providers:
                return name

        if LOCAL_PROVIDER_NAME in self._providers:
            return LOCAL_PROVIDER_NAME
        return next(iter(self._providers))

    def available(self) -> List[str]:
        return list(self._providers.keys())

    def get(self, name: str) -> Optional[ILLMProvider]:
        return self._providers.get(name)

    @property
    def active(self) -> ILLMProvider:
        return self._providers[self._active_name]

    @property
    def fallback(self) -> Optional[ILLMProvider]:
        name = None
        if self._fallback_name and self._fallback_name in self._providers:
            name = self._fallback_name
        elif self._fallback_to_local and LOCAL_PROVIDER_NAME in self._providers:
            name = LOCAL_PROVIDER_NAME

        if name is None or name == self._active_name:
            return None
        return self._providers[name]

    def set_active(self, name: str) -> ILLMProvider:
        if name not in self._providers:
            raise InvalidInputError(
                f"Provider '{name}' is not configured. Available: {', '.join(self.available())}"
            )
        self._active_name = name
        logger.info(f"[LLM] Switched active provider to {name}")
        return self.active

    def chain(self) -> List[ILLMProvider]:
        """Providers to try for one request, in order."""
        fallback = self.fallback
        return [self.active] + ([fallback] if fallback else [])

    def status(self) -> Dict[str, Any]:
        fallback = self.fallback
        return {
            "active": self.active.name,
            "active_model": self.active.model,
            "fallback": fallback.name if fallback else None,
            "available": self.available()
        }


def build_provider_registry(config: Settings = settings) -> ProviderRegistry:
    """Register every provider whose credentials look real, plus the local server."""
    timeout = config.LLM_REQUEST_TIMEOUT
    providers: Dict[str, ILLMProvider] = {}

    compatible = {
        "openai": (config.OPENAI_API_KEY, config.OPENAI_BASE_URL, config.OPENAI_MODEL),
        "qwen": (config.QWEN_API_KEY, config.QWEN_BASE_URL, config.QWEN_MODEL),
        "zhipu": (config.ZHIPU_API_KEY, config.ZHIPU_BASE_URL, config.ZHIPU_MODEL),
        "kimi": (config.KIMI_API_KEY, config.KIMI_BASE_URL, config.KIMI_MODEL),
        "doubao": (config.DOUBAO_API_KEY, config.DOUBAO_BASE_URL, config.DOUBAO_MODEL),
    }
    for name, (key, base_url, model) in compatible.items():
        if is_valid_api_key(key):
            providers[name] = OpenAICompatibleProvider(name, model, base_url, api_key=key, timeout=timeout)

    if (is_valid_api_key(config.AZURE_OPENAI_API_KEY)
            and config.AZURE_OPENAI_ENDPOINT and config.AZURE_OPENAI_DEPLOYMENT_NAME):
        providers["azure"] = AzureOpenAIProvider(
            config.AZURE_OPENAI_ENDPOINT,
            config.AZURE_OPENAI_DEPLOYMENT_NAME,
            config.AZURE_OPENAI_API_KEY,
            api_version=config.AZURE_OPENAI_API_VERSION,
            timeout=timeout
        )

    if is_valid_api_key(config.ANTHROPIC_API_KEY):
        providers["anthropic"] = AnthropicProvider(
            "anthropic", config.ANTHROPIC_MODEL, config.ANTHROPIC_BASE_URL,
            api_key=config.ANTHROPIC_API_KEY, timeout=timeout
        )

    if config.LOCAL_LLM_KIND.lower() == "ollama":
        providers[LOCAL_PROVIDER_NAME] = OllamaProvider(
            config.LOCAL_LLM_BASE_URL, config.LOCAL_LLM_MODEL, timeout=timeout
        )
    else:
        providers[LOCAL_PROVIDER_NAME] = OpenAICompatibleProvider(
            LOCAL_PROVIDER_NAME, config.LOCAL_LLM_MODEL, config.LOCAL_LLM_BASE_URL,
            timeout=timeout, is_local=True
        )

    logger.info(f"[LLM] Configured providers: {', '.join(providers)}")
    return ProviderRegistry(
        providers,
        priority=config.LLM_PROVIDER_PRIORITY,
        preferred=config.LLM_PROVIDER,
        fallback=config.LLM_FALLBACK_PROVIDER,
        fallback_to_local=config.LLM_FALLBACK_TO_LOCAL
    )
