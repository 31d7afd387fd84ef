"""LLM Client abstraction for entity extraction.

Supports multiple backends:
- Gemini (hosted REST API, primary)
- Ollama (local server)
- Mock (scripted responses for tests and dry runs)

The client returns raw text. It does not assume the transport produced
JSON-only output, and it does not enforce the per-attempt time bound: the
extraction cascade wraps each call in its own timeout.

Example:
    client = GeminiClient(LLMConfig(api_key="..."))
    response = await client.generate(LLMRequest(prompt="Extract entities ..."))
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from entity_indexer.config import LLMBackendType, LLMSettings
from entity_indexer.errors.exceptions import (
    LLMConfigurationError,
    LLMError,
    LLMTimeoutError,
)

logger = structlog.get_logger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com"
OLLAMA_BASE_URL = "http://localhost:11434"

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass
class LLMConfig:
    """Configuration for LLM client."""
    backend: LLMBackendType = LLMBackendType.GEMINI
    model: str = "gemini-1.5-flash"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 30.0  # transport ceiling; attempts are bounded by the caller
    max_retries: int = 2
    temperature: float = 0.0
    top_p: float = 0.3
    max_output_tokens: int = 1024

    @classmethod
    def from_settings(cls, settings: LLMSettings) -> "LLMConfig":
        return cls(
            backend=settings.backend,
            model=settings.model,
            base_url=settings.base_url,
            api_key=settings.api_key,
            max_retries=settings.max_retries,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_output_tokens=settings.max_output_tokens,
        )


@dataclass
class LLMRequest:
    """One generation request.

    Unset generation parameters fall back to the client's LLMConfig.
    """
    prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None
    response_schema: Optional[Dict[str, Any]] = None
    system_hint: Optional[str] = None


@dataclass
class LLMResponse:
    """Response from LLM."""
    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)
    raw_response: Optional[Dict[str, Any]] = None

    @property
    def tokens_used(self) -> int:
        """Total tokens used in this response."""
        return self.usage.get("total_tokens", 0)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.ConnectError, httpx.RemoteProtocolError)):
        return True
    if isinstance(exc, LLMError) and exc.status_code in RETRYABLE_STATUS:
        return True
    return False


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig()
        self._log = logger.bind(
            component="LLMClient",
            backend=self.config.backend.value,
            model=self.config.model,
        )

    @abstractmethod
    async def generate(self, request: LLMRequest) -> LLMResponse:
        """Generate text for the given request.

        Raises:
            LLMTimeoutError: If the transport timed out
            LLMError: On any other transport or protocol failure
        """
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Check if the LLM backend is available."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None


class _HttpLLMClient(LLMClient):
    """Shared httpx plumbing for REST backends."""

    default_base_url = ""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.default_base_url).rstrip("/")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.config.timeout,
                transport=self._transport,
                headers={"Content-Type": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _post_json(self, url: str, payload: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        """POST with retries on connect errors and retryable status codes."""
        client = await self._get_client()
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=0.25, min=0.25, max=2),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        ):
            with attempt:
                try:
                    response = await client.post(url, json=payload, **kwargs)
                except httpx.TimeoutException as e:
                    raise LLMTimeoutError(f"LLM transport timeout: {e}") from e
                if response.status_code >= 400:
                    self._log.warning(
                        "llm_request_failed",
                        status=response.status_code,
                        attempt=attempt.retry_state.attempt_number,
                        body=response.text[:300],
                    )
                    raise LLMError(
                        f"LLM HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                try:
                    return response.json()
                except ValueError as e:
                    raise LLMError(f"LLM returned a non-JSON envelope: {e}") from e
        raise LLMError("LLM request failed after retries")


class GeminiClient(_HttpLLMClient):
    """Gemini REST client (``models/{model}:generateContent``)."""

    default_base_url = GEMINI_BASE_URL

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, transport)
        if not self.config.api_key:
            raise LLMConfigurationError("Gemini backend requires LLM_API_KEY")

    def build_payload(self, request: LLMRequest) -> Dict[str, Any]:
        """Translate an LLMRequest into a generateContent body."""
        cfg = self.config
        generation_config: Dict[str, Any] = {
            "temperature": cfg.temperature if request.temperature is None else request.temperature,
            "topP": cfg.top_p if request.top_p is None else request.top_p,
            "maxOutputTokens": request.max_output_tokens or cfg.max_output_tokens,
            "responseMimeType": "application/json",
        }
        if request.response_schema:
            generation_config["responseSchema"] = request.response_schema

        payload: Dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": generation_config,
        }
        if request.system_hint:
            payload["systemInstruction"] = {"parts": [{"text": request.system_hint}]}
        return payload

    async def generate(self, request: LLMRequest) -> LLMResponse:
        model = request.model or self.config.model
        data = await self._post_json(
            f"/v1beta/models/{model}:generateContent",
            self.build_payload(request),
            params={"key": self.config.api_key},
        )

        candidates = data.get("candidates") or []
        parts = (candidates[0].get("content") or {}).get("parts", []) if candidates else []
        content = "".join(p.get("text", "") for p in parts if isinstance(p, dict))
        usage = data.get("usageMetadata") or {}

        return LLMResponse(
            content=content,
            model=model,
            usage={
                "prompt_tokens": usage.get("promptTokenCount", 0),
                "completion_tokens": usage.get("candidatesTokenCount", 0),
                "total_tokens": usage.get("totalTokenCount", 0),
            },
            raw_response=data,
        )

    async def is_available(self) -> bool:
        try:
            client = await self._get_client()
            response = await client.get(
                f"/v1beta/models/{self.config.model}",
                params={"key": self.config.api_key},
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            self._log.debug("gemini_not_available", error=str(e))
            return False


class OllamaClient(_HttpLLMClient):
    """Ollama-based LLM client (``/api/generate``)."""

    default_base_url = OLLAMA_BASE_URL

    def build_payload(self, request: LLMRequest) -> Dict[str, Any]:
        cfg = self.config
        payload: Dict[str, Any] = {
            "model": request.model or cfg.model,
            "prompt": request.prompt,
            "stream": False,
            # Ollama accepts a JSON schema or the literal "json"
            "format": request.response_schema or "json",
            "options": {
                "temperature": cfg.temperature if request.temperature is None else request.temperature,
                "top_p": cfg.top_p if request.top_p is None else request.top_p,
                "num_predict": request.max_output_tokens or cfg.max_output_tokens,
            },
        }
        if request.system_hint:
            payload["system"] = request.system_hint
        return payload

    async def generate(self, request: LLMRequest) -> LLMResponse:
        data = await self._post_json("/api/generate", self.build_payload(request))
        return LLMResponse(
            content=data.get("response", ""),
            model=data.get("model", request.model or self.config.model),
            usage={
                "prompt_tokens": data.get("prompt_eval_count", 0),
                "completion_tokens": data.get("eval_count", 0),
                "total_tokens": data.get("prompt_eval_count", 0) + data.get("eval_count", 0),
            },
            raw_response=data,
        )

    async def is_available(self) -> bool:
        """Check if Ollama is running and the model is pulled."""
        try:
            client = await self._get_client()
            response = await client.get("/api/tags")
            if response.status_code != 200:
                return False
            models = [m["name"] for m in response.json().get("models", [])]
            model_base = self.config.model.split(":")[0]
            return any(m.startswith(model_base) for m in models)
        except httpx.HTTPError as e:
            self._log.debug("ollama_not_available", error=str(e))
            return False


MockReply = Union[str, BaseException, Callable[[LLMRequest], Union[str, Awaitable[str]]]]


class MockLLMClient(LLMClient):
    """Scripted LLM client for tests and offline runs.

    Replies are consumed in order; the last one repeats once the script is
    exhausted. A reply may be a string, an exception instance (raised), or
    a callable taking the request and returning a string or awaitable.
    """

    def __init__(
        self,
        replies: Optional[Sequence[MockReply]] = None,
        delay: float = 0.0,
        config: Optional[LLMConfig] = None,
    ):
        super().__init__(config or LLMConfig(backend=LLMBackendType.MOCK, model="mock"))
        self.replies: List[MockReply] = list(replies or ['{"product": {"id": ""}, "entities": []}'])
        self.delay = delay
        self.calls: List[LLMRequest] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def is_available(self) -> bool:
        return True

    async def generate(self, request: LLMRequest) -> LLMResponse:
        index = min(len(self.calls), len(self.replies) - 1)
        self.calls.append(request)
        reply = self.replies[index]

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if isinstance(reply, BaseException):
                raise reply
            if callable(reply):
                reply = reply(request)
                if asyncio.iscoroutine(reply) or isinstance(reply, asyncio.Future):
                    reply = await reply
            return LLMResponse(content=str(reply), model="mock", usage={"total_tokens": 0})
        finally:
            self.in_flight -= 1


def create_llm_client(
    config: LLMConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LLMClient:
    """Create a client for the configured backend.

    Raises:
        LLMConfigurationError: If the backend is missing required settings
    """
    if config.backend == LLMBackendType.GEMINI:
        return GeminiClient(config, transport=transport)
    if config.backend == LLMBackendType.OLLAMA:
        return OllamaClient(config, transport=transport)
    if config.backend == LLMBackendType.MOCK:
        return MockLLMClient(config=config)
    raise LLMConfigurationError(f"unsupported LLM backend: {config.backend}")


def get_llm_client(settings: LLMSettings) -> LLMClient:
    """Build a client from LLM_* settings."""
    return create_llm_client(LLMConfig.from_settings(settings))
