from __future__ import annotations

import asyncio
import json
import re
import time
from typing import Any, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .config import ComposerSettings

_JSON_ONLY_SUFFIX = " Respond with valid JSON only. No markdown, no code fences, no prose."
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})
_MAX_BACKOFF_S = 8


class ServiceError(Exception):
    pass


class MalformedOutputError(ServiceError):
    pass


class LLMProvider:
    async def generate(
        self, prompt: str, system_instruction: Optional[str] = None
    ) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    async def generate_structured(
        self, prompt: str, system_instruction: Optional[str] = None
    ) -> Any:
        instruction = (system_instruction or "").strip() + _JSON_ONLY_SUFFIX
        text = await self.generate(prompt, instruction.strip())
        return parse_structured(text)


class MockLLMProvider(LLMProvider):
    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        return "Mock response"


class OpenAIProvider(LLMProvider):
    """Responses API client; the blocking HTTP exchange runs in a worker thread.

    Retryable statuses and connection errors are retried ``max_retries`` times
    with exponential backoff. A model that rejects ``temperature`` gets one
    extra attempt without it, which does not count against the retries.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com",
        temperature: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        timeout_s: float = 30.0,
        max_retries: int = 0,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.endpoint = f"{base_url.rstrip('/')}/v1/responses"
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout_s = timeout_s
        self.max_retries = max_retries

    @classmethod
    def from_settings(cls, settings: ComposerSettings) -> "OpenAIProvider":
        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")
        if not settings.openai_model:
            raise ValueError("OPENAI_MODEL is required when LLM_PROVIDER=openai")
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url or "https://api.openai.com",
            temperature=settings.openai_temperature,
            max_output_tokens=settings.openai_max_output_tokens,
            timeout_s=settings.openai_timeout_s or 30.0,
            max_retries=settings.openai_max_retries or 0,
        )

    async def generate(self, prompt: str, system_instruction: Optional[str] = None) -> str:
        return await asyncio.to_thread(self._generate_blocking, prompt, system_instruction)

    def _payload(self, prompt: str, system_instruction: Optional[str]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "input": prompt}
        if system_instruction:
            payload["instructions"] = system_instruction
        if self.temperature is not None and _accepts_temperature(self.model):
            payload["temperature"] = self.temperature
        if self.max_output_tokens is not None:
            payload["max_output_tokens"] = self.max_output_tokens
        return payload

    def _generate_blocking(self, prompt: str, system_instruction: Optional[str]) -> str:
        payload = self._payload(prompt, system_instruction)
        attempt = 0
        while True:
            try:
                return self._send(payload)
            except HTTPError as exc:
                detail = exc.read().decode("utf-8") if exc.fp else str(exc)
                if "temperature" in payload and _rejects_temperature(detail):
                    payload.pop("temperature")
                    continue
                if exc.code not in _RETRYABLE_STATUS or attempt >= self.max_retries:
                    raise ServiceError(f"openai_http_{exc.code}: {detail}") from exc
            except (URLError, TimeoutError) as exc:
                if attempt >= self.max_retries:
                    raise ServiceError(f"openai_unreachable: {exc}") from exc
            time.sleep(min(2**attempt, _MAX_BACKOFF_S))
            attempt += 1

    def _send(self, payload: Dict[str, Any]) -> str:
        request = Request(
            self.endpoint,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            method="POST",
        )
        with urlopen(request, timeout=self.timeout_s) as response:
            body = response.read().decode("utf-8")
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ServiceError("openai_invalid_json") from exc
        text = _output_text(data)
        if not text:
            raise ServiceError("openai_empty_output")
        return text


def resolve_provider(settings: ComposerSettings) -> LLMProvider:
    if (settings.llm_provider or "mock").lower() == "openai":
        return OpenAIProvider.from_settings(settings)
    return MockLLMProvider()


def parse_structured(text: str) -> Any:
    """Parse a model reply into JSON, tolerating code fences and surrounding prose."""
    if not text or not text.strip():
        raise MalformedOutputError("empty structured output")
    stripped = _FENCE_RE.sub("", text).strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass
    starts = [idx for idx in (stripped.find("{"), stripped.find("[")) if idx != -1]
    if not starts:
        raise MalformedOutputError("structured output contains no JSON value")
    start = min(starts)
    closer = "}" if stripped[start] == "{" else "]"
    end = stripped.rfind(closer)
    if end <= start:
        raise MalformedOutputError("structured output is truncated")
    try:
        return json.loads(stripped[start : end + 1])
    except json.JSONDecodeError as exc:
        raise MalformedOutputError(f"invalid_json:{exc}") from exc


def _output_text(response: Dict[str, Any]) -> str:
    return "".join(
        content.get("text", "")
        for item in response.get("output", [])
        if item.get("type") == "message"
        for content in item.get("content", [])
        if content.get("type") == "output_text"
    ).strip()


def _accepts_temperature(model: str) -> bool:
    # GPT-5 responses currently reject temperature.
    return not (model or "").strip().lower().startswith("gpt-5")


def _rejects_temperature(detail: str) -> bool:
    lowered = (detail or "").lower()
    return "unsupported parameter" in lowered and "temperature" in lowered
