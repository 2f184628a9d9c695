"""
LLM client abstraction for the two hosted text-generation vendors.

- Gemini: REST ``generateContent`` endpoint, called with httpx
- OpenRouter: OpenAI-compatible chat completions, called with the openai SDK

Credentials are read from the environment on every call, so a missing key
only fails the call that needs it. Nothing here retries: a failed upstream
call is reported once.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx
import openai

logger = logging.getLogger(__name__)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1"
OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 8192
DEFAULT_TIMEOUT_SECONDS = 120.0

NO_RESPONSE_TEXT = "No response generated"
GEMINI_MALFORMED_MESSAGE = "Gemini API returned a malformed response"


class LLMError(Exception):
    """Upstream or transport failure, carrying a client-safe message."""


class LLMConfigurationError(LLMError):
    """Required credential for a vendor is not configured."""


class LLMProvider(str, Enum):
    GEMINI = "gemini"
    OPENROUTER = "openrouter"


# Env var holding the credential for each provider.
_API_KEY_ENV = {
    LLMProvider.GEMINI: "GEMINI_API_KEY",
    LLMProvider.OPENROUTER: "OPENROUTER_API_KEY",
}

_VENDOR_LABEL = {
    LLMProvider.GEMINI: "Gemini",
    LLMProvider.OPENROUTER: "OpenRouter",
}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw) if raw else float(default)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return float(default)


def get_api_key_for_provider(provider: LLMProvider) -> str | None:
    """Return the configured API key for ``provider`` or None."""
    key = os.getenv(_API_KEY_ENV[provider], "").strip()
    return key or None


@dataclass
class LLMResponse:
    """Raw response from an LLM API call."""

    provider: LLMProvider
    raw_content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def text_content(self) -> str:
        return self.raw_content


class LLMClient:
    """Unified LLM client. Instantiated per call."""

    def __init__(
        self,
        provider: LLMProvider,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.provider = provider
        self.api_key = api_key if api_key is not None else get_api_key_for_provider(provider)
        self.model = model or self._default_model()
        self.timeout = timeout or _env_float("LLM_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)

    def _default_model(self) -> str:
        if self.provider == LLMProvider.GEMINI:
            return os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        return os.getenv("OPENROUTER_MODEL", "xiaomi/mimo-v2-flash:free")

    def _require_key(self) -> str:
        if not self.api_key:
            env_name = _API_KEY_ENV[self.provider]
            raise LLMConfigurationError(
                f"{_VENDOR_LABEL[self.provider]} API key not configured. "
                f"Set {env_name} in the environment or .env.local"
            )
        return self.api_key

    async def call(
        self,
        prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """Send a single user prompt and return the plain text reply."""
        if max_tokens is None:
            max_tokens = int(_env_float("LLM_MAX_TOKENS", DEFAULT_MAX_TOKENS))
        if temperature is None:
            temperature = _env_float("LLM_TEMPERATURE", DEFAULT_TEMPERATURE)
        if self.provider == LLMProvider.GEMINI:
            return await self._call_gemini(prompt, max_tokens, temperature)
        return await self._call_openrouter(prompt, max_tokens, temperature)

    async def _call_gemini(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        api_key = self._require_key()
        base = os.getenv("GEMINI_API_BASE", GEMINI_API_BASE).rstrip("/")
        url = f"{base}/models/{self.model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens,
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={"x-goog-api-key": api_key},
                )
        except httpx.TimeoutException as exc:
            raise LLMError("Gemini API request timed out") from exc
        except httpx.HTTPError as exc:
            raise LLMError(f"Gemini API request failed: {exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            message = _error_message(response, "Gemini API error")
            logger.error("Gemini API error %s: %s", response.status_code, message)
            raise LLMError(message)

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMError(GEMINI_MALFORMED_MESSAGE) from exc
        if not isinstance(data, dict):
            raise LLMError(GEMINI_MALFORMED_MESSAGE)

        usage = data.get("usageMetadata")
        if not isinstance(usage, dict):
            usage = {}
        return LLMResponse(
            provider=LLMProvider.GEMINI,
            raw_content=_valid_utf8(_gemini_text(data)) or NO_RESPONSE_TEXT,
            model=data.get("modelVersion") or self.model,
            input_tokens=usage.get("promptTokenCount", 0),
            output_tokens=usage.get("candidatesTokenCount", 0),
        )

    async def _call_openrouter(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        api_key = self._require_key()
        client = openai.AsyncOpenAI(
            api_key=api_key,
            base_url=os.getenv("OPENROUTER_BASE_URL", OPENROUTER_API_BASE).rstrip("/"),
            timeout=self.timeout,
            max_retries=0,
            default_headers={
                "HTTP-Referer": os.getenv("OPENROUTER_SITE_URL", "http://localhost:3000"),
                "X-Title": os.getenv(
                    "OPENROUTER_APP_NAME", "VetDDx - Veterinary Differential Diagnosis"
                ),
            },
        )

        try:
            response = await client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
            )
        except openai.APITimeoutError as exc:
            raise LLMError("OpenRouter API request timed out") from exc
        except openai.APIStatusError as exc:
            message = _openai_error_message(exc, "OpenRouter API error")
            logger.error("OpenRouter API error %s: %s", exc.status_code, message)
            raise LLMError(message) from exc
        except openai.APIError as exc:
            raise LLMError(f"OpenRouter API request failed: {exc.__class__.__name__}") from exc
        finally:
            await client.close()

        raw_text = ""
        if response.choices:
            raw_text = response.choices[0].message.content or ""

        usage = response.usage
        return LLMResponse(
            provider=LLMProvider.OPENROUTER,
            raw_content=_valid_utf8(raw_text) or NO_RESPONSE_TEXT,
            model=response.model or self.model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )


def _gemini_text(data: dict[str, Any]) -> str:
    """Return candidates[0].content.parts[0].text, or '' if any level is missing.

    A level of the wrong JSON type raises LLMError.
    """
    try:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        if not parts:
            return ""
        text = parts[0].get("text") or ""
    except (AttributeError, KeyError, IndexError, TypeError) as exc:
        raise LLMError(GEMINI_MALFORMED_MESSAGE) from exc
    return text if isinstance(text, str) else ""


def _valid_utf8(text: str) -> str:
    # Lone surrogates from JSON escapes cannot be re-encoded downstream
    return text.encode("utf-8", "replace").decode("utf-8")


def _error_message(response: httpx.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return fallback


def _openai_error_message(exc: openai.APIStatusError, fallback: str) -> str:
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return fallback
