"""
Completion client for the external AI service.

Thin wrapper around openai.AsyncOpenAI: every call has an explicit timeout,
and every failure surfaces as CompletionError with a stable code derived
from the openai exception type, HTTP status and service error code.
"""
import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import openai

from core.config import get_config
from core.errors import CompletionError, CompletionErrorCode

logger = logging.getLogger(__name__)

_completion_client = None


def strip_code_fences(text: str) -> str:
    """Remove ```json fences some models wrap around JSON answers."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parse a model answer expected to hold one JSON object.

    Raises:
        ValueError: when the text is not a JSON object
    """
    data = json.loads(strip_code_fences(text))
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def classify_openai_error(exc: BaseException) -> CompletionErrorCode:
    """Map an openai/asyncio exception to a stable error code."""
    if isinstance(exc, (asyncio.TimeoutError, openai.APITimeoutError)):
        return CompletionErrorCode.TIMEOUT
    if isinstance(exc, openai.APIConnectionError):
        return CompletionErrorCode.CONNECTION_ERROR
    if isinstance(exc, openai.RateLimitError):
        if getattr(exc, "code", None) == "insufficient_quota":
            return CompletionErrorCode.QUOTA_EXCEEDED
        return CompletionErrorCode.RATE_LIMITED
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return CompletionErrorCode.AUTHENTICATION
    if isinstance(exc, openai.APIStatusError):
        if exc.status_code >= 500:
            return CompletionErrorCode.SERVICE_UNAVAILABLE
        if exc.status_code == 429:
            return CompletionErrorCode.RATE_LIMITED
        return CompletionErrorCode.BAD_REQUEST
    return CompletionErrorCode.UNKNOWN


class CompletionClient:
    """
    Chat completion / vision calls with timeout and typed errors.

    Args:
        api_key: OpenAI API key (empty -> every call fails with NOT_CONFIGURED)
        timeout_seconds: Upper bound for a single call
        client: Pre-built openai.AsyncOpenAI (tests inject a mock)
    """

    def __init__(self, api_key: str = "", timeout_seconds: float = 30.0, client: Any = None):
        self.timeout_seconds = timeout_seconds
        self._client = client
        if self._client is None and api_key:
            self._client = openai.AsyncOpenAI(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    @property
    def configured(self) -> bool:
        return self._client is not None

    async def _create(self, **kwargs) -> str:
        if self._client is None:
            raise CompletionError(CompletionErrorCode.NOT_CONFIGURED, "OPENAI_API_KEY not configured")

        start_time = time.time()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**kwargs),
                timeout=self.timeout_seconds,
            )
        except CompletionError:
            raise
        except Exception as e:
            code = classify_openai_error(e)
            logger.warning(f"[LLM_CLIENT] Call to {kwargs.get('model')} failed ({code.value}): {e}")
            raise CompletionError(code, str(e) or code.value) from e

        elapsed_ms = (time.time() - start_time) * 1000
        if not response.choices:
            raise CompletionError(CompletionErrorCode.EMPTY_RESPONSE, "No choices in response")
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise CompletionError(CompletionErrorCode.EMPTY_RESPONSE, "Empty completion content")

        logger.debug(f"[LLM_CLIENT] {kwargs.get('model')} answered in {elapsed_ms:.0f}ms")
        return content.strip()

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int = 150,
        temperature: float = 0.0,
        json_mode: bool = True,
    ) -> str:
        """
        Text completion.

        Returns:
            Raw model answer

        Raises:
            CompletionError: timeout, rate limit, service failure, empty answer
        """
        kwargs: Dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return await self._create(**kwargs)

    async def complete_vision(
        self,
        system_prompt: str,
        user_prompt: str,
        image_data_urls: List[str],
        model: str,
        max_tokens: int = 4096,
    ) -> str:
        """
        Vision completion over one or more images (base64 data URLs).

        Raises:
            CompletionError: as for complete()
        """
        content: List[Dict[str, Any]] = [{"type": "text", "text": user_prompt}]
        for url in image_data_urls:
            content.append({"type": "image_url", "image_url": {"url": url}})
        return await self._create(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": content},
            ],
            max_tokens=max_tokens,
            temperature=0.0,
        )


def get_completion_client() -> CompletionClient:
    """Shared completion client built from configuration (singleton)."""
    global _completion_client
    if _completion_client is None:
        config = get_config()
        _completion_client = CompletionClient(
            api_key=config.openai_api_key,
            timeout_seconds=config.llm_timeout_seconds,
        )
    return _completion_client
