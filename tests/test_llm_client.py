"""
Unit tests for the completion client and OpenAI error classification.
"""
import asyncio

import httpx
import openai
import pytest

from core.errors import CompletionError, CompletionErrorCode, user_message
from ingest.llm_client import CompletionClient, classify_openai_error, parse_json_object, strip_code_fences
from tests.mocks import mock_openai_client

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status_code: int, code: str = None):
    response = httpx.Response(status_code, request=_REQUEST)
    body = {"message": "error", "code": code} if code else None
    return cls("error", response=response, body=body)


class TestClassifyOpenAIError:

    def test_timeout(self):
        assert classify_openai_error(asyncio.TimeoutError()) == CompletionErrorCode.TIMEOUT
        assert classify_openai_error(openai.APITimeoutError(request=_REQUEST)) == CompletionErrorCode.TIMEOUT

    def test_connection(self):
        error = openai.APIConnectionError(request=_REQUEST)
        assert classify_openai_error(error) == CompletionErrorCode.CONNECTION_ERROR

    def test_rate_limit(self):
        error = _status_error(openai.RateLimitError, 429)
        assert classify_openai_error(error) == CompletionErrorCode.RATE_LIMITED

    def test_quota(self):
        error = _status_error(openai.RateLimitError, 429, code="insufficient_quota")
        assert classify_openai_error(error) == CompletionErrorCode.QUOTA_EXCEEDED

    def test_authentication(self):
        error = _status_error(openai.AuthenticationError, 401)
        assert classify_openai_error(error) == CompletionErrorCode.AUTHENTICATION

    def test_server_error(self):
        error = _status_error(openai.InternalServerError, 503)
        assert classify_openai_error(error) == CompletionErrorCode.SERVICE_UNAVAILABLE

    def test_bad_request(self):
        error = _status_error(openai.BadRequestError, 400)
        assert classify_openai_error(error) == CompletionErrorCode.BAD_REQUEST

    def test_unknown(self):
        assert classify_openai_error(RuntimeError("boom")) == CompletionErrorCode.UNKNOWN


class TestCompletionClient:

    @pytest.mark.asyncio
    async def test_complete(self):
        client = CompletionClient(client=mock_openai_client('{"field": "loadNumber", "confidence": 0.9}'))

        answer = await client.complete("system", "user", model="gpt-4o-mini")

        assert parse_json_object(answer)["field"] == "loadNumber"

    @pytest.mark.asyncio
    async def test_request_shape(self):
        openai_client = mock_openai_client('{"ok": true}')
        client = CompletionClient(client=openai_client)

        await client.complete("system", "user", model="gpt-4o-mini", max_tokens=50)

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 50
        assert kwargs["temperature"] == 0.0
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][1] == {"role": "user", "content": "user"}

    @pytest.mark.asyncio
    async def test_vision_request_carries_images(self):
        openai_client = mock_openai_client('{"text": "x"}')
        client = CompletionClient(client=openai_client)

        await client.complete_vision("system", "read", ["data:image/jpeg;base64,AAA"], model="gpt-4o")

        content = openai_client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert content[0] == {"type": "text", "text": "read"}
        assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,AAA"

    @pytest.mark.asyncio
    async def test_not_configured(self):
        client = CompletionClient(api_key="")

        assert not client.configured
        with pytest.raises(CompletionError) as exc_info:
            await client.complete("system", "user", model="gpt-4o-mini")
        assert exc_info.value.error_code == CompletionErrorCode.NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_empty_response(self):
        client = CompletionClient(client=mock_openai_client("   "))

        with pytest.raises(CompletionError) as exc_info:
            await client.complete("system", "user", model="gpt-4o-mini")
        assert exc_info.value.error_code == CompletionErrorCode.EMPTY_RESPONSE

    @pytest.mark.asyncio
    async def test_openai_error_is_typed(self):
        error = _status_error(openai.RateLimitError, 429)
        client = CompletionClient(client=mock_openai_client(side_effect=error))

        with pytest.raises(CompletionError) as exc_info:
            await client.complete("system", "user", model="gpt-4o-mini")
        assert exc_info.value.error_code == CompletionErrorCode.RATE_LIMITED
        assert exc_info.value.recoverable

    @pytest.mark.asyncio
    async def test_timeout_enforced(self):
        async def slow_create(**kwargs):
            await asyncio.sleep(1)

        openai_client = mock_openai_client()
        openai_client.chat.completions.create = slow_create
        client = CompletionClient(client=openai_client, timeout_seconds=0.01)

        with pytest.raises(CompletionError) as exc_info:
            await client.complete("system", "user", model="gpt-4o-mini")
        assert exc_info.value.error_code == CompletionErrorCode.TIMEOUT
        assert user_message(exc_info.value) == "The AI service timed out. Please try again."


class TestJsonHelpers:

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_parse_json_object_rejects_lists(self):
        with pytest.raises(ValueError):
            parse_json_object("[1, 2]")
