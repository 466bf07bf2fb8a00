"""
Unit tests for the AI field mapping service (fake completion client).
"""
import asyncio

import pytest

from core.errors import CompletionError, CompletionErrorCode, MappingError
from ingest.ai_mapping import AIFieldMappingService, AIMappingResult, build_mapping_prompt
from ingest.mapping_cache import TTLMappingCache
from tests.mocks import FakeCompletionClient, mapping_answer


class TestMapField:
    """Single-header mapping."""

    @pytest.mark.asyncio
    async def test_maps_header(self, ai_service, fake_client):
        fake_client.mapping_answers["Consignee Ref"] = mapping_answer("loadNumber", 0.92)

        result = await ai_service.map_field("Consignee Ref")

        assert isinstance(result, AIMappingResult)
        assert result.field == "loadNumber"
        assert result.confidence == 0.92
        assert not result.from_cache

    @pytest.mark.asyncio
    async def test_repeated_calls_hit_cache(self, ai_service, fake_client):
        fake_client.mapping_answers["Consignee Ref"] = mapping_answer("loadNumber", 0.92)

        first = await ai_service.map_field("Consignee Ref")
        second = await ai_service.map_field("Consignee Ref")

        assert len(fake_client.calls) == 1
        assert second.field == first.field
        assert second.from_cache

    @pytest.mark.asyncio
    async def test_cache_key_is_normalized(self, ai_service, fake_client):
        fake_client.default_answer = mapping_answer("loadNumber", 0.9)

        await ai_service.map_field("Consignee Ref")
        result = await ai_service.map_field("  consignee_REF ")

        assert len(fake_client.calls) == 1
        assert result.from_cache

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_request(self, cache):
        client = FakeCompletionClient(default_answer=mapping_answer("orderNumber", 0.85), delay=0.05)
        service = AIFieldMappingService(client=client, cache=cache)

        results = await asyncio.gather(*(service.map_field("Sales Ref") for _ in range(5)))

        assert len(client.calls) == 1
        assert {r.field for r in results} == {"orderNumber"}

    @pytest.mark.asyncio
    async def test_header_locks_released_after_requests(self, cache):
        client = FakeCompletionClient(default_answer=mapping_answer("orderNumber", 0.85), delay=0.01)
        service = AIFieldMappingService(client=client, cache=cache)

        await asyncio.gather(*(service.map_field(f"Sales Ref {i % 3}") for i in range(9)))
        await service.map_field("Mystery Column")

        assert service._key_locks == {}
        assert service._lock_users == {}

    @pytest.mark.asyncio
    async def test_header_lock_released_on_failure(self, cache):
        client = FakeCompletionClient(error=CompletionError(CompletionErrorCode.TIMEOUT, "timed out"))
        service = AIFieldMappingService(client=client, cache=cache)

        await asyncio.gather(service.map_field("Weird Column"), service.map_field("Weird Column"))

        assert service._key_locks == {}
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_malformed_answer(self, ai_service, fake_client):
        fake_client.default_answer = "this is not json {"

        result = await ai_service.map_field("Weird Column")

        assert isinstance(result, MappingError)
        assert result.code == "malformed_response"
        assert result.header == "Weird Column"
        assert ai_service.cache.get("weird column") is None

    @pytest.mark.asyncio
    async def test_answer_with_extra_keys_is_malformed(self, ai_service, fake_client):
        fake_client.default_answer = '{"field": "loadNumber", "confidence": 0.9, "reason": "looks like it"}'

        result = await ai_service.map_field("Weird Column")

        assert isinstance(result, MappingError)
        assert result.code == "malformed_response"

    @pytest.mark.asyncio
    async def test_confidence_out_of_range_is_malformed(self, ai_service, fake_client):
        fake_client.default_answer = mapping_answer("loadNumber", 1.7)

        result = await ai_service.map_field("Weird Column")

        assert isinstance(result, MappingError)
        assert result.code == "malformed_response"

    @pytest.mark.asyncio
    async def test_unknown_field(self, ai_service, fake_client):
        fake_client.default_answer = mapping_answer("unknown", 0.3)

        result = await ai_service.map_field("Weird Column")

        assert isinstance(result, MappingError)
        assert result.code == "unknown_field"

    @pytest.mark.asyncio
    async def test_code_fenced_answer(self, ai_service, fake_client):
        fake_client.default_answer = '```json\n{"field": "remarks", "confidence": 0.8}\n```'

        result = await ai_service.map_field("Notes to driver")

        assert isinstance(result, AIMappingResult)
        assert result.field == "remarks"

    @pytest.mark.asyncio
    async def test_service_failure(self, cache):
        client = FakeCompletionClient(error=CompletionError(CompletionErrorCode.TIMEOUT, "timed out"))
        service = AIFieldMappingService(client=client, cache=cache)

        result = await service.map_field("Weird Column")

        assert isinstance(result, MappingError)
        assert result.code == "timeout"
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_empty_header(self, ai_service, fake_client):
        result = await ai_service.map_field("   ")

        assert isinstance(result, MappingError)
        assert result.code == "empty_header"
        assert fake_client.calls == []


class TestMapHeaders:

    @pytest.mark.asyncio
    async def test_mixed_outcomes(self, ai_service, fake_client):
        fake_client.mapping_answers = {
            "Consignee Ref": mapping_answer("loadNumber", 0.9),
            "Lorry Plate": mapping_answer("truckId", 0.88),
        }
        fake_client.default_answer = "garbage"

        outcomes = await ai_service.map_headers(["Consignee Ref", "Lorry Plate", "Col X"])

        assert outcomes["Consignee Ref"].field == "loadNumber"
        assert outcomes["Lorry Plate"].field == "truckId"
        assert isinstance(outcomes["Col X"], MappingError)

    @pytest.mark.asyncio
    async def test_duplicate_headers_called_once(self, ai_service, fake_client):
        fake_client.default_answer = mapping_answer("remarks", 0.9)

        outcomes = await ai_service.map_headers(["Driver Notes", "Driver Notes"])

        assert list(outcomes) == ["Driver Notes"]
        assert len(fake_client.calls) == 1

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, cache):
        in_flight = 0
        peak = 0

        class CountingClient(FakeCompletionClient):
            async def complete(self, *args, **kwargs):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                await asyncio.sleep(0.01)
                in_flight -= 1
                return mapping_answer("remarks", 0.9)

        service = AIFieldMappingService(client=CountingClient(), cache=cache, max_concurrency=2)
        await service.map_headers([f"Header {i}" for i in range(6)])

        assert peak <= 2


class TestPrompt:

    def test_prompt_lists_fields(self):
        prompt = build_mapping_prompt("Consignee Ref")

        assert prompt.splitlines()[0] == 'Column header: "Consignee Ref"'
        assert "loadNumber" in prompt
        assert "shipToCustomer" in prompt

    def test_from_config(self, test_config, fake_client):
        service = AIFieldMappingService.from_config(test_config, client=fake_client, cache=TTLMappingCache())

        assert service.model == test_config.openai_model
        assert service.ttl_seconds == test_config.ai_cache_ttl_seconds
        assert service.max_concurrency == test_config.ai_max_concurrency
