"""
Pytest configuration and shared fixtures.
"""
import pytest

from core.config import ProcessorConfig
from ingest.ai_mapping import AIFieldMappingService
from ingest.mapping_cache import TTLMappingCache
from tests.mocks import FakeCompletionClient, InMemoryDocumentStore


@pytest.fixture
def test_config():
    """Configuration with defaults and no API key."""
    return ProcessorConfig(
        openai_api_key="",
        database_url="sqlite+aiosqlite:///:memory:",
        date_default_order="MDY",
    )


@pytest.fixture
def cache():
    """Isolated AI mapping cache."""
    return TTLMappingCache()


@pytest.fixture
def fake_client():
    """Scripted completion client."""
    return FakeCompletionClient()


@pytest.fixture
def ai_service(fake_client, cache):
    """AI mapping service over the fake client and an isolated cache."""
    return AIFieldMappingService(client=fake_client, cache=cache, ttl_seconds=3600)


@pytest.fixture
def store():
    """In-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def etd_rows():
    """Header + three shipment rows as they appear on an ETD report."""
    return [
        ["Load No", "Order Number", "Promised Ship Date", "Ship To Customer Name",
         "Address Line 1 and 2", "Total Weight", "Remark"],
        ["L-1001", "SO-5001", "03/15/2023", "Acme Trading", "12 Harbour Rd, Port Klang", 1250.5, "Fragile"],
        ["L-1002", "SO-5002", 45001, "Borneo Supplies", "8 Jalan Tun, Kuching", 800, None],
        ["L-1003", "SO-5003", "2023-03-17", "Coastal Foods", "3 Pier St, Penang", "1,100 kg", "Call first"],
    ]
