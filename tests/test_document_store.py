"""
Tests for SQLDocumentStore on an aiosqlite database.
"""
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from core.database import create_tables
from core.document_manager import SQLDocumentStore
from core.errors import PersistenceError
from ingest.types import (
    BundleMetadata,
    DocumentStatus,
    ParsedShipmentBundle,
    ShipmentBase,
    SourceInfo,
)


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ingest.db'}")
    await create_tables(engine)
    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    yield SQLDocumentStore(session_factory=factory)
    await engine.dispose()


def bundle(load_number, row_index, needs_review=False):
    return ParsedShipmentBundle(
        base=ShipmentBase(load_number=load_number),
        metadata=BundleMetadata(needs_review=needs_review, validation_errors=["Ship-to customer is missing"]),
        source_info=SourceInfo(file_name="etd.xlsx", sheet_name="Loads", row_index=row_index),
    )


class TestSQLDocumentStore:

    @pytest.mark.asyncio
    async def test_create_document(self, sql_store):
        document_id = await sql_store.create_document("ETD_REPORT", "etd.xlsx", "xlsx", 2048)

        document = await sql_store.get_document(document_id)
        assert document["status"] == "UPLOADED"
        assert document["file_name"] == "etd.xlsx"
        assert document["shipment_count"] is None

    @pytest.mark.asyncio
    async def test_forward_transitions(self, sql_store):
        document_id = await sql_store.create_document("ETD_REPORT", "etd.xlsx", "xlsx", 2048)

        await sql_store.update_document(document_id, DocumentStatus.PROCESSING)
        await sql_store.update_document(document_id, DocumentStatus.PROCESSED, shipment_count=2)

        document = await sql_store.get_document(document_id)
        assert document["status"] == "PROCESSED"
        assert document["shipment_count"] == 2

    @pytest.mark.asyncio
    async def test_error_message_stored(self, sql_store):
        document_id = await sql_store.create_document("ETD_REPORT", "etd.xlsx", "xlsx", 2048)

        await sql_store.update_document(document_id, DocumentStatus.ERROR, error_message="Could not read spreadsheet")

        document = await sql_store.get_document(document_id)
        assert document["status"] == "ERROR"
        assert document["error_message"] == "Could not read spreadsheet"

    @pytest.mark.asyncio
    async def test_backward_transition_rejected(self, sql_store):
        document_id = await sql_store.create_document("ETD_REPORT", "etd.xlsx", "xlsx", 2048)
        await sql_store.update_document(document_id, DocumentStatus.PROCESSING)
        await sql_store.update_document(document_id, DocumentStatus.ERROR)

        with pytest.raises(PersistenceError) as exc_info:
            await sql_store.update_document(document_id, DocumentStatus.PROCESSING)
        assert exc_info.value.code == "invalid_transition"

        document = await sql_store.get_document(document_id)
        assert document["status"] == "ERROR"

    @pytest.mark.asyncio
    async def test_unknown_document(self, sql_store):
        assert await sql_store.get_document("missing") is None

        with pytest.raises(PersistenceError) as exc_info:
            await sql_store.update_document("missing", DocumentStatus.PROCESSING)
        assert exc_info.value.code == "document_not_found"

    @pytest.mark.asyncio
    async def test_save_and_list_shipments(self, sql_store):
        document_id = await sql_store.create_document("ETD_REPORT", "etd.xlsx", "xlsx", 2048)

        saved = await sql_store.save_bundles(document_id, [bundle("L-1", 1), bundle("L-2", 2, needs_review=True)])

        assert saved == 2
        shipments = await sql_store.list_shipments(document_id)
        assert [s["row_index"] for s in shipments] == [1, 2]
        assert shipments[1]["needs_review"] is True
        assert shipments[0]["validation_errors"] == ["Ship-to customer is missing"]
        assert shipments[0]["bundle"]["base"]["load_number"] == "L-1"
        assert shipments[0]["sheet_name"] == "Loads"

    @pytest.mark.asyncio
    async def test_save_nothing(self, sql_store):
        document_id = await sql_store.create_document("ETD_REPORT", "etd.xlsx", "xlsx", 2048)

        assert await sql_store.save_bundles(document_id, []) == 0
        assert await sql_store.list_shipments(document_id) == []
