"""Tests for writing classification results to the persistent store."""

from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_classification
from docfiling.db.analysis_store import (
    create_knowledge_entry,
    persist_mapped_results,
    update_item_analysis,
)
from docfiling.db.file_type_definitions import fetch_user_file_type_definitions
from docfiling.models.mapping import ItemAnalysis, KnowledgeEntry
from docfiling.models.pipeline import ClientContext
from docfiling.services.placement import resolve_placement
from docfiling.services.result_mapper import map_classification


@pytest.fixture(autouse=True)
def no_backoff_sleep():
    """Keep retried writes from sleeping."""
    with patch("docfiling.utils.retry.asyncio.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def mock_client():
    return MagicMock()


def set_update_response(client, data):
    client.table.return_value.update.return_value.eq.return_value.execute.return_value = MagicMock(data=data)


def set_insert_response(client, data):
    client.table.return_value.insert.return_value.execute.return_value = MagicMock(data=data)


def make_analysis():
    return ItemAnalysis(
        summary="Valuation of the site",
        file_type_detected="RedBook Valuation",
        category="Appraisals",
        target_folder="appraisals",
        confidence=0.92,
        generated_document_code="WIMBPARK-VAL-EXT-SYS-V1.0-2024-03-01",
    )


def make_mapped(index, item_id=None):
    doc = make_classification(index, "RedBook Valuation", "Appraisals", suggested_folder="appraisals")
    placement = resolve_placement("RedBook Valuation", "Appraisals", "appraisals")
    mapped = map_classification(doc, placement, on_date=date(2024, 3, 1))
    mapped.item_id = item_id
    return mapped


class TestUpdateItemAnalysis:
    @pytest.mark.asyncio
    async def test_update_patches_item(self, mock_client):
        """Test that the analysis patch targets the item row and marks it analyzed."""
        # Arrange
        set_update_response(mock_client, [{"id": "item-1", "status": "analyzed"}])

        # Act
        row = await update_item_analysis(mock_client, "item-1", make_analysis())

        # Assert
        assert row == {"id": "item-1", "status": "analyzed"}
        mock_client.table.assert_called_with("batch_items")
        record = mock_client.table.return_value.update.call_args.args[0]
        assert record["status"] == "analyzed"
        assert record["file_type_detected"] == "RedBook Valuation"
        mock_client.table.return_value.update.return_value.eq.assert_called_with("id", "item-1")

    @pytest.mark.asyncio
    async def test_no_matching_row_raises(self, mock_client):
        set_update_response(mock_client, [])

        with pytest.raises(RuntimeError, match="no matching row"):
            await update_item_analysis(mock_client, "missing", make_analysis())

    @pytest.mark.asyncio
    async def test_query_failure_raises_runtime_error(self, mock_client):
        mock_client.table.return_value.update.return_value.eq.return_value.execute.side_effect = (
            ValueError("invalid input syntax")
        )

        with pytest.raises(RuntimeError, match="Failed to update analysis for item item-1"):
            await update_item_analysis(mock_client, "item-1", make_analysis())


class TestCreateKnowledgeEntry:
    @pytest.mark.asyncio
    async def test_insert_returns_id(self, mock_client):
        set_insert_response(mock_client, [{"id": 42}])
        entry = KnowledgeEntry(title="RedBook Valuation: a.pdf", content="Summary")

        entry_id = await create_knowledge_entry(
            mock_client, entry, client_id="client-1", project_id="project-1", source_item_id="item-1",
        )

        assert entry_id == "42"
        mock_client.table.assert_called_with("knowledge_bank_entries")
        record = mock_client.table.return_value.insert.call_args.args[0]
        assert record["entry_type"] == "document_summary"
        assert record["client_id"] == "client-1"
        assert record["source_item_id"] == "item-1"

    @pytest.mark.asyncio
    async def test_empty_insert_raises(self, mock_client):
        set_insert_response(mock_client, [])

        with pytest.raises(RuntimeError, match="insert returned no data"):
            await create_knowledge_entry(mock_client, KnowledgeEntry(title="t", content="c"))


class TestPersistMappedResults:
    @pytest.mark.asyncio
    async def test_writes_skips_and_failures(self, mock_client):
        set_insert_response(mock_client, [{"id": "entry"}])
        mapped = [make_mapped(0), make_mapped(1), make_mapped(2)]
        update = AsyncMock(side_effect=[{"id": "row"}, RuntimeError("boom")])

        with patch("docfiling.db.analysis_store.update_item_analysis", update):
            summary = await persist_mapped_results(
                mock_client, mapped, {0: "item-a", 2: "item-c"}, ClientContext(project_id="p-1"),
            )

        assert [c.args[1] for c in update.call_args_list] == ["item-a", "item-c"]
        assert summary.updated == 1
        assert summary.knowledge_entries == 1
        assert summary.skipped == [1]
        assert summary.failed == {2: "boom"}
        record = mock_client.table.return_value.insert.call_args.args[0]
        assert record["project_id"] == "p-1"

    @pytest.mark.asyncio
    async def test_item_ids_from_mapping_and_result(self, mock_client):
        set_update_response(mock_client, [{"id": "row"}])
        set_insert_response(mock_client, [{"id": "entry"}])
        mapped = [make_mapped(0), make_mapped(1, item_id="item-b"), make_mapped(2)]

        summary = await persist_mapped_results(mock_client, mapped, {0: "item-a"})

        assert summary.updated == 2
        assert summary.knowledge_entries == 2
        assert summary.skipped == [2]
        assert summary.failed == {}


class TestFileTypeDefinitions:
    @pytest.mark.asyncio
    async def test_fetch_active_definitions(self, mock_client):
        rows = [{"file_type": "Retention Schedule", "category": "Financial Documents"}]
        query = mock_client.table.return_value.select.return_value.eq.return_value
        query.execute.return_value = MagicMock(data=rows)

        result = await fetch_user_file_type_definitions(mock_client)

        assert result == rows
        mock_client.table.assert_called_with("file_type_definitions")
        mock_client.table.return_value.select.return_value.eq.assert_called_with("is_active", True)

    @pytest.mark.asyncio
    async def test_no_rows_gives_empty_list(self, mock_client):
        query = mock_client.table.return_value.select.return_value.eq.return_value
        query.execute.return_value = MagicMock(data=None)

        assert await fetch_user_file_type_definitions(mock_client) == []

    @pytest.mark.asyncio
    async def test_failure_raises_runtime_error(self, mock_client):
        query = mock_client.table.return_value.select.return_value.eq.return_value
        query.execute.side_effect = Exception("relation does not exist")

        with pytest.raises(RuntimeError, match="Failed to fetch file type definitions"):
            await fetch_user_file_type_definitions(mock_client)
