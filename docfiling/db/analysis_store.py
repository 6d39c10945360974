"""Database writes for classification results.

Each classified document produces two writes:

- an analysis patch on its ``batch_items`` row
- a ``knowledge_bank_entries`` insert summarising the document

Writes go through ``execute_query`` (a worker thread, since the Supabase
client is synchronous) and transient failures are retried with backoff.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Sequence

from supabase import Client

from docfiling.db.supabase_client import execute_query
from docfiling.models.mapping import ItemAnalysis, KnowledgeEntry, MappedDocumentResult, PersistSummary
from docfiling.models.pipeline import ClientContext

logger = logging.getLogger(__name__)

ITEMS_TABLE = "batch_items"
KNOWLEDGE_TABLE = "knowledge_bank_entries"


async def update_item_analysis(client: Client, item_id: str, analysis: ItemAnalysis) -> Dict[str, Any]:
    """Patch one batch item with its analysis.

    Args:
        client: Supabase client instance
        item_id: ID of the ``batch_items`` row
        analysis: Mapped analysis payload

    Returns:
        Dict: Updated row

    Raises:
        RuntimeError: If the update fails or matches no row
    """
    record = analysis.model_dump()
    record["status"] = "analyzed"

    def _update():
        return client.table(ITEMS_TABLE).update(record).eq("id", item_id).execute()

    try:
        response = await execute_query(_update)
    except Exception as e:
        raise RuntimeError(f"Failed to update analysis for item {item_id}: {str(e)}") from e

    if not response.data:
        raise RuntimeError(f"Failed to update analysis for item {item_id}: no matching row")
    return response.data[0]


async def create_knowledge_entry(
    client: Client,
    entry: KnowledgeEntry,
    client_id: Optional[str] = None,
    project_id: Optional[str] = None,
    source_item_id: Optional[str] = None,
) -> str:
    """Insert a knowledge bank entry.

    Returns:
        str: ID of the created entry

    Raises:
        RuntimeError: If the insert fails
    """
    record = {
        **entry.model_dump(),
        "entry_type": "document_summary",
        "source_type": "document",
        "client_id": client_id,
        "project_id": project_id,
        "source_item_id": source_item_id,
    }

    def _insert():
        return client.table(KNOWLEDGE_TABLE).insert(record).execute()

    try:
        response = await execute_query(_insert)
    except Exception as e:
        raise RuntimeError(f"Failed to create knowledge entry '{entry.title}': {str(e)}") from e

    if not response.data:
        raise RuntimeError(f"Failed to create knowledge entry '{entry.title}': insert returned no data")
    return str(response.data[0]["id"])


async def persist_mapped_results(
    client: Client,
    mapped: Sequence[MappedDocumentResult],
    item_ids: Mapping[int, str],
    context: Optional[ClientContext] = None,
) -> PersistSummary:
    """Write analysis and knowledge entries for every mapped document.

    Documents without an item id are skipped. A failed write is recorded
    against its document index and does not stop the remaining writes.
    """
    context = context or ClientContext()
    summary = PersistSummary()

    for result in mapped:
        item_id = result.item_id or item_ids.get(result.document_index)
        if not item_id:
            summary.skipped.append(result.document_index)
            continue
        try:
            await update_item_analysis(client, item_id, result.item_analysis)
            summary.updated += 1
            await create_knowledge_entry(
                client,
                result.knowledge_entry,
                client_id=context.client_id,
                project_id=context.project_id,
                source_item_id=item_id,
            )
            summary.knowledge_entries += 1
        except RuntimeError as e:
            logger.error("Persisting document %d failed: %s", result.document_index, e)
            summary.failed[result.document_index] = str(e)

    logger.info(
        "Persisted %d analysis update(s), %d knowledge entries; %d skipped, %d failed",
        summary.updated, summary.knowledge_entries, len(summary.skipped), len(summary.failed),
    )
    return summary
