"""Map pipeline results onto the persistent store's write contract.

For each classified document this produces the "update analysis" payload
(summary, detected type, folder, document code, nested extracted data)
and the "create knowledge entry" payload. Batch statistics are computed
alongside.
"""

import logging
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from docfiling.models.classification import DocumentClassification, IntelligenceField
from docfiling.models.mapping import (
    BatchMappingStats,
    ExtractedValue,
    ItemAnalysis,
    KnowledgeEntry,
    MappedDocumentResult,
)
from docfiling.models.pipeline import ClientContext, PipelineResult, PlacementResult
from docfiling.services.placement import get_type_abbreviation
from docfiling.utils.text import to_snake_case

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = "V1.0"
LOW_CONFIDENCE_THRESHOLD = 0.60
MAX_SHORTCODE_CHARS = 10
MAX_KEY_ITEMS = 3
MAX_TAG_TERMS = 5


# ---------------------------------------------------------------------------
# Document codes
# ---------------------------------------------------------------------------

def derive_shortcode(name: Optional[str]) -> str:
    """'Acme Holdings Ltd' -> 'ACMEHOLDIN'; empty input gives 'DOC'."""
    code = "".join(ch for ch in (name or "").upper() if ch.isascii() and ch.isalnum())
    return code[:MAX_SHORTCODE_CHARS] or "DOC"


def generate_document_code(
    file_type: str,
    context: ClientContext,
    is_internal: bool = False,
    on_date: Optional[date] = None,
) -> str:
    """Build ``{SHORTCODE}-{TYPE}-{INT|EXT}-{INITIALS}-{VERSION}-{YYYY-MM-DD}``.

    Example:
        >>> generate_document_code("RedBook Valuation", ClientContext(project_shortcode="WIMBPARK"),
        ...                        on_date=date(2024, 3, 1))
        'WIMBPARK-VAL-EXT-SYS-V1.0-2024-03-01'
    """
    shortcode = derive_shortcode(context.project_shortcode or context.client_name)
    initials = (context.uploader_initials or "").strip().upper() or "SYS"
    on_date = on_date or datetime.now(timezone.utc).date()
    return "-".join([
        shortcode,
        get_type_abbreviation(file_type),
        "INT" if is_internal else "EXT",
        initials,
        DOCUMENT_VERSION,
        on_date.isoformat(),
    ])


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def _set_nested(data: Dict[str, Any], parts: Sequence[str], leaf: Dict[str, Any]) -> None:
    current = data
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = leaf


def build_extracted_data(
    classification_fields: Sequence[IntelligenceField],
    intelligence_fields: Sequence[IntelligenceField] = (),
) -> Dict[str, Any]:
    """Nest fields by path: ``financials.gdv`` -> ``{"financials": {"gdv": {...}}}``.

    Fields from the dedicated intelligence pass replace classification
    fields with the same path. A path that is also the parent of another
    path (``loan`` next to ``loan.amount``) is dropped in favour of its
    children, whatever order the fields arrive in.
    """
    by_path: Dict[Tuple[str, ...], IntelligenceField] = {}
    for field in list(classification_fields) + list(intelligence_fields):
        parts = tuple(p for p in field.field_path.split(".") if p)
        if parts:
            by_path[parts] = field

    parents = {parts[:depth] for parts in by_path for depth in range(1, len(parts))}

    data: Dict[str, Any] = {}
    for parts, field in by_path.items():
        if parts in parents:
            logger.warning(
                "Dropping extracted value at '%s': the path also has nested fields", ".".join(parts)
            )
            continue
        leaf = ExtractedValue(
            value=field.value,
            type=field.value_type,
            confidence=field.confidence,
            label=field.label,
        )
        _set_nested(data, parts, leaf.model_dump())
    return data


def build_knowledge_entry(doc: DocumentClassification, placement: PlacementResult) -> KnowledgeEntry:
    decision = doc.classification
    summary = doc.summary

    key_points: List[str] = []
    if summary.document_purpose:
        key_points.append(summary.document_purpose)
    if summary.key_amounts:
        key_points.append(f"Key amounts: {', '.join(summary.key_amounts[:MAX_KEY_ITEMS])}")
    if summary.key_dates:
        key_points.append(f"Key dates: {', '.join(summary.key_dates[:MAX_KEY_ITEMS])}")
    parties = [p for p in summary.key_entities.people + summary.key_entities.companies if p]
    if parties:
        key_points.append(f"Key parties: {', '.join(parties)}")

    tags = [to_snake_case(decision.category), to_snake_case(decision.file_type), placement.folder_key]
    tags.extend(summary.key_terms[:MAX_TAG_TERMS])

    return KnowledgeEntry(
        title=f"{decision.file_type}: {doc.file_name}",
        content=summary.executive_summary or f"{decision.file_type} document filed to {placement.folder_name}.",
        key_points=key_points,
        tags=list(dict.fromkeys(t for t in tags if t)),
    )


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def map_classification(
    doc: DocumentClassification,
    placement: PlacementResult,
    intelligence_fields: Sequence[IntelligenceField] = (),
    context: Optional[ClientContext] = None,
    is_internal: bool = False,
    on_date: Optional[date] = None,
) -> MappedDocumentResult:
    """Map one classified document to its store payloads."""
    context = context or ClientContext()
    decision = doc.classification

    item_analysis = ItemAnalysis(
        summary=doc.summary.executive_summary or f"{decision.file_type} document",
        file_type_detected=decision.file_type,
        category=decision.category,
        target_folder=placement.folder_key,
        confidence=decision.confidence,
        generated_document_code=generate_document_code(decision.file_type, context, is_internal, on_date),
        version=DOCUMENT_VERSION,
        extracted_data=build_extracted_data(doc.intelligence_fields, intelligence_fields),
    )

    return MappedDocumentResult(
        document_index=doc.document_index,
        file_name=doc.file_name,
        item_analysis=item_analysis,
        knowledge_entry=build_knowledge_entry(doc, placement),
        placement=placement,
        classification=doc,
        intelligence_fields=list(intelligence_fields),
        is_low_confidence=decision.confidence < LOW_CONFIDENCE_THRESHOLD,
        alternative_types=list(decision.alternative_types),
    )


def map_batch(
    result: PipelineResult,
    context: Optional[ClientContext] = None,
    is_internal: bool = False,
    on_date: Optional[date] = None,
) -> Tuple[List[MappedDocumentResult], BatchMappingStats]:
    """Map every placed document of a pipeline result and compute batch stats."""
    mapped: List[MappedDocumentResult] = []
    categories: Counter = Counter()
    folders: Counter = Counter()

    for doc in result.documents:
        placement = result.placements.get(doc.document_index)
        if placement is None:
            continue
        item = map_classification(
            doc, placement, result.intelligence.get(doc.document_index, []),
            context, is_internal, on_date,
        )
        mapped.append(item)
        categories[doc.classification.category] += 1
        folders[placement.folder_key] += 1

    stats = BatchMappingStats(
        total_documents=len(result.documents) + len(result.errors),
        classified=len(result.documents),
        errors=len(result.errors),
        low_confidence_count=sum(1 for m in mapped if m.is_low_confidence),
        placement_overrides=sum(1 for m in mapped if m.placement.was_overridden),
        category_counts=dict(categories),
        folder_counts=dict(folders),
    )
    return mapped, stats
