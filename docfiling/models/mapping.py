"""Pydantic models for the persistent store write contract."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from docfiling.models.classification import AlternativeType, DocumentClassification, IntelligenceField
from docfiling.models.pipeline import PlacementResult


class ExtractedValue(BaseModel):
    """Leaf of the nested ``extracted_data`` document."""

    value: Any = None
    type: str = "text"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    label: str = ""


class ItemAnalysis(BaseModel):
    """Payload of the per-document "update analysis" write."""

    summary: str
    file_type_detected: str
    category: str
    target_folder: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    generated_document_code: str
    version: str = "V1.0"
    extracted_data: Dict[str, Any] = Field(default_factory=dict)


class KnowledgeEntry(BaseModel):
    """Payload of the "create knowledge entry" write."""

    title: str
    content: str
    key_points: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class MappedDocumentResult(BaseModel):
    document_index: int
    file_name: str
    item_analysis: ItemAnalysis
    knowledge_entry: KnowledgeEntry
    placement: PlacementResult
    classification: DocumentClassification
    intelligence_fields: List[IntelligenceField] = Field(default_factory=list)
    is_low_confidence: bool = False
    alternative_types: List[AlternativeType] = Field(default_factory=list)
    item_id: Optional[str] = None


class BatchMappingStats(BaseModel):
    total_documents: int = 0
    classified: int = 0
    errors: int = 0
    low_confidence_count: int = 0
    placement_overrides: int = 0
    category_counts: Dict[str, int] = Field(default_factory=dict)
    folder_counts: Dict[str, int] = Field(default_factory=dict)


class PersistSummary(BaseModel):
    """Outcome of writing a mapped batch to the persistent store."""

    updated: int = 0
    knowledge_entries: int = 0
    skipped: List[int] = Field(default_factory=list, description="Indices without an item id")
    failed: Dict[int, str] = Field(default_factory=dict, description="Index -> error message")
