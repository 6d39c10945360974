"""Request and response models for the HTTP API."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from docfiling.models.mapping import BatchMappingStats, MappedDocumentResult, PersistSummary
from docfiling.models.pipeline import (
    ChecklistItem,
    ClientContext,
    CorrectionContext,
    DocumentError,
    FolderInfo,
    PipelineConfig,
    PipelineMetadata,
)


class AnalyzeMetadata(BaseModel):
    """JSON ``metadata`` form field of ``POST /api/analyze``."""

    client_context: ClientContext = Field(default_factory=ClientContext)
    folders: List[FolderInfo] = Field(default_factory=list)
    checklist_items: List[ChecklistItem] = Field(default_factory=list)
    corrections: List[CorrectionContext] = Field(default_factory=list)
    instructions: Optional[str] = None
    item_ids: Dict[int, str] = Field(
        default_factory=dict,
        description="Document index -> batch item id, required for persistence",
    )
    is_internal: bool = False
    config: PipelineConfig = Field(default_factory=PipelineConfig)


class AnalyzeResponse(BaseModel):
    success: bool
    documents: List[MappedDocumentResult] = Field(default_factory=list)
    stats: BatchMappingStats
    metadata: PipelineMetadata
    errors: List[DocumentError] = Field(default_factory=list)
    persisted: Optional[PersistSummary] = None
