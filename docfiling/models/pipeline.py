"""Pydantic models for pipeline requests, context and results."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from docfiling.models.classification import DocumentClassification, IntelligenceField, TargetLevel
from docfiling.models.references import ReferenceDocument


class FolderInfo(BaseModel):
    folder_key: str
    name: str
    level: TargetLevel


class ChecklistItem(BaseModel):
    """An outstanding documentation requirement a document may fulfil."""

    id: str
    name: str
    category: str
    status: Literal["missing", "pending_review", "fulfilled"] = "missing"
    matching_document_types: List[str] = Field(default_factory=list)
    description: Optional[str] = None


class TypeAndCategory(BaseModel):
    file_type: str
    category: str


class CorrectionContext(BaseModel):
    """A past human correction, replayed to the classifier as guidance."""

    ai_predicted: TypeAndCategory
    user_corrected: TypeAndCategory
    file_name: str
    correction_count: int = 1


class ClientContext(BaseModel):
    client_id: Optional[str] = None
    project_id: Optional[str] = None
    client_type: Optional[str] = None
    client_name: Optional[str] = None
    project_shortcode: Optional[str] = None
    project_name: Optional[str] = None
    uploader_initials: Optional[str] = None


class PipelineConfig(BaseModel):
    """Per-run options; settings supply the process-wide defaults."""

    max_tokens: int = Field(default=8192, ge=1)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    use_multimodal: bool = True
    load_references: bool = True
    max_references_per_call: int = Field(default=12, ge=1)
    max_docs_per_chunk: int = Field(default=8, ge=1, description="Documents per classification call")
    max_tokens_per_chunk: int = Field(
        default=80_000, ge=1, description="Input token budget per classification call, system prompt included"
    )
    use_mock: bool = False
    deadline_seconds: Optional[float] = Field(default=None, gt=0)
    extract_intelligence: bool = True


class ClassificationRequest(BaseModel):
    """Batch-level context shared by every chunk of one run."""

    client_context: ClientContext = Field(default_factory=ClientContext)
    folders: List[FolderInfo] = Field(default_factory=list)
    checklist_items: List[ChecklistItem] = Field(default_factory=list)
    corrections: List[CorrectionContext] = Field(default_factory=list)
    references: List[ReferenceDocument] = Field(default_factory=list)
    skill_instructions: str = ""
    instructions: Optional[str] = None
    config: PipelineConfig = Field(default_factory=PipelineConfig)


class OracleUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    def __add__(self, other: "OracleUsage") -> "OracleUsage":
        return OracleUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_creation_tokens=self.cache_creation_tokens + other.cache_creation_tokens,
        )


class ChunkResult(BaseModel):
    """Outcome of one classifier call over one chunk."""

    classifications: List[DocumentClassification] = Field(default_factory=list)
    usage: OracleUsage = Field(default_factory=OracleUsage)
    latency_ms: int = 0


class PlacementResult(BaseModel):
    folder_key: str
    folder_name: str
    target_level: TargetLevel
    was_overridden: bool
    reason: str


class DocumentError(BaseModel):
    document_index: int
    file_name: str
    error: str


class PipelineMetadata(BaseModel):
    model: str
    batch_size: int
    api_calls_made: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_read_tokens: int = 0
    total_cache_creation_tokens: int = 0
    total_latency_ms: int = 0
    references_loaded: List[str] = Field(default_factory=list)
    cached_reference_hit: bool = False
    is_mock: bool = False


class PipelineResult(BaseModel):
    """Assembled output of one pipeline run.

    Every input index appears exactly once, either in ``documents`` or in
    ``errors``.
    """

    success: bool
    documents: List[DocumentClassification] = Field(default_factory=list)
    placements: Dict[int, PlacementResult] = Field(default_factory=dict)
    intelligence: Dict[int, List[IntelligenceField]] = Field(default_factory=dict)
    metadata: PipelineMetadata
    errors: List[DocumentError] = Field(default_factory=list)
