"""Pydantic models for classification output.

These models validate what comes back from the completion service, so
they accept both snake_case and camelCase keys and clamp confidences
into [0, 1] instead of rejecting slightly out-of-range values.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TargetLevel = Literal["client", "project"]


def clamp_confidence(value: Any) -> float:
    """Coerce a raw confidence into [0, 1]; unparsable values become 0."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return max(0.0, min(1.0, confidence))


class OracleModel(BaseModel):
    """Base for models parsed from oracle JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AlternativeType(OracleModel):
    file_type: str
    category: str = "Other"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> float:
        return clamp_confidence(v)


class ClassificationDecision(OracleModel):
    """The classifier's type, category and filing opinion for one document."""

    file_type: str
    category: str
    suggested_folder: str = "miscellaneous"
    target_level: TargetLevel = "client"
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    alternative_types: List[AlternativeType] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> float:
        return clamp_confidence(v)

    @field_validator("target_level", mode="before")
    @classmethod
    def normalize_target_level(cls, v: Any) -> str:
        level = str(v or "").strip().lower()
        return level if level in ("client", "project") else "client"


class KeyEntities(OracleModel):
    people: List[str] = Field(default_factory=list)
    companies: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    projects: List[str] = Field(default_factory=list)


class DocumentSummary(OracleModel):
    executive_summary: str = ""
    document_purpose: str = ""
    key_entities: KeyEntities = Field(default_factory=KeyEntities)
    key_terms: List[str] = Field(default_factory=list)
    key_dates: List[str] = Field(default_factory=list)
    key_amounts: List[str] = Field(default_factory=list)


class ChecklistMatch(OracleModel):
    item_id: str
    item_name: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> float:
        return clamp_confidence(v)


class IntelligenceField(OracleModel):
    """A structured fact extracted from document text.

    Optional attributes are filled in by ``post_process_field`` before a
    field leaves the intelligence extractor.
    """

    field_path: str
    label: str = ""
    value: Any = None
    value_type: str = "text"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source_text: str = ""
    template_tags: Optional[List[str]] = None
    category: Optional[str] = None
    is_canonical: Optional[bool] = None
    scope: str = "project"
    original_label: Optional[str] = None
    page_reference: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp(cls, v: Any) -> float:
        return clamp_confidence(v)


class DocumentClassification(OracleModel):
    """Complete classifier output for one document, keyed by ``document_index``."""

    document_index: int = Field(..., ge=0)
    file_name: str = ""
    classification: ClassificationDecision
    summary: DocumentSummary = Field(default_factory=DocumentSummary)
    checklist_matches: List[ChecklistMatch] = Field(default_factory=list)
    intelligence_fields: List[IntelligenceField] = Field(default_factory=list)
