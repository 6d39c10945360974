"""Pydantic models for the reference library."""

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ReferenceFiling(BaseModel):
    folder_key: str
    level: Literal["client", "project"]


class ExpectedField(BaseModel):
    """A field the intelligence extractor should look for in this document type."""

    field_path: str
    label: str
    value_type: str = "text"
    description: Optional[str] = None


class ReferenceDocument(BaseModel):
    """Structured description of a known document type."""

    id: str
    file_type: str
    category: str
    tags: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    content: str = Field(default="", description="Description text shown to the classifier")
    source: Literal["system", "user"] = "system"
    is_active: bool = True
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    filename_patterns: List[str] = Field(default_factory=list)
    identification_rules: List[str] = Field(default_factory=list)
    disambiguation: List[str] = Field(default_factory=list)
    key_terms: List[str] = Field(default_factory=list)
    filing: Optional[ReferenceFiling] = None
    expected_fields: List[ExpectedField] = Field(default_factory=list)


class ReferenceLibraryCache(BaseModel):
    """Immutable snapshot of the merged reference corpus.

    The snapshot is never mutated; a refresh builds a new instance and
    swaps the module-level reference in one assignment.
    """

    model_config = ConfigDict(frozen=True)

    references: tuple[ReferenceDocument, ...]
    cached_at: float
    ttl_seconds: float

    def is_valid(self, now: float) -> bool:
        return now - self.cached_at < self.ttl_seconds
