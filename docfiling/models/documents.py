"""Pydantic models for preprocessed batch documents.

A ``BatchDocument`` is the normalized form of one uploaded file: its
content is a tagged union keyed on ``type`` and its hints carry the
filename and keyword heuristics used by reference selection and the
mock classifier.
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class TextContent(BaseModel):
    """Plain (possibly truncated) text content."""

    type: Literal["text"] = "text"
    text: str


class PdfPage(BaseModel):
    """One base64-encoded PDF payload sent for native multimodal handling."""

    data: str = Field(..., description="Base64-encoded PDF bytes")
    media_type: str = "application/pdf"


class PdfPagesContent(BaseModel):
    """PDF embedded as base64 because no text could be extracted."""

    type: Literal["pdf_pages"] = "pdf_pages"
    pages: List[PdfPage]


class ImageContent(BaseModel):
    """Image embedded as base64."""

    type: Literal["image"] = "image"
    data: str = Field(..., description="Base64-encoded image bytes")
    media_type: str


class SheetPreview(BaseModel):
    sheet_name: str
    headers: List[str] = Field(default_factory=list)
    sample_rows: List[List[str]] = Field(default_factory=list)
    total_rows: int = 0


class SpreadsheetSummary(BaseModel):
    """Preview of a workbook extracted upstream of the pipeline."""

    sheet_names: List[str] = Field(default_factory=list)
    sheet_previews: List[SheetPreview] = Field(default_factory=list)


class SpreadsheetContent(BaseModel):
    """Spreadsheet preview text, or a placeholder when none was extracted."""

    type: Literal["spreadsheet"] = "spreadsheet"
    text: str
    summary: Optional[SpreadsheetSummary] = None


DocumentContent = Annotated[
    Union[TextContent, PdfPagesContent, ImageContent, SpreadsheetContent],
    Field(discriminator="type"),
]


class DocumentHints(BaseModel):
    """Heuristic signals derived from the filename and leading text."""

    matched_tags: List[str] = Field(default_factory=list)
    filename_type_hint: Optional[str] = None
    filename_category_hint: Optional[str] = None
    is_financial: bool = False
    is_legal: bool = False
    is_identity: bool = False
    is_spreadsheet: bool = False
    is_image: bool = False


class BatchDocument(BaseModel):
    """A preprocessed document; ``index`` is its position in the request."""

    index: int = Field(..., ge=0)
    file_name: str
    file_size: int = Field(default=0, ge=0)
    media_type: str
    processed_content: DocumentContent
    hints: DocumentHints = Field(default_factory=DocumentHints)
    extracted_text: Optional[str] = Field(
        default=None,
        description="Untruncated text when available, used for intelligence extraction"
    )


class UploadedFile(BaseModel):
    """Raw file handed to the preprocessor."""

    file_name: str
    content: bytes = b""
    media_type: Optional[str] = None
    spreadsheet_summary: Optional[SpreadsheetSummary] = None
