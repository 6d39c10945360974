"""Prompt construction and response parsing for batch classification.

The system prompt has two blocks:

- stable: skill instructions, identical across calls and cached by the oracle
- dynamic: available folders and the references selected for this batch

The user message is a list of content blocks: a context header, one
header plus content per document, and the output format instruction.
"""

import json
import logging
from typing import Any, List, Sequence

from docfiling.exceptions import ClassificationParseError
from docfiling.models.documents import (
    BatchDocument,
    ImageContent,
    PdfPagesContent,
    SpreadsheetContent,
    TextContent,
)
from docfiling.models.oracle import ContentBlock, DocumentBlock, ImageBlock, SystemBlock, TextBlock
from docfiling.models.pipeline import ClassificationRequest, FolderInfo
from docfiling.services.preprocessor import format_spreadsheet_summary
from docfiling.utils.text import extract_json_span, format_file_size, strip_code_fences

logger = logging.getLogger(__name__)

MAX_CORRECTIONS = 5
MAX_SAMPLE_ROWS = 5

NO_REFERENCES_NOTICE = "No reference documents loaded. Classify based on your knowledge."

OUTPUT_SCHEMA_EXAMPLE = """[
  {
    "documentIndex": 0,
    "fileName": "example.pdf",
    "classification": {
      "fileType": "RedBook Valuation",
      "category": "Appraisals",
      "suggestedFolder": "appraisals",
      "targetLevel": "project",
      "confidence": 0.92,
      "reasoning": "Contains RICS valuation methodology...",
      "alternativeTypes": [{"fileType": "Appraisal", "category": "Appraisals", "confidence": 0.7}]
    },
    "summary": {
      "executiveSummary": "...",
      "documentPurpose": "...",
      "keyEntities": {"people": [], "companies": [], "locations": [], "projects": []},
      "keyTerms": ["RICS", "market value"],
      "keyDates": ["2024-01-15"],
      "keyAmounts": ["£2,500,000"]
    },
    "checklistMatches": [
      {"itemId": "abc123", "itemName": "Valuation Report", "confidence": 0.95, "reasoning": "..."}
    ],
    "intelligenceFields": [
      {"fieldPath": "valuation.marketValue", "label": "Market Value", "value": "2500000",
       "valueType": "currency", "confidence": 0.9, "sourceText": "Market value: £2,500,000",
       "templateTags": ["lenders_note"]}
    ]
  }
]"""


# ---------------------------------------------------------------------------
# System prompt
# ---------------------------------------------------------------------------

def format_folders(folders: Sequence[FolderInfo]) -> str:
    lines = ["## Available Folders"]
    lines.extend(f"- {f.folder_key} ({f.name}, {f.level}-level)" for f in folders)
    return "\n".join(lines)


def build_system_blocks(
    skill_instructions: str,
    folders: Sequence[FolderInfo],
    reference_text: str,
) -> List[SystemBlock]:
    """Build the cacheable instruction block and the per-batch context block."""
    dynamic_parts = []
    if folders:
        dynamic_parts.append(format_folders(folders))
    dynamic_parts.append(reference_text or NO_REFERENCES_NOTICE)

    return [
        SystemBlock(text=skill_instructions, cacheable=True),
        SystemBlock(text="\n\n".join(dynamic_parts), cacheable=False),
    ]


# ---------------------------------------------------------------------------
# User message
# ---------------------------------------------------------------------------

def build_context_header(document_count: int, request: ClassificationRequest) -> str:
    """Batch size, client, missing checklist items and recent corrections."""
    text = "## Batch Classification Request\n\n"
    text += f"Classify the following {document_count} document(s).\n\n"

    client = request.client_context
    if client.client_name:
        text += f"**Client:** {client.client_name}"
        if client.client_type:
            text += f" ({client.client_type})"
        text += "\n"

    missing = [item for item in request.checklist_items if item.status == "missing"]
    if missing:
        text += "\n## Missing Checklist Items (match documents to these)\n"
        lines = []
        for item in missing:
            line = f'- [{item.id}] "{item.name}" ({item.category})'
            if item.matching_document_types:
                line += f" - matches: {', '.join(item.matching_document_types)}"
            lines.append(line)
        text += "\n".join(lines) + "\n"

    if request.corrections:
        text += "\n## Past Corrections (learn from these)\n"
        text += "\n".join(
            f'- "{c.file_name}": AI said "{c.ai_predicted.file_type}" -> '
            f'User corrected to "{c.user_corrected.file_type}" ({c.correction_count}x)'
            for c in request.corrections[:MAX_CORRECTIONS]
        ) + "\n"

    if request.instructions:
        text += f"\n## Additional Instructions\n{request.instructions}\n"

    return text


def build_document_header(doc: BatchDocument) -> str:
    text = (
        f'\n---\n## Document {doc.index} (documentIndex: {doc.index}): "{doc.file_name}" '
        f"({format_file_size(doc.file_size)}, {doc.media_type})\n"
    )
    if doc.hints.filename_type_hint:
        text += f'Filename hint: possibly "{doc.hints.filename_type_hint}"\n'
    if doc.hints.matched_tags:
        text += f"Matched tags: {', '.join(doc.hints.matched_tags)}\n"
    return text


def build_document_content_blocks(doc: BatchDocument, use_multimodal: bool = True) -> List[ContentBlock]:
    content = doc.processed_content

    if isinstance(content, TextContent):
        return [TextBlock(text=f"Content:\n```\n{content.text}\n```")]

    if isinstance(content, PdfPagesContent):
        if not use_multimodal:
            return [TextBlock(text="Content: [PDF without extractable text; classify from filename and hints]")]
        return [DocumentBlock(data=page.data, media_type=page.media_type) for page in content.pages]

    if isinstance(content, ImageContent):
        if not use_multimodal:
            return [TextBlock(text="Content: [Image; classify from filename and hints]")]
        return [ImageBlock(data=content.data, media_type=content.media_type)]

    if isinstance(content, SpreadsheetContent):
        if content.summary is not None:
            summary = content.summary.model_copy(update={
                "sheet_previews": [
                    p.model_copy(update={"sample_rows": p.sample_rows[:MAX_SAMPLE_ROWS]})
                    for p in content.summary.sheet_previews
                ]
            })
            text = format_spreadsheet_summary(summary)
        else:
            text = content.text
        return [TextBlock(text=f"Spreadsheet content:\n```\n{text}\n```")]

    return []


def build_output_instruction() -> str:
    return (
        "\n---\n## Required Output Format\n"
        "Return a JSON array with one object per document, in the same order as above.\n"
        "Each object must carry the documentIndex shown in its document header and match this schema:\n"
        f"```json\n{OUTPUT_SCHEMA_EXAMPLE}\n```\n"
        "IMPORTANT: Return ONLY the JSON array. No markdown, no explanation, just valid JSON."
    )


def build_batch_user_blocks(
    documents: Sequence[BatchDocument],
    request: ClassificationRequest,
) -> List[ContentBlock]:
    """Build the user content blocks for one classification chunk."""
    blocks: List[ContentBlock] = [TextBlock(text=build_context_header(len(documents), request))]
    for doc in documents:
        blocks.append(TextBlock(text=build_document_header(doc)))
        blocks.extend(build_document_content_blocks(doc, request.config.use_multimodal))
    blocks.append(TextBlock(text=build_output_instruction()))
    return blocks


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def parse_classification_response(text: str) -> List[Any]:
    """Parse the oracle's classification output into a list of raw items.

    Strips markdown fences, parses JSON and wraps a lone object in a list.
    If the text is not valid JSON, the first ``[...]`` span is tried.

    Raises:
        ClassificationParseError: If no JSON array can be recovered
    """
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
        return parsed if isinstance(parsed, list) else [parsed]
    except json.JSONDecodeError as first_error:
        span = extract_json_span(cleaned, "[", "]")
        if span is not None:
            try:
                parsed = json.loads(span)
                return parsed if isinstance(parsed, list) else [parsed]
            except json.JSONDecodeError:
                pass
        logger.warning("Unparsable classification response (%d chars)", len(text))
        raise ClassificationParseError(str(first_error), text) from first_error
