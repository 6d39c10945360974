"""Token-budgeted batching of documents into oracle calls.

Chunks are the unit of failure isolation: one chunk maps to one
classification call, and a failed call only affects its own documents.
"""

import math
from typing import List, Sequence, Tuple

from docfiling.models.documents import (
    BatchDocument,
    ImageContent,
    PdfPagesContent,
    SpreadsheetContent,
    TextContent,
)

MAX_DOCS_PER_CALL = 8
MAX_INPUT_TOKENS_PER_CALL = 80_000
TOKENS_FOR_SYSTEM = 8_000

INTEL_MAX_DOCS_PER_CALL = 5

MIN_PDF_TOKENS = 1000
IMAGE_TOKENS = 1200
SPREADSHEET_OVERHEAD_TOKENS = 200


def estimate_text_tokens(text: str) -> int:
    """Roughly 4 characters per token."""
    return math.ceil(len(text) / 4)


def estimate_document_tokens(document: BatchDocument) -> int:
    """Estimate the prompt tokens one document's content will consume."""
    content = document.processed_content

    if isinstance(content, TextContent):
        return estimate_text_tokens(content.text)

    if isinstance(content, PdfPagesContent):
        total_b64 = sum(len(page.data) for page in content.pages)
        # base64 inflates 4/3; ~6 bytes of raw PDF per token
        return max(MIN_PDF_TOKENS, math.ceil(total_b64 * 0.75 / 6))

    if isinstance(content, ImageContent):
        return IMAGE_TOKENS

    if isinstance(content, SpreadsheetContent):
        if content.summary is None:
            return estimate_text_tokens(content.text) + SPREADSHEET_OVERHEAD_TOKENS
        chars = 0
        for preview in content.summary.sheet_previews:
            chars += sum(len(header) for header in preview.headers)
            chars += sum(len(cell) for row in preview.sample_rows for cell in row)
        return math.ceil(chars / 4) + SPREADSHEET_OVERHEAD_TOKENS

    return 0


def chunk_batch(
    documents: Sequence[BatchDocument],
    max_docs: int = MAX_DOCS_PER_CALL,
    max_tokens: int = MAX_INPUT_TOKENS_PER_CALL,
    tokens_for_system: int = TOKENS_FOR_SYSTEM,
) -> List[List[BatchDocument]]:
    """Greedily pack documents, in input order, into classification chunks.

    A chunk is closed when it already holds ``max_docs`` documents or when
    adding the next document would push it past ``max_tokens``. A document
    larger than the whole budget still gets a chunk of its own.

    Args:
        documents: Preprocessed documents
        max_docs: Maximum documents per chunk
        max_tokens: Token budget per chunk, including system overhead
        tokens_for_system: Fixed overhead for system prompt and references

    Returns:
        List of chunks; concatenated they equal ``documents``
    """
    if max_docs < 1:
        raise ValueError("max_docs must be at least 1")

    chunks: List[List[BatchDocument]] = []
    current: List[BatchDocument] = []
    current_tokens = tokens_for_system

    for document in documents:
        doc_tokens = estimate_document_tokens(document)

        if current and (len(current) >= max_docs or current_tokens + doc_tokens > max_tokens):
            chunks.append(current)
            current = []
            current_tokens = tokens_for_system

        current.append(document)
        current_tokens += doc_tokens

    if current:
        chunks.append(current)
    return chunks


def chunk_intelligence_batch(
    documents: Sequence[Tuple[int, int]],
    max_docs: int = INTEL_MAX_DOCS_PER_CALL,
) -> List[List[int]]:
    """Group ``(index, text_length)`` pairs by count for intelligence calls.

    Text is truncated per document inside the call, so only the count
    bound matters here.
    """
    if max_docs < 1:
        raise ValueError("max_docs must be at least 1")

    indices = [index for index, _ in documents]
    return [indices[i:i + max_docs] for i in range(0, len(indices), max_docs)]
