"""Deterministic, network-free classifier.

Used automatically when no Gemini API key is configured, or when mock
mode is forced. It produces the same ``ChunkResult`` shape as the live
classifier from filename hints, tags and the selected references, so
placement, intelligence and result mapping run exactly as they would
against the real oracle.
"""

import asyncio
import logging
import time
from typing import List, NamedTuple, Optional, Sequence

from docfiling.models.classification import (
    AlternativeType,
    ChecklistMatch,
    ClassificationDecision,
    DocumentClassification,
    DocumentSummary,
    IntelligenceField,
)
from docfiling.models.documents import BatchDocument, TextContent
from docfiling.models.pipeline import ChecklistItem, ChunkResult, ClassificationRequest, OracleUsage
from docfiling.models.references import ReferenceDocument
from docfiling.services.classifier import BatchClassifier
from docfiling.services.intelligence import post_process_fields

logger = logging.getLogger(__name__)

MAX_SIMULATED_LATENCY_MS = 200
LATENCY_PER_DOC_MS = 50
INPUT_TOKENS_PER_DOC = 1200
SYSTEM_PROMPT_TOKENS = 3000
OUTPUT_TOKENS_PER_DOC = 800

CHECKLIST_MATCH_THRESHOLD = 0.60
ALTERNATIVE_CONFIDENCES = (0.45, 0.35)

CATEGORY_TO_FOLDER = {
    "Appraisals": "appraisals",
    "KYC": "kyc",
    "Legal Documents": "terms_comparison",
    "Loan Terms": "terms_comparison",
    "Inspections": "operational_model",
    "Professional Reports": "appraisals",
    "Plans": "appraisals",
    "Insurance": "post_completion",
    "Financial Documents": "background",
    "Communications": "notes",
    "Photographs": "appraisals",
    "Other": "miscellaneous",
}

CLIENT_LEVEL_CATEGORIES = {"KYC", "Communications"}

CATEGORY_PURPOSES = {
    "Appraisals": "Property valuation or development appraisal for lending assessment",
    "KYC": "Identity verification or know-your-customer compliance document",
    "Legal Documents": "Legal agreement, deed, or guarantee related to the transaction",
    "Loan Terms": "Loan terms, term sheet, or credit approval documentation",
    "Inspections": "Site inspection or monitoring report for construction progress",
    "Professional Reports": "Professional survey, report, or assessment",
    "Plans": "Architectural plans, site plans, or design drawings",
    "Insurance": "Insurance policy or certificate for the property or project",
    "Financial Documents": "Financial document such as invoice or receipt",
    "Communications": "Email correspondence or meeting notes",
    "Photographs": "Site photographs documenting property or construction",
}


class FileTypeDecision(NamedTuple):
    file_type: str
    category: str
    confidence: float


# ---------------------------------------------------------------------------
# File type cascade
# ---------------------------------------------------------------------------

def resolve_file_type(doc: BatchDocument, references: Sequence[ReferenceDocument]) -> FileTypeDecision:
    """First applicable rule wins: hint, tag overlap, characteristics, fallback."""
    hints = doc.hints

    if hints.filename_type_hint:
        wanted = hints.filename_type_hint.lower()
        for ref in references:
            if ref.file_type.lower() == wanted:
                return FileTypeDecision(ref.file_type, ref.category, 0.92)
        return FileTypeDecision(hints.filename_type_hint, hints.filename_category_hint or "Other", 0.78)

    if hints.matched_tags:
        best_ref: Optional[ReferenceDocument] = None
        best_score = 0
        for ref in references:
            score = sum(1 for tag in ref.tags if tag.lower() in hints.matched_tags)
            if score > best_score:
                best_ref, best_score = ref, score
        if best_ref is not None and best_score >= 2:
            confidence = min(0.85, 0.60 + best_score * 0.08)
            return FileTypeDecision(best_ref.file_type, best_ref.category, round(confidence, 2))

    if hints.is_identity:
        return FileTypeDecision("KYC Document", "KYC", 0.65)
    if hints.is_financial and hints.is_spreadsheet:
        return FileTypeDecision("Cashflow", "Appraisals", 0.60)
    if hints.is_legal:
        return FileTypeDecision("Legal Document", "Legal Documents", 0.55)
    if hints.is_financial:
        return FileTypeDecision("Financial Document", "Financial Documents", 0.55)
    if hints.is_image:
        return FileTypeDecision("Site Photographs", "Photographs", 0.60)

    return FileTypeDecision("Other", "Other", 0.40)


def resolve_folder(category: str) -> str:
    return CATEGORY_TO_FOLDER.get(category, "miscellaneous")


def resolve_target_level(category: str) -> str:
    return "client" if category in CLIENT_LEVEL_CATEGORIES else "project"


# ---------------------------------------------------------------------------
# Synthetic payloads
# ---------------------------------------------------------------------------

def generate_summary(doc: BatchDocument, file_type: str, category: str) -> DocumentSummary:
    content = doc.processed_content
    preview = content.text[:100] if isinstance(content, TextContent) else ""
    executive = (
        f'[MOCK] {file_type} document "{doc.file_name}". '
        f"This {category.lower()} document was uploaded for processing. "
        + (f'Content begins: "{preview}..."' if preview else "Content not available as text.")
    )
    return DocumentSummary(
        executive_summary=executive,
        document_purpose=f"{file_type}: {CATEGORY_PURPOSES.get(category, 'General document for filing')}",
        key_terms=doc.hints.matched_tags[:5],
    )


def match_checklist(file_type: str, category: str, items: Sequence[ChecklistItem]) -> List[ChecklistMatch]:
    """Match missing checklist items by type, then category, then name."""
    matches: List[ChecklistMatch] = []
    file_type_lower = file_type.lower()

    for item in items:
        if item.status != "missing":
            continue

        if any(t.lower() == file_type_lower for t in item.matching_document_types):
            confidence = 0.92
        elif item.category.lower() == category.lower():
            confidence = 0.75
        elif item.name.lower() in file_type_lower or file_type_lower in item.name.lower():
            confidence = 0.70
        else:
            continue

        if confidence >= CHECKLIST_MATCH_THRESHOLD:
            matches.append(ChecklistMatch(
                item_id=item.id,
                item_name=item.name,
                confidence=confidence,
                reasoning=f'[MOCK] "{file_type}" matches checklist requirement "{item.name}" ({item.category}).',
            ))
    return matches


def generate_intelligence_fields(file_type: str, category: str) -> List[IntelligenceField]:
    """Category-driven synthetic intelligence fields, post-processed like oracle output."""
    fields: List[IntelligenceField] = []

    if category in ("Appraisals", "Financial Documents"):
        fields.append(IntelligenceField(
            field_path="document.type",
            label="Document Type",
            value=file_type,
            value_type="text",
            confidence=0.95,
            template_tags=["lenders_note", "credit_submission"],
        ))
    if category == "Loan Terms":
        fields.append(IntelligenceField(
            field_path="loan.facilityType",
            label="Facility Type",
            value="Development Finance",
            value_type="text",
            confidence=0.70,
            template_tags=["lenders_note", "perspective", "credit_submission"],
        ))
    if category == "KYC":
        fields.append(IntelligenceField(
            field_path="kyc.documentType",
            label="KYC Document Type",
            value=file_type,
            value_type="text",
            confidence=0.90,
        ))
    return post_process_fields(fields)


def generate_alternatives(
    file_type: str,
    category: str,
    references: Sequence[ReferenceDocument],
) -> List[AlternativeType]:
    """Up to two other references from the same category, fixed confidences."""
    candidates = [r for r in references if r.category == category and r.file_type != file_type]
    return [
        AlternativeType(file_type=ref.file_type, category=ref.category, confidence=confidence)
        for ref, confidence in zip(candidates, ALTERNATIVE_CONFIDENCES)
    ]


def generate_classification(doc: BatchDocument, request: ClassificationRequest) -> DocumentClassification:
    decision = resolve_file_type(doc, request.references)
    hint_note = (
        f'Filename strongly suggests "{doc.hints.filename_type_hint}". '
        if doc.hints.filename_type_hint else "No strong filename hint. "
    )

    return DocumentClassification(
        document_index=doc.index,
        file_name=doc.file_name,
        classification=ClassificationDecision(
            file_type=decision.file_type,
            category=decision.category,
            suggested_folder=resolve_folder(decision.category),
            target_level=resolve_target_level(decision.category),
            confidence=decision.confidence,
            reasoning=(
                f'[MOCK] Classified as "{decision.file_type}" based on filename analysis and tag matching. '
                f"{hint_note}Matched tags: [{', '.join(doc.hints.matched_tags)}]."
            ),
            alternative_types=generate_alternatives(decision.file_type, decision.category, request.references),
        ),
        summary=generate_summary(doc, decision.file_type, decision.category),
        checklist_matches=match_checklist(decision.file_type, decision.category, request.checklist_items),
        intelligence_fields=generate_intelligence_fields(decision.file_type, decision.category),
    )


class MockClassifier(BatchClassifier):
    """Offline ``BatchClassifier`` with simulated latency and token usage."""

    model_name = "mock"
    is_mock = True

    def __init__(self, simulate_latency: bool = True):
        self.simulate_latency = simulate_latency

    async def classify_batch(
        self,
        chunk: Sequence[BatchDocument],
        request: ClassificationRequest,
        timeout: Optional[float] = None,
    ) -> ChunkResult:
        start = time.monotonic()

        if self.simulate_latency:
            delay_ms = min(MAX_SIMULATED_LATENCY_MS, LATENCY_PER_DOC_MS * len(chunk))
            await asyncio.wait_for(asyncio.sleep(delay_ms / 1000), timeout=timeout)

        classifications = [generate_classification(doc, request) for doc in chunk]
        usage = OracleUsage(
            input_tokens=len(chunk) * INPUT_TOKENS_PER_DOC + SYSTEM_PROMPT_TOKENS,
            output_tokens=len(chunk) * OUTPUT_TOKENS_PER_DOC,
        )
        return ChunkResult(
            classifications=classifications,
            usage=usage,
            latency_ms=int((time.monotonic() - start) * 1000),
        )
