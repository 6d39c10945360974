"""Batch classification pipeline.

Stages run in a fixed order:

    preprocessing -> reference_resolution -> skill_loading -> classification
    -> intelligence_extraction -> placement_resolution -> assembly

Failures are contained at the smallest unit that makes sense. A failed
classification chunk becomes one error record per document in the chunk,
and the run moves on to the next chunk. A failed intelligence call leaves
its documents with empty field lists. Only configuration problems (a
malformed skill file) abort a run.

Every input file ends up exactly once in the result, either in
``documents`` or in ``errors``, matched strictly by document index.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from docfiling.config import Settings, get_settings
from docfiling.exceptions import DeadlineExceededError
from docfiling.models.classification import DocumentClassification, IntelligenceField
from docfiling.models.documents import BatchDocument, UploadedFile
from docfiling.models.pipeline import (
    ChecklistItem,
    ClassificationRequest,
    ClientContext,
    CorrectionContext,
    DocumentError,
    FolderInfo,
    OracleUsage,
    PipelineConfig,
    PipelineMetadata,
    PipelineResult,
)
from docfiling.models.references import ReferenceDocument
from docfiling.services.chunker import chunk_batch, chunk_intelligence_batch
from docfiling.services.classifier import BatchClassifier, create_classifier
from docfiling.services.intelligence import IntelligenceDocument, create_intelligence_extractor
from docfiling.services.placement import resolve_batch_placement
from docfiling.services.preprocessor import preprocess_batch
from docfiling.services.reference_library import (
    UserReferenceLoader,
    find_reference,
    load_references,
    select_references_for_batch,
)
from docfiling.services.skill_loader import get_skill_instructions
from docfiling.utils.deadline import Deadline

logger = logging.getLogger(__name__)

CLASSIFY_SKILL = "document-classify"
INTELLIGENCE_SKILL = "intelligence-extract"

NOT_RETURNED_ERROR = "Document not returned by classifier"

FALLBACK_CLASSIFY_INSTRUCTIONS = """You are a document classifier for a property lending business.
Classify each document by fileType and category, suggest a filing folder and target level
(client or project), summarise it, match it against missing checklist items and extract any
structured intelligence fields you can see. Prefer fileType values from the reference library.
Use "Other" when nothing fits and lower the confidence accordingly. Return only JSON."""

FALLBACK_INTELLIGENCE_INSTRUCTIONS = """Extract structured facts from the document as fields.
Each field has fieldPath (dot-namespaced, e.g. loan.amount, valuation.marketValue), label,
value, valueType (text, number, currency, percentage, date, boolean, array), confidence
between 0 and 1, sourceText and templateTags. Use custom.<name> paths for anything outside
the standard namespaces. Return only JSON."""


class PipelineStage(str, Enum):
    PREPROCESSING = "preprocessing"
    REFERENCE_RESOLUTION = "reference_resolution"
    SKILL_LOADING = "skill_loading"
    CLASSIFICATION = "classification"
    INTELLIGENCE_EXTRACTION = "intelligence_extraction"
    PLACEMENT_RESOLUTION = "placement_resolution"
    ASSEMBLY = "assembly"


class _RunStats:
    """Token usage, call count and latency summed over every oracle call."""

    def __init__(self):
        self.stage = PipelineStage.PREPROCESSING
        self.usage = OracleUsage()
        self.api_calls = 0
        self.latency_ms = 0

    def enter(self, stage: PipelineStage) -> None:
        logger.info("Pipeline stage: %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    def record(self, usage: OracleUsage, latency_ms: int) -> None:
        self.usage = self.usage + usage
        self.latency_ms += latency_ms


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _chunk_errors(chunk: Sequence[BatchDocument], message: str) -> List[DocumentError]:
    return [DocumentError(document_index=doc.index, file_name=doc.file_name, error=message) for doc in chunk]


def _error_message(exc: Exception, deadline: Deadline) -> str:
    if deadline.expired:
        return str(DeadlineExceededError())
    return str(exc) or exc.__class__.__name__


def match_chunk_results(
    chunk: Sequence[BatchDocument],
    classifications: Sequence[DocumentClassification],
) -> Tuple[List[DocumentClassification], List[DocumentError]]:
    """Match classifier output to chunk documents by ``document_index``.

    The first result for an index wins; duplicates and indices outside the
    chunk are dropped. Chunk documents without a result become errors.
    """
    by_index = {doc.index: doc for doc in chunk}
    matched: Dict[int, DocumentClassification] = {}

    for classification in classifications:
        index = classification.document_index
        if index not in by_index:
            logger.warning("Dropping classification for unknown document index %d", index)
            continue
        if index in matched:
            logger.warning("Dropping duplicate classification for document index %d", index)
            continue
        matched[index] = classification

    missing = [doc for doc in chunk if doc.index not in matched]
    if missing:
        logger.warning("%d document(s) missing from classifier response", len(missing))
    return list(matched.values()), _chunk_errors(missing, NOT_RETURNED_ERROR)


def _expected_fields(references: Sequence[ReferenceDocument], file_type: str) -> List[str]:
    ref = find_reference(references, file_type)
    if ref is None:
        return []
    return [field.field_path for field in ref.expected_fields]


def build_intelligence_documents(
    classified: Sequence[DocumentClassification],
    documents: Dict[int, BatchDocument],
    full_texts: Dict[int, str],
    references: Sequence[ReferenceDocument],
) -> List[IntelligenceDocument]:
    """Classified documents that have text to extract from."""
    queue = []
    for doc in classified:
        index = doc.document_index
        text = full_texts.get(index) or documents[index].extracted_text
        if not text or not text.strip():
            continue
        queue.append(IntelligenceDocument(
            index=index,
            file_name=doc.file_name,
            text=text,
            document_type=doc.classification.file_type,
            document_category=doc.classification.category,
            expected_fields=_expected_fields(references, doc.classification.file_type),
        ))
    return queue


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

async def _classify_chunks(
    documents: Sequence[BatchDocument],
    classifier: BatchClassifier,
    request: ClassificationRequest,
    deadline: Deadline,
    stats: _RunStats,
) -> Tuple[List[DocumentClassification], List[DocumentError]]:
    chunks = chunk_batch(
        documents,
        max_docs=request.config.max_docs_per_chunk,
        max_tokens=request.config.max_tokens_per_chunk,
    )
    logger.info("Classifying %d document(s) in %d chunk(s)", len(documents), len(chunks))

    classified: List[DocumentClassification] = []
    errors: List[DocumentError] = []

    for number, chunk in enumerate(chunks, start=1):
        try:
            timeout = deadline.remaining()
        except DeadlineExceededError as e:
            logger.warning("Skipping chunk %d/%d: %s", number, len(chunks), e)
            errors.extend(_chunk_errors(chunk, str(e)))
            continue

        stats.api_calls += 1
        try:
            result = await classifier.classify_batch(chunk, request, timeout=timeout)
        except Exception as e:
            message = _error_message(e, deadline)
            logger.error(
                "Chunk %d/%d failed (%d document(s)): %s",
                number, len(chunks), len(chunk), message,
            )
            errors.extend(_chunk_errors(chunk, message))
            continue

        stats.record(result.usage, result.latency_ms)
        matched, missing = match_chunk_results(chunk, result.classifications)
        classified.extend(matched)
        errors.extend(missing)

    return classified, errors


async def _extract_intelligence(
    queue: Sequence[IntelligenceDocument],
    extractor,
    deadline: Deadline,
    stats: _RunStats,
) -> Dict[int, List[IntelligenceField]]:
    results: Dict[int, List[IntelligenceField]] = {doc.index: [] for doc in queue}
    if not queue:
        return results

    if len(queue) == 1:
        groups = [list(queue)]
    else:
        by_index = {doc.index: doc for doc in queue}
        groups = [
            [by_index[i] for i in group]
            for group in chunk_intelligence_batch([(doc.index, len(doc.text)) for doc in queue])
        ]

    for group in groups:
        try:
            timeout = deadline.remaining()
        except DeadlineExceededError:
            logger.warning("Deadline reached; skipping intelligence for %d document(s)", len(group))
            continue

        stats.api_calls += 1
        try:
            if len(queue) == 1:
                result = await extractor.extract(group[0], timeout=timeout)
            else:
                result = await extractor.extract_batch(group, timeout=timeout)
        except Exception as e:
            logger.warning(
                "Intelligence extraction failed for %d document(s): %s",
                len(group), _error_message(e, deadline),
            )
            continue

        stats.record(result.usage, result.latency_ms)
        for doc in group:
            results[doc.index] = result.fields.get(doc.index, [])

    return results


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def run_pipeline(
    files: Sequence[UploadedFile],
    *,
    full_texts: Optional[Dict[int, str]] = None,
    client_context: Optional[ClientContext] = None,
    folders: Optional[Sequence[FolderInfo]] = None,
    checklist_items: Optional[Sequence[ChecklistItem]] = None,
    corrections: Optional[Sequence[CorrectionContext]] = None,
    instructions: Optional[str] = None,
    config: Optional[PipelineConfig] = None,
    settings: Optional[Settings] = None,
    user_reference_loader: Optional[UserReferenceLoader] = None,
    classifier: Optional[BatchClassifier] = None,
    intelligence_extractor=None,
) -> PipelineResult:
    """Classify, place and extract intelligence for a batch of files.

    Args:
        files: Uploaded files; list position is the document index
        full_texts: Untruncated extracted text keyed by document index
        client_context: Client and project the batch belongs to
        folders: Folders the classifier may suggest
        checklist_items: Outstanding requirements to match against
        corrections: Past human corrections replayed as guidance
        instructions: Free-form extra instructions for the classifier
        config: Per-run options
        settings: Application settings (defaults to ``get_settings()``)
        user_reference_loader: Async loader of user file type definitions
        classifier: Classifier to use instead of the configured one
        intelligence_extractor: Extractor to use instead of the default

    Returns:
        PipelineResult with every input index in ``documents`` or ``errors``

    Raises:
        SkillConfigurationError: If a skill file is present but malformed
    """
    settings = settings or get_settings()
    config = config or PipelineConfig()
    client_context = client_context or ClientContext()
    full_texts = full_texts or {}
    stats = _RunStats()

    deadline = Deadline(config.deadline_seconds or settings.pipeline_deadline_seconds)

    # Preprocessing
    logger.info("Pipeline started for %d file(s)", len(files))
    documents = await preprocess_batch(files, full_texts)
    documents_by_index = {doc.index: doc for doc in documents}

    # Reference resolution
    stats.enter(PipelineStage.REFERENCE_RESOLUTION)
    all_references: List[ReferenceDocument] = []
    selected: List[ReferenceDocument] = []
    cache_hit = False
    if config.load_references:
        all_references, cache_hit = await load_references(
            user_reference_loader, settings.reference_cache_ttl_seconds
        )
        selected = select_references_for_batch(documents, all_references, config.max_references_per_call)
    logger.info(
        "Selected %d of %d reference(s) (cache %s)",
        len(selected), len(all_references), "hit" if cache_hit else "miss",
    )

    # Skill loading
    stats.enter(PipelineStage.SKILL_LOADING)
    skill_instructions = get_skill_instructions(
        CLASSIFY_SKILL, settings.skills_dir, fallback=FALLBACK_CLASSIFY_INSTRUCTIONS
    )

    # Classification
    stats.enter(PipelineStage.CLASSIFICATION)
    classifier = classifier or create_classifier(settings, config)
    request = ClassificationRequest(
        client_context=client_context,
        folders=list(folders or []),
        checklist_items=list(checklist_items or []),
        corrections=list(corrections or []),
        references=selected,
        skill_instructions=skill_instructions,
        instructions=instructions,
        config=config,
    )
    classified, errors = await _classify_chunks(documents, classifier, request, deadline, stats)

    # Intelligence extraction
    stats.enter(PipelineStage.INTELLIGENCE_EXTRACTION)
    intelligence: Dict[int, List[IntelligenceField]] = {}
    if config.extract_intelligence and classified:
        extractor = intelligence_extractor
        if extractor is None:
            intel_instructions = ""
            if not classifier.is_mock:
                intel_instructions = get_skill_instructions(
                    INTELLIGENCE_SKILL, settings.skills_dir, fallback=FALLBACK_INTELLIGENCE_INSTRUCTIONS
                )
            extractor = create_intelligence_extractor(classifier, intel_instructions)
        if extractor is not None:
            queue = build_intelligence_documents(
                classified, documents_by_index, full_texts, all_references or selected
            )
            intelligence = await _extract_intelligence(queue, extractor, deadline, stats)

    # Placement resolution
    stats.enter(PipelineStage.PLACEMENT_RESOLUTION)
    placements = resolve_batch_placement(classified, client_context)
    for doc in classified:
        placement = placements[doc.document_index]
        doc.classification.suggested_folder = placement.folder_key
        doc.classification.target_level = placement.target_level

    # Assembly
    stats.enter(PipelineStage.ASSEMBLY)
    classified.sort(key=lambda d: d.document_index)
    errors.sort(key=lambda e: e.document_index)

    metadata = PipelineMetadata(
        model=classifier.model_name,
        batch_size=len(files),
        api_calls_made=stats.api_calls,
        total_input_tokens=stats.usage.input_tokens,
        total_output_tokens=stats.usage.output_tokens,
        total_cache_read_tokens=stats.usage.cache_read_tokens,
        total_cache_creation_tokens=stats.usage.cache_creation_tokens,
        total_latency_ms=stats.latency_ms,
        references_loaded=[ref.file_type for ref in selected],
        cached_reference_hit=cache_hit,
        is_mock=classifier.is_mock,
    )

    logger.info(
        "Pipeline finished: %d classified, %d error(s), %d call(s), %d input / %d output tokens",
        len(classified), len(errors), stats.api_calls,
        stats.usage.input_tokens, stats.usage.output_tokens,
    )

    return PipelineResult(
        success=not errors,
        documents=classified,
        placements=placements,
        intelligence=intelligence,
        metadata=metadata,
        errors=errors,
    )


async def classify_single_document(
    file: UploadedFile,
    text: Optional[str] = None,
    **kwargs,
) -> PipelineResult:
    """Run the pipeline for one file; keyword arguments go to ``run_pipeline``."""
    full_texts = {0: text} if text else None
    return await run_pipeline([file], full_texts=full_texts, **kwargs)
