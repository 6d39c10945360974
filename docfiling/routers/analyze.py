"""
Batch analysis API endpoints.

Accepts a multipart batch of files, runs the classification pipeline and
returns store-ready mapped results.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, Response, UploadFile, status
from pydantic import ValidationError

from docfiling.config import Settings, get_settings
from docfiling.db.analysis_store import persist_mapped_results
from docfiling.db.file_type_definitions import fetch_user_file_type_definitions
from docfiling.db.supabase_client import get_supabase_client
from docfiling.exceptions import SkillConfigurationError
from docfiling.middleware.rate_limit import RATE_LIMITS, classifier_is_offline, limiter
from docfiling.models.api import AnalyzeMetadata, AnalyzeResponse
from docfiling.models.documents import UploadedFile
from docfiling.models.skills import SkillMetadata
from docfiling.services.pipeline import run_pipeline
from docfiling.services.reference_library import UserReferenceLoader
from docfiling.services.result_mapper import map_batch
from docfiling.services.skill_loader import list_skills

router = APIRouter(prefix="/api", tags=["analyze"])
logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024


def parse_metadata(raw: Optional[str]) -> AnalyzeMetadata:
    """Parse the ``metadata`` form field; 400 on bad JSON or shape."""
    if not raw:
        return AnalyzeMetadata()
    try:
        return AnalyzeMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid metadata: {e.errors()[:3]}",
        )


def parse_texts(raw: Optional[str], file_count: int) -> Dict[int, str]:
    """Parse the ``texts`` form field (JSON object of index -> full text)."""
    if not raw:
        return {}
    try:
        data: Any = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid texts JSON: {str(e)}")
    if not isinstance(data, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="texts must be a JSON object")

    texts: Dict[int, str] = {}
    for key, value in data.items():
        try:
            index = int(key)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid text index: {key!r}")
        if not 0 <= index < file_count:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Text index {index} out of range for {file_count} file(s)",
            )
        if isinstance(value, str):
            texts[index] = value
    return texts


def build_user_reference_loader(settings: Settings) -> Optional[UserReferenceLoader]:
    """Loader for user file type definitions, or None without a store."""
    if not settings.supabase_configured:
        return None

    async def _load() -> List[Dict[str, Any]]:
        return await fetch_user_file_type_definitions(get_supabase_client())

    return _load


async def read_uploads(files: List[UploadFile]) -> List[UploadedFile]:
    uploads: List[UploadedFile] = []
    for index, file in enumerate(files):
        content = await file.read()
        if len(content) > MAX_FILE_SIZE_BYTES:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File {index} ({file.filename}) exceeds {MAX_FILE_SIZE_BYTES // (1024 * 1024)}MB",
            )
        uploads.append(UploadedFile(
            file_name=file.filename or f"document_{index}",
            content=content,
            media_type=file.content_type,
        ))
    return uploads


@router.post("/analyze", response_model=AnalyzeResponse)
@limiter.limit(RATE_LIMITS["analyze"], exempt_when=classifier_is_offline)  # type: ignore[untyped-decorator]
async def analyze_batch(
    request: Request,
    response: Response,
    files: List[UploadFile] = File(..., description="Documents to classify"),
    texts: Optional[str] = Form(None, description="JSON object of document index -> full extracted text"),
    metadata: Optional[str] = Form(None, description="JSON batch context (client, folders, checklist, config)"),
    persist: bool = Form(False, description="Write results to the store for documents with item ids"),
) -> AnalyzeResponse:
    """
    Classify a batch of documents.

    Returns:
        200: Batch processed; per-document failures are listed in ``errors``
        400: Invalid form fields or batch size, or persist without item ids
        413: A file is too large
        500: Configuration error or unexpected failure
        503: Persistence requested without a configured store

    Raises:
        HTTPException: Various error conditions with appropriate status codes
    """
    settings = get_settings()

    if not files:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="At least one file is required")
    if len(files) > settings.max_batch_files:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Too many files: {len(files)} (max {settings.max_batch_files})",
        )

    batch_metadata = parse_metadata(metadata)
    full_texts = parse_texts(texts, len(files))

    if persist and not settings.supabase_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Persistence requested but Supabase is not configured",
        )
    if persist and not batch_metadata.item_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Persistence requested but metadata.item_ids is empty",
        )

    uploads = await read_uploads(files)

    try:
        result = await run_pipeline(
            uploads,
            full_texts=full_texts,
            client_context=batch_metadata.client_context,
            folders=batch_metadata.folders,
            checklist_items=batch_metadata.checklist_items,
            corrections=batch_metadata.corrections,
            instructions=batch_metadata.instructions,
            config=batch_metadata.config,
            settings=settings,
            user_reference_loader=build_user_reference_loader(settings),
        )
    except SkillConfigurationError as e:
        logger.error("Skill configuration error: %s", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Skill configuration error: {str(e)}",
        )
    except Exception as e:
        logger.exception("Batch analysis failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Batch analysis failed: {str(e)}",
        )

    mapped, stats = map_batch(
        result,
        batch_metadata.client_context,
        is_internal=batch_metadata.is_internal,
    )
    for item in mapped:
        item.item_id = batch_metadata.item_ids.get(item.document_index)

    persisted = None
    if persist:
        persisted = await persist_mapped_results(
            get_supabase_client(), mapped, batch_metadata.item_ids, batch_metadata.client_context
        )

    response.headers["X-Batch-Size"] = str(len(files))
    response.headers["X-Classifier-Mode"] = "mock" if result.metadata.is_mock else "live"

    return AnalyzeResponse(
        success=result.success,
        documents=mapped,
        stats=stats,
        metadata=result.metadata,
        errors=result.errors,
        persisted=persisted,
    )


@router.get("/skills", response_model=List[SkillMetadata])
@limiter.limit(RATE_LIMITS["skills"])  # type: ignore[untyped-decorator]
async def get_skills(request: Request) -> List[SkillMetadata]:
    """List the instruction skills available to the pipeline."""
    try:
        return list_skills(get_settings().skills_dir)
    except SkillConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Skill configuration error: {str(e)}",
        )
