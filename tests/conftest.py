"""Shared fixtures for the document filing tests."""

import pytest

from docfiling.config import get_settings
from docfiling.db.supabase_client import reset_supabase_client
from docfiling.middleware.rate_limit import limiter
from docfiling.models.classification import ClassificationDecision, DocumentClassification
from docfiling.models.documents import BatchDocument, DocumentHints, TextContent, UploadedFile
from docfiling.services.oracle import clear_context_caches
from docfiling.services.reference_library import clear_reference_cache
from docfiling.services.skill_loader import clear_skill_cache

ENV_VARS = (
    "GEMINI_API_KEY",
    "MODEL_NAME",
    "USE_MOCK",
    "SUPABASE_URL",
    "SUPABASE_KEY",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SKILLS_DIR",
    "PIPELINE_DEADLINE_SECONDS",
    "MAX_BATCH_FILES",
    "LOG_LEVEL",
    "TRUSTED_PROXIES",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Run every test offline with fresh caches and no ambient credentials."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("MOCK_LATENCY_ENABLED", "false")
    # Keep a developer's .env out of the settings
    monkeypatch.chdir(tmp_path)

    get_settings.cache_clear()
    clear_reference_cache()
    clear_skill_cache()
    clear_context_caches()
    reset_supabase_client()
    limiter.reset()
    yield
    get_settings.cache_clear()
    reset_supabase_client()


def make_document(index, file_name, text="Sample content", hints=None):
    """Build a preprocessed text document."""
    return BatchDocument(
        index=index,
        file_name=file_name,
        file_size=len(text),
        media_type="text/plain",
        processed_content=TextContent(text=text),
        hints=hints or DocumentHints(),
    )


def make_classification(index, file_type="Other", category="Other", confidence=0.8, **kwargs):
    """Build a classification with the given decision fields."""
    return DocumentClassification(
        document_index=index,
        file_name=kwargs.pop("file_name", f"doc_{index}.pdf"),
        classification=ClassificationDecision(
            file_type=file_type,
            category=category,
            confidence=confidence,
            **kwargs,
        ),
    )


@pytest.fixture
def upload_factory():
    def _make(file_name, content=b"%PDF-1.4 sample", media_type=None):
        return UploadedFile(file_name=file_name, content=content, media_type=media_type)
    return _make
