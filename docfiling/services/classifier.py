"""Batch classifier interface and factory.

The orchestrator only sees ``BatchClassifier.classify_batch``. Whether a
chunk goes to Gemini or to the offline mock is decided once, here, from
settings and the per-run config.
"""

import abc
import logging
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError

from docfiling.config import Settings
from docfiling.models.classification import DocumentClassification
from docfiling.models.documents import BatchDocument
from docfiling.models.pipeline import ChunkResult, ClassificationRequest, PipelineConfig
from docfiling.services.intelligence import post_process_fields

logger = logging.getLogger(__name__)


class BatchClassifier(abc.ABC):
    """Classifies one chunk of documents per call."""

    #: Reported as ``metadata.model`` in pipeline results
    model_name: str = "unknown"
    is_mock: bool = False

    @abc.abstractmethod
    async def classify_batch(
        self,
        chunk: Sequence[BatchDocument],
        request: ClassificationRequest,
        timeout: Optional[float] = None,
    ) -> ChunkResult:
        """Classify ``chunk``.

        Args:
            chunk: Documents to classify in one call
            request: Batch-level context (client, folders, references, skill)
            timeout: Seconds left before the run deadline, or None

        Returns:
            ChunkResult with one classification per returned document

        Raises:
            Exception: Any failure; the orchestrator converts it into
                error records for every document in the chunk
        """


def validate_classifications(
    raw_items: Sequence[Any],
    chunk: Sequence[BatchDocument],
) -> List[DocumentClassification]:
    """Validate raw classifier items, dropping the ones that do not fit.

    Items with a missing file name inherit it from the chunk document of
    the same index. Dropped items surface later as "not returned" errors.
    Embedded intelligence fields get the same defaults as extracted ones.
    """
    names = {doc.index: doc.file_name for doc in chunk}
    results: List[DocumentClassification] = []

    for item in raw_items:
        if not isinstance(item, dict):
            logger.warning("Skipping non-object classification item: %r", str(item)[:100])
            continue
        try:
            classification = DocumentClassification.model_validate(item)
        except ValidationError as e:
            logger.warning("Skipping invalid classification item: %s", e.errors()[:3])
            continue
        if not classification.file_name:
            classification.file_name = names.get(classification.document_index, "")
        classification.intelligence_fields = post_process_fields(classification.intelligence_fields)
        results.append(classification)

    return results


def use_mock_classifier(settings: Settings, config: PipelineConfig) -> bool:
    """Mock unless a credential is present and mock is not forced."""
    return config.use_mock or settings.use_mock or not settings.oracle_configured


def create_classifier(settings: Settings, config: PipelineConfig) -> BatchClassifier:
    """Build the classifier selected by settings and run config."""
    from docfiling.services.gemini_classifier import GeminiClassifier
    from docfiling.services.mock_classifier import MockClassifier

    if use_mock_classifier(settings, config):
        logger.info("Using mock classifier (no oracle credential or mock forced)")
        return MockClassifier(simulate_latency=settings.mock_latency_enabled)

    from docfiling.services.gemini_client import get_gemini_client
    from docfiling.services.oracle import GeminiOracle

    oracle = GeminiOracle(get_gemini_client(), settings.model_name)
    return GeminiClassifier(oracle, settings.model_name)
