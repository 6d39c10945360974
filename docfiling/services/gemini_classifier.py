"""Live batch classifier backed by the completion oracle."""

import logging
import time
from typing import Optional, Sequence

from docfiling.models.documents import BatchDocument
from docfiling.models.pipeline import ChunkResult, ClassificationRequest
from docfiling.services.classifier import BatchClassifier, validate_classifications
from docfiling.services.oracle import CompletionOracle
from docfiling.services.prompts import (
    build_batch_user_blocks,
    build_system_blocks,
    parse_classification_response,
)
from docfiling.services.reference_library import format_references_for_prompt

logger = logging.getLogger(__name__)


class GeminiClassifier(BatchClassifier):
    """Builds the two-block prompt, calls the oracle once and parses the array."""

    def __init__(self, oracle: CompletionOracle, model_name: str):
        self.oracle = oracle
        self.model_name = model_name

    async def classify_batch(
        self,
        chunk: Sequence[BatchDocument],
        request: ClassificationRequest,
        timeout: Optional[float] = None,
    ) -> ChunkResult:
        start = time.monotonic()

        system_blocks = build_system_blocks(
            request.skill_instructions,
            request.folders,
            format_references_for_prompt(request.references),
        )
        user_blocks = build_batch_user_blocks(chunk, request)

        response = await self.oracle.complete(
            system_blocks,
            user_blocks,
            max_output_tokens=request.config.max_tokens,
            temperature=request.config.temperature,
            timeout=timeout,
        )

        raw_items = parse_classification_response(response.text)
        classifications = validate_classifications(raw_items, chunk)

        latency_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "Classified chunk of %d document(s): %d result(s), %d input / %d output tokens, "
            "%d cache-read tokens, %dms",
            len(chunk), len(classifications), response.usage.input_tokens,
            response.usage.output_tokens, response.usage.cache_read_tokens, latency_ms,
        )
        return ChunkResult(classifications=classifications, usage=response.usage, latency_ms=latency_ms)
