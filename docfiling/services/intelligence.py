"""Intelligence extraction: a second oracle pass over full document text.

Classification sees at most a few thousand characters per document. Once
the type is known, this pass reads much more of the text and returns
structured, dot-namespaced fields (amounts, dates, parties, terms).

Failures here never fail a document: a broken call or an unparsable
response yields empty field lists for the documents involved.
"""

import json
import logging
import time
from typing import Any, Dict, List, NamedTuple, Optional, Sequence

from pydantic import ValidationError

from docfiling.models.classification import IntelligenceField
from docfiling.models.oracle import SystemBlock, TextBlock
from docfiling.models.pipeline import OracleUsage
from docfiling.services.oracle import CompletionOracle
from docfiling.utils.text import extract_json_span, strip_code_fences, truncate_head_tail

logger = logging.getLogger(__name__)

SINGLE_MAX_TEXT_CHARS = 12_000
BATCH_MAX_TEXT_CHARS = 8_000
HEAD_RATIO = 0.8
SINGLE_MAX_OUTPUT_TOKENS = 4096
BATCH_MAX_OUTPUT_TOKENS = 8192
DEFAULT_TEMPERATURE = 0.1


class IntelligenceDocument(NamedTuple):
    """A classified document queued for intelligence extraction."""

    index: int
    file_name: str
    text: str
    document_type: str
    document_category: str
    expected_fields: Sequence[str] = ()


class IntelligenceResult(NamedTuple):
    fields: Dict[int, List[IntelligenceField]]
    usage: OracleUsage
    latency_ms: int


# ---------------------------------------------------------------------------
# Field post-processing
# ---------------------------------------------------------------------------

def post_process_field(raw: Any) -> Optional[IntelligenceField]:
    """Validate one raw field and fill in safe defaults.

    ``raw`` is a JSON object from the oracle or an already parsed
    ``IntelligenceField`` (fields embedded in classification results).

    Returns:
        IntelligenceField, or None if ``raw`` has no usable field path
    """
    if isinstance(raw, IntelligenceField):
        field = raw
    elif isinstance(raw, dict):
        try:
            field = IntelligenceField.model_validate(raw)
        except ValidationError as e:
            logger.debug("Dropping invalid intelligence field: %s", e.errors()[:2])
            return None
    else:
        return None

    path = field.field_path.strip()
    if not path:
        return None

    updates: Dict[str, Any] = {"field_path": path}
    if not field.category:
        updates["category"] = path.split(".")[0] or "custom"
    if not field.label:
        updates["label"] = path.split(".")[-1]
    if not field.original_label:
        updates["original_label"] = field.label or updates.get("label", "")
    if not field.template_tags:
        updates["template_tags"] = ["general"]
    if field.is_canonical is None:
        updates["is_canonical"] = not path.startswith("custom.")
    if not field.scope:
        updates["scope"] = "project"
    if not field.value_type:
        updates["value_type"] = "text"
    return field.model_copy(update=updates)


def post_process_fields(raw_fields: Any) -> List[IntelligenceField]:
    """Post-process a list of raw fields, dropping the unusable ones."""
    if not isinstance(raw_fields, list):
        return []
    fields = (post_process_field(raw) for raw in raw_fields)
    return [f for f in fields if f is not None]


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def parse_intelligence_response(text: str) -> List[IntelligenceField]:
    """Parse a single-document response. Never raises.

    Accepts an array of fields, a lone field object, or ``{"fields": [...]}``.
    """
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        span = extract_json_span(cleaned, "[", "]")
        if span is None:
            logger.error("Failed to parse intelligence response: %s", e)
            return []
        try:
            parsed = json.loads(span)
        except json.JSONDecodeError:
            logger.error("Failed to parse intelligence response: %s", e)
            return []

    if isinstance(parsed, dict):
        parsed = parsed["fields"] if isinstance(parsed.get("fields"), list) else [parsed]
    return post_process_fields(parsed)


def _parse_index(key: Any) -> Optional[int]:
    try:
        return int(key)
    except (TypeError, ValueError):
        return None


def _collect_keyed(parsed: Dict[str, Any], results: Dict[int, List[IntelligenceField]]) -> None:
    for key, raw_fields in parsed.items():
        index = _parse_index(key)
        if index is None:
            continue
        results[index] = post_process_fields(raw_fields)


def parse_intelligence_batch_response(
    text: str,
    expected_indices: Sequence[int],
) -> Dict[int, List[IntelligenceField]]:
    """Parse a batched response into fields per document index. Never raises.

    Tolerated shapes:

    - ``{"0": [...], "1": [...]}``, the requested format
    - a flat array whose items carry ``documentIndex``; items without one
      go to the first expected index
    - text around a JSON object, in which case the first ``{...}`` span is used

    Every expected index is present in the result, with an empty list when
    nothing was returned for it.
    """
    results: Dict[int, List[IntelligenceField]] = {index: [] for index in expected_indices}
    cleaned = strip_code_fences(text)

    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        span = extract_json_span(cleaned, "{", "}")
        if span is None:
            logger.error("Failed to parse intelligence batch response: %s", e)
            return results
        try:
            parsed = json.loads(span)
        except json.JSONDecodeError:
            logger.error("Failed to parse intelligence batch response: %s", e)
            return results
        if isinstance(parsed, dict):
            _collect_keyed(parsed, results)
        return results

    if isinstance(parsed, list):
        default_index = expected_indices[0] if expected_indices else 0
        for raw in parsed:
            if not isinstance(raw, dict):
                continue
            index = _parse_index(raw.get("documentIndex", raw.get("document_index", default_index)))
            field = post_process_field(raw)
            if field is None:
                continue
            results.setdefault(default_index if index is None else index, []).append(field)
    elif isinstance(parsed, dict):
        _collect_keyed(parsed, results)

    return results


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def build_single_prompt(doc: IntelligenceDocument) -> str:
    text = truncate_head_tail(doc.text, SINGLE_MAX_TEXT_CHARS, HEAD_RATIO)
    prompt = "## Document Details\n"
    prompt += f"- **Type:** {doc.document_type}\n"
    prompt += f"- **Category:** {doc.document_category}\n"
    if doc.expected_fields:
        prompt += f"- **Expected fields for this type:** {', '.join(doc.expected_fields)}\n"
    prompt += f"\n## Document Text\n```\n{text}\n```\n"
    prompt += "\nExtract ALL intelligence fields from this document. Return ONLY a JSON array."
    return prompt


def build_batch_prompt(documents: Sequence[IntelligenceDocument]) -> str:
    prompt = "## Batch Intelligence Extraction\n\n"
    prompt += f"Extract structured intelligence fields from the following {len(documents)} document(s).\n"
    prompt += "Return a JSON object keyed by document index.\n\n"

    for doc in documents:
        text = truncate_head_tail(doc.text, BATCH_MAX_TEXT_CHARS, HEAD_RATIO)
        prompt += f'---\n## Document {doc.index}: "{doc.file_name}"\n'
        prompt += f"- **Type:** {doc.document_type}\n"
        prompt += f"- **Category:** {doc.document_category}\n"
        if doc.expected_fields:
            prompt += f"- **Expected fields:** {', '.join(doc.expected_fields)}\n"
        prompt += f"\n```\n{text}\n```\n\n"

    prompt += "---\n## Required Output Format\n\n"
    prompt += "Return a JSON object keyed by document index. Each value is an array of intelligence fields.\n"
    prompt += 'Example: { "0": [ { "fieldPath": "financials.gdv", ... } ], "1": [ ... ] }\n\n'
    prompt += "IMPORTANT: Return ONLY the JSON object. No markdown, no explanation, just valid JSON."
    return prompt


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

class IntelligenceExtractor:
    """Runs intelligence extraction against a completion oracle."""

    is_mock = False

    def __init__(self, oracle: CompletionOracle, skill_instructions: str, temperature: float = DEFAULT_TEMPERATURE):
        self.oracle = oracle
        self.skill_instructions = skill_instructions
        self.temperature = temperature

    async def extract(self, doc: IntelligenceDocument, timeout: Optional[float] = None) -> IntelligenceResult:
        """Extract fields from one document with the larger text budget."""
        response = await self.oracle.complete(
            [SystemBlock(text=self.skill_instructions, cacheable=True)],
            [TextBlock(text=build_single_prompt(doc))],
            max_output_tokens=SINGLE_MAX_OUTPUT_TOKENS,
            temperature=self.temperature,
            timeout=timeout,
        )
        fields = parse_intelligence_response(response.text)
        logger.info("Extracted %d intelligence field(s) from %s", len(fields), doc.file_name)
        return IntelligenceResult({doc.index: fields}, response.usage, response.latency_ms)

    async def extract_batch(
        self,
        documents: Sequence[IntelligenceDocument],
        timeout: Optional[float] = None,
    ) -> IntelligenceResult:
        """Extract fields from several documents in one call."""
        response = await self.oracle.complete(
            [SystemBlock(text=self.skill_instructions, cacheable=True)],
            [TextBlock(text=build_batch_prompt(documents))],
            max_output_tokens=BATCH_MAX_OUTPUT_TOKENS,
            temperature=self.temperature,
            timeout=timeout,
        )
        fields = parse_intelligence_batch_response(response.text, [doc.index for doc in documents])
        if response.usage.cache_read_tokens:
            logger.info("Intelligence batch cache hit: %d tokens from cache", response.usage.cache_read_tokens)
        logger.info(
            "Extracted %d intelligence field(s) from %d document(s)",
            sum(len(f) for f in fields.values()), len(documents),
        )
        return IntelligenceResult(fields, response.usage, response.latency_ms)


class MockIntelligenceExtractor:
    """Offline extractor that answers with the mock classifier's synthetic fields.

    The synthetic fields are serialized into the batched response format
    and go through the same parser as a live response.
    """

    is_mock = True

    async def extract(self, doc: IntelligenceDocument, timeout: Optional[float] = None) -> IntelligenceResult:
        return await self.extract_batch([doc], timeout=timeout)

    async def extract_batch(
        self,
        documents: Sequence[IntelligenceDocument],
        timeout: Optional[float] = None,
    ) -> IntelligenceResult:
        from docfiling.services.mock_classifier import generate_intelligence_fields

        start = time.monotonic()
        payload = {
            str(doc.index): [
                f.model_dump(by_alias=True, exclude_none=True)
                for f in generate_intelligence_fields(doc.document_type, doc.document_category)
            ]
            for doc in documents
        }
        fields = parse_intelligence_batch_response(json.dumps(payload), [doc.index for doc in documents])
        usage = OracleUsage(
            input_tokens=sum(len(doc.text) // 4 for doc in documents),
            output_tokens=sum(len(f) for f in fields.values()) * 60,
        )
        return IntelligenceResult(fields, usage, int((time.monotonic() - start) * 1000))


def create_intelligence_extractor(classifier: Any, skill_instructions: str):
    """Pick the extractor matching the classifier in use.

    Returns:
        An extractor, or None when the classifier exposes no oracle
        (intelligence is then skipped)
    """
    if getattr(classifier, "is_mock", False):
        return MockIntelligenceExtractor()
    oracle = getattr(classifier, "oracle", None)
    if oracle is None:
        return None
    return IntelligenceExtractor(oracle, skill_instructions)
