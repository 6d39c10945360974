"""Reference library: cached corpus, batch selection and prompt formatting.

References come from two sources:

1. The bundled system corpus (``data/system_references.yaml``).
2. User-defined file type definitions from the persistent store.

Both are merged by case-insensitive file type and held in a process-wide
snapshot with a TTL. The snapshot is immutable and replaced by a single
assignment, so concurrent pipeline runs never see a half-built corpus.
"""

import logging
import time
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import yaml

from docfiling.models.documents import BatchDocument
from docfiling.models.references import ReferenceDocument, ReferenceLibraryCache

logger = logging.getLogger(__name__)

SYSTEM_REFERENCES_PATH = Path(__file__).resolve().parent.parent / "data" / "system_references.yaml"
DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_REFERENCES = 12

UserReferenceLoader = Callable[[], Awaitable[List[Dict[str, Any]]]]

# Process-wide snapshot; replaced wholesale, never mutated
_cache: Optional[ReferenceLibraryCache] = None


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

@lru_cache
def load_system_references(path: Path = SYSTEM_REFERENCES_PATH) -> Tuple[ReferenceDocument, ...]:
    """Load and validate the bundled system reference corpus."""
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or []
    return tuple(ReferenceDocument.model_validate({**entry, "source": "system"}) for entry in raw)


def reference_from_definition(definition: Dict[str, Any]) -> ReferenceDocument:
    """Convert a stored user file type definition into a reference.

    Learned keywords (from past corrections) are added both as tags and
    as keywords so they take part in tag scoring.
    """
    category = definition["category"]
    learned = [
        item["keyword"] if isinstance(item, dict) else str(item)
        for item in definition.get("learned_keywords") or []
    ]
    patterns = definition.get("filename_patterns") or []

    tags = [category.lower()]
    if definition.get("target_folder_key"):
        tags.append(definition["target_folder_key"])
    tags.extend(p.lower() for p in patterns)
    tags.extend(k.lower() for k in learned)

    fields: Dict[str, Any] = {
        "id": str(definition.get("id") or definition["file_type"]),
        "file_type": definition["file_type"],
        "category": category,
        "tags": list(dict.fromkeys(tags)),
        "keywords": list(dict.fromkeys([*(definition.get("keywords") or []), *learned])),
        "source": "user",
        "is_active": definition.get("is_active", True) is not False,
        "filename_patterns": patterns,
    }
    if definition.get("description"):
        fields["content"] = definition["description"]
    if definition.get("updated_at") or definition.get("created_at"):
        fields["updated_at"] = definition.get("updated_at") or definition.get("created_at")
    return ReferenceDocument.model_validate(fields)


async def load_user_references(loader: Optional[UserReferenceLoader]) -> List[ReferenceDocument]:
    """Load user references; failures are logged and yield an empty list."""
    if loader is None:
        return []
    try:
        definitions = await loader()
        return [reference_from_definition(d) for d in definitions]
    except Exception as e:
        logger.warning("Failed to load user reference definitions: %s", e)
        return []


def merge_references(
    system_refs: Sequence[ReferenceDocument],
    user_refs: Sequence[ReferenceDocument],
) -> List[ReferenceDocument]:
    """Merge user references over system ones by case-insensitive file type.

    On collision the user's explicitly set fields win and tag/keyword
    lists are unioned in order. Inactive references are dropped.
    """
    merged: Dict[str, ReferenceDocument] = {}
    for ref in system_refs:
        merged[ref.file_type.lower()] = ref

    for ref in user_refs:
        key = ref.file_type.lower()
        existing = merged.get(key)
        if existing is None:
            merged[key] = ref
            continue
        overrides = {name: getattr(ref, name) for name in ref.model_fields_set}
        overrides["tags"] = list(dict.fromkeys([*existing.tags, *ref.tags]))
        overrides["keywords"] = list(dict.fromkeys([*existing.keywords, *ref.keywords]))
        merged[key] = existing.model_copy(update=overrides)

    return [ref for ref in merged.values() if ref.is_active]


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

async def load_references(
    user_loader: Optional[UserReferenceLoader] = None,
    ttl_seconds: float = DEFAULT_TTL_SECONDS,
) -> Tuple[List[ReferenceDocument], bool]:
    """Return the merged reference corpus and whether it came from cache.

    Args:
        user_loader: Async callable returning user file type definitions
        ttl_seconds: Snapshot lifetime

    Returns:
        Tuple of (references, cache_hit)
    """
    global _cache

    snapshot = _cache
    if snapshot is not None and snapshot.is_valid(time.time()):
        logger.debug("Reference cache hit (%d references)", len(snapshot.references))
        return list(snapshot.references), True

    logger.debug("Reference cache miss; loading system and user references")
    user_refs = await load_user_references(user_loader)
    references = merge_references(load_system_references(), user_refs)

    _cache = ReferenceLibraryCache(
        references=tuple(references),
        cached_at=time.time(),
        ttl_seconds=ttl_seconds,
    )
    return references, False


def clear_reference_cache() -> None:
    """Invalidate the reference snapshot; the next load rebuilds it."""
    global _cache
    _cache = None


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------

def score_reference(ref: ReferenceDocument, batch_tags: set, hinted_types: set) -> int:
    """Relevance of one reference to the aggregated batch signal."""
    score = 0
    if ref.file_type.lower() in hinted_types:
        score += 10
    score += 3 * sum(1 for tag in ref.tags if tag.lower() in batch_tags)
    score += sum(1 for keyword in ref.keywords if keyword.lower() in batch_tags)
    if ref.category.lower() in batch_tags:
        score += 5
    return score


def select_references_for_batch(
    documents: Sequence[BatchDocument],
    references: Sequence[ReferenceDocument],
    max_references: int = DEFAULT_MAX_REFERENCES,
) -> List[ReferenceDocument]:
    """Pick the references most relevant to a batch.

    Every document's tags, filename type hint and characteristic flags
    are aggregated into one signal. References are ranked by score and
    the top ``max_references`` are returned. When nothing scores, one
    reference per category is returned so the classifier always has
    some context.
    """
    batch_tags: set = set()
    hinted_types: set = set()
    for doc in documents:
        batch_tags.update(tag.lower() for tag in doc.hints.matched_tags)
        if doc.hints.filename_type_hint:
            hinted_types.add(doc.hints.filename_type_hint.lower())
        if doc.hints.is_financial:
            batch_tags.add("financial")
        if doc.hints.is_legal:
            batch_tags.add("legal")
        if doc.hints.is_identity:
            batch_tags.add("kyc")

    scored = [(score_reference(ref, batch_tags, hinted_types), ref) for ref in references]
    scored.sort(key=lambda item: item[0], reverse=True)

    if not scored or scored[0][0] == 0:
        by_category: Dict[str, ReferenceDocument] = {}
        for ref in references:
            by_category.setdefault(ref.category, ref)
        return list(by_category.values())[:max_references]

    return [ref for _, ref in scored[:max_references]]


# ---------------------------------------------------------------------------
# Prompt formatting
# ---------------------------------------------------------------------------

def format_reference(ref: ReferenceDocument) -> str:
    """Full-detail markdown block for one reference."""
    parts = [
        f"### {ref.file_type} ({ref.category})",
        f"Tags: {', '.join(ref.tags)}",
        f"Keywords: {', '.join(ref.keywords[:15])}",
    ]
    if ref.filing:
        parts.append(f"Filing: {ref.filing.folder_key} ({ref.filing.level}-level)")
    parts.extend(["", ref.content])

    if ref.identification_rules:
        parts.extend(["", "**Identification Rules:**"])
        parts.extend(f"{i}. {rule}" for i, rule in enumerate(ref.identification_rules, 1))
    if ref.disambiguation:
        parts.extend(["", "**Disambiguation:**"])
        parts.extend(f"- {item}" for item in ref.disambiguation)
    if ref.key_terms:
        parts.extend(["", "**Key Terms:**"])
        parts.extend(f"- {term}" for term in ref.key_terms[:5])

    return "\n".join(parts)


def format_references_for_prompt(references: Sequence[ReferenceDocument]) -> str:
    """Render selected references as the reference section of the prompt."""
    if not references:
        return ""

    type_names = ", ".join(f'"{ref.file_type}"' for ref in references)
    header = (
        "## Reference Library\n"
        "The following reference documents describe known file types. "
        "Use these to inform your analysis.\n\n"
        f"**Valid fileType values from these references:** {type_names}\n"
        "You MUST return one of these exact strings as the fileType. "
        "Do not use synonyms or subtypes.\n\n"
    )
    return header + "\n\n".join(format_reference(ref) for ref in references)


def find_reference(references: Sequence[ReferenceDocument], file_type: str) -> Optional[ReferenceDocument]:
    """Case-insensitive lookup by file type."""
    wanted = file_type.lower()
    for ref in references:
        if ref.file_type.lower() == wanted:
            return ref
    return None
