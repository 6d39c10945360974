"""Skill loading: named instruction sets stored as SKILL.md files.

Each skill lives at ``<skills_dir>/<name>/SKILL.md`` and starts with a
YAML front matter block::

    ---
    name: document-classify
    description: Classify batches of lending documents ...
    ---
    <full instructions>

``list_skills`` only parses headers, so callers can discover skills
without paying for their bodies. Loaded skills are cached by name.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml
from pydantic import ValidationError

from docfiling.exceptions import SkillConfigurationError, SkillNotFoundError
from docfiling.models.skills import SkillDefinition, SkillMetadata

logger = logging.getLogger(__name__)

SKILL_FILE_NAME = "SKILL.md"
FRONT_MATTER_DELIMITER = "---"

_skill_cache: Dict[Tuple[str, str], SkillDefinition] = {}


def _split_front_matter(text: str, path: Path) -> Tuple[dict, str]:
    """Split a SKILL.md file into its header mapping and body."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != FRONT_MATTER_DELIMITER:
        raise SkillConfigurationError(f"{path}: missing front matter header")

    for end, line in enumerate(lines[1:], start=1):
        if line.strip() == FRONT_MATTER_DELIMITER:
            break
    else:
        raise SkillConfigurationError(f"{path}: unterminated front matter header")

    try:
        header = yaml.safe_load("\n".join(lines[1:end])) or {}
    except yaml.YAMLError as e:
        raise SkillConfigurationError(f"{path}: invalid front matter: {e}") from e

    if not isinstance(header, dict):
        raise SkillConfigurationError(f"{path}: front matter must be a mapping")

    return header, "\n".join(lines[end + 1:]).strip()


def _parse_metadata(header: dict, path: Path) -> SkillMetadata:
    missing = [key for key in ("name", "description") if not header.get(key)]
    if missing:
        raise SkillConfigurationError(f"{path}: missing required field(s): {', '.join(missing)}")

    try:
        metadata = SkillMetadata(
            name=str(header["name"]),
            description=str(header["description"]),
            path=str(path),
        )
    except ValidationError as e:
        raise SkillConfigurationError(f"{path}: invalid skill header: {e}") from e

    if metadata.name != path.parent.name:
        raise SkillConfigurationError(
            f"{path}: skill name '{metadata.name}' does not match directory '{path.parent.name}'"
        )
    return metadata


def parse_skill_file(path: Path) -> SkillDefinition:
    """Read and validate one SKILL.md file.

    Raises:
        SkillConfigurationError: If the header is missing, malformed or incomplete
    """
    header, body = _split_front_matter(path.read_text(encoding="utf-8"), path)
    metadata = _parse_metadata(header, path)
    if not body:
        raise SkillConfigurationError(f"{path}: skill has no instructions")
    return SkillDefinition(metadata=metadata, instructions=body)


def load_skill(name: str, skills_dir: Path) -> SkillDefinition:
    """Load a skill by name, using the cache when possible.

    Args:
        name: Skill name (directory name under ``skills_dir``)
        skills_dir: Root directory of skills

    Returns:
        SkillDefinition with metadata and instructions

    Raises:
        SkillNotFoundError: If no SKILL.md exists for ``name``
        SkillConfigurationError: If the SKILL.md header is invalid
    """
    key = (str(skills_dir), name)
    cached = _skill_cache.get(key)
    if cached is not None:
        return cached

    path = Path(skills_dir) / name / SKILL_FILE_NAME
    if not path.is_file():
        raise SkillNotFoundError(name, str(path))

    skill = parse_skill_file(path)
    _skill_cache[key] = skill
    logger.info("Loaded skill '%s' (%d chars)", name, len(skill.instructions))
    return skill


def list_skills(skills_dir: Path) -> List[SkillMetadata]:
    """List metadata for every skill under ``skills_dir`` without keeping bodies."""
    root = Path(skills_dir)
    if not root.is_dir():
        return []

    skills: List[SkillMetadata] = []
    for path in sorted(root.glob(f"*/{SKILL_FILE_NAME}")):
        header, _ = _split_front_matter(path.read_text(encoding="utf-8"), path)
        skills.append(_parse_metadata(header, path))
    return skills


def get_skill_instructions(name: str, skills_dir: Path, fallback: Optional[str] = None) -> str:
    """Return a skill's instructions, or ``fallback`` when the file is absent.

    A present but malformed skill still raises ``SkillConfigurationError``.
    """
    try:
        return load_skill(name, skills_dir).instructions
    except SkillNotFoundError as e:
        if fallback is None:
            raise
        logger.warning("%s; using built-in instructions", e)
        return fallback


def clear_skill_cache() -> None:
    _skill_cache.clear()
