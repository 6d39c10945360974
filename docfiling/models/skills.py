"""Pydantic models for skill instruction sets."""

import re

from pydantic import BaseModel, Field, field_validator

SKILL_NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class SkillMetadata(BaseModel):
    """Front matter of a SKILL.md file."""

    name: str = Field(..., min_length=1, max_length=64)
    description: str = Field(..., min_length=1, max_length=1024)
    path: str = ""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Skill names are lowercase words joined by hyphens."""
        if not SKILL_NAME_PATTERN.match(v):
            raise ValueError(
                f"Skill name must contain only lowercase letters, digits and hyphens (got: {v!r})"
            )
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Skill description must not be blank")
        return v.strip()


class SkillDefinition(BaseModel):
    metadata: SkillMetadata
    instructions: str
