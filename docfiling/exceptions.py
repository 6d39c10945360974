"""Exception types raised by the classification pipeline.

Only configuration problems (``SkillConfigurationError``) are meant to
escape a pipeline run. Everything else is caught at chunk, document or
field scope and turned into a structured error record.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for pipeline errors."""


class SkillError(PipelineError):
    """Base class for skill loading failures."""


class SkillNotFoundError(SkillError):
    """Raised when a named skill has no SKILL.md file."""

    def __init__(self, name: str, path: str):
        self.name = name
        self.path = path
        super().__init__(f"Skill '{name}' not found at {path}")


class SkillConfigurationError(SkillError):
    """Raised when a SKILL.md header is missing or invalid.

    This is an operator misconfiguration and must be fixed before the
    batch is retried.
    """


class OracleError(PipelineError):
    """Raised when the completion service call fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ClassificationParseError(PipelineError):
    """Raised when a classification response cannot be parsed as JSON."""

    def __init__(self, message: str, raw_response: str):
        self.raw_response = raw_response[:500]
        super().__init__(f"Failed to parse classification response: {message}\nResponse: {self.raw_response}")


class DeadlineExceededError(PipelineError):
    """Raised when the pipeline deadline has passed before an external call."""

    def __init__(self, message: str = "Batch deadline exceeded"):
        super().__init__(message)
