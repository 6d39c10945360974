"""Provider-agnostic request and response blocks for the completion oracle."""

from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, Field

from docfiling.models.pipeline import OracleUsage


class SystemBlock(BaseModel):
    """A system prompt block; ``cacheable`` blocks repeat across calls."""

    text: str
    cacheable: bool = False


class TextBlock(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageBlock(BaseModel):
    type: Literal["image"] = "image"
    data: str = Field(..., description="Base64-encoded image bytes")
    media_type: str


class DocumentBlock(BaseModel):
    type: Literal["document"] = "document"
    data: str = Field(..., description="Base64-encoded PDF bytes")
    media_type: str = "application/pdf"


ContentBlock = Annotated[Union[TextBlock, ImageBlock, DocumentBlock], Field(discriminator="type")]


class OracleResponse(BaseModel):
    text_blocks: List[str] = Field(default_factory=list)
    usage: OracleUsage = Field(default_factory=OracleUsage)
    latency_ms: int = 0

    @property
    def text(self) -> str:
        return "".join(self.text_blocks)
