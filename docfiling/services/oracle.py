"""Completion oracle contract and its Gemini implementation.

The pipeline depends only on ``CompletionOracle``: system blocks plus
user content blocks in, text blocks plus token usage out. ``GeminiOracle``
maps that contract onto google-genai:

- The cacheable system block (skill instructions) is stored in a Gemini
  context cache and referenced by name on later calls.
- Non-cacheable system blocks (folders, selected references) change per
  batch. With a cache they are sent as the leading user part, otherwise
  together with the cacheable block as the system instruction.
- Images and PDFs are sent inline as bytes parts.
"""

import asyncio
import base64
import hashlib
import logging
import time
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from docfiling.exceptions import OracleError
from docfiling.models.oracle import (
    ContentBlock,
    DocumentBlock,
    ImageBlock,
    OracleResponse,
    SystemBlock,
    TextBlock,
)
from docfiling.models.pipeline import OracleUsage

logger = logging.getLogger(__name__)

# Gemini rejects context caches smaller than this
MIN_CACHE_TOKENS = 1024
CACHE_TTL = "3600s"

# content hash -> cache resource name
_CACHE_NAMES: Dict[str, str] = {}
_cache_lock = asyncio.Lock()


class CompletionOracle(Protocol):
    """Stateless text/vision completion service."""

    async def complete(
        self,
        system_blocks: Sequence[SystemBlock],
        user_blocks: Sequence[ContentBlock],
        *,
        max_output_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> OracleResponse:
        ...


def _estimate_token_count(text: str) -> int:
    return len(text) // 4


def _cache_key(model: str, instruction: str) -> str:
    return hashlib.sha256(f"{model}\n{instruction}".encode("utf-8")).hexdigest()


async def get_or_create_cache(
    client: genai.Client,
    model: str,
    instruction: str,
) -> Tuple[Optional[str], int]:
    """Get or create a context cache holding ``instruction``.

    One cache is kept per (model, instruction) pair. An existing cache is
    checked before reuse because it may have expired on the server side.

    Args:
        client: Gemini API client
        model: Gemini model name
        instruction: Stable system instruction to cache

    Returns:
        Tuple of (cache name or None, tokens written when a cache was created).
        None means the instruction is too small to cache or caching failed;
        the caller then sends the instruction uncached.
    """
    estimated_tokens = _estimate_token_count(instruction)
    if estimated_tokens < MIN_CACHE_TOKENS:
        return None, 0

    key = _cache_key(model, instruction)
    async with _cache_lock:
        existing = _CACHE_NAMES.get(key)
        if existing is not None:
            try:
                await asyncio.to_thread(client.caches.get, name=existing)
                return existing, 0
            except Exception:
                # Expired or deleted server-side
                _CACHE_NAMES.pop(key, None)

        try:
            cache = await asyncio.to_thread(
                client.caches.create,
                model=model,
                config=types.CreateCachedContentConfig(
                    display_name="document_classification",
                    system_instruction=instruction,
                    ttl=CACHE_TTL,
                ),
            )
        except Exception as e:
            logger.warning("Context cache creation failed, sending instructions uncached: %s", e)
            return None, 0

        if cache.name is None:
            logger.warning("Context cache created without a name, sending instructions uncached")
            return None, 0

        created_tokens = getattr(getattr(cache, "usage_metadata", None), "total_token_count", None)
        if not isinstance(created_tokens, int):
            created_tokens = estimated_tokens

        _CACHE_NAMES[key] = cache.name
        logger.info("Created context cache %s (~%d tokens)", cache.name, created_tokens)
        return cache.name, created_tokens


def clear_context_caches() -> None:
    """Forget known cache names (server-side caches expire on their own)."""
    _CACHE_NAMES.clear()


def to_gemini_part(block: ContentBlock) -> types.Part:
    """Convert a provider-agnostic content block into a Gemini part."""
    if isinstance(block, TextBlock):
        return types.Part.from_text(text=block.text)
    if isinstance(block, (ImageBlock, DocumentBlock)):
        return types.Part.from_bytes(data=base64.b64decode(block.data), mime_type=block.media_type)
    raise TypeError(f"Unsupported content block: {type(block).__name__}")


def _int_or_zero(value: object) -> int:
    return value if isinstance(value, int) else 0


class GeminiOracle:
    """``CompletionOracle`` backed by google-genai ``generate_content``."""

    def __init__(self, client: genai.Client, model: str):
        self.client = client
        self.model = model

    async def complete(
        self,
        system_blocks: Sequence[SystemBlock],
        user_blocks: Sequence[ContentBlock],
        *,
        max_output_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> OracleResponse:
        """Run one completion.

        Raises:
            OracleError: On API errors, timeouts or an empty response
        """
        start = time.monotonic()

        stable = "\n\n".join(b.text for b in system_blocks if b.cacheable)
        dynamic = [b.text for b in system_blocks if not b.cacheable]

        cache_name, cache_creation_tokens = (None, 0)
        if stable:
            cache_name, cache_creation_tokens = await get_or_create_cache(self.client, self.model, stable)

        parts: List[types.Part] = [to_gemini_part(block) for block in user_blocks]
        if cache_name:
            parts = [types.Part.from_text(text=text) for text in dynamic] + parts
            config = types.GenerateContentConfig(
                cached_content=cache_name,
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                response_mime_type="application/json",
            )
        else:
            config = types.GenerateContentConfig(
                system_instruction="\n\n".join(b.text for b in system_blocks),
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                response_mime_type="application/json",
            )

        def _call() -> types.GenerateContentResponse:
            return self.client.models.generate_content(
                model=self.model,
                contents=parts,
                config=config,
            )

        try:
            response = await asyncio.wait_for(asyncio.to_thread(_call), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise OracleError(f"Gemini call timed out after {timeout:.1f}s") from e
        except genai_errors.APIError as e:
            raise OracleError(f"Gemini API error: {e}", status_code=e.code) from e

        text = response.text
        if not text:
            raise OracleError("Gemini returned an empty response")

        usage_metadata = response.usage_metadata
        usage = OracleUsage(
            input_tokens=_int_or_zero(getattr(usage_metadata, "prompt_token_count", 0)),
            output_tokens=_int_or_zero(getattr(usage_metadata, "candidates_token_count", 0)),
            cache_read_tokens=_int_or_zero(getattr(usage_metadata, "cached_content_token_count", 0)),
            cache_creation_tokens=cache_creation_tokens,
        )

        return OracleResponse(
            text_blocks=[text],
            usage=usage,
            latency_ms=int((time.monotonic() - start) * 1000),
        )
