"""Tests for the Gemini completion oracle and context caching."""

import time
from unittest.mock import MagicMock

import pytest
from google import genai
from google.genai import errors as genai_errors

from docfiling.exceptions import OracleError
from docfiling.models.oracle import ImageBlock, SystemBlock, TextBlock
from docfiling.services.oracle import (
    MIN_CACHE_TOKENS,
    GeminiOracle,
    get_or_create_cache,
    to_gemini_part,
)

LONG_INSTRUCTION = "Classify documents carefully. " * 400  # ~3000 tokens
MODEL = "gemini-2.5-flash"


@pytest.fixture
def mock_client():
    """Gemini client whose cache and model calls are mocked."""
    client = MagicMock(spec=genai.Client)
    client.caches = MagicMock()
    client.models = MagicMock()

    cache = MagicMock()
    cache.name = "cachedContents/abc123"
    cache.usage_metadata.total_token_count = 3001
    client.caches.create.return_value = cache

    response = MagicMock()
    response.text = '[{"documentIndex": 0}]'
    response.usage_metadata.prompt_token_count = 1500
    response.usage_metadata.candidates_token_count = 300
    response.usage_metadata.cached_content_token_count = 1200
    client.models.generate_content.return_value = response
    return client


class TestGetOrCreateCache:
    """Context cache creation and reuse."""

    @pytest.mark.asyncio
    async def test_small_instruction_is_not_cached(self, mock_client):
        name, tokens = await get_or_create_cache(mock_client, MODEL, "short")

        assert name is None
        assert tokens == 0
        mock_client.caches.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_creates_cache_once(self, mock_client):
        assert len(LONG_INSTRUCTION) // 4 >= MIN_CACHE_TOKENS

        first = await get_or_create_cache(mock_client, MODEL, LONG_INSTRUCTION)
        second = await get_or_create_cache(mock_client, MODEL, LONG_INSTRUCTION)

        assert first == ("cachedContents/abc123", 3001)
        assert second == ("cachedContents/abc123", 0)
        mock_client.caches.create.assert_called_once()
        mock_client.caches.get.assert_called_once_with(name="cachedContents/abc123")

    @pytest.mark.asyncio
    async def test_expired_cache_is_recreated(self, mock_client):
        await get_or_create_cache(mock_client, MODEL, LONG_INSTRUCTION)
        mock_client.caches.get.side_effect = Exception("404 cache not found")

        name, tokens = await get_or_create_cache(mock_client, MODEL, LONG_INSTRUCTION)

        assert name == "cachedContents/abc123"
        assert tokens == 3001
        assert mock_client.caches.create.call_count == 2

    @pytest.mark.asyncio
    async def test_creation_failure_falls_back_to_uncached(self, mock_client):
        mock_client.caches.create.side_effect = Exception("quota exceeded")

        assert await get_or_create_cache(mock_client, MODEL, LONG_INSTRUCTION) == (None, 0)

    @pytest.mark.asyncio
    async def test_different_models_get_separate_caches(self, mock_client):
        await get_or_create_cache(mock_client, MODEL, LONG_INSTRUCTION)
        await get_or_create_cache(mock_client, "gemini-2.5-pro", LONG_INSTRUCTION)

        assert mock_client.caches.create.call_count == 2


class TestToGeminiPart:
    def test_text_block(self):
        part = to_gemini_part(TextBlock(text="hello"))

        assert part.text == "hello"

    def test_image_block_is_decoded(self):
        part = to_gemini_part(ImageBlock(data="QUJD", media_type="image/png"))

        assert part.inline_data.data == b"ABC"
        assert part.inline_data.mime_type == "image/png"


class TestGeminiOracle:
    @pytest.mark.asyncio
    async def test_uncached_call_sends_all_system_text(self, mock_client):
        oracle = GeminiOracle(mock_client, MODEL)

        response = await oracle.complete(
            [SystemBlock(text="stable", cacheable=True), SystemBlock(text="dynamic")],
            [TextBlock(text="user")],
            max_output_tokens=1000,
            temperature=0.1,
        )

        kwargs = mock_client.models.generate_content.call_args.kwargs
        assert kwargs["model"] == MODEL
        assert kwargs["config"].system_instruction == "stable\n\ndynamic"
        assert kwargs["config"].cached_content is None
        assert kwargs["config"].max_output_tokens == 1000
        assert len(kwargs["contents"]) == 1

        assert response.text == '[{"documentIndex": 0}]'
        assert response.usage.input_tokens == 1500
        assert response.usage.output_tokens == 300
        assert response.usage.cache_read_tokens == 1200
        assert response.usage.cache_creation_tokens == 0

    @pytest.mark.asyncio
    async def test_cached_call_moves_dynamic_blocks_into_contents(self, mock_client):
        oracle = GeminiOracle(mock_client, MODEL)

        response = await oracle.complete(
            [SystemBlock(text=LONG_INSTRUCTION, cacheable=True), SystemBlock(text="folders and refs")],
            [TextBlock(text="user")],
            max_output_tokens=1000,
            temperature=0.1,
        )

        kwargs = mock_client.models.generate_content.call_args.kwargs
        assert kwargs["config"].cached_content == "cachedContents/abc123"
        assert kwargs["config"].system_instruction is None
        assert kwargs["contents"][0].text == "folders and refs"
        assert response.usage.cache_creation_tokens == 3001

    @pytest.mark.asyncio
    async def test_empty_response_raises(self, mock_client):
        mock_client.models.generate_content.return_value.text = None
        oracle = GeminiOracle(mock_client, MODEL)

        with pytest.raises(OracleError, match="empty response"):
            await oracle.complete([], [TextBlock(text="x")], max_output_tokens=10, temperature=0.1)

    @pytest.mark.asyncio
    async def test_api_error_carries_status_code(self, mock_client):
        mock_client.models.generate_content.side_effect = genai_errors.APIError(
            429, {"error": {"code": 429, "message": "Resource exhausted", "status": "RESOURCE_EXHAUSTED"}}
        )
        oracle = GeminiOracle(mock_client, MODEL)

        with pytest.raises(OracleError) as exc_info:
            await oracle.complete([], [TextBlock(text="x")], max_output_tokens=10, temperature=0.1)

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_timeout_raises_oracle_error(self, mock_client):
        mock_client.models.generate_content.side_effect = lambda **kwargs: time.sleep(0.5)
        oracle = GeminiOracle(mock_client, MODEL)

        with pytest.raises(OracleError, match="timed out"):
            await oracle.complete(
                [], [TextBlock(text="x")], max_output_tokens=10, temperature=0.1, timeout=0.05,
            )
