# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for EmbeddingService.

Provider calls are patched: LiteLLM's aembedding for hosted models and
httpx.AsyncClient for Ollama.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from tutor_memory.core.intelligence.embeddings.service import (
    MODEL_DIMENSIONS,
    EmbeddingError,
    EmbeddingService,
)

SERVICE_MODULE = "tutor_memory.core.intelligence.embeddings.service"


@pytest.fixture
def mock_settings():
    with patch(f"{SERVICE_MODULE}.get_settings") as get_settings:
        settings = get_settings.return_value
        settings.embedding.model = "ollama/nomic-embed-text"
        settings.embedding.dimension = 768
        settings.embedding.batch_size = 2
        settings.llm.ollama_base_url = "http://localhost:11434/"
        settings.llm.ollama_api_key = None
        settings.llm.openai_api_key = None
        yield settings


def _litellm_response(*vectors: list[float]) -> MagicMock:
    response = MagicMock()
    response.data = [{"embedding": v} for v in vectors]
    return response


def _ollama_client(embeddings: list[list[float]] | None = None, error: Exception | None = None):
    """Patch target for httpx.AsyncClient returning canned Ollama responses."""
    response = MagicMock()
    response.json.return_value = {"embeddings": embeddings or []}
    if error is not None:
        response.raise_for_status.side_effect = error

    client = MagicMock()
    client.post = AsyncMock(return_value=response)
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    return client


@pytest.mark.unit
class TestEmbeddingServiceInit:
    def test_defaults_from_settings(self, mock_settings) -> None:
        service = EmbeddingService()

        assert service.model == "ollama/nomic-embed-text"
        assert service.dimension == 768
        assert service.batch_size == 2

    def test_dimension_detected_from_model(self, mock_settings) -> None:
        service = EmbeddingService(model="text-embedding-3-small")

        assert service.dimension == MODEL_DIMENSIONS["text-embedding-3-small"]

    def test_explicit_dimension_wins(self, mock_settings) -> None:
        assert EmbeddingService(model="text-embedding-3-small", dimension=512).dimension == 512

    def test_unknown_model_uses_settings_dimension(self, mock_settings) -> None:
        assert EmbeddingService(model="custom/model").dimension == 768


@pytest.mark.unit
class TestEmbedText:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   "])
    async def test_blank_text_rejected(self, mock_settings, text) -> None:
        with pytest.raises(ValueError, match="Text cannot be empty"):
            await EmbeddingService().embed_text(text)

    @pytest.mark.asyncio
    async def test_hosted_model_via_litellm(self, mock_settings) -> None:
        with patch(f"{SERVICE_MODULE}.aembedding", new_callable=AsyncMock) as aembedding:
            aembedding.return_value = _litellm_response([0.1, 0.2])

            vector = await EmbeddingService(model="text-embedding-3-small").embed_text("hi")

        assert vector == [0.1, 0.2]
        assert aembedding.await_args.kwargs["input"] == ["hi"]

    @pytest.mark.asyncio
    async def test_provider_failure_wrapped(self, mock_settings) -> None:
        with patch(f"{SERVICE_MODULE}.aembedding", new_callable=AsyncMock) as aembedding:
            aembedding.side_effect = RuntimeError("rate limited")

            with pytest.raises(EmbeddingError) as exc_info:
                await EmbeddingService(model="text-embedding-3-small").embed_text("hi")

        assert isinstance(exc_info.value.original_error, RuntimeError)
        assert exc_info.value.model == "text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_ollama_direct_call(self, mock_settings) -> None:
        mock_settings.llm.ollama_api_key = MagicMock()
        mock_settings.llm.ollama_api_key.get_secret_value.return_value = "secret"
        client = _ollama_client([[0.5, 0.6]])

        with patch(f"{SERVICE_MODULE}.httpx.AsyncClient", return_value=client):
            vector = await EmbeddingService().embed_text("I am learning Rust")

        assert vector == [0.5, 0.6]
        url = client.post.await_args.args[0]
        kwargs = client.post.await_args.kwargs
        assert url == "http://localhost:11434/api/embed"
        assert kwargs["json"] == {"model": "nomic-embed-text", "input": ["I am learning Rust"]}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_ollama_http_error(self, mock_settings) -> None:
        request = httpx.Request("POST", "http://localhost:11434/api/embed")
        error = httpx.HTTPStatusError(
            "boom", request=request, response=httpx.Response(503, request=request)
        )
        client = _ollama_client(error=error)

        with patch(f"{SERVICE_MODULE}.httpx.AsyncClient", return_value=client):
            with pytest.raises(EmbeddingError, match="Ollama API error: 503"):
                await EmbeddingService().embed_text("hi")

    @pytest.mark.asyncio
    async def test_empty_embedding_is_an_error(self, mock_settings) -> None:
        client = _ollama_client([])

        with patch(f"{SERVICE_MODULE}.httpx.AsyncClient", return_value=client):
            with pytest.raises(EmbeddingError, match="empty embedding"):
                await EmbeddingService().embed_text("hi")


@pytest.mark.unit
class TestEmbedBatch:
    @pytest.mark.asyncio
    async def test_empty_list_rejected(self, mock_settings) -> None:
        with pytest.raises(ValueError):
            await EmbeddingService().embed_batch([])

    @pytest.mark.asyncio
    async def test_all_blank_rejected(self, mock_settings) -> None:
        with pytest.raises(ValueError, match="All provided texts are empty"):
            await EmbeddingService().embed_batch(["", " "])

    @pytest.mark.asyncio
    async def test_chunks_and_keeps_alignment(self, mock_settings) -> None:
        service = EmbeddingService(model="text-embedding-3-small", dimension=2)

        with patch(f"{SERVICE_MODULE}.aembedding", new_callable=AsyncMock) as aembedding:
            aembedding.side_effect = [
                _litellm_response([1.0, 1.0], [2.0, 2.0]),
                _litellm_response([3.0, 3.0]),
            ]

            vectors = await service.embed_batch(["a", "", "b", "c"])

        assert aembedding.await_count == 2
        assert vectors == [[1.0, 1.0], [0.0, 0.0], [2.0, 2.0], [3.0, 3.0]]
