# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Embedding service for API-based embedding generation.

Supported providers:
- Ollama: nomic-embed-text (768d), mxbai-embed-large (1024d) - via direct httpx
- OpenAI: text-embedding-3-small (1536d), text-embedding-3-large (3072d) - via LiteLLM
- Cohere: embed-english-v3.0, embed-multilingual-v3.0 - via LiteLLM

Ollama embeddings use direct httpx calls because LiteLLM doesn't pass the
Authorization header for authenticated Ollama endpoints.

Example:
    >>> from tutor_memory.core.intelligence.embeddings import EmbeddingService
    >>> service = EmbeddingService()
    >>> vector = await service.embed_text("I am learning Rust")
    >>> vectors = await service.embed_batch(["Hello", "World"])
"""

import logging
from typing import Any, Optional

import httpx
import litellm
from litellm import aembedding

from tutor_memory.core.config.settings import get_settings

logger = logging.getLogger(__name__)

# Model dimension mapping for known embedding models
MODEL_DIMENSIONS: dict[str, int] = {
    "ollama/nomic-embed-text": 768,
    "ollama/mxbai-embed-large": 1024,
    "ollama/all-minilm": 384,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "embed-english-v3.0": 1024,
    "embed-multilingual-v3.0": 1024,
}


class EmbeddingError(Exception):
    """Exception raised when embedding generation fails.

    Attributes:
        message: Error description.
        model: Model that caused the error.
        original_error: Original exception if any.
    """

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.model = model
        self.original_error = original_error
        super().__init__(self.message)


class EmbeddingService:
    """Service for generating text embeddings via LiteLLM.

    Attributes:
        model: The embedding model identifier in LiteLLM format.
        dimension: The output dimension of the embedding vectors.
        batch_size: Maximum number of texts to embed in a single batch.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        """Initialize the embedding service.

        Args:
            model: Embedding model in LiteLLM format. Falls back to settings.
            dimension: Vector dimension. Auto-detected from model if not provided.
            batch_size: Maximum batch size for embed_batch. Falls back to settings.
        """
        settings = get_settings()
        self._llm_settings = settings.llm

        self._model = model or settings.embedding.model
        self._batch_size = batch_size or settings.embedding.batch_size

        if dimension is not None:
            self._dimension = dimension
        elif self._model in MODEL_DIMENSIONS:
            self._dimension = MODEL_DIMENSIONS[self._model]
        else:
            self._dimension = settings.embedding.dimension

        self._litellm_params = self._build_litellm_params()
        litellm.set_verbose = False

        logger.info(
            "EmbeddingService initialized with model=%s, dimension=%d, batch_size=%d",
            self._model,
            self._dimension,
            self._batch_size,
        )

    def _build_litellm_params(self) -> dict[str, Any]:
        """Build api_key parameters for LiteLLM aembedding() calls."""
        params: dict[str, Any] = {}
        if not self._is_ollama_provider() and self._llm_settings.openai_api_key:
            params["api_key"] = self._llm_settings.openai_api_key.get_secret_value()
        return params

    def _is_ollama_provider(self) -> bool:
        return self._model.startswith("ollama/")

    async def _ollama_embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings using a direct Ollama API call.

        Args:
            texts: List of texts to embed.

        Returns:
            List of embedding vectors.

        Raises:
            EmbeddingError: If the API call fails.
        """
        model_name = self._model[len("ollama/"):]
        api_base = self._llm_settings.ollama_base_url.rstrip("/")

        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._llm_settings.ollama_api_key:
            headers["Authorization"] = (
                f"Bearer {self._llm_settings.ollama_api_key.get_secret_value()}"
            )

        try:
            async with httpx.AsyncClient(timeout=60.0) as client:
                response = await client.post(
                    f"{api_base}/api/embed",
                    headers=headers,
                    json={"model": model_name, "input": texts},
                )
                response.raise_for_status()
                data = response.json()
                return data.get("embeddings", [])

        except httpx.HTTPStatusError as e:
            raise EmbeddingError(
                message=f"Ollama API error: {e.response.status_code} - {e.response.text}",
                model=self._model,
                original_error=e,
            ) from e
        except Exception as e:
            raise EmbeddingError(
                message=f"Failed to call Ollama embedding API: {str(e)}",
                model=self._model,
                original_error=e,
            ) from e

    @property
    def model(self) -> str:
        """Get the embedding model identifier."""
        return self._model

    @property
    def dimension(self) -> int:
        """Get the embedding vector dimension."""
        return self._dimension

    @property
    def batch_size(self) -> int:
        """Get the maximum batch size for embedding operations."""
        return self._batch_size

    async def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for a single text.

        Args:
            text: Input text to embed.

        Returns:
            Embedding vector as list of floats.

        Raises:
            EmbeddingError: If embedding generation fails.
            ValueError: If text is empty.
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")

        try:
            if self._is_ollama_provider():
                embeddings = await self._ollama_embed([text])
                embedding = embeddings[0] if embeddings else []
            else:
                response = await aembedding(
                    model=self._model,
                    input=[text],
                    **self._litellm_params,
                )
                embedding = response.data[0]["embedding"]

            if not embedding:
                raise EmbeddingError(
                    message="Provider returned an empty embedding",
                    model=self._model,
                )

            logger.debug(
                "Generated embedding for text of length %d, dimension=%d",
                len(text),
                len(embedding),
            )
            return embedding

        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(
                "Failed to generate embedding: model=%s, text_length=%d, error=%s",
                self._model,
                len(text),
                str(e),
            )
            raise EmbeddingError(
                message=f"Failed to generate embedding: {str(e)}",
                model=self._model,
                original_error=e,
            ) from e

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for multiple texts.

        Texts are processed in chunks of batch_size. Empty texts get a zero
        vector so the output stays aligned with the input.

        Args:
            texts: List of input texts to embed.

        Returns:
            List of embedding vectors, one per input text.

        Raises:
            EmbeddingError: If embedding generation fails.
            ValueError: If texts list is empty or every text is blank.
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")

        valid_indices: list[int] = []
        valid_texts: list[str] = []
        for i, text in enumerate(texts):
            if text and text.strip():
                valid_indices.append(i)
                valid_texts.append(text)

        if not valid_texts:
            raise ValueError("All provided texts are empty")

        all_embeddings: list[list[float]] = []

        try:
            for batch_idx in range(0, len(valid_texts), self._batch_size):
                batch = valid_texts[batch_idx : batch_idx + self._batch_size]

                if self._is_ollama_provider():
                    batch_embeddings = await self._ollama_embed(batch)
                else:
                    response = await aembedding(
                        model=self._model,
                        input=batch,
                        **self._litellm_params,
                    )
                    batch_embeddings = [item["embedding"] for item in response.data]

                all_embeddings.extend(batch_embeddings)

        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(
                "Failed to generate batch embeddings: model=%s, count=%d, error=%s",
                self._model,
                len(texts),
                str(e),
            )
            raise EmbeddingError(
                message=f"Failed to generate batch embeddings: {str(e)}",
                model=self._model,
                original_error=e,
            ) from e

        zero_vector = [0.0] * self._dimension
        result: list[list[float]] = [zero_vector for _ in texts]
        for idx, embedding in zip(valid_indices, all_embeddings):
            result[idx] = embedding or zero_vector

        logger.debug("Generated %d embeddings", len(all_embeddings))
        return result

    def __repr__(self) -> str:
        return (
            f"EmbeddingService(model={self._model!r}, "
            f"dimension={self._dimension}, batch_size={self._batch_size})"
        )
