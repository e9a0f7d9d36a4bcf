"""Embedding providers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Literal, Protocol

import numpy as np
from sentence_transformers import SentenceTransformer

from docsync.errors import ProviderError, SetupError
from docsync.models import EmbeddingResult

DEFAULT_MODEL = "sentence-transformers/all-mpnet-base-v2"
DEFAULT_OPENAI_MODEL = "text-embedding-ada-002"

logger = logging.getLogger(__name__)


class EmbeddingProvider(Protocol):
    dimension: int

    def embed(self, text: str) -> EmbeddingResult: ...


def _detect_device() -> str | None:
    """Pick ``cuda`` or ``mps`` when available, otherwise let the model decide."""
    try:
        import torch

        if torch.cuda.is_available():
            logger.debug(f"CUDA GPU detected: {torch.cuda.get_device_name(0)}")
            return "cuda"
        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            logger.debug("Apple MPS GPU detected")
            return "mps"
        logger.debug("No GPU detected, will use CPU")
        return None
    except ImportError:
        logger.debug("PyTorch not available for GPU detection")
        return None


@dataclass(slots=True)
class EmbeddingConfig:
    provider: Literal["local", "openai"] = "local"
    model_name: str = DEFAULT_MODEL
    normalize: bool = True
    device: str | None = None
    api_key: str | None = None
    timeout: float = 30.0


class SentenceTransformerProvider:
    """Local embeddings through `SentenceTransformer`."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        device = self.config.device or _detect_device()
        try:
            self._model = SentenceTransformer(self.config.model_name, device=device)
        except Exception as exc:
            raise SetupError(f"Unable to load model '{self.config.model_name}': {exc}") from exc
        self.dimension = int(self._model.get_sentence_embedding_dimension())
        logger.info(f"Loaded model {self.config.model_name} (dimension {self.dimension})")

    def embed(self, text: str) -> EmbeddingResult:
        try:
            vectors = self._model.encode(
                [text],
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.config.normalize,
            )
        except Exception as exc:
            raise ProviderError(f"Local embedding failed: {exc}") from exc

        if len(vectors) == 0 or vectors[0].size == 0:
            raise ProviderError("Local embedding returned no vector")
        token_usage = len(self._model.tokenizer.encode(text))
        return EmbeddingResult(
            vector=np.asarray(vectors[0], dtype="float32").tolist(),
            token_usage=token_usage,
        )


class OpenAIEmbeddingProvider:
    """Embeddings through the OpenAI API.

    Requires: OPENAI_API_KEY environment variable or an explicit key.
    """

    DIMENSIONS = {
        "text-embedding-ada-002": 1536,
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
    }

    def __init__(self, config: EmbeddingConfig | None = None, *, client: Any = None) -> None:
        self.config = config or EmbeddingConfig(provider="openai", model_name=DEFAULT_OPENAI_MODEL)
        self.model = self.config.model_name
        self.dimension = self.DIMENSIONS.get(self.model, 1536)

        if client is None:
            try:
                from openai import OpenAI
            except ImportError:
                raise SetupError("OpenAIEmbeddingProvider requires the 'openai' library")

            key = self.config.api_key or os.environ.get("OPENAI_API_KEY")
            if not key:
                raise SetupError("OpenAI API key required. Set OPENAI_API_KEY")
            client = OpenAI(api_key=key, timeout=self.config.timeout)
        self._client = client

    def embed(self, text: str) -> EmbeddingResult:
        try:
            response = self._client.embeddings.create(model=self.model, input=text)
        except Exception as exc:
            raise ProviderError(f"OpenAI embedding request failed: {exc}") from exc

        data = getattr(response, "data", None)
        if not data or not data[0].embedding:
            raise ProviderError(f"OpenAI returned an empty embedding response: {response!r}")

        usage = getattr(response, "usage", None)
        return EmbeddingResult(
            vector=list(data[0].embedding),
            token_usage=int(usage.total_tokens) if usage is not None else 0,
        )


def build_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Instantiate the provider named by ``config.provider``."""
    if config.provider == "local":
        return SentenceTransformerProvider(config)
    if config.provider == "openai":
        return OpenAIEmbeddingProvider(config)
    raise SetupError(f"Unknown embedding provider: {config.provider!r}")
