"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from docsync.embedding.encoder import DEFAULT_MODEL, DEFAULT_OPENAI_MODEL, EmbeddingConfig
from docsync.embedding.tokenizer import DEFAULT_ENCODING
from docsync.errors import SetupError

PROVIDERS = ("local", "openai")


@dataclass(slots=True)
class AppConfig:
    db_path: Path = Path("data/docsync.db")
    docs_root: Path = Path("pages")
    provider: str = "local"
    model_name: str | None = None
    openai_api_key: str | None = None
    timeout: float = 30.0
    chunk_tokens: int = 400
    overlap_tokens: int = 100
    encoding_name: str = DEFAULT_ENCODING
    ignored_paths: Tuple[str, ...] = ("/404",)
    refresh: bool = False
    embed_workers: int = 1

    def __post_init__(self) -> None:
        if self.model_name is None:
            self.model_name = DEFAULT_OPENAI_MODEL if self.provider == "openai" else DEFAULT_MODEL

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path

    def validate(self) -> None:
        """Raise `SetupError` for configuration that makes a run impossible."""
        if self.provider not in PROVIDERS:
            raise SetupError(f"Unknown embedding provider '{self.provider}'")
        if not Path(self.docs_root).is_dir():
            raise SetupError(f"Docs root not found: {self.docs_root}")
        if self.chunk_tokens <= 0 or not 0 <= self.overlap_tokens < self.chunk_tokens:
            raise SetupError(
                f"Invalid chunk geometry: chunk_tokens={self.chunk_tokens}, "
                f"overlap_tokens={self.overlap_tokens}"
            )
        if self.embed_workers < 1:
            raise SetupError("embed_workers must be at least 1")
        if self.provider == "openai" and not self.openai_api_key:
            raise SetupError("OpenAI API key required. Set OPENAI_API_KEY")

    def embedding_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            provider=self.provider,  # type: ignore[arg-type]
            model_name=self.model_name or DEFAULT_MODEL,
            api_key=self.openai_api_key,
            timeout=self.timeout,
        )
