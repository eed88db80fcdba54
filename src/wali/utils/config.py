"""
Configuration utilities.
"""

import json
from pathlib import Path

import yaml

from pydantic import BaseModel, Field

from wali.exceptions import GenerationError


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path) as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class WaliConfig(Config):
    """Configuration for the knowledge-base engine."""
    data_dir: str = ".wali"
    database_name: str = "wali.db"

    # Model settings
    provider: str = "dashscope"
    embedding_provider: str = "dashscope"
    embedding_model: str = "text-embedding-v2"
    llm_model: str = "qwen-turbo"
    base_url: str | None = None
    temperature: float = 0.7
    top_p: float = 0.9
    max_tokens: int = 1500

    # Chunking and retrieval
    chunk_size: int = Field(default=800, gt=0)
    chunk_overlap: int = Field(default=80, ge=0)
    top_k: int = Field(default=3, gt=0)
    history_messages: int = Field(default=6, ge=0)

    # Embedding batching
    embedding_batch_size: int = Field(default=25, gt=0)
    embedding_concurrency: int = Field(default=10, gt=0)

    # Timeouts and retry
    embedding_timeout: float = 30.0
    generation_timeout: float = 60.0
    max_attempts: int = Field(default=3, gt=0)
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0

    # Validation limits
    max_upload_bytes: int = 20 * 1024 * 1024
    max_question_chars: int = 4000
    allowed_file_types: list[str] = Field(
        default_factory=lambda: ["txt", "md", "markdown", "pdf", "json", "csv", "html", "unknown"]
    )

    @property
    def database_path(self) -> Path:
        return Path(self.data_dir) / self.database_name


def load_config(path: str | Path = "wali.yaml") -> WaliConfig:
    """
    Load engine configuration from file.

    Args:
        path: Path to config file

    Returns:
        WaliConfig instance (defaults when the file does not exist)
    """
    path = Path(path)

    if not path.exists():
        return WaliConfig()

    return WaliConfig.from_file(path)


class Credentials:
    """
    Process-scoped API key holder.

    Unset at startup, set through ``set`` and readable at any time.
    """

    def __init__(self, api_key: str | None = None):
        self._api_key = api_key or None

    @property
    def is_set(self) -> bool:
        return self._api_key is not None

    def set(self, api_key: str) -> None:
        """Store a new key. Blank keys are rejected."""
        if not api_key or not api_key.strip():
            raise ValueError("API key must not be empty")
        self._api_key = api_key.strip()

    def get(self) -> str | None:
        return self._api_key

    def require(self) -> str:
        """Return the key or fail with a generation error when unset."""
        if self._api_key is None:
            raise GenerationError("API key is not configured")
        return self._api_key

    def __repr__(self) -> str:
        return f"Credentials(is_set={self.is_set})"
