"""Application settings and configuration schema."""

import os
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field


class OllamaCfg(BaseModel):
    """Model backend connection settings."""
    host: str = "http://localhost:11434"
    chat_model: str = "gemma:2b"
    embed_model: str = "nomic-embed-text"
    timeout: int = Field(60, gt=0)
    temperature: float = 0.7


class MemoryCfg(BaseModel):
    """Context window, retrieval and reflection settings."""
    context_token_limit: int = Field(4000, ge=0)
    ltm_top_n: int = Field(3, ge=0)
    similarity_threshold: float = Field(0.5, ge=-1.0, le=1.0)
    reflection_every_n: int = Field(5, ge=1)
    reflection_lookback: int = Field(10, ge=1)
    synthesized_importance: float = Field(0.6, ge=0.0, le=1.0)
    chars_per_token: int = Field(4, ge=1)


class StorageCfg(BaseModel):
    """Repository location."""
    db_path: str = "data/chat_memory.db"


class JobsCfg(BaseModel):
    """Background task pool."""
    max_workers: int = Field(2, ge=1)
    max_history: int = Field(1000, ge=0)


class LoggingCfg(BaseModel):
    """Structured logging output."""
    level: str = "INFO"
    json_output: bool = True


# Environment variable -> (section, field)
ENV_OVERRIDES = {
    "OLLAMA_HOST": ("ollama", "host"),
    "CHAT_MEMORY_MODEL": ("ollama", "chat_model"),
    "CHAT_MEMORY_EMBED_MODEL": ("ollama", "embed_model"),
    "CHAT_MEMORY_DB": ("storage", "db_path"),
    "CHAT_MEMORY_CONTEXT_TOKENS": ("memory", "context_token_limit"),
    "CHAT_MEMORY_REFLECT_EVERY": ("memory", "reflection_every_n"),
    "CHAT_MEMORY_LOG_LEVEL": ("logging", "level"),
}


class Settings(BaseModel):
    """Main application settings."""
    ollama: OllamaCfg = OllamaCfg()
    memory: MemoryCfg = MemoryCfg()
    storage: StorageCfg = StorageCfg()
    jobs: JobsCfg = JobsCfg()
    logging: LoggingCfg = LoggingCfg()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from defaults overlaid with environment variables.

        Args:
            environ: Mapping to read from (default: ``os.environ``)

        Returns:
            Validated Settings

        Raises:
            pydantic.ValidationError: If an override has the wrong type
        """
        if environ is None:
            environ = os.environ

        data: Dict[str, Dict[str, Any]] = {}
        for var, (section, field) in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value is None or value == "":
                continue
            data.setdefault(section, {})[field] = value

        return cls.model_validate(data)
