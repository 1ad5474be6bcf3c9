"""Configuration for the chat memory engine."""

from .settings import Settings, OllamaCfg, MemoryCfg, StorageCfg, JobsCfg, LoggingCfg

__all__ = [
    "Settings",
    "OllamaCfg",
    "MemoryCfg",
    "StorageCfg",
    "JobsCfg",
    "LoggingCfg",
]
