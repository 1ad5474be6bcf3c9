"""Model backends for chat completion and embeddings."""
from .generator import (
    BaseGenerator, GeneratedResponse, GenerationConfig,
    MockGenerator, hash_embedding
)
from .ollama_generator import OllamaGenerator

__all__ = [
    'BaseGenerator', 'GeneratedResponse', 'GenerationConfig',
    'MockGenerator', 'hash_embedding', 'OllamaGenerator'
]
