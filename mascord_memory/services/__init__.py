from .base import CompletionProvider, EmbeddingProvider, ProviderError, ProviderTimeout
from .ollama_client import OllamaClient
from .openai_client import OpenAICompatClient

__all__ = [
    "CompletionProvider",
    "EmbeddingProvider",
    "OllamaClient",
    "OpenAICompatClient",
    "ProviderError",
    "ProviderTimeout",
]
