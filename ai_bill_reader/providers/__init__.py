"""
AI providers for bill extraction.

Each provider implements ``analyze(image_data_uri, settings)`` and returns
raw JSON; validation happens once, in the pipeline.
"""

from .base import ProviderAdapter, split_data_uri
from .factory import build_adapters, get_provider_adapter, resolve_provider
from .gemini_client import GeminiAdapter
from .ollama_client import OllamaAdapter, check_connection

__all__ = [
    "GeminiAdapter",
    "OllamaAdapter",
    "ProviderAdapter",
    "build_adapters",
    "check_connection",
    "get_provider_adapter",
    "resolve_provider",
    "split_data_uri",
]
