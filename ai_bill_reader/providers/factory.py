from typing import Dict, Optional, Union

from ai_bill_reader.config.loader import AppConfig
from ai_bill_reader.core.errors import ConfigurationError
from ai_bill_reader.storage.models import AiProvider

from .base import ProviderAdapter
from .gemini_client import GeminiAdapter
from .ollama_client import OllamaAdapter


def resolve_provider(provider: Union[AiProvider, str]) -> AiProvider:
    """Map a provider tag to the enum, rejecting unknown values."""
    if isinstance(provider, AiProvider):
        return provider
    try:
        return AiProvider(provider)
    except ValueError:
        raise ConfigurationError(f"Invalid AI provider selected: {provider!r}")


def build_adapters(config: Optional[AppConfig] = None) -> Dict[AiProvider, ProviderAdapter]:
    """One adapter per provider; adding a provider means adding an entry here."""
    config = config or AppConfig()
    return {
        AiProvider.CLOUD: GeminiAdapter(model=config.gemini_model),
        AiProvider.LOCAL: OllamaAdapter(),
    }


def get_provider_adapter(
    provider: Union[AiProvider, str],
    config: Optional[AppConfig] = None,
) -> ProviderAdapter:
    """Return the adapter for the configured provider."""
    return build_adapters(config)[resolve_provider(provider)]
