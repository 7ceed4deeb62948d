"""Provider implementations and selection by settings."""

from .base import Provider, ProviderResult
from .http import HttpProvider
from .memory import MemoryProvider
from ..config.settings import Settings
from ..utils.errors import ConfigError

__all__ = ["Provider", "ProviderResult", "HttpProvider", "MemoryProvider", "create_provider"]


def create_provider(settings: Settings) -> Provider:
    """Instantiate the provider named by ``settings.provider.type``."""
    options = settings.provider.options
    if settings.provider.type == "memory":
        return MemoryProvider(snapshot_path=options.get("snapshot_path"), data=options.get("data"))
    if settings.provider.type == "http":
        if not settings.provider.endpoint:
            raise ConfigError("provider.endpoint is required for the http provider")
        return HttpProvider(
            settings.provider.endpoint,
            timeout=settings.operation_timeout,
            headers=options.get("headers"),
        )
    raise ConfigError(f"Unknown provider type: {settings.provider.type}")
