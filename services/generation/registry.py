"""
Provider Registry

Lazily creates one provider instance per key and reuses it for the process
lifetime. The instance map is the only process-wide mutable state in the
generation layer: first creation is guarded by a lock, reads after that are
lock-free.
"""

import logging
import threading
from typing import Any, Callable, Optional

from core.config import get_config
from core.errors import UnsupportedProvider

from .providers import DEFAULT_FACTORIES, GenerationProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Any], GenerationProvider]


class ProviderRegistry:
    """
    Maps provider keys to singleton providers.

    Usage:
        registry = ProviderRegistry()
        provider = registry.get("kling")
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        factories: Optional[dict[str, ProviderFactory]] = None,
    ):
        self.config = config or get_config()
        self._factories: dict[str, ProviderFactory] = dict(
            DEFAULT_FACTORIES if factories is None else factories
        )
        self._instances: dict[str, GenerationProvider] = {}
        self._lock = threading.Lock()

    def register(self, key: str, factory: ProviderFactory):
        """Register (or replace) a provider factory. Drops any cached instance."""
        with self._lock:
            self._factories[key] = factory
            self._instances.pop(key, None)
        logger.info(f"Registered provider: {key}")

    def supported(self) -> list[str]:
        return sorted(self._factories)

    def is_supported(self, key: str) -> bool:
        return key in self._factories

    def get(self, key: str) -> GenerationProvider:
        """
        Get the provider for a key, creating it on first use.

        Raises:
            UnsupportedProvider: key is not registered
        """
        provider = self._instances.get(key)
        if provider is not None:
            return provider

        if key not in self._factories:
            raise UnsupportedProvider(
                f"Unsupported provider '{key}' (supported: {', '.join(self.supported())})",
                provider=key,
            )

        with self._lock:
            provider = self._instances.get(key)
            if provider is None:
                provider = self._factories[key](self.config)
                self._instances[key] = provider
                logger.info(f"Created provider instance: {key}")
        return provider

    def describe(self) -> list[dict]:
        return [self.get(key).describe() for key in self.supported()]

    async def close_all(self):
        """Close every instantiated provider."""
        with self._lock:
            instances = list(self._instances.values())
            self._instances.clear()
        for provider in instances:
            await provider.close()


# Global registry instance
_registry: Optional[ProviderRegistry] = None
_registry_lock = threading.Lock()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = ProviderRegistry()
    return _registry
