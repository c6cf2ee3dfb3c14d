from typing import Dict, List, Type

from bulkflow.connectors.base.session import BulkSession
from bulkflow.exceptions import UnsupportedOptionError
from bulkflow.providers.base import ProviderStrategy


class ProviderRegistry:
    """Registry for provider strategies, keyed by session dialect."""

    def __init__(self):
        self._providers: Dict[str, Type[ProviderStrategy]] = {}
        self._instances: Dict[str, ProviderStrategy] = {}

    def register(self, dialect: str, provider_class: Type[ProviderStrategy]):
        """Register a provider for a dialect name."""
        self._providers[dialect] = provider_class
        self._instances.pop(dialect, None)

    def get(self, dialect: str) -> ProviderStrategy:
        """Get the provider for a dialect."""
        if dialect not in self._providers:
            raise UnsupportedOptionError(
                "dialect", dialect, "no bulk provider registered for this backend"
            )
        if dialect not in self._instances:
            self._instances[dialect] = self._providers[dialect]()
        return self._instances[dialect]

    def for_session(self, session: BulkSession) -> ProviderStrategy:
        return self.get(session.dialect)

    def dialects(self) -> List[str]:
        return sorted(self._providers)


provider_registry = ProviderRegistry()
