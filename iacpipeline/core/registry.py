"""Adapter registry for resolving stage adapters by name."""

from typing import Dict, Type, Optional
import logging
from .interfaces import StageAdapter


class AdapterRegistry:
    """Registry for managing stage adapter classes."""

    def __init__(self):
        self._adapters: Dict[str, Type[StageAdapter]] = {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def register_adapter(self, name: str, adapter_class: Type[StageAdapter]) -> None:
        """Register an adapter class with a given name."""
        if not isinstance(adapter_class, type) or not issubclass(adapter_class, StageAdapter):
            raise ValueError(f"Adapter {adapter_class} must inherit from StageAdapter")

        self._adapters[name] = adapter_class
        self.logger.debug(f"Registered adapter: {name}")

    def get_adapter_class(self, name: str) -> Optional[Type[StageAdapter]]:
        """Get an adapter class by name."""
        return self._adapters.get(name)

    def create_adapter(self, name: str, **kwargs) -> StageAdapter:
        """Create an instance of a registered adapter."""
        adapter_class = self.get_adapter_class(name)
        if adapter_class is None:
            raise KeyError(f"Adapter {name} not found in registry")

        instance = adapter_class(**kwargs)
        self.logger.debug(f"Created adapter instance: {name}")
        return instance

    def list_adapters(self) -> Dict[str, Type[StageAdapter]]:
        """List all registered adapters."""
        return self._adapters.copy()

    def unregister_adapter(self, name: str) -> bool:
        """Unregister an adapter."""
        if name in self._adapters:
            del self._adapters[name]
            self.logger.debug(f"Unregistered adapter: {name}")
            return True
        return False


# Global adapter registry instance
adapter_registry = AdapterRegistry()
