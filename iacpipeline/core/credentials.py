"""Credential providers that resolve declared secret names for adapters."""

import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, Mapping, Optional


class CredentialProvider(ABC):
    """Resolves secret names to values. Values never leave the child environment."""

    @abstractmethod
    def resolve(self, name: str) -> Optional[str]:
        """Return the secret value for a name, or None when unavailable."""
        pass

    def environment_for(self, names: Iterable[str]) -> Dict[str, str]:
        """Build an environment fragment holding the requested secrets."""
        env = {}
        for name in names:
            value = self.resolve(name)
            if value is not None:
                env[name] = value
        return env


class EnvironmentCredentialProvider(CredentialProvider):
    """Reads secrets from the process environment."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ

    def resolve(self, name: str) -> Optional[str]:
        return self._environ.get(name)


class StaticCredentialProvider(CredentialProvider):
    """Serves secrets from a fixed mapping."""

    def __init__(self, secrets: Mapping[str, str]):
        self._secrets = dict(secrets)

    def resolve(self, name: str) -> Optional[str]:
        return self._secrets.get(name)
