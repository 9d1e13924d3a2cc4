"""
Secret references.

Configuration holds references such as "env:EVGRAPH_TSA_KEY", never raw
values, so keys and tokens stay out of config files, logs and the graph
journal.

Reference formats:
- env:VAR_NAME     - environment variable
- file:/path/name  - first line of a file (container secrets mounts)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol

from .errors import ValidationError


class SecretsProvider(Protocol):
    def get(self, ref: str) -> str | None:
        ...

    def supports(self, ref: str) -> bool:
        ...


class EnvSecretsProvider:
    PREFIX = "env:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        return os.environ.get(ref[len(self.PREFIX) :])


class FileSecretsProvider:
    PREFIX = "file:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        path = Path(ref[len(self.PREFIX) :]).expanduser()
        if not path.is_file():
            return None
        lines = path.read_text(encoding="utf-8").splitlines()
        return lines[0].strip() if lines else None


class CompositeSecretsProvider:
    """Try each provider in order until one returns a value."""

    def __init__(self, providers: list[SecretsProvider] | None = None):
        self.providers = providers or [EnvSecretsProvider(), FileSecretsProvider()]

    def supports(self, ref: str) -> bool:
        return any(p.supports(ref) for p in self.providers)

    def get(self, ref: str) -> str | None:
        for provider in self.providers:
            if provider.supports(ref):
                value = provider.get(ref)
                if value is not None:
                    return value
        return None


def resolve_secret(ref: str | None, provider: SecretsProvider | None = None) -> str | None:
    """
    Resolve a reference, or None when `ref` is empty.

    Raises ValidationError for an unsupported reference format or a
    reference that does not resolve.
    """
    if not ref:
        return None
    provider = provider or CompositeSecretsProvider()
    if not provider.supports(ref):
        raise ValidationError(f"Secret must be a reference like 'env:NAME', got {ref.split(':', 1)[0]!r}")
    value = provider.get(ref)
    if value is None:
        raise ValidationError(f"Secret reference {ref} did not resolve")
    return value
