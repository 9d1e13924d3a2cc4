from __future__ import annotations

from pathlib import Path

import pytest

from evgraph.errors import ValidationError
from evgraph.secrets import CompositeSecretsProvider, EnvSecretsProvider, FileSecretsProvider, resolve_secret


def test_env_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EVGRAPH_TEST_KEY", "s3cret")

    assert resolve_secret("env:EVGRAPH_TEST_KEY") == "s3cret"
    assert EnvSecretsProvider().get("file:/x") is None


def test_file_reference_reads_first_line(tmp_path: Path) -> None:
    secret = tmp_path / "tsa-key"
    secret.write_text("  from-file \nsecond line\n", encoding="utf-8")

    assert resolve_secret(f"file:{secret}") == "from-file"
    assert FileSecretsProvider().get(f"file:{tmp_path / 'missing'}") is None


def test_empty_reference_is_none() -> None:
    assert resolve_secret(None) is None
    assert resolve_secret("") is None


def test_raw_value_is_rejected() -> None:
    with pytest.raises(ValidationError, match="reference"):
        resolve_secret("hunter2")


def test_unresolved_reference(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("EVGRAPH_UNSET_KEY", raising=False)

    with pytest.raises(ValidationError, match="did not resolve"):
        resolve_secret("env:EVGRAPH_UNSET_KEY")


def test_composite_tries_providers_in_order(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("EVGRAPH_TEST_KEY", "from-env")
    provider = CompositeSecretsProvider()

    assert provider.supports("env:EVGRAPH_TEST_KEY")
    assert provider.supports("file:/run/secrets/key")
    assert not provider.supports("vault:kv/key")
    assert provider.get("env:EVGRAPH_TEST_KEY") == "from-env"
