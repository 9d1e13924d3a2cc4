from __future__ import annotations

from pathlib import Path

import pytest

from evgraph.config import EvidenceConfig, load_config, parse_config
from evgraph.errors import ValidationError


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    assert load_config() == EvidenceConfig()


def test_load_full_config(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "evgraph.toml",
        """
[store]
dir = "data"

[monitor]
interval_s = 60

[anchor]
interval_s = 900
retry = { max_attempts = 5, base_delay_s = 2 }

[[anchor.witnesses]]
type = "file"
path = "witness/roots.jsonl"

[[anchor.witnesses]]
type = "http_tsa"
url = "https://tsa.example/ts"
token = "env:TSA_TOKEN"
timeout_s = 4

[tsa]
type = "local_tsa"
key = "env:EVGRAPH_TSA_KEY"
timestamp_critical = false

[clocks]
policy = "policy.toml"

[query]
catalog = "/etc/evgraph/queries.yaml"
default_range_days = 90
""",
    )

    cfg = load_config(path)

    assert cfg.source == path
    assert cfg.store_dir == tmp_path / "data"
    assert cfg.monitor_interval_s == 60
    assert cfg.anchor_interval_s == 900
    assert cfg.anchor_retry.max_attempts == 5
    assert cfg.anchor_retry.base_delay_s == 2
    assert [w.type for w in cfg.witnesses] == ["file", "http_tsa"]
    assert cfg.witnesses[0].path == tmp_path / "witness" / "roots.jsonl"
    assert cfg.witnesses[1].token_ref == "env:TSA_TOKEN"
    assert cfg.witnesses[1].timeout_s == 4
    assert cfg.tsa is not None and cfg.tsa.key_ref == "env:EVGRAPH_TSA_KEY"
    assert cfg.timestamp_critical is False
    assert cfg.policy_path == tmp_path / "policy.toml"
    assert cfg.queries_path == Path("/etc/evgraph/queries.yaml")
    assert cfg.default_range_days == 90


@pytest.mark.parametrize(
    ("data", "message"),
    [
        ({"anchor": {"witnesses": [{"type": "carrier-pigeon"}]}}, "Unknown witness type"),
        ({"anchor": {"witnesses": [{"type": "file"}]}}, "needs a path"),
        ({"anchor": {"witnesses": [{"type": "local_tsa"}]}}, "key reference"),
        ({"anchor": {"witnesses": [{"type": "http_tsa"}]}}, "needs a url"),
        ({"tsa": {"type": "file", "path": "x"}}, r"\[tsa\]"),
        ({"query": {"default_range_days": 0}}, "default_range_days"),
        ({"monitor": {"interval_s": -5}}, "monitor.interval_s"),
        ({"anchor": {"interval_s": "hourly"}}, "must be a number"),
    ],
)
def test_invalid_config(tmp_path: Path, data: dict, message: str) -> None:
    with pytest.raises(ValidationError, match=message):
        parse_config(data, tmp_path)


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="not found"):
        load_config(tmp_path / "nope.toml")


def test_unparseable_file(tmp_path: Path) -> None:
    path = _write(tmp_path / "evgraph.toml", "[store\ndir = ")

    with pytest.raises(ValidationError, match="Failed to parse"):
        load_config(path)
