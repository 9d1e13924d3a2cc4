"""
Deployment configuration loaded from `evgraph.toml`.

    [store]
    dir = ".evgraph"

    [monitor]
    interval_s = 300

    [anchor]
    interval_s = 3600
    retry = { max_attempts = 3, base_delay_s = 1, multiplier = 2, max_delay_s = 30 }

    [[anchor.witnesses]]
    type = "file"                  # file | local_tsa | http_tsa
    path = "witness.jsonl"

    [tsa]
    type = "local_tsa"
    key = "env:EVGRAPH_TSA_KEY"
    timestamp_critical = true

    [clocks]
    policy = "policy.toml"

    [query]
    catalog = "queries.yaml"
    default_range_days = 365

Relative paths resolve against the directory holding the config file.
Secrets (`key`, `token`) are references, resolved at wiring time.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .anchor.witness import RetryPolicy
from .errors import ValidationError

CONFIG_NAME = "evgraph.toml"
WITNESS_TYPES = ("file", "local_tsa", "http_tsa")


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _coerce_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _coerce_float(value: Any, default: float, name: str) -> float:
    if value is None:
        return default
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be a number, got {value!r}") from None
    if result <= 0:
        raise ValidationError(f"{name} must be positive")
    return result


def _coerce_path(value: Any, base: Path) -> Path | None:
    if not isinstance(value, str) or not value.strip():
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


@dataclass(frozen=True)
class WitnessConfig:
    type: str
    name: str | None = None
    path: Path | None = None
    key_ref: str | None = None
    url: str | None = None
    token_ref: str | None = None
    timeout_s: float = 10.0

    @classmethod
    def from_dict(cls, raw: dict[str, Any], base: Path) -> "WitnessConfig":
        wtype = str(raw.get("type", "")).strip().lower()
        if wtype not in WITNESS_TYPES:
            raise ValidationError(f"Unknown witness type {wtype!r} (expected one of {', '.join(WITNESS_TYPES)})")
        cfg = cls(
            type=wtype,
            name=raw.get("name"),
            path=_coerce_path(raw.get("path"), base),
            key_ref=raw.get("key"),
            url=raw.get("url"),
            token_ref=raw.get("token"),
            timeout_s=_coerce_float(raw.get("timeout_s"), 10.0, "timeout_s"),
        )
        if wtype == "file" and cfg.path is None:
            raise ValidationError("file witness needs a path")
        if wtype == "local_tsa" and not cfg.key_ref:
            raise ValidationError("local_tsa needs a key reference")
        if wtype == "http_tsa" and not cfg.url:
            raise ValidationError("http_tsa needs a url")
        return cfg


@dataclass(frozen=True)
class EvidenceConfig:
    store_dir: Path | None = None
    monitor_interval_s: float = 300.0
    anchor_interval_s: float = 3600.0
    anchor_retry: RetryPolicy = field(default_factory=RetryPolicy)
    witnesses: tuple[WitnessConfig, ...] = ()
    tsa: WitnessConfig | None = None
    timestamp_critical: bool = True
    policy_path: Path | None = None
    queries_path: Path | None = None
    default_range_days: int = 365
    source: Path | None = None


def parse_config(data: dict[str, Any], base: Path) -> EvidenceConfig:
    store = _coerce_dict(data.get("store"))
    monitor = _coerce_dict(data.get("monitor"))
    anchor = _coerce_dict(data.get("anchor"))
    retry = _coerce_dict(anchor.get("retry"))
    tsa = _coerce_dict(data.get("tsa"))
    clocks = _coerce_dict(data.get("clocks"))
    query = _coerce_dict(data.get("query"))

    tsa_cfg = WitnessConfig.from_dict(tsa, base) if tsa.get("type") else None
    if tsa_cfg is not None and tsa_cfg.type == "file":
        raise ValidationError("[tsa] must be local_tsa or http_tsa")

    range_days = int(query.get("default_range_days", 365))
    if range_days <= 0:
        raise ValidationError("default_range_days must be positive")

    return EvidenceConfig(
        store_dir=_coerce_path(store.get("dir"), base),
        monitor_interval_s=_coerce_float(monitor.get("interval_s"), 300.0, "monitor.interval_s"),
        anchor_interval_s=_coerce_float(anchor.get("interval_s"), 3600.0, "anchor.interval_s"),
        anchor_retry=RetryPolicy(
            max_attempts=int(retry.get("max_attempts", 3)),
            base_delay_s=float(retry.get("base_delay_s", 1.0)),
            multiplier=float(retry.get("multiplier", 2.0)),
            max_delay_s=float(retry.get("max_delay_s", 30.0)),
        ),
        witnesses=tuple(
            WitnessConfig.from_dict(w, base) for w in _coerce_list(anchor.get("witnesses")) if isinstance(w, dict)
        ),
        tsa=tsa_cfg,
        timestamp_critical=bool(tsa.get("timestamp_critical", True)),
        policy_path=_coerce_path(clocks.get("policy"), base),
        queries_path=_coerce_path(query.get("catalog"), base),
        default_range_days=range_days,
    )


def load_config(path: Path | None = None) -> EvidenceConfig:
    """
    Load configuration from `path`, or from ./evgraph.toml if present.

    With no file the defaults apply: an in-memory store, the bundled
    clock policy and query catalog, and no witnesses.
    """
    import tomllib

    if path is None:
        candidate = Path.cwd() / CONFIG_NAME
        if not candidate.is_file():
            return EvidenceConfig()
        path = candidate
    if not path.is_file():
        raise ValidationError(f"Config file not found: {path}")
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ValidationError(f"Failed to parse {path}: {e}") from e
    cfg = parse_config(data, path.parent)
    return replace(cfg, source=path)
