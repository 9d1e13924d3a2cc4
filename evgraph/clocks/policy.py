"""
Clock policy: clock types, warning thresholds, trigger rules, tags.

Policies are data, evaluation is code. The bundled default lives next to
this module; deployments can point the configuration at their own file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..errors import ValidationError
from ..graph.nodes import Severity

DEFAULT_POLICY_PATH = Path(__file__).with_name("default_policy.toml")


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _coerce_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(v) for v in value]
    return []


@dataclass(frozen=True)
class ClockTypeDef:
    name: str
    regulation: str
    article: str
    hours: float | None
    warning_hours: float | None = None
    description: str | None = None


@dataclass(frozen=True)
class TriggerRule:
    event_type: str
    clocks: tuple[str, ...]
    when: dict[str, Any] = field(default_factory=dict)

    def matches(self, event_type: str, payload: dict[str, Any]) -> bool:
        if event_type != self.event_type:
            return False
        return all(payload.get(k) == v for k, v in self.when.items())


@dataclass(frozen=True)
class SeverityRule:
    contains: str
    severity: Severity


@dataclass(frozen=True)
class ClockPolicy:
    policy_id: str
    version: int
    clock_types: dict[str, ClockTypeDef]
    triggers: tuple[TriggerRule, ...] = ()
    severity_rules: tuple[SeverityRule, ...] = ()
    event_regulations: dict[str, tuple[str, ...]] = field(default_factory=dict)
    default_regulations: tuple[str, ...] = ("DORA",)
    default_warning_hours: float = 2.0

    def clock_type(self, name: str) -> ClockTypeDef:
        try:
            return self.clock_types[name]
        except KeyError:
            raise ValidationError(f"Unknown clock type: {name!r}") from None

    def warning_threshold(self, clock_type: str) -> float:
        definition = self.clock_types.get(clock_type)
        if definition is None or definition.warning_hours is None:
            return self.default_warning_hours
        return definition.warning_hours

    def clocks_for(self, event_type: str, payload: dict[str, Any]) -> list[str]:
        """Clock types started by an event, in rule order, without duplicates."""
        result: list[str] = []
        for rule in self.triggers:
            if rule.matches(event_type, payload):
                result.extend(c for c in rule.clocks if c not in result)
        return result

    def regulations_for(self, event_type: str) -> tuple[str, ...]:
        return self.event_regulations.get(event_type, self.default_regulations)

    def infer_severity(self, event_type: str, payload: dict[str, Any]) -> Severity:
        for rule in self.severity_rules:
            if rule.contains in event_type:
                return rule.severity
        raw = payload.get("severity")
        if isinstance(raw, str):
            try:
                return Severity(raw.upper())
            except ValueError:
                pass
        return Severity.INFO


def parse_policy(data: dict[str, Any]) -> ClockPolicy:
    policy_id = str(data.get("policy_id", "")).strip()
    if not policy_id:
        raise ValueError("policy_id is required")

    version = int(data.get("version", 0))
    if version <= 0:
        raise ValueError("version must be a positive integer")

    clock_types: dict[str, ClockTypeDef] = {}
    for name, raw in _coerce_dict(data.get("clock_types")).items():
        if not isinstance(raw, dict):
            continue
        hours = raw.get("hours")
        warning = raw.get("warning_hours")
        description = raw.get("description")
        clock_types[name] = ClockTypeDef(
            name=name,
            regulation=str(raw.get("regulation", "")).strip(),
            article=str(raw.get("article", "")).strip(),
            hours=float(hours) if hours is not None else None,
            warning_hours=float(warning) if warning is not None else None,
            description=description if isinstance(description, str) else None,
        )

    triggers: list[TriggerRule] = []
    for raw in data.get("triggers", []):
        if not isinstance(raw, dict):
            continue
        event_type = str(raw.get("event_type", "")).strip()
        clocks = tuple(_coerce_list(raw.get("clocks")))
        if not event_type or not clocks:
            continue
        unknown = [c for c in clocks if c not in clock_types]
        if unknown:
            raise ValueError(f"Trigger for {event_type} names unknown clock types: {', '.join(unknown)}")
        triggers.append(TriggerRule(event_type=event_type, clocks=clocks, when=_coerce_dict(raw.get("when"))))

    severity_rules: list[SeverityRule] = []
    for raw in data.get("severity_rules", []):
        if not isinstance(raw, dict) or not raw.get("contains"):
            continue
        severity_rules.append(SeverityRule(contains=str(raw["contains"]), severity=Severity(raw.get("severity", "INFO"))))

    event_regulations = {
        str(k): tuple(_coerce_list(v)) for k, v in _coerce_dict(data.get("event_regulations")).items()
    }

    return ClockPolicy(
        policy_id=policy_id,
        version=version,
        clock_types=clock_types,
        triggers=tuple(triggers),
        severity_rules=tuple(severity_rules),
        event_regulations=event_regulations,
        default_regulations=tuple(_coerce_list(data.get("default_regulations", ["DORA"]))),
        default_warning_hours=float(data.get("default_warning_hours", 2)),
    )


def load_policy(path: Path | None = None) -> ClockPolicy:
    """Load a clock policy from TOML (the bundled default when `path` is None)."""
    import tomllib

    path = path or DEFAULT_POLICY_PATH
    return parse_policy(tomllib.loads(path.read_text(encoding="utf-8")))
