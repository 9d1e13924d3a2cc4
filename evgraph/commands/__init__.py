"""CLI command implementations. Each `run_*` returns a process exit code."""

from __future__ import annotations

import json
from typing import Any

from ..config import EvidenceConfig
from ..system import EvidenceSystem


def open_system(cfg: EvidenceConfig) -> EvidenceSystem:
    return EvidenceSystem(cfg)


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False))
