"""Regulatory deadline clocks."""

from .engine import ClockEngine, ClockTransition, TickReport, TransitionKind, build_clock, plan_tick
from .policy import ClockPolicy, ClockTypeDef, TriggerRule, load_policy, parse_policy

__all__ = [
    "ClockEngine",
    "ClockPolicy",
    "ClockTransition",
    "ClockTypeDef",
    "TickReport",
    "TransitionKind",
    "TriggerRule",
    "build_clock",
    "load_policy",
    "parse_policy",
    "plan_tick",
]
