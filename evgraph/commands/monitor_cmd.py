"""Monitor command - run the clock monitor and anchor cycle in the foreground."""

from __future__ import annotations

import threading

from rich.console import Console

from ..alerts import Alert
from ..config import EvidenceConfig
from . import open_system


def run_monitor(cfg: EvidenceConfig, *, stop_event: threading.Event | None = None) -> int:
    """
    Run background tasks until interrupted (Ctrl+C) or `stop_event` is set.

    Alerts are echoed to the console as they are emitted.
    """
    console = Console(stderr=True)
    system = open_system(cfg)
    alert_count = 0

    class _ConsoleSink:
        def send(self, alert: Alert) -> None:
            nonlocal alert_count
            alert_count += 1
            console.print(f"[bold]{alert.severity.value}[/bold] {alert.title}: {alert.message}")

    system.alerts.add_sink(_ConsoleSink())

    console.print(f"[bold]Monitoring[/bold] {cfg.store_dir or 'in-memory store'}")
    console.print(f"  Clock check every {cfg.monitor_interval_s:g}s")
    console.print(f"  Anchor cycle every {cfg.anchor_interval_s:g}s ({len(system.anchors.providers)} witness(es))")
    console.print("[dim]Press Ctrl+C to stop[/dim]")

    stop_event = stop_event or threading.Event()
    system.start()
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        console.print()
    finally:
        system.stop()
    console.print(f"[bold]Stopped.[/bold] {alert_count} alert(s) raised.")
    return 0
