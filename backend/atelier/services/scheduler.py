import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from atelier.core.config import watchdog_timing
from atelier.services import watchdog
from atelier.services.stages import families
from atelier.websocket.manager import manager


@dataclass
class Trigger:
    """A named periodic watchdog sweep."""

    family: str
    interval_sec: float
    threshold_sec: float
    runs: int = 0
    last_run_at: Optional[float] = None
    last_error: Optional[str] = None
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def name(self) -> str:
        return f"watchdog.{self.family}"


_triggers: Dict[str, Trigger] = {}


def build_triggers() -> List[Trigger]:
    triggers = []
    for family in families():
        interval, threshold = watchdog_timing(family)
        triggers.append(Trigger(family, interval, threshold))
    return triggers


async def _trigger_loop(trigger: Trigger) -> None:
    await manager.emit_log("info", f"{trigger.name} scheduled every {trigger.interval_sec}s")
    while True:
        await asyncio.sleep(trigger.interval_sec)
        try:
            await watchdog.sweep(trigger.family, threshold=trigger.threshold_sec)
            trigger.last_error = None
        except Exception as exc:
            trigger.last_error = str(exc)
            await manager.emit_log("error", f"{trigger.name} error: {exc}")
        trigger.runs += 1
        trigger.last_run_at = time.time()


async def start_scheduler(triggers: Optional[List[Trigger]] = None) -> None:
    for trigger in triggers or build_triggers():
        existing = _triggers.get(trigger.name)
        if existing and existing.task and not existing.task.done():
            continue
        trigger.task = asyncio.create_task(_trigger_loop(trigger))
        _triggers[trigger.name] = trigger


async def stop_scheduler() -> None:
    tasks = [t.task for t in _triggers.values() if t.task]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    _triggers.clear()


def scheduler_snapshot() -> Dict[str, Any]:
    return {
        "running": any(t.task and not t.task.done() for t in _triggers.values()),
        "jobs": len(_triggers),
        "triggers": [
            {
                "name": t.name,
                "interval_sec": t.interval_sec,
                "threshold_sec": t.threshold_sec,
                "runs": t.runs,
                "last_run_at": t.last_run_at,
                "last_error": t.last_error,
            }
            for t in _triggers.values()
        ],
        "last_sweeps": watchdog.last_sweeps(),
    }
