from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

from abslot.core.logging import get_logger

logger = get_logger(__name__)


class Handle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], Any]) -> Handle: ...


def _guarded(callback: Callable[[], Any]) -> Callable[[], None]:
    def run() -> None:
        try:
            callback()
        except Exception:  # noqa: BLE001
            logger.exception("scheduled_task_failed")

    return run


class FixedDelayScheduler:
    """Runs the callback after the requested delay."""

    def call_later(self, delay_s: float, callback: Callable[[], Any]) -> Handle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, float(delay_s)), _guarded(callback))


class IdleScheduler:
    """
    Yield-when-idle: the callback runs on the next loop iteration after
    everything already queued, and the delay is ignored.
    """

    def call_later(self, delay_s: float, callback: Callable[[], Any]) -> Handle:
        loop = asyncio.get_running_loop()
        return loop.call_soon(_guarded(callback))


def build_scheduler(strategy: str) -> Scheduler:
    if strategy == "fixed_delay":
        return FixedDelayScheduler()
    if strategy == "idle":
        return IdleScheduler()
    raise ValueError(f"Unsupported scheduler strategy: {strategy!r}")
