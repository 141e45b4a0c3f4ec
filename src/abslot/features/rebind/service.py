from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from abslot.core.config import RebindConfig
from abslot.core.logging import get_logger
from abslot.core.types import PageMeta
from abslot.features.binder.service import LabelBinder
from abslot.features.catalog.service import (
    FORM_NEXT_ID,
    FORM_SUBMIT_ID,
    NAV_CTA_SELECTOR,
    SlotCatalog,
)
from abslot.features.catalog.types import SlotDescriptor
from abslot.features.context.service import ContextProvider
from abslot.features.page.document import Document, MutationRecord, MutationSubscription
from abslot.features.resolution.service import ResolutionClient
from abslot.features.scheduler.service import Handle, Scheduler

logger = get_logger(__name__)


class CoordinatorState(StrEnum):
    IDLE = "idle"
    SCANNING = "scanning"
    WAITING = "waiting"
    DONE = "done"


@dataclass(frozen=True)
class PassResult:
    reason: str
    discovered: int
    bound: int


class DocumentWatcher:
    """
    One-shot subscription: fires on_targets the first time a structural change
    leaves any of the late-rendered CTA targets in the document, then disconnects.
    """

    def __init__(self, document: Document, on_targets: Callable[[], Any]) -> None:
        self.document = document
        self.on_targets = on_targets
        self._sub: MutationSubscription | None = None

    @property
    def active(self) -> bool:
        return self._sub is not None

    def start(self) -> None:
        if self._sub is None:
            self._sub = self.document.observe(self._on_mutation)

    def stop(self) -> None:
        if self._sub is not None:
            self._sub.disconnect()
            self._sub = None

    def targets_present(self) -> bool:
        return (
            self.document.get_element_by_id(FORM_NEXT_ID) is not None
            or self.document.get_element_by_id(FORM_SUBMIT_ID) is not None
            or self.document.query_selector(NAV_CTA_SELECTOR) is not None
        )

    def _on_mutation(self, record: MutationRecord) -> None:
        if not self.targets_present():
            return
        self.stop()
        self.on_targets()


class RebindCoordinator:
    """
    Runs discovery -> resolution -> bind passes:
      - once on start()
      - up to cfg.max_attempts more times, each cfg.delay_ms after the previous
        scheduled pass has settled
      - once more when the document watcher sees the late CTA targets appear

    Passes are idempotent (bound slots are skipped), so overlapping triggers
    only ever extend coverage.
    """

    def __init__(
        self,
        *,
        document: Document,
        catalog: SlotCatalog,
        provider: ContextProvider,
        resolution: ResolutionClient,
        binder: LabelBinder,
        scheduler: Scheduler,
        cfg: RebindConfig,
    ) -> None:
        self.catalog = catalog
        self.provider = provider
        self.resolution = resolution
        self.binder = binder
        self.scheduler = scheduler
        self.cfg = cfg
        self.watcher = DocumentWatcher(document, lambda: self._spawn_pass("document_change"))

        self.state = CoordinatorState.IDLE
        self.results: list[PassResult] = []
        self._attempts = 0
        self._handle: Handle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._chain: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def attempts(self) -> int:
        return self._attempts

    def start(self) -> None:
        self._chain = self._spawn_pass("initial")
        if self.cfg.watch_document:
            self.watcher.start()
        self._refresh_state()

    def stop(self) -> None:
        # in-flight passes finish on their own; nothing new is started
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._attempts = max(self._attempts, self.cfg.max_attempts)
        self.watcher.stop()
        self._refresh_state()

    async def wait_idle(self) -> None:
        """Returns once no pass is running and no retry is scheduled."""
        while not self._idle.is_set() or self._tasks:
            await self._idle.wait()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ----- scheduling -----
    def _schedule_retry(self) -> None:
        delay_s = self.cfg.delay_ms / 1000.0
        self._handle = self.scheduler.call_later(delay_s, self._on_retry)

    def _on_retry(self) -> None:
        self._handle = None
        self._attempts += 1
        self._chain = self._spawn_pass(f"retry_{self._attempts}")
        self._refresh_state()

    def _spawn_pass(self, reason: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.run_pass(reason))
        self._tasks.add(task)
        task.add_done_callback(self._on_pass_done)
        self._refresh_state()
        return task

    def _on_pass_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task is self._chain:
            # the next retry waits for this pass's lookups to settle
            self._chain = None
            if self._attempts < self.cfg.max_attempts:
                self._schedule_retry()
        self._refresh_state()

    def _refresh_state(self) -> None:
        if self._tasks:
            self.state = CoordinatorState.SCANNING
        elif self._handle is not None:
            self.state = CoordinatorState.WAITING
        elif self._attempts >= self.cfg.max_attempts and self.results:
            self.state = CoordinatorState.DONE
        else:
            self.state = CoordinatorState.IDLE

        if self._tasks or self._handle is not None:
            self._idle.clear()
        else:
            self._idle.set()

    # ----- passes -----
    async def run_pass(self, reason: str = "manual") -> PassResult:
        try:
            meta = self.provider.page_meta()
            step_index = self.provider.step_index()
            # discovery completes before the first resolution is issued
            slots = self.catalog.discover(meta)
            outcomes = await asyncio.gather(
                *(self._bind_slot(slot, meta, step_index) for slot in slots)
            )
            result = PassResult(reason=reason, discovered=len(slots), bound=sum(outcomes))
        except Exception:  # noqa: BLE001
            logger.exception("rebind_pass_failed", extra={"reason": reason})
            result = PassResult(reason=reason, discovered=0, bound=0)

        self.results.append(result)
        logger.debug(
            "rebind_pass",
            extra={
                "reason": reason,
                "event": f"discovered={result.discovered} bound={result.bound}",
            },
        )
        return result

    async def _bind_slot(self, slot: SlotDescriptor, meta: PageMeta, step_index: str) -> bool:
        try:
            response = await self.resolution.resolve(
                slot.scope, slot.test_id, meta.page_type, meta.funnel_stage, step_index
            )
            return self.binder.bind(slot, response)
        except Exception:  # noqa: BLE001
            logger.exception("slot_bind_failed", extra={"scope": slot.scope})
            return False
