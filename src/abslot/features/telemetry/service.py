from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx

from abslot.core.config import SiteConfig
from abslot.core.logging import get_logger
from abslot.core.types import PageMeta, SessionContext
from abslot.features.catalog.types import SlotDescriptor
from abslot.features.resolution.service import build_endpoint
from abslot.features.resolution.types import CorrelationState

logger = get_logger(__name__)

TRACK_PATH = "/track"
ALLOWED_EVENTS: set[str] = {"exposure", "click"}


class TelemetryDispatcher:
    """
    Fire-and-forget exposure/click reporting.

    Every send runs as its own task; failures are logged at debug and dropped,
    never retried. flush() awaits whatever is still in flight, which is how
    sends survive page unload (the engine flushes on close).
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        site: SiteConfig,
        context: SessionContext,
        correlation: CorrelationState,
        meta: PageMeta,
        cached_variant: Callable[[str], str | None],
        step_index: Callable[[], str],
        origin: str,
    ) -> None:
        self.http = http
        self.site = site
        self.context = context
        self.correlation = correlation
        self.meta = meta
        self.cached_variant = cached_variant
        self.step_index = step_index
        self.endpoint = build_endpoint(site.api_base, origin, TRACK_PATH)
        self._inflight: set[asyncio.Task] = set()

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    def build_payload(
        self,
        event: str,
        *,
        test_id: str,
        scope: str,
        variant: str | None = None,
        page_type: str | None = None,
        funnel_stage: str | None = None,
        step_index: str | None = None,
    ) -> dict[str, Any]:
        if event not in ALLOWED_EVENTS:
            raise ValueError(f"Unsupported event={event!r}. Allowed={sorted(ALLOWED_EVENTS)}")

        return {
            "site": self.site.name,
            "corr_key": self.site.corr_key,
            "correlation_id": self.correlation.correlation_id or "",
            "event": event,
            "test_id": test_id,
            "scope": scope,
            "variant": variant or self.cached_variant(scope) or "",
            "page_type": page_type or self.meta.page_type,
            "funnel_stage": funnel_stage or self.meta.funnel_stage,
            # live: the form may have advanced since the slot was bound
            "step_index": step_index if step_index is not None else self.step_index(),
            **self.context.as_params(),
        }

    def track(
        self, event: str, slot: SlotDescriptor, variant: str | None = None
    ) -> asyncio.Task | None:
        payload = self.build_payload(
            event, test_id=slot.test_id, scope=slot.scope, variant=variant
        )
        return self.send(payload)

    def send(self, payload: dict[str, Any]) -> asyncio.Task | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(
                "track_dropped",
                extra={"reason": "no running loop", "event": payload.get("event")},
            )
            return None

        task = loop.create_task(self._post(payload))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self.http.post(self.endpoint, json=payload)
            if not response.is_success:
                logger.debug(
                    "track_rejected",
                    extra={"event": payload["event"], "reason": f"status={response.status_code}"},
                )
        except Exception as e:  # noqa: BLE001
            logger.debug("track_failed", extra={"event": payload["event"], "reason": repr(e)})

    async def flush(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
