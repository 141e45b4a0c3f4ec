from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from abslot.core.config import EngineConfig
from abslot.core.ids import TokenFactory
from abslot.core.logging import get_logger
from abslot.core.types import PageMeta, SessionContext
from abslot.features.binder.service import LabelBinder, apply_label
from abslot.features.catalog.service import SlotCatalog
from abslot.features.context.service import ContextProvider
from abslot.features.page.document import Element
from abslot.features.page.service import Page
from abslot.features.rebind.service import RebindCoordinator
from abslot.features.resolution.service import ResolutionClient
from abslot.features.resolution.types import CorrelationState, VariantResponse
from abslot.features.scheduler.service import Scheduler, build_scheduler
from abslot.features.telemetry.service import TelemetryDispatcher

logger = get_logger(__name__)

# transport-level ceiling; the resolution timeout from config is enforced separately
HTTP_TIMEOUT_S = 10.0


@dataclass
class Engine:
    """
    One engine per page load. Holds the session context, correlation state and
    scope cache (inside the resolution client) and wires every component to them.
    """

    cfg: EngineConfig
    page: Page
    meta: PageMeta
    context: SessionContext
    correlation: CorrelationState
    provider: ContextProvider
    catalog: SlotCatalog
    resolution: ResolutionClient
    binder: LabelBinder
    telemetry: TelemetryDispatcher
    coordinator: RebindCoordinator
    http: httpx.AsyncClient
    owns_http: bool = False
    started: bool = field(default=False, init=False)

    def start(self) -> None:
        """Entry point once the document is ready. Safe to call twice."""
        if self.started:
            return
        self.started = True
        try:
            self.coordinator.start()
        except Exception:  # noqa: BLE001
            logger.exception("engine_start_failed", extra={"site": self.cfg.site.name})

    async def resolve(
        self,
        *,
        test_id: str,
        scope: str,
        page_type: str | None = None,
        funnel_stage: str | None = None,
        step_index: str | None = None,
    ) -> VariantResponse | None:
        return await self.resolution.resolve(
            scope,
            test_id,
            page_type or self.meta.page_type,
            funnel_stage or self.meta.funnel_stage,
            step_index if step_index is not None else self.provider.step_index(),
        )

    def track(
        self,
        event: str,
        *,
        test_id: str,
        scope: str,
        variant: str | None = None,
        page_type: str | None = None,
        funnel_stage: str | None = None,
        step_index: str | None = None,
    ) -> asyncio.Task | None:
        try:
            payload = self.telemetry.build_payload(
                event,
                test_id=test_id,
                scope=scope,
                variant=variant,
                page_type=page_type,
                funnel_stage=funnel_stage,
                step_index=step_index,
            )
        except ValueError:
            logger.warning("track_rejected", extra={"event": event, "scope": scope})
            return None
        return self.telemetry.send(payload)

    def apply_label(self, element: Element, label: str) -> None:
        apply_label(element, label)

    async def run_until_idle(self) -> None:
        self.start()
        await self.coordinator.wait_idle()

    async def close(self) -> None:
        """Page unload: stop observing, deliver in-flight telemetry, release the client."""
        self.coordinator.stop()
        # running passes are bounded by the resolution timeout; let them bind
        # before telemetry is flushed and the client goes away
        await self.coordinator.wait_idle()
        await self.telemetry.flush()
        if self.owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> Engine:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()


def bootstrap_engine(
    cfg: EngineConfig,
    page: Page,
    *,
    http: httpx.AsyncClient | None = None,
    tokens: TokenFactory | None = None,
    clock: Callable[[], datetime] | None = None,
    scheduler: Scheduler | None = None,
) -> Engine:
    get_logger("abslot", cfg.logging.level)

    owns_http = http is None
    if http is None:
        http = httpx.AsyncClient(timeout=HTTP_TIMEOUT_S)

    provider = ContextProvider(
        page=page,
        cfg=cfg.context,
        tokens=tokens,
        clock=clock or datetime.now,
    )
    context = provider.derive_context()
    meta = provider.page_meta()

    correlation = CorrelationState(storage=page.local_storage, corr_key=cfg.site.corr_key)
    correlation.load()

    origin = page.location.origin
    resolution = ResolutionClient(
        http=http,
        site=cfg.site,
        cfg=cfg.resolution,
        context=context,
        correlation=correlation,
        origin=origin,
    )
    telemetry = TelemetryDispatcher(
        http=http,
        site=cfg.site,
        context=context,
        correlation=correlation,
        meta=meta,
        cached_variant=resolution.cached_variant,
        step_index=provider.step_index,
        origin=origin,
    )
    binder = LabelBinder(cached_label=resolution.cached_label, track=telemetry.track)
    catalog = SlotCatalog(document=page.document, site=cfg.site, cfg=cfg.catalog)
    coordinator = RebindCoordinator(
        document=page.document,
        catalog=catalog,
        provider=provider,
        resolution=resolution,
        binder=binder,
        scheduler=scheduler or build_scheduler(cfg.rebind.scheduler),
        cfg=cfg.rebind,
    )

    logger.info(
        "engine_ready",
        extra={"site": cfg.site.name, "feature": "engine"},
    )

    return Engine(
        cfg=cfg,
        page=page,
        meta=meta,
        context=context,
        correlation=correlation,
        provider=provider,
        catalog=catalog,
        resolution=resolution,
        binder=binder,
        telemetry=telemetry,
        coordinator=coordinator,
        http=http,
        owns_http=owns_http,
    )
