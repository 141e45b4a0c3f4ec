from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from abslot.core.config import SiteConfig
from abslot.core.types import PageMeta, SessionContext
from abslot.features.catalog.types import SlotDescriptor
from abslot.features.page.document import Document
from abslot.features.page.storage import MemoryStorage
from abslot.features.resolution.types import CorrelationState
from abslot.features.telemetry.service import TelemetryDispatcher

SITE = SiteConfig(name="DRG", corr_key="ab_corr_DRG", api_base="https://ab.example.net/api")
CTX = SessionContext(
    device_type="mobile",
    visitor_type="returning",
    bucket="b7",
    traffic_source="utm",
    time_bucket="20",
    page_path="/?utm_source=x",
)
META = PageMeta(page_type="home", funnel_stage="leadflow")


class Collector:
    def __init__(self, *, fail: bool = False, delay_s: float = 0.0) -> None:
        self.fail = fail
        self.delay_s = delay_s
        self.bodies: list[dict] = []
        self.paths: list[str] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.fail:
            raise httpx.ReadTimeout("slow collector")
        self.paths.append(request.url.path)
        self.bodies.append(json.loads(request.content))
        return httpx.Response(204)


def make_dispatcher(http: httpx.AsyncClient, *, variants=None, step=lambda: "0", corr=None):
    correlation = CorrelationState(storage=MemoryStorage(), corr_key=SITE.corr_key)
    correlation.correlation_id = corr
    return TelemetryDispatcher(
        http=http,
        site=SITE,
        context=CTX,
        correlation=correlation,
        meta=META,
        cached_variant=lambda scope: (variants or {}).get(scope),
        step_index=step,
        origin="https://www.example.com",
    )


def make_slot(scope: str = "form_next") -> SlotDescriptor:
    el = Document.from_html('<button id="nextBtn">Next</button>').query_selector("button")
    return SlotDescriptor(element=el, scope=scope, test_id=f"drg_{scope}")


def test_payload_mirrors_resolution_context() -> None:
    collector = Collector()

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(collector.handler)) as http:
            dispatcher = make_dispatcher(http, variants={"form_next": "B"}, corr="c1")
            dispatcher.track("click", make_slot())
            await dispatcher.flush()

    asyncio.run(scenario())

    assert collector.paths == ["/api/track"]
    assert collector.bodies == [
        {
            "site": "DRG",
            "corr_key": "ab_corr_DRG",
            "correlation_id": "c1",
            "event": "click",
            "test_id": "drg_form_next",
            "scope": "form_next",
            "variant": "B",
            "page_type": "home",
            "funnel_stage": "leadflow",
            "step_index": "0",
            "device_type": "mobile",
            "visitor_type": "returning",
            "bucket": "b7",
            "traffic_source": "utm",
            "time_bucket": "20",
            "page_path": "/?utm_source=x",
        }
    ]


def test_explicit_variant_wins_and_missing_variant_is_empty() -> None:
    collector = Collector()

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(collector.handler)) as http:
            dispatcher = make_dispatcher(http, variants={"form_next": "B"})
            dispatcher.track("exposure", make_slot(), variant="C")
            dispatcher.track("exposure", make_slot("nav_cta"))
            await dispatcher.flush()

    asyncio.run(scenario())

    variants = sorted((b["scope"], b["variant"], b["correlation_id"]) for b in collector.bodies)
    assert variants == [("form_next", "C", ""), ("nav_cta", "", "")]


def test_step_index_is_read_at_send_time() -> None:
    collector = Collector()
    step = {"value": "1"}

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(collector.handler)) as http:
            dispatcher = make_dispatcher(http, step=lambda: step["value"])
            slot = make_slot()
            dispatcher.track("click", slot)
            step["value"] = "3"
            dispatcher.track("click", slot)
            await dispatcher.flush()

    asyncio.run(scenario())

    assert sorted(b["step_index"] for b in collector.bodies) == ["1", "3"]


def test_delivery_failures_are_swallowed() -> None:
    collector = Collector(fail=True)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(collector.handler)) as http:
            dispatcher = make_dispatcher(http)
            task = dispatcher.track("click", make_slot())
            await dispatcher.flush()
            return task

    task = asyncio.run(scenario())

    assert task.done() and task.exception() is None
    assert collector.bodies == []


def test_flush_waits_for_slow_sends() -> None:
    collector = Collector(delay_s=0.05)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(collector.handler)) as http:
            dispatcher = make_dispatcher(http)
            dispatcher.track("click", make_slot())
            assert dispatcher.inflight == 1
            await dispatcher.flush()
            return dispatcher

    dispatcher = asyncio.run(scenario())

    assert dispatcher.inflight == 0
    assert len(collector.bodies) == 1


def test_unknown_event_is_rejected() -> None:
    dispatcher = make_dispatcher(httpx.AsyncClient())

    with pytest.raises(ValueError):
        dispatcher.build_payload("page_view", test_id="t", scope="nav_cta")


def test_track_outside_event_loop_is_dropped() -> None:
    dispatcher = make_dispatcher(httpx.AsyncClient())

    assert dispatcher.track("click", make_slot()) is None
