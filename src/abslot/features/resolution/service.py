from __future__ import annotations

import asyncio
from functools import partial
from typing import Any

import httpx

from abslot.core.config import ResolutionConfig, SiteConfig
from abslot.core.logging import get_logger
from abslot.core.types import SessionContext

from .decoding import decode_response
from .types import CorrelationState, ScopeCacheEntry, VariantResponse

logger = get_logger(__name__)

RESOLVE_PATH = "/cta"


def build_endpoint(api_base: str, origin: str, path: str) -> str:
    base = api_base.rstrip("/")
    if not base.startswith("http"):
        base = f"{origin}{base}"
    return f"{base}{path}"


def build_params(payload: dict[str, Any]) -> dict[str, str]:
    """Drops None/empty values; they are never sent as empty strings."""
    return {k: str(v) for k, v in payload.items() if v is not None and v != ""}


class ResolutionClient:
    """
    Looks up the variant for a scope.

    Concurrent lookups for one scope share a single request: the task is stored
    in the scope's cache entry before anyone awaits it. A successful outcome stays
    memoized for the page load; a failed one is forgotten so a later rebind pass
    can try again.
    """

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        site: SiteConfig,
        cfg: ResolutionConfig,
        context: SessionContext,
        correlation: CorrelationState,
        origin: str,
    ) -> None:
        self.http = http
        self.site = site
        self.cfg = cfg
        self.context = context
        self.correlation = correlation
        self.endpoint = build_endpoint(site.api_base, origin, RESOLVE_PATH)
        self.cache: dict[str, ScopeCacheEntry] = {}

    def entry(self, scope: str) -> ScopeCacheEntry:
        entry = self.cache.get(scope)
        if entry is None:
            entry = ScopeCacheEntry()
            self.cache[scope] = entry
        return entry

    def cached_variant(self, scope: str) -> str | None:
        entry = self.cache.get(scope)
        return entry.variant if entry else None

    def cached_label(self, scope: str) -> str | None:
        entry = self.cache.get(scope)
        return entry.label if entry else None

    async def resolve(
        self,
        scope: str,
        test_id: str,
        page_type: str,
        funnel_stage: str,
        step_index: str,
    ) -> VariantResponse | None:
        entry = self.entry(scope)
        if entry.pending is None:
            task = asyncio.ensure_future(
                self._fetch(scope, test_id, page_type, funnel_stage, step_index)
            )
            entry.pending = task
            task.add_done_callback(partial(self._settle, scope))
        # shield: one caller being cancelled must not cancel the shared lookup
        return await asyncio.shield(entry.pending)

    def _settle(self, scope: str, task: asyncio.Task) -> None:
        entry = self.cache.get(scope)
        if entry is None or entry.pending is not task:
            return
        if task.cancelled() or task.exception() is not None or task.result() is None:
            entry.pending = None

    def request_params(
        self,
        scope: str,
        test_id: str,
        page_type: str,
        funnel_stage: str,
        step_index: str,
    ) -> dict[str, str]:
        return build_params(
            {
                "site": self.site.name,
                "corr_key": self.site.corr_key,
                "correlation_id": self.correlation.correlation_id or "",
                "test_id": test_id,
                "scope": scope,
                "page_type": page_type,
                "funnel_stage": funnel_stage,
                "step_index": step_index,
                **self.context.as_params(),
            }
        )

    async def _fetch(
        self,
        scope: str,
        test_id: str,
        page_type: str,
        funnel_stage: str,
        step_index: str,
    ) -> VariantResponse | None:
        params = self.request_params(scope, test_id, page_type, funnel_stage, step_index)
        timeout_s = self.cfg.timeout_ms / 1000.0

        try:
            response = await asyncio.wait_for(
                self.http.get(self.endpoint, params=params), timeout=timeout_s
            )
        except TimeoutError:
            logger.debug("resolve_timeout", extra={"scope": scope, "reason": "timeout"})
            return None
        except httpx.HTTPError as e:
            logger.debug("resolve_failed", extra={"scope": scope, "reason": repr(e)})
            return None

        if not response.is_success:
            logger.debug(
                "resolve_failed", extra={"scope": scope, "reason": f"status={response.status_code}"}
            )
            return None

        try:
            decoded = decode_response(response.json())
        except ValueError as e:
            # JSONDecodeError and MalformedResponse are both ValueErrors
            logger.debug("resolve_malformed", extra={"scope": scope, "reason": str(e)})
            return None

        self.correlation.update(decoded.correlation_id)

        entry = self.entry(scope)
        if decoded.variant:
            entry.variant = decoded.variant
        if decoded.label:
            entry.label = decoded.label

        logger.debug("resolved", extra={"scope": scope, "event": "resolve"})
        return decoded
