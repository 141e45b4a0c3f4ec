from __future__ import annotations

import asyncio
from pathlib import Path

import httpx

from abslot.core.config import EngineConfig, load_config
from abslot.features.engine.service import bootstrap_engine
from abslot.features.page.service import Location, Page
from abslot.features.page.storage import CookieJar, build_storage


async def apply_page(
    cfg: EngineConfig,
    html: str,
    *,
    url: str,
    referrer: str = "",
    viewport_width: int = 1280,
    cookie_header: str | None = None,
    step: int | None = None,
    http: httpx.AsyncClient | None = None,
) -> str:
    """
    Loads the page, runs every bounded rebind pass, unloads it and returns the
    resulting markup.
    """
    storage, adapter = build_storage(cfg.storage, Location.parse(url).origin)
    try:
        page = Page.from_html(
            html,
            url=url,
            referrer=referrer,
            viewport_width=viewport_width,
            local_storage=storage,
            cookies=CookieJar.from_header(cookie_header),
            host_globals={"step": step} if step is not None else None,
        )
        async with bootstrap_engine(cfg, page, http=http) as engine:
            await engine.run_until_idle()
        return page.document.html()
    finally:
        if adapter is not None:
            adapter.close()


def run(config_path: str, html_path: str, **kwargs) -> str:
    cfg = load_config(config_path)
    html = Path(html_path).read_text()
    return asyncio.run(apply_page(cfg, html, **kwargs))
