import asyncio

import httpx

from abslot.app import cli
from abslot.app.runner import apply_page
from abslot.core.config import parse_config
from abslot.features.page.duckdb_adapter import DuckDBAdapter

HTML = (
    "<html><body>"
    '<nav><a class="btn primary cta-unlock" href="/#leadForm">Get Started</a></nav>'
    "</body></html>"
)


class Backend:
    def __init__(self) -> None:
        self.resolves: list[dict[str, str]] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/track"):
            return httpx.Response(204)
        self.resolves.append(dict(request.url.params))
        return httpx.Response(
            200, json={"variant": "B", "corr_id": "corr-1", "meta": {"text": "Get My Plan"}}
        )


def _cfg(tmp_path):
    return parse_config(
        {
            "site": {"name": "DRG"},
            "rebind": {"max_attempts": 0, "watch_document": False},
            "storage": {"backend": "duckdb", "duckdb_path": str(tmp_path / "storage.duckdb")},
        }
    )


def _load(cfg, backend, **kwargs):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(backend.handler)) as http:
            return await apply_page(cfg, HTML, url="https://www.example.com/", http=http, **kwargs)

    return asyncio.run(scenario())


def test_apply_page_returns_bound_markup(tmp_path):
    html = _load(_cfg(tmp_path), Backend())

    assert "Get My Plan" in html
    assert 'data-ab-applied="1"' in html


def test_durable_state_carries_across_page_loads(tmp_path):
    cfg = _cfg(tmp_path)
    backend = Backend()

    _load(cfg, backend)
    _load(cfg, backend)

    first, second = backend.resolves
    assert first["visitor_type"] == "new"
    assert "correlation_id" not in first
    assert second["visitor_type"] == "returning"
    assert second["correlation_id"] == "corr-1"
    assert second["bucket"] == first["bucket"]

    adapter = DuckDBAdapter(str(tmp_path / "storage.duckdb"), clean_slate=False)
    adapter.open()
    try:
        assert adapter.get("https://www.example.com", "ab_corr_DRG") == "corr-1"
        assert adapter.get("https://other.example.com", "ab_corr_DRG") is None
    finally:
        adapter.close()


def test_cli_apply_writes_output(tmp_path, monkeypatch):
    calls = {}

    def fake_run(config_path, html_path, **kwargs):
        calls.update(kwargs, config=config_path, html=html_path)
        return "<p>bound</p>"

    monkeypatch.setattr(cli, "run", fake_run)
    out = tmp_path / "out.html"

    rc = cli.main(
        [
            "apply",
            "--html",
            "page.html",
            "--url",
            "https://www.example.com/",
            "--step",
            "2",
            "--out",
            str(out),
        ]
    )

    assert rc == 0
    assert out.read_text() == "<p>bound</p>"
    assert calls["config"] == "config/engine.yaml"
    assert calls["step"] == 2
    assert calls["viewport_width"] == 1280
