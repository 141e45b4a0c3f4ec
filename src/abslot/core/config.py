from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

SCHEDULER_STRATEGIES = ("fixed_delay", "idle")
STORAGE_BACKENDS = ("duckdb", "memory", "disabled")


@dataclass(frozen=True)
class SiteConfig:
    name: str
    corr_key: str
    api_base: str = "/api/mesh/015-a-b-test-accelerator"

    @property
    def test_id_prefix(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ResolutionConfig:
    timeout_ms: int = 2000


@dataclass(frozen=True)
class ContextConfig:
    mobile_breakpoint_px: int = 900


@dataclass(frozen=True)
class CatalogConfig:
    heuristic_fallback: bool = False


@dataclass(frozen=True)
class RebindConfig:
    max_attempts: int = 2
    delay_ms: int = 600
    watch_document: bool = True
    scheduler: str = "fixed_delay"


@dataclass(frozen=True)
class StorageConfig:
    backend: str = "duckdb"
    duckdb_path: str | None = None
    clean_slate: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class EngineConfig:
    site: SiteConfig
    resolution: ResolutionConfig
    context: ContextConfig
    catalog: CatalogConfig
    rebind: RebindConfig
    storage: StorageConfig
    logging: LoggingConfig
    raw: dict[str, Any]  # original parsed YAML (for debugging)


def load_yaml(path: str | Path) -> dict[str, Any]:
    p = Path(path)
    data = yaml.safe_load(p.read_text())
    if not isinstance(data, dict):
        raise ValueError("Config YAML must parse to a dict at the top level.")
    return data


def parse_config(data: dict[str, Any]) -> EngineConfig:
    for key in ["site", "storage"]:
        if key not in data:
            raise ValueError(f"Missing required top-level config section: '{key}'")

    site = data.get("site") or {}
    resolution = data.get("resolution") or {}
    context = data.get("context") or {}
    catalog = data.get("catalog") or {}
    rebind = data.get("rebind") or {}
    storage = data.get("storage") or {}
    logging_cfg = data.get("logging") or {}

    if not site.get("name"):
        raise ValueError("site.name must be a non-empty string")
    name = str(site["name"])

    site_cfg = SiteConfig(
        name=name,
        corr_key=str(site.get("corr_key") or f"ab_corr_{name}"),
        api_base=str(site.get("api_base", SiteConfig.api_base)).rstrip("/"),
    )

    timeout_ms = int(resolution.get("timeout_ms", ResolutionConfig.timeout_ms))
    if timeout_ms <= 0:
        raise ValueError("resolution.timeout_ms must be > 0")

    breakpoint_px = int(context.get("mobile_breakpoint_px", ContextConfig.mobile_breakpoint_px))
    if breakpoint_px <= 0:
        raise ValueError("context.mobile_breakpoint_px must be > 0")

    rebind_cfg = RebindConfig(
        max_attempts=int(rebind.get("max_attempts", RebindConfig.max_attempts)),
        delay_ms=int(rebind.get("delay_ms", RebindConfig.delay_ms)),
        watch_document=bool(rebind.get("watch_document", True)),
        scheduler=str(rebind.get("scheduler", RebindConfig.scheduler)).lower(),
    )
    if rebind_cfg.max_attempts < 0 or rebind_cfg.delay_ms < 0:
        raise ValueError("rebind.max_attempts and rebind.delay_ms must be >= 0")
    if rebind_cfg.scheduler not in SCHEDULER_STRATEGIES:
        raise ValueError(
            f"Unsupported rebind.scheduler: {rebind_cfg.scheduler!r}. "
            f"Allowed={list(SCHEDULER_STRATEGIES)}"
        )

    storage_cfg = StorageConfig(
        backend=str(storage.get("backend", StorageConfig.backend)).lower(),
        duckdb_path=storage.get("duckdb_path"),
        clean_slate=bool(storage.get("clean_slate", False)),
    )
    if storage_cfg.backend not in STORAGE_BACKENDS:
        raise ValueError(f"Unsupported storage.backend: {storage_cfg.backend!r}")
    if storage_cfg.backend == "duckdb" and not storage_cfg.duckdb_path:
        raise ValueError("storage.duckdb_path is required for the duckdb backend")

    return EngineConfig(
        site=site_cfg,
        resolution=ResolutionConfig(timeout_ms=timeout_ms),
        context=ContextConfig(mobile_breakpoint_px=breakpoint_px),
        catalog=CatalogConfig(heuristic_fallback=bool(catalog.get("heuristic_fallback", False))),
        rebind=rebind_cfg,
        storage=storage_cfg,
        logging=LoggingConfig(level=str(logging_cfg.get("level", "INFO")).upper()),
        raw=data,
    )


def load_config(path: str | Path) -> EngineConfig:
    data = load_yaml(path)
    return parse_config(data)
