import pytest

from abslot.core.config import load_config, parse_config


def test_defaults_fill_optional_sections():
    cfg = parse_config({"site": {"name": "DRG"}, "storage": {"backend": "memory"}})

    assert cfg.site.corr_key == "ab_corr_DRG"
    assert cfg.site.test_id_prefix == "drg"
    assert cfg.resolution.timeout_ms == 2000
    assert cfg.context.mobile_breakpoint_px == 900
    assert cfg.catalog.heuristic_fallback is False
    assert (cfg.rebind.max_attempts, cfg.rebind.delay_ms) == (2, 600)
    assert cfg.rebind.scheduler == "fixed_delay"
    assert cfg.logging.level == "INFO"


@pytest.mark.parametrize("missing", ["site", "storage"])
def test_missing_required_section_is_rejected(missing):
    data = {"site": {"name": "DRG"}, "storage": {"backend": "memory"}}
    del data[missing]

    with pytest.raises(ValueError, match=missing):
        parse_config(data)


@pytest.mark.parametrize(
    "override",
    [
        {"site": {"name": ""}},
        {"rebind": {"scheduler": "requestAnimationFrame"}},
        {"rebind": {"max_attempts": -1}},
        {"resolution": {"timeout_ms": 0}},
        {"storage": {"backend": "sessionStorage"}},
        {"storage": {"backend": "duckdb"}},
    ],
)
def test_invalid_values_are_rejected(override):
    data = {"site": {"name": "DRG"}, "storage": {"backend": "memory"}, **override}

    with pytest.raises(ValueError):
        parse_config(data)


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(
        "site:\n"
        "  name: DRG\n"
        "  api_base: https://ab.example.net/api/\n"
        "rebind:\n"
        "  scheduler: IDLE\n"
        "storage:\n"
        f"  duckdb_path: {tmp_path / 'storage.duckdb'}\n"
    )

    cfg = load_config(path)

    assert cfg.site.api_base == "https://ab.example.net/api"
    assert cfg.rebind.scheduler == "idle"
    assert cfg.storage.backend == "duckdb"
    assert cfg.raw["site"]["name"] == "DRG"


def test_non_mapping_yaml_is_rejected(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ValueError):
        load_config(path)
