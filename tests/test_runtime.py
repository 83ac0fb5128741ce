"""
Tests for config.py, main_loop.py, the main.py CLI and the tools/ scripts.
"""

import importlib.util
import json
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest
from pc.adapters.memory_backend import MemoryCollections
from pc.adapters.remote_api import RemoteCollections
from pc.core.config import DEFAULT_CONFIG, load_config
from pc.core.constants import ISSUES_COLLECTION
from pc.core.main_loop import build_services, run_loop
from pc.core.models import AnchorRecord

ROOT = Path(__file__).resolve().parent.parent


def load_tool(name):
    spec = importlib.util.spec_from_file_location(name, ROOT / "tools" / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def offline_cfg(tmp_path, **kw):
    cfg = dict(DEFAULT_CONFIG)
    cfg.update({"offline": True, "data_dir": str(tmp_path / "data"), "log_dir": str(tmp_path / "logs"), "worker_threads": 2})
    cfg.update(kw)
    return cfg


class TestConfig:
    """Tests for load_config()."""

    def test_secrets_merged_over_config(self, tmp_path):
        (tmp_path / "config.json").write_text(json.dumps({"remote_base_url": "https://api.example.org", "api_token": "public", "extra": 1}))
        (tmp_path / "secrets.json").write_text(json.dumps({"api_token": "secret"}))
        cfg = load_config(tmp_path / "config.json")
        assert cfg["api_token"] == "secret"
        assert cfg["extra"] == 1
        assert cfg["offline"] is False
        assert cfg["worker_threads"] == DEFAULT_CONFIG["worker_threads"]

    def test_missing_files_run_offline(self, tmp_path):
        cfg = load_config(tmp_path / "config.json")
        assert cfg["offline"] is True
        assert cfg["data_dir"] == "data"

    def test_invalid_file_ignored(self, tmp_path):
        (tmp_path / "config.json").write_text("{oops")
        cfg = load_config(tmp_path / "config.json")
        assert cfg["http_timeout_s"] == DEFAULT_CONFIG["http_timeout_s"]


class TestServices:
    """Tests for build_services() and run_loop()."""

    def test_offline_backend(self, tmp_path):
        services = build_services(offline_cfg(tmp_path))
        try:
            assert isinstance(services.backend, MemoryCollections)
            assert services.store.data_dir == tmp_path / "data"
        finally:
            services.close()

    def test_remote_backend(self, tmp_path):
        cfg = offline_cfg(tmp_path, offline=False, remote_base_url="https://api.example.org", api_token="t")
        services = build_services(cfg)
        try:
            assert isinstance(services.backend, RemoteCollections)
            assert services.backend.headers["Authorization"] == "Bearer t"
        finally:
            services.close()

    def test_categories_file(self, tmp_path):
        path = tmp_path / "categories.json"
        path.write_text(json.dumps({"subcategories": {"GRAFFITI": "ENVIRONMENTAL"}}))
        services = build_services(offline_cfg(tmp_path, categories_file=str(path)))
        try:
            assert services.aggregator.registry.resolve("", "graffiti") == "ENVIRONMENTAL"
        finally:
            services.close()

    def test_run_loop_writes_stats_and_stops(self, tmp_path):
        cfg = offline_cfg(tmp_path, stats_interval_s=0)
        backend = MemoryCollections(seed={ISSUES_COLLECTION: [
            AnchorRecord(latitude=1.0, longitude=2.0, id="i1").with_geohash().to_dict(),
        ]})
        services = build_services(cfg, backend=backend)
        sleep = Mock()

        run_loop(cfg, services=services, max_cycles=2, sleep=sleep)

        stats = json.loads((tmp_path / "data" / "impact_stats.json").read_text(encoding="utf-8"))
        assert stats["totalReports"] == 1
        assert sleep.call_count == 1
        assert not services.aggregator.running
        assert list((tmp_path / "logs").glob("pc-*.log"))


class TestCli:
    """Tests for main.py subcommands (offline)."""

    def test_post_then_nearby(self, tmp_path, capsys):
        import main

        (tmp_path / "config.json").write_text(json.dumps(offline_cfg(tmp_path)))
        args = ["--config", str(tmp_path / "config.json")]
        assert main.main(args + ["post", "52.52", "13.405", "Dark underpass", "--use-case", "WOMENS_SAFETY"]) == 0
        posted = json.loads([l for l in capsys.readouterr().out.splitlines() if l.startswith("{")][-1])
        assert posted["uploaded"] is True

        # fresh process: offline backend is empty, so the local cache answers
        assert main.main(args + ["nearby", "52.52", "13.405", "--radius", "100"]) == 0
        lines = [l for l in capsys.readouterr().out.splitlines() if l.startswith("{")]
        assert json.loads(lines[0])["id"] == posted["id"]

    def test_sync_with_nothing_pending(self, tmp_path, capsys):
        import main

        (tmp_path / "config.json").write_text(json.dumps(offline_cfg(tmp_path)))
        assert main.main(["--config", str(tmp_path / "config.json"), "sync"]) == 0
        assert "uploaded=0 still_pending=0" in capsys.readouterr().out


class TestTools:
    """Tests for tools/check_cache.py and tools/impact_report.py."""

    def test_check_cache_clean(self, tmp_path):
        check_cache = load_tool("check_cache")
        path = tmp_path / "anchors.json"
        doc = AnchorRecord(latitude=1.0, longitude=2.0, id="a").with_geohash().to_dict()
        path.write_text(json.dumps({"anchors": [doc]}))
        assert check_cache.main(["--file", str(path)]) == 0

    def test_check_cache_issues(self, tmp_path):
        check_cache = load_tool("check_cache")
        good = AnchorRecord(latitude=1.0, longitude=2.0, id="a").with_geohash().to_dict()
        entries = [
            good,
            dict(good),                                      # duplicate id
            {**good, "id": "b", "geohash": "zzzzzzz"},       # stale geohash
            {**good, "id": "c", "latitude": 95.0},           # out of bounds
            {**good, "id": "d", "status": "DONE"},           # unknown status
            {**good, "id": "e", "upvotes": -1},
        ]
        issues = {issue for issue, _ in check_cache.check_entries(entries)}
        assert issues == {"duplicate_id", "stale_geohash", "out_of_bounds_coordinates", "unknown_status", "invalid_upvotes"}

    def test_check_cache_corrupt(self, tmp_path):
        check_cache = load_tool("check_cache")
        path = tmp_path / "anchors.json"
        path.write_text("{nope")
        assert check_cache.check_file(path) == [("corrupt_file", "anchors.json")]
        assert path.exists()  # the checker never quarantines

    def test_impact_report_render(self):
        impact_report = load_tool("impact_report")
        from pc.domain.impact import compute_impact_stats

        stats = compute_impact_stats([AnchorRecord(latitude=1.0, longitude=2.0, id="a", use_case="FACILITIES", location_name="Depot")], [], [])
        text = "\n".join(impact_report.render(stats))
        assert "Reports:      1" in text
        assert "Facilities" in text
        assert "Depot (1)" in text

    def test_check_cache_object_without_list(self, tmp_path):
        check_cache = load_tool("check_cache")
        path = tmp_path / "anchors.json"
        path.write_text(json.dumps({}))
        assert check_cache.check_file(path) == []
        path.write_text(json.dumps({"anchors": "x"}))
        assert check_cache.check_file(path) == [("bad_shape", "anchors.json")]

    @pytest.mark.parametrize("name", ["check_cache", "impact_report"])
    def test_tools_put_project_root_on_path(self, name):
        tool = load_tool(name)
        assert tool.ROOT == ROOT
        assert str(ROOT) in sys.path
