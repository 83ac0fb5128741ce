import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..adapters.local_store import DurableLocalStore
from ..adapters.memory_backend import MemoryCollections
from ..adapters.remote_api import RemoteCollections
from ..domain.categories import CategoryRegistry, DEFAULT_REGISTRY
from ..support.aggregator import LiveAggregator
from ..utils.files import load_json, save_json
from ..utils.log import log_line, setup_logging
from ..utils.rate import rate_maybe_log
from .constants import STATS_INTERVAL_S
from .planner import SpatialQueryPlanner

STATS_FILE = "impact_stats.json"


@dataclass
class Services:
    backend: Any
    store: DurableLocalStore
    planner: SpatialQueryPlanner
    aggregator: LiveAggregator

    def close(self) -> None:
        self.aggregator.stop()
        self.planner.close()


def build_backend(cfg: Dict[str, Any]) -> Any:
    if cfg.get("offline"):
        log_line("BACKEND | offline (in-process collections)", "WARN")
        return MemoryCollections()
    log_line(f"BACKEND | remote {cfg['remote_base_url']}")
    return RemoteCollections(
        cfg["remote_base_url"],
        token=str(cfg.get("api_token") or ""),
        user_agent=str(cfg.get("user_agent") or "phantomcrowd-core"),
        timeout_s=float(cfg.get("http_timeout_s")),
        poll_interval_s=float(cfg.get("poll_interval_s")),
    )


def build_registry(cfg: Dict[str, Any]) -> CategoryRegistry:
    path = cfg.get("categories_file")
    if not path:
        return DEFAULT_REGISTRY
    data = load_json(Path(path), None)
    if not isinstance(data, dict):
        log_line(f"CATEGORIES | {path} missing or invalid, using built-in table", "WARN")
        return DEFAULT_REGISTRY
    return CategoryRegistry.from_dict(data)


def build_services(cfg: Dict[str, Any], backend: Any = None) -> Services:
    """Wire every service once; nothing below holds a module-level backend handle."""
    if cfg.get("log_dir"):
        setup_logging(Path(cfg["log_dir"]))
    backend = backend if backend is not None else build_backend(cfg)
    store = DurableLocalStore(Path(cfg.get("data_dir") or "data"))
    planner = SpatialQueryPlanner(backend, store, workers=int(cfg.get("worker_threads") or 1))
    aggregator = LiveAggregator(backend, registry=build_registry(cfg))
    return Services(backend=backend, store=store, planner=planner, aggregator=aggregator)


def run_loop(
    cfg: Dict[str, Any],
    services: Optional[Services] = None,
    max_cycles: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    import pc
    log_line(f"MAIN LOOP STARTED (pc v{pc.__version__})")

    services = services or build_services(cfg)
    interval = float(cfg.get("stats_interval_s", STATS_INTERVAL_S))
    stats_path = Path(cfg.get("data_dir") or "data") / STATS_FILE
    cycles = 0

    try:
        services.aggregator.start()
        while max_cycles is None or cycles < max_cycles:
            cycles += 1
            try:
                stats = services.aggregator.latest
                pending = services.store.pending_upload_count()
                if stats is None:
                    log_line(f"STATS | waiting for first snapshot | pending_uploads={pending}")
                else:
                    log_line(
                        f"STATS | reports={stats.total_reports} | fixed={stats.issues_fixed} | "
                        f"in_progress={stats.issues_in_progress} | red_zones={stats.red_zones} | "
                        f"categories={len(stats.category_breakdowns)} | pending_uploads={pending}"
                    )
                    save_json(stats_path, stats.to_dict())
                rate_maybe_log()
            except Exception as e:
                log_line(f"MAIN LOOP ERROR | err={e!r}", "ERROR")

            if max_cycles is None or cycles < max_cycles:
                sleep(interval)
    except KeyboardInterrupt:
        log_line("MAIN LOOP STOPPED (KeyboardInterrupt)")
    finally:
        services.close()
        log_line("MAIN LOOP EXIT | subscriptions closed")
