from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..utils.files import load_json
from ..utils.log import log_line
from .constants import HTTP_TIMEOUT_S, POLL_INTERVAL_S, STATS_INTERVAL_S, WORKER_THREADS

# Files (relative to the working directory unless a path is given):
# - config.json   (tracked)      tunables and remote_base_url
# - secrets.json  (NOT tracked)  {"api_token": "..."}
CONFIG_FILE = "config.json"
SECRETS_FILE = "secrets.json"

DEFAULT_CONFIG: Dict[str, Any] = {
    "remote_base_url": "",
    "api_token": "",
    "user_agent": "phantomcrowd-core",
    "http_timeout_s": HTTP_TIMEOUT_S,
    "poll_interval_s": POLL_INTERVAL_S,
    "data_dir": "data",
    "log_dir": "logs",
    "stats_interval_s": STATS_INTERVAL_S,
    "worker_threads": WORKER_THREADS,
    # true -> in-process backend, no network
    "offline": False,
}


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    DEFAULT_CONFIG <- config.json <- secrets.json (same directory).
    Missing or invalid files are skipped with a warning. Unknown keys are kept.
    """
    cfg_path = Path(path) if path else Path(CONFIG_FILE)
    cfg: Dict[str, Any] = dict(DEFAULT_CONFIG)

    for p in (cfg_path, cfg_path.parent / SECRETS_FILE):
        if not p.exists():
            continue
        data = load_json(p, None)
        if not isinstance(data, dict):
            log_line(f"CONFIG | ignoring {p.name} (not a JSON object)", "WARN")
            continue
        cfg.update(data)

    if not cfg.get("remote_base_url") and not cfg.get("offline"):
        log_line("CONFIG | no remote_base_url set, running offline", "WARN")
        cfg["offline"] = True
    return cfg
