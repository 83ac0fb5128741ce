import threading
from pathlib import Path
from typing import Optional, Any
from .time import now_local

# Set by setup_logging(); None means stdout only
LOG_DIR: Optional[Path] = None
LOG_NAME: str = "pc"

_LOG_LOCK = threading.Lock()

def setup_logging(log_dir: Path, log_name: str = "pc") -> None:
    global LOG_DIR, LOG_NAME
    LOG_DIR = Path(log_dir)
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    LOG_NAME = log_name

def current_log_path() -> Optional[Path]:
    # One file per day, resolved at write time so long runs roll over
    if LOG_DIR is None:
        return None
    return LOG_DIR / f"{LOG_NAME}-{now_local().strftime('%Y-%m-%d')}.log"

def _append(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")

def log_line(msg: Any, level: str = "INFO") -> None:
    """
    Logging wrapper (single timestamp, readable):
    - Prefix every line with: YYYY-MM-DD // HH:MM:SS+ZZ:ZZ - LEVEL -
    - Message bodies read 'TOPIC | key=value | ...'.
    """
    line = str(msg).strip()

    with _LOG_LOCK:
        prefix = now_local().strftime("%Y-%m-%d // %H:%M:%S%z")
        if len(prefix) >= 5:
            prefix = prefix[:-2] + ":" + prefix[-2:]

        full = f"{prefix} - {level} - {line}" if line else f"{prefix} - {level} -"

        path = current_log_path()
        if path:
            _append(path, full)

        print(full, flush=True)
