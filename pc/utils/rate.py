import threading
import time

from .log import log_line

RATE_WINDOW_S = 3600.0

_RATE_LOCK = threading.Lock()

RATE_STATE = {
    "t0": None,
    "next_log": None,
    "recomputes": 0,
    "uploads_ok": 0,
    "uploads_fail": 0,
    "fallbacks": 0,
}

def rate_inc(kind: str, ok: bool = True) -> None:
    if kind == "recompute":
        k = "recomputes"
    elif kind == "upload":
        k = "uploads_ok" if ok else "uploads_fail"
    elif kind == "fallback":
        k = "fallbacks"
    else:
        return
    with _RATE_LOCK:
        RATE_STATE[k] = int(RATE_STATE.get(k, 0) or 0) + 1

def rate_snapshot() -> dict:
    with _RATE_LOCK:
        return dict(RATE_STATE)

def rate_reset() -> None:
    with _RATE_LOCK:
        RATE_STATE["t0"] = None
        RATE_STATE["next_log"] = None
        for k in ("recomputes", "uploads_ok", "uploads_fail", "fallbacks"):
            RATE_STATE[k] = 0

def rate_maybe_log(window_s: float = RATE_WINDOW_S) -> bool:
    """Emit one RATE line per window and reset the counters. Returns True if logged."""
    now = time.time()
    with _RATE_LOCK:
        if RATE_STATE.get("t0") is None:
            RATE_STATE["t0"] = now
            RATE_STATE["next_log"] = now + window_s

        if now < float(RATE_STATE.get("next_log") or 0):
            return False

        line = (
            f"RATE | window={int(window_s // 60)}m | "
            f"recomputes={RATE_STATE['recomputes']} | "
            f"uploads={RATE_STATE['uploads_ok']} ok/{RATE_STATE['uploads_fail']} fail | "
            f"fallbacks={RATE_STATE['fallbacks']}"
        )
        RATE_STATE["t0"] = now
        RATE_STATE["next_log"] = now + window_s
        for k in ("recomputes", "uploads_ok", "uploads_fail", "fallbacks"):
            RATE_STATE[k] = 0

    log_line(line)
    return True
