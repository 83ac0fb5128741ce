import os
import time
from datetime import datetime
from zoneinfo import ZoneInfo

TZ_LOCAL = ZoneInfo(os.environ.get("PC_TZ", "UTC"))

def now_local() -> datetime:
    return datetime.now(TZ_LOCAL)

def now_ms() -> int:
    """Epoch milliseconds, the unit every record timestamp uses."""
    return int(time.time() * 1000)

def iso_from_ms(ms: int) -> str:
    """Local time, human readable (no 'T', no timezone suffix)."""
    if not ms:
        return ""
    return datetime.fromtimestamp(ms / 1000.0, TZ_LOCAL).strftime("%Y-%m-%d // %H:%M:%S")
