import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

_LOG_ENV = "TODO_TREE_LOG"
_activity_log_lock = threading.Lock()
_activity_log_path: Optional[Path] = None


def configure(path: str | Path | None = None) -> Optional[Path]:
    """Select the log file; falls back to ``$TODO_TREE_LOG``. Empty disables logging."""
    global _activity_log_path
    raw = os.getenv(_LOG_ENV, "") if path is None else str(path)
    with _activity_log_lock:
        _activity_log_path = Path(raw).expanduser() if raw.strip() else None
        return _activity_log_path


def reset_activity_log() -> None:
    with _activity_log_lock:
        if _activity_log_path is not None:
            _activity_log_path.write_text("", encoding="utf-8")


def log_event(status: str, target: str, detail: str | None = None) -> None:
    """Append one tab-separated line: timestamp, status, target and optional detail.

    Called from the watch thread as well as the UI loop.
    """
    timestamp = datetime.now().isoformat(timespec="seconds")
    message = detail.strip() if detail else ""
    line = f"{timestamp}\t{status.upper()}\t{target}"
    if message:
        line = f"{line}\t{message}"
    with _activity_log_lock:
        if _activity_log_path is None:
            return
        with _activity_log_path.open("a", encoding="utf-8") as log:
            log.write(line + "\n")
