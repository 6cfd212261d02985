import os
import re
import sys
import json
import time
import shlex
from datetime import datetime
from typing import Any, Dict, Optional

def log_error(message: str) -> None:
    print(f"[TAIL-RELAY] {message}", file=sys.stderr, flush=True)

def log_info(message: str) -> None:
    print(f"[TAIL-RELAY] {message}", file=sys.stderr, flush=True)

def clamp_int(value: Any, default: int, min_value: int, max_value: int) -> int:
    try:
        numeric = int(value)
    except Exception:
        numeric = default
    if numeric < min_value:
        return min_value
    if numeric > max_value:
        return max_value
    return numeric

def clamp_initial_lines(value: Any, default: int, max_value: int) -> int:
    """Negative, boolean and non-numeric values fall back to the default
    instead of the lower bound."""
    if value is None or isinstance(value, bool):
        return default
    try:
        numeric = int(float(value)) if isinstance(value, str) else int(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if numeric < 0:
        return default
    return clamp_int(numeric, default, 0, max_value)

def now_ms() -> int:
    return int(time.time() * 1000)

def iso_now() -> str:
    return datetime.now().isoformat(timespec="milliseconds")

def safe_name(text: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9._-]+", "_", text.strip())
    return cleaned[:80] if cleaned else "unnamed"

def build_tail_command(file_path: str, initial_lines: int) -> str:
    # -F keeps following across rotation; "--" stops option parsing
    return f"tail -n {int(initial_lines)} -F -- {shlex.quote(file_path)}"

def json_line(path: Optional[str], payload: Dict[str, Any]) -> None:
    if not path:
        return
    try:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
    except Exception as exc:
        log_error(f"log write failed ({path}): {exc}")

def make_log_dir(log_dir: Optional[str]) -> Optional[str]:
    if not log_dir:
        return None
    resolved = os.path.abspath(os.path.expanduser(log_dir))
    os.makedirs(resolved, exist_ok=True)
    return resolved
