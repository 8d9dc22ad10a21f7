"""
Reelbox — Storage

User data directory selection plus JSON reads.

Reelbox keeps no library or playback metadata on disk. The only file
read from here is the optional, hand-edited settings.json.
"""

import json
import os
import sys
from pathlib import Path
from typing import Any

# ========== DATA PATH ==========

_user_data_dir: str | None = None


def pick_user_data_dir(app_name: str) -> str:
    """Per-platform userData location for app_name. Does not create it."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return str(base / app_name)


def init_data_dir(path: str):
    """
    Set the userData directory. Must be called once at app startup,
    after the single-instance check.
    """
    global _user_data_dir
    _user_data_dir = path
    os.makedirs(path, exist_ok=True)


def data_path(file: str) -> str:
    """Build file path in app's userData directory."""
    if _user_data_dir is None:
        raise RuntimeError("storage.init_data_dir() must be called before data_path()")
    return os.path.join(_user_data_dir, file)


# ========== JSON I/O ==========


def read_json(p: str, fallback: Any = None) -> Any:
    """Read a JSON file, returning fallback if it is missing or malformed."""
    try:
        with open(p, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return fallback
    except (OSError, ValueError) as e:
        print(f"[storage] Ignoring unreadable {os.path.basename(p)}: {e}")
        return fallback
