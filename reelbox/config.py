"""
Reelbox — Configuration

Constants plus the runtime Settings object. Values are layered, later
layers winning:

  defaults -> settings.json (userData) -> REELBOX_* env vars -> CLI flags

A value that fails to parse is ignored and the previous layer is kept.
"""

import os
from pathlib import Path

from reelbox import storage

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

APP_NAME = "Reelbox"
SOCKET_NAME = "ReelboxSingleInstance"
LOCK_FILE_NAME = "reelbox.lock"
SETTINGS_FILE = "settings.json"

MEDIA_SCHEME = b"media"

DEFAULT_MAX_STREAMS = 8
DEFAULT_CHUNK_SIZE = 256 * 1024
MIN_CHUNK_SIZE = 4 * 1024

_HERE = Path(__file__).resolve().parent
UI_DIR = _HERE / "ui"
INDEX_HTML = UI_DIR / "index.html"


def default_media_root() -> str:
    """Installation-scoped media root used when nothing else is configured."""
    videos = Path.home() / "Videos"
    return str(videos if videos.is_dir() else Path.home())


def _int_or_none(value, minimum=1):
    try:
        n = int(value)
    except (TypeError, ValueError):
        return None
    return n if n >= minimum else None


def _env_flag(value) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Resolved runtime settings. Plain attributes, no behaviour."""

    def __init__(self, media_root=None, max_streams=DEFAULT_MAX_STREAMS,
                 chunk_size=DEFAULT_CHUNK_SIZE, dev_tools=False):
        self.media_root = media_root or default_media_root()
        self.max_streams = max_streams
        self.chunk_size = chunk_size
        self.dev_tools = dev_tools

    def _apply(self, media_root=None, max_streams=None, chunk_size=None, dev_tools=None):
        if media_root:
            self.media_root = os.path.abspath(os.path.expanduser(str(media_root)))
        n = _int_or_none(max_streams)
        if n is not None:
            self.max_streams = n
        n = _int_or_none(chunk_size, MIN_CHUNK_SIZE)
        if n is not None:
            self.chunk_size = n
        if dev_tools is not None:
            self.dev_tools = bool(dev_tools)

    def as_dict(self):
        return {
            "mediaRoot": self.media_root,
            "maxStreams": self.max_streams,
            "chunkSize": self.chunk_size,
            "devTools": self.dev_tools,
        }


def load_settings(args=None, environ=None, settings_path=None) -> Settings:
    """
    Build Settings from every layer.

    args is an argparse namespace (or None), environ defaults to os.environ,
    settings_path defaults to settings.json inside the userData dir.
    """
    environ = os.environ if environ is None else environ
    settings = Settings()

    if settings_path is None:
        settings_path = storage.data_path(SETTINGS_FILE)
    raw = storage.read_json(settings_path, {})
    if isinstance(raw, dict):
        settings._apply(
            media_root=raw.get("mediaRoot"),
            max_streams=raw.get("maxStreams"),
            chunk_size=raw.get("chunkSize"),
            dev_tools=raw.get("devTools"),
        )

    settings._apply(
        media_root=environ.get("REELBOX_MEDIA_ROOT"),
        max_streams=environ.get("REELBOX_MAX_STREAMS"),
        chunk_size=environ.get("REELBOX_CHUNK_SIZE"),
        dev_tools=True if _env_flag(environ.get("REELBOX_DEVTOOLS")) else None,
    )

    if args is not None:
        settings._apply(
            media_root=getattr(args, "media_root", None),
            max_streams=getattr(args, "max_streams", None),
            chunk_size=getattr(args, "chunk_size", None),
            dev_tools=True if getattr(args, "dev_tools", False) else None,
        )

    return settings
