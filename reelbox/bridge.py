"""
Reelbox — QWebChannel Bridge

The only channel between the unprivileged web UI and the host process.

Architecture:
  - MediaGateway holds the operations as plain Python methods
  - BridgeRoot is the single QObject registered on the QWebChannel; its
    @Slot methods are exactly OPERATIONS plus the fire-and-forget `log`
  - Slots take and return JSON text, so nothing but plain data (strings,
    numbers, booleans, flat records and lists of them) crosses the boundary
  - A JS shim injected before page load wraps the slots into
    window.reelbox.{selectFolder,listVideos,probeStream,log}

Grants:
  A folder chosen through the native picker is granted for the life of
  the process. listVideos only lists granted folders and probeStream only
  probes files inside one, so the UI cannot enumerate arbitrary paths.
"""

import json
import os

from PySide6.QtCore import QObject, Slot

from reelbox import scanner
from reelbox.media import canonical_path, is_path_within

OPERATIONS = frozenset({"selectFolder", "listVideos", "probeStream"})

_MAX_LOG_CHARS = 2000


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ok(data=None):
    """Standard success response."""
    if data is None:
        return {"ok": True}
    if isinstance(data, dict):
        return {**data, "ok": True}
    return {"ok": True, "data": data}


def _err(msg, **extra):
    """Standard error response."""
    return {**extra, "ok": False, "error": msg}


def _path_key(p):
    """Canonical, case-normalized key for grant comparisons ("" if invalid)."""
    try:
        return os.path.normcase(canonical_path(p))
    except (ValueError, OSError):
        return ""


def pick_folder_dialog(parent=None):
    from PySide6.QtWidgets import QFileDialog
    return QFileDialog.getExistingDirectory(parent, "Select video folder")


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------

class MediaGateway:
    """
    Privileged side of the bridge. Every method returns a plain dict.

    pick_folder is a zero-argument callable returning a folder path or ""
    on cancel; by default it opens the native directory dialog.
    """

    def __init__(self, library, pick_folder=None):
        self._library = library
        self._pick_folder = pick_folder or pick_folder_dialog
        self._grants = {}

    def granted_folders(self):
        return list(self._grants.values())

    def grant(self, folder) -> str:
        """Record folder as user-chosen and register it as a media root."""
        key = _path_key(folder)
        if not key:
            return ""
        path = canonical_path(folder)
        self._grants[key] = path
        self._library.add_root(path)
        return path

    def is_granted(self, folder) -> bool:
        key = _path_key(folder)
        return bool(key) and key in self._grants

    def is_within_grant(self, path) -> bool:
        return any(is_path_within(root, path) for root in self._grants.values())

    # --- operations ---

    def select_folder(self):
        folder = self._pick_folder()
        if not folder:
            return _ok({"path": ""})
        path = self.grant(folder)
        if not path:
            return _err("invalid_path", path="")
        print(f"[bridge] Granted folder: {path!r}")
        return _ok({"path": path})

    def list_videos(self, path):
        fp = str(path or "").strip()
        if not fp:
            return _err("missing_path", videos=[])
        if not self.is_granted(fp):
            print(f"[bridge] listVideos refused for ungranted folder: {fp!r}")
            return _err("folder_not_granted", videos=[])
        records, ok = scanner.list_videos(fp)
        if not ok:
            return _err("directory_unreadable", videos=[])
        videos = [r.to_dict(self._library.reference_for(r.path)) for r in records]
        return _ok({"videos": videos})

    def probe_stream(self, path):
        fp = str(path or "").strip()
        if not fp or not self.is_within_grant(fp):
            return scanner.ProbeResult(False, 0).to_dict()
        return scanner.probe(fp).to_dict()


# ---------------------------------------------------------------------------
# QWebChannel object
# ---------------------------------------------------------------------------

class BridgeRoot(QObject):
    """
    Registered on the QWebChannel as `reelbox`.
    Do not add slots here without adding them to OPERATIONS.
    """

    def __init__(self, gateway, parent=None):
        super().__init__(parent)
        self._gateway = gateway

    @Slot(result=str)
    def selectFolder(self):
        return json.dumps(self._gateway.select_folder())

    @Slot(str, result=str)
    def listVideos(self, path):
        return json.dumps(self._gateway.list_videos(path))

    @Slot(str, result=str)
    def probeStream(self, path):
        return json.dumps(self._gateway.probe_stream(path))

    @Slot(str)
    def log(self, message):
        text = str(message or "")
        if len(text) > _MAX_LOG_CHARS:
            text = text[:_MAX_LOG_CHARS] + "..."
        print(f"[ui] {text}")


# ═══════════════════════════════════════════════════════════════════════════
# JS SHIM — injected into the page before any of its own scripts run
# ═══════════════════════════════════════════════════════════════════════════

BRIDGE_SHIM_JS = r"""
(function() {
  new QWebChannel(qt.webChannelTransport, function(channel) {
    var b = channel.objects.reelbox;

    // Slots deliver their JSON result through a trailing callback.
    function wrap(name) {
      return function() {
        var sArgs = Array.prototype.slice.call(arguments).map(function(a) {
          return (a === undefined || a === null) ? '' : String(a);
        });
        return new Promise(function(resolve, reject) {
          try {
            sArgs.push(function(result) {
              try {
                resolve(typeof result === 'string' && result ? JSON.parse(result) : result);
              } catch (e) {
                reject(e);
              }
            });
            b[name].apply(b, sArgs);
          } catch (e) {
            reject(e);
          }
        });
      };
    }

    window.reelbox = Object.freeze({
      selectFolder: wrap('selectFolder'),
      listVideos: wrap('listVideos'),
      probeStream: wrap('probeStream'),
      log: function(message) { b.log(String(message)); }
    });

    try { document.dispatchEvent(new Event('reelbox:ready')); } catch (e) {}
  });
})();
"""


# ═══════════════════════════════════════════════════════════════════════════
# SETUP — called from app.py
# ═══════════════════════════════════════════════════════════════════════════

def _read_qrc_text(path: str) -> str:
    """Read a Qt resource file (qrc://) as UTF-8 text."""
    from PySide6.QtCore import QFile, QIODevice
    f = QFile(path)
    if f.open(QIODevice.OpenModeFlag.ReadOnly):
        data = bytes(f.readAll()).decode("utf-8", errors="replace")
        f.close()
        return data
    return ""


def setup_bridge(page, gateway) -> BridgeRoot:
    """
    Wire a QWebChannel exposing only BridgeRoot onto page and inject the shim.
    Call this BEFORE loading the UI.
    """
    from PySide6.QtWebChannel import QWebChannel
    from PySide6.QtWebEngineCore import QWebEngineScript

    bridge = BridgeRoot(gateway)

    channel = QWebChannel(page)
    channel.registerObject("reelbox", bridge)
    page.setWebChannel(channel)
    # Keep a Python reference so GC doesn't destroy the channel
    bridge._channel = channel

    qwc_js = _read_qrc_text(":/qtwebchannel/qwebchannel.js")
    if not qwc_js:
        print("[bridge] qwebchannel.js not found in Qt resources")
    # Keep newlines; flattening breaks // comments
    combined = qwc_js + "\n" + BRIDGE_SHIM_JS if qwc_js else BRIDGE_SHIM_JS

    script = QWebEngineScript()
    script.setName("reelbox_bridge_shim")
    script.setSourceCode(combined)
    script.setInjectionPoint(QWebEngineScript.InjectionPoint.DocumentCreation)
    script.setWorldId(QWebEngineScript.ScriptWorldId.MainWorld)
    script.setRunsOnSubFrames(False)
    page.scripts().insert(script)

    return bridge
