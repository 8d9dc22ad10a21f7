"""
Reelbox — App Shell

Creates the QMainWindow hosting the web UI in a QWebEngineView and wires
the privileged pieces around it.

Handles:
  - Single-instance lock, checked before any other startup work
  - media:// scheme registration and handler installation
  - QWebChannel bridge wiring (bridge.py)
  - WebEngine settings that keep the UI away from local files
  - Quit cleanup (abort open streams, release the lock)

ReelboxApp owns every long-lived handle and passes them explicitly;
nothing here is reachable through module globals.
"""

import argparse
import sys

from PySide6.QtCore import QUrl
from PySide6.QtGui import QKeySequence, QShortcut
from PySide6.QtWidgets import QApplication, QMainWindow
from PySide6.QtWebEngineCore import QWebEnginePage, QWebEngineProfile, QWebEngineSettings
from PySide6.QtWebEngineWidgets import QWebEngineView

from reelbox import __version__, storage
from reelbox.bridge import MediaGateway, pick_folder_dialog, setup_bridge
from reelbox.config import (
    APP_NAME,
    INDEX_HTML,
    LOCK_FILE_NAME,
    MEDIA_SCHEME,
    SOCKET_NAME,
    load_settings,
)
from reelbox.instance import SingleInstanceGuard, default_lock_path
from reelbox.media import MediaLibrary
from reelbox.scheme import MediaSchemeHandler, register_media_scheme
from reelbox.stream import StreamRegistry


# ---------------------------------------------------------------------------
# WebEngine page that logs console messages
# ---------------------------------------------------------------------------

class ReelboxWebPage(QWebEnginePage):
    """Pipes UI console output to stdout."""

    def javaScriptConsoleMessage(self, level, message, line, source):
        print(f"[js] {message} ({source}:{line})")


# ---------------------------------------------------------------------------
# Main Window
# ---------------------------------------------------------------------------

class ReelboxWindow(QMainWindow):

    def __init__(self, profile):
        super().__init__()

        self.setWindowTitle(APP_NAME)
        self.setMinimumSize(800, 600)
        self.resize(1200, 800)

        self._web_page = ReelboxWebPage(profile, self)
        self._web_view = QWebEngineView()
        self._web_view.setPage(self._web_page)

        # The UI gets no local file access; media arrives via media:// only
        settings = self._web_page.settings()
        settings.setAttribute(QWebEngineSettings.WebAttribute.JavascriptEnabled, True)
        settings.setAttribute(QWebEngineSettings.WebAttribute.LocalContentCanAccessFileUrls, False)
        settings.setAttribute(QWebEngineSettings.WebAttribute.LocalContentCanAccessRemoteUrls, False)
        settings.setAttribute(QWebEngineSettings.WebAttribute.LocalStorageEnabled, False)
        settings.setAttribute(QWebEngineSettings.WebAttribute.PluginsEnabled, False)

        self.setCentralWidget(self._web_view)
        self._dev_tools_view: QWebEngineView | None = None

    @property
    def page(self):
        return self._web_page

    def load_ui(self):
        self._web_view.loadFinished.connect(self._on_load_finished)
        self._web_view.load(QUrl.fromLocalFile(str(INDEX_HTML)))

    def _on_load_finished(self, ok: bool):
        if not ok:
            print(f"[reelbox] Failed to load UI: {INDEX_HTML}")
        self.show()

    def bring_to_front(self):
        """Restore and focus (used when a second instance is launched)."""
        if self.isMinimized():
            self.showNormal()
        self.show()
        self.activateWindow()
        self.raise_()

    def toggle_dev_tools(self):
        if self._dev_tools_view is None:
            self._dev_tools_view = QWebEngineView()
            self._web_page.setDevToolsPage(self._dev_tools_view.page())
        if self._dev_tools_view.isVisible():
            self._dev_tools_view.hide()
        else:
            self._dev_tools_view.show()


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class ReelboxApp:
    """Top-level owner of the window, scheme handler, bridge and stream registry."""

    def __init__(self, qt_app, settings, guard):
        self.qt_app = qt_app
        self.settings = settings
        self.guard = guard
        self.library = MediaLibrary(settings.media_root)
        self.streams = StreamRegistry(settings.max_streams)
        self.window: ReelboxWindow | None = None
        self.profile: QWebEngineProfile | None = None
        self.scheme_handler: MediaSchemeHandler | None = None
        self.bridge = None

    def start(self):
        # Off-the-record profile: nothing persisted between runs
        self.profile = QWebEngineProfile(self.qt_app)
        self.scheme_handler = MediaSchemeHandler(
            self.library, self.streams, self.settings.chunk_size, self.profile
        )
        self.profile.installUrlSchemeHandler(MEDIA_SCHEME, self.scheme_handler)

        self.window = ReelboxWindow(self.profile)
        gateway = MediaGateway(
            self.library,
            pick_folder=lambda: pick_folder_dialog(self.window),
        )
        self.bridge = setup_bridge(self.window.page, gateway)

        if self.settings.dev_tools:
            QShortcut(QKeySequence("Ctrl+Shift+I"), self.window, self.window.toggle_dev_tools)
            QShortcut(QKeySequence("F12"), self.window, self.window.toggle_dev_tools)

        self.qt_app.aboutToQuit.connect(self.shutdown)
        self.window.load_ui()

    def on_second_instance(self, payload):
        """Handle second instance: show/focus existing window."""
        print(f"[reelbox] Second instance asked to {payload.get('action', 'focus')}")
        if self.window is not None:
            self.window.bring_to_front()

    def shutdown(self):
        if self.streams.active:
            print(f"[reelbox] Aborting {self.streams.active} open stream(s)")
        self.streams.close_all()
        self.guard.release()


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------

def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="reelbox", description=f"{APP_NAME} video folder player")
    parser.add_argument("--media-root", dest="media_root", default=None,
                        help="Installation-scoped folder media:// may serve from")
    parser.add_argument("--max-streams", dest="max_streams", type=int, default=None,
                        help="Maximum concurrent media streams")
    parser.add_argument("--chunk-size", dest="chunk_size", type=int, default=None,
                        help="Bytes read per stream pull")
    parser.add_argument("--dev-tools", action="store_true", default=False,
                        help="Enable DevTools (Ctrl+Shift+I / F12)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_known_args(argv)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv=None):
    argv = list(sys.argv if argv is None else argv)
    args, _unknown = parse_args(argv[1:])

    register_media_scheme()
    app = QApplication(argv)
    app.setApplicationName(APP_NAME)
    app.setOrganizationName(APP_NAME)
    app.setApplicationVersion(__version__)

    # Nothing with side effects may run before this check
    guard = SingleInstanceGuard(SOCKET_NAME, default_lock_path(LOCK_FILE_NAME))
    controller = None

    def on_second_instance(payload):
        if controller is not None:
            controller.on_second_instance(payload)

    if not guard.try_lock(on_second_instance, argv):
        print("[reelbox] Another instance is running. Asked it to focus and exiting.")
        return 0

    user_data = storage.pick_user_data_dir(APP_NAME)
    storage.init_data_dir(user_data)
    settings = load_settings(args)
    print(f"[reelbox] userData: {user_data}")
    print(f"[reelbox] settings: {settings.as_dict()}")

    controller = ReelboxApp(app, settings, guard)
    controller.start()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
