"""
Reelbox — media:// scheme handler

Qt side of media delivery. Resolution, validation and the session state
machine live in reelbox.media and reelbox.stream; this module only maps
their results onto QWebEngineUrlRequestJob.

QtWebEngine cannot send a custom status or body on a failed job, so a
non-200 result becomes job.fail() with the closest error code and the
diagnostic body goes to the log.
"""

from PySide6.QtCore import QUrl
from PySide6.QtWebEngineCore import (
    QWebEngineUrlRequestJob,
    QWebEngineUrlScheme,
    QWebEngineUrlSchemeHandler,
)

from reelbox.config import DEFAULT_CHUNK_SIZE, MEDIA_SCHEME
from reelbox.media import open_media
from reelbox.stream import MediaDevice

_Error = QWebEngineUrlRequestJob.Error

_FAILURES = {
    404: _Error.UrlNotFound,
    503: _Error.RequestDenied,
}


def register_media_scheme():
    """Must run before the QApplication is created."""
    scheme = QWebEngineUrlScheme(MEDIA_SCHEME)
    scheme.setSyntax(QWebEngineUrlScheme.Syntax.Host)
    scheme.setFlags(
        QWebEngineUrlScheme.Flag.SecureScheme
        | QWebEngineUrlScheme.Flag.LocalScheme
        | QWebEngineUrlScheme.Flag.CorsEnabled
    )
    QWebEngineUrlScheme.registerScheme(scheme)


class MediaSchemeHandler(QWebEngineUrlSchemeHandler):
    """Serves media:// requests as pull-based streams."""

    def __init__(self, library, registry, chunk_size=DEFAULT_CHUNK_SIZE, parent=None):
        super().__init__(parent)
        self._library = library
        self._registry = registry
        self._chunk_size = chunk_size

    def requestStarted(self, job):
        url = job.requestUrl().toString(QUrl.ComponentFormattingOption.FullyEncoded)
        method = bytes(job.requestMethod().data()).upper()
        if method != b"GET":
            print(f"[media] {method.decode('latin-1')} not allowed: {url}")
            job.fail(_Error.RequestDenied)
            return

        response = open_media(url, self._library, self._registry, self._chunk_size)
        if response.status != 200:
            print(f"[media] {response.status} {url}: {response.body.decode('utf-8', 'replace')}")
            job.fail(_FAILURES.get(response.status, _Error.RequestFailed))
            return

        session = response.session
        device = MediaDevice(session)
        device.aborted.connect(lambda _reason, j=job: j.fail(_Error.RequestFailed))
        # Consumer cancellation: the job goes away, the handle must follow
        job.destroyed.connect(lambda *_args, s=session: s.cancel())
        device.setParent(job)
        job.reply(response.content_type.encode("ascii"), device)
