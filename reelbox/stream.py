"""
Reelbox — Stream sessions

One StreamSession per in-flight media:// request. Lifecycle:

    received -> validated -> streaming -> completed | aborted

The session owns its file handle; leaving `streaming` by any route closes
the handle and releases the registry slot exactly once. Reads are pulled
by the consumer and never exceed one chunk, so nothing is read ahead of
demand.

After an abort every read raises StreamIOError; after a clean finish reads
return b"". A consumer can always tell the two apart.

QtWebEngine pulls a replied device from its IO thread while cancellation
and shutdown arrive on the GUI thread, so every transition and every read
runs under the session lock. Lock order is session, then registry.
"""

import threading

from PySide6.QtCore import QIODevice, Signal, Slot

from reelbox.config import DEFAULT_CHUNK_SIZE

RECEIVED = "received"
VALIDATED = "validated"
STREAMING = "streaming"
COMPLETED = "completed"
ABORTED = "aborted"


class StreamIOError(OSError):
    """A stream was aborted: read failure, truncation or cancellation."""


class StreamSession:

    def __init__(self, reference, chunk_size=DEFAULT_CHUNK_SIZE, opener=None):
        self.reference = reference
        self.chunk_size = max(1, int(chunk_size))
        self.state = RECEIVED
        self.path = ""
        self.size = 0
        self.sent = 0
        self.error = ""
        self._opener = opener or open
        self._fh = None
        self._on_release = None
        self._lock = threading.Lock()

    def __repr__(self):
        return f"<StreamSession {self.state} {self.sent}/{self.size} {self.reference!r}>"

    # --- transitions ---

    def validate(self, path, size):
        with self._lock:
            if self.state != RECEIVED:
                raise RuntimeError(f"validate() in state {self.state}")
            self.path = path
            self.size = int(size)
            self.state = VALIDATED

    def start(self):
        """
        Open the file. On failure the session is aborted and the error re-raised.

        An empty file completes right here: no consumer pulls from a device
        that reports nothing available, so it would otherwise never finish.
        """
        with self._lock:
            if self.state != VALIDATED:
                raise RuntimeError(f"start() in state {self.state}")
            try:
                self._fh = self._opener(self.path, "rb")
            except OSError as e:
                self._finish(ABORTED, f"open failed: {e}")
                raise
            self.state = STREAMING
            if self.size <= 0:
                self._finish(COMPLETED)

    def read(self, maxlen=None) -> bytes:
        """
        Return the next chunk (at most min(maxlen, chunk_size) bytes).

        b"" means the stream completed cleanly. Raises StreamIOError if the
        session was aborted, or aborts it now on an I/O error or early EOF.
        """
        with self._lock:
            if self.state == COMPLETED:
                return b""
            if self.state == ABORTED:
                raise StreamIOError(self.error or "stream aborted")
            if self.state != STREAMING:
                raise RuntimeError(f"read() in state {self.state}")

            remaining = self.size - self.sent
            if remaining <= 0:
                self._finish(COMPLETED)
                return b""

            want = min(remaining, self.chunk_size)
            if maxlen is not None and maxlen > 0:
                want = min(want, int(maxlen))

            try:
                data = self._fh.read(want)
            except OSError as e:
                self._finish(ABORTED, f"read failed: {e}")
                raise StreamIOError(self.error) from e

            if not data:
                self._finish(ABORTED, f"truncated: got {self.sent} of {self.size} bytes")
                raise StreamIOError(self.error)

            self.sent += len(data)
            if self.sent >= self.size:
                self._finish(COMPLETED)
            return data

    def cancel(self, reason="cancelled by consumer"):
        """Consumer-driven cancellation. No-op once finished."""
        with self._lock:
            if self.state in (COMPLETED, ABORTED):
                return
            self._finish(ABORTED, reason)

    def iter_chunks(self, maxlen=None):
        """Generator over the remaining chunks; closing it early cancels."""
        try:
            while True:
                data = self.read(maxlen)
                if not data:
                    return
                yield data
        finally:
            self.cancel()

    # --- state helpers ---

    @property
    def remaining(self) -> int:
        if self.state != STREAMING:
            return 0
        return max(0, self.size - self.sent)

    @property
    def finished(self) -> bool:
        return self.state in (COMPLETED, ABORTED)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cancel()
        return False

    def _finish(self, state, error=""):
        # Caller holds self._lock
        self.state = state
        self.error = error
        fh, self._fh = self._fh, None
        release, self._on_release = self._on_release, None
        try:
            if fh is not None:
                fh.close()
        except OSError as e:
            print(f"[stream] close failed for {self.path!r}: {e}")
        finally:
            if release is not None:
                release(self)
        if state == ABORTED:
            print(f"[stream] Aborted {self.path or self.reference!r}: {error}")


# ---------------------------------------------------------------------------
# Concurrency bound
# ---------------------------------------------------------------------------

class StreamRegistry:
    """Tracks live sessions and caps how many may stream at once."""

    def __init__(self, limit):
        self.limit = max(1, int(limit))
        self._active = set()
        self._lock = threading.Lock()

    @property
    def active(self) -> int:
        with self._lock:
            return len(self._active)

    def acquire(self, session) -> bool:
        with self._lock:
            if len(self._active) >= self.limit:
                return False
            self._active.add(session)
        session._on_release = self.release
        return True

    def release(self, session):
        with self._lock:
            self._active.discard(session)

    def close_all(self, reason="shutting down"):
        # Cancel outside the registry lock; each cancel re-enters release()
        with self._lock:
            sessions = list(self._active)
        for session in sessions:
            session.cancel(reason)
        with self._lock:
            self._active.clear()


# ---------------------------------------------------------------------------
# QIODevice adapter
# ---------------------------------------------------------------------------

class MediaDevice(QIODevice):
    """
    Sequential, unbuffered read-only device over a StreamSession.

    QtWebEngine pulls through readData() as its buffers drain, on its own
    IO thread. An abort emits `aborted(reason)`; a clean end emits
    readChannelFinished.
    """

    aborted = Signal(str)

    def __init__(self, session, parent=None):
        super().__init__(parent)
        self._session = session
        self._abort_reported = False
        self.open(QIODevice.OpenModeFlag.ReadOnly | QIODevice.OpenModeFlag.Unbuffered)

    @property
    def session(self):
        return self._session

    def isSequential(self):
        return True

    def bytesAvailable(self):
        return self._session.remaining + super().bytesAvailable()

    def atEnd(self):
        return self._session.finished or self._session.remaining == 0

    def readData(self, maxlen):
        try:
            data = self._session.read(maxlen)
        except StreamIOError as e:
            if not self._abort_reported:
                self._abort_reported = True
                self.setErrorString(str(e))
                self.aborted.emit(str(e))
            return b""
        if not data or self._session.finished:
            self.readChannelFinished.emit()
        return data

    def writeData(self, data):
        return -1

    @Slot()
    def cancel(self):
        self._session.cancel()

    def close(self):
        self._session.cancel()
        super().close()
