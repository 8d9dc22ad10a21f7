"""
Reelbox — Single-instance guard

A QLockFile decides who is primary; a QLocalServer owned by the primary
receives "focus" requests from later launches. A second launch sends one
request and then exits without doing anything else.
"""

import json
import os
import sys
import time

from PySide6.QtCore import QDir, QLockFile
from PySide6.QtNetwork import QLocalServer, QLocalSocket

_CONNECT_ATTEMPTS = 10
_CONNECT_TIMEOUT_MS = 200


def default_lock_path(lock_name: str) -> str:
    return os.path.join(QDir.tempPath(), lock_name)


class SingleInstanceGuard:
    """Ensures only one app instance runs. Forwards argv to the existing instance."""

    def __init__(self, socket_name: str, lock_path: str):
        self._socket_name = socket_name
        self._lock = QLockFile(lock_path)
        self._lock.setStaleLockTime(0)
        self._server: QLocalServer | None = None
        self._callback = None

    @property
    def is_primary(self) -> bool:
        return self._server is not None

    def try_lock(self, on_second_instance=None, argv=None) -> bool:
        """
        Returns True if this is the first instance.
        If another instance holds the lock, asks it to focus and returns False.
        """
        if not self._lock.tryLock(100):
            self._notify_primary(list(sys.argv if argv is None else argv))
            return False

        # Clean up stale socket on Linux/macOS
        QLocalServer.removeServer(self._socket_name)

        self._callback = on_second_instance
        self._server = QLocalServer()
        if not self._server.listen(self._socket_name):
            print(f"[guard] Could not listen on {self._socket_name}: {self._server.errorString()}")
        self._server.newConnection.connect(self._handle_connections)
        return True

    def release(self):
        if self._server is not None:
            self._server.close()
            self._server = None
        self._lock.unlock()

    def _notify_primary(self, argv):
        payload = json.dumps({"action": "focus", "argv": argv}).encode("utf-8")
        # The primary may hold the lock but not be listening yet
        for _ in range(_CONNECT_ATTEMPTS):
            socket = QLocalSocket()
            socket.connectToServer(self._socket_name)
            if socket.waitForConnected(_CONNECT_TIMEOUT_MS):
                socket.write(payload)
                socket.waitForBytesWritten(1000)
                socket.disconnectFromServer()
                return True
            time.sleep(_CONNECT_TIMEOUT_MS / 1000.0)
        print("[guard] Existing instance did not answer the focus request")
        return False

    def _handle_connections(self):
        while self._server is not None and self._server.hasPendingConnections():
            conn = self._server.nextPendingConnection()
            if conn is None:
                return
            if conn.bytesAvailable() == 0:
                conn.waitForReadyRead(1000)
            data = bytes(conn.readAll().data())
            conn.disconnectFromServer()
            conn.deleteLater()
            try:
                payload = json.loads(data.decode("utf-8")) if data else {}
            except ValueError:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}
            payload.setdefault("action", "focus")
            if self._callback is not None:
                self._callback(payload)
