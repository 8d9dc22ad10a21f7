"""
Reelbox — Media references and request resolution

A MediaReference is a URI in the private media:// namespace:

    media://<root-id>/<percent-encoded path relative to that root>

root-id is a lowercase hex digest of the canonical root folder, so a
reference never carries an absolute path and can only name files under a
registered root. References are resolved fresh on every request.

open_media() drives one request through received -> validated -> streaming
and returns a MediaResponse describing what to send back.
"""

import hashlib
import os
import stat
from typing import NamedTuple
from urllib.parse import quote, unquote_to_bytes, urlsplit

from reelbox.stream import StreamSession

# ---------------------------------------------------------------------------
# Allow-list
#
# Declared once. Keys are the only extensions that are listed or served.
# ---------------------------------------------------------------------------

VIDEO_CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
}

VIDEO_EXTENSIONS = frozenset(VIDEO_CONTENT_TYPES)

SCHEME = "media"

NOT_FOUND_BODY = b"File not found"
BUSY_BODY = b"Too many streams"
UNREADABLE_BODY = b"Unable to read file"


def is_video_path(p) -> bool:
    return os.path.splitext(str(p or ""))[1].lower() in VIDEO_EXTENSIONS


def content_type_for(p) -> str:
    """MIME type for an allow-listed path, "" for anything else."""
    return VIDEO_CONTENT_TYPES.get(os.path.splitext(str(p or ""))[1].lower(), "")


def canonical_path(p) -> str:
    """Absolute, symlink-resolved path (raises ValueError on NUL bytes)."""
    return os.path.realpath(os.path.abspath(os.path.expanduser(str(p))))


def is_path_within(parent, target) -> bool:
    """True if canonical target is parent itself or lies beneath it."""
    try:
        p = os.path.normcase(canonical_path(parent))
        t = os.path.normcase(canonical_path(target))
        return os.path.commonpath([p, t]) == p
    except (ValueError, OSError):
        return False


def root_id_for(root) -> str:
    return hashlib.sha1(os.fsencode(os.path.normcase(root))).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Library of roots
# ---------------------------------------------------------------------------

class MediaLibrary:
    """
    Registry of folders media:// references may point into.

    The installation-scoped root is registered at construction; folders
    the user grants through the picker are added at runtime.
    """

    def __init__(self, install_root=None):
        self._roots = {}
        self.install_root_id = ""
        if install_root:
            self.install_root_id = self.add_root(install_root)

    def add_root(self, folder) -> str:
        root = canonical_path(folder)
        rid = root_id_for(root)
        self._roots[rid] = root
        return rid

    def root_for(self, path):
        """(root_id, root) of the innermost root containing path, or None."""
        best = None
        for rid, root in self._roots.items():
            if is_path_within(root, path):
                if best is None or len(root) > len(best[1]):
                    best = (rid, root)
        return best

    def reference_for(self, path) -> str:
        """media:// reference for a file under a registered root, "" if none."""
        found = self.root_for(path)
        if found is None:
            return ""
        rid, root = found
        rel = os.path.relpath(canonical_path(path), root)
        # Names need not be valid UTF-8, so quote the raw filesystem bytes
        return f"{SCHEME}://{rid}/{quote(os.fsencode(rel.replace(os.sep, '/')))}"

    def resolve(self, reference):
        """
        Map a reference to a canonical absolute path, or None.

        Rejects foreign schemes, unknown roots, empty paths and anything
        that lands outside its root after .. and symlink resolution.
        """
        try:
            parts = urlsplit(str(reference or ""))
        except ValueError:
            return None
        if parts.scheme.lower() != SCHEME:
            return None
        root = self._roots.get(parts.netloc.lower())
        if root is None:
            return None
        try:
            rel = os.fsdecode(unquote_to_bytes(parts.path)).lstrip("/")
        except (UnicodeDecodeError, ValueError):
            return None
        if not rel:
            return None
        try:
            candidate = canonical_path(os.path.join(root, *rel.split("/")))
        except ValueError:
            return None
        if not is_path_within(root, candidate) or candidate == root:
            return None
        return candidate


# ---------------------------------------------------------------------------
# Request handling
# ---------------------------------------------------------------------------

class MediaResponse(NamedTuple):
    status: int
    content_type: str
    body: bytes = b""
    session: StreamSession | None = None


def _plain(status, body):
    return MediaResponse(status, "text/plain", body)


def open_media(reference, library, registry, chunk_size) -> MediaResponse:
    """
    Resolve and validate a reference, then open a stream session.

    200 carries a streaming session (no body); every other status carries a
    short plain-text body and no session. Nothing is opened until the path
    passes validation.
    """
    session = StreamSession(reference, chunk_size=chunk_size)

    path = library.resolve(reference)
    if path is None:
        print(f"[media] Rejected reference: {reference}")
        return _plain(404, NOT_FOUND_BODY)

    try:
        st = os.stat(path)
    except (OSError, ValueError):
        return _plain(404, NOT_FOUND_BODY)
    if not stat.S_ISREG(st.st_mode) or not is_video_path(path):
        return _plain(404, NOT_FOUND_BODY)
    session.validate(path, st.st_size)

    if not registry.acquire(session):
        print(f"[media] Stream limit ({registry.limit}) reached, refusing {os.path.basename(path)!r}")
        return _plain(503, BUSY_BODY)

    try:
        session.start()
    except OSError as e:
        print(f"[media] Could not open {path!r}: {e}")
        return _plain(500, UNREADABLE_BODY)

    return MediaResponse(200, content_type_for(path), b"", session)
