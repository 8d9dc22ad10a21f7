"""
Reelbox — Folder scanner and stream probe

Both are read-only and never raise for filesystem trouble: an unreadable
folder is reported as ok=False, a missing file as exists=False.
"""

import os
import re
import stat
from typing import NamedTuple

from reelbox.media import is_video_path


class VideoFileRecord(NamedTuple):
    name: str
    path: str

    def to_dict(self, url=""):
        return {"name": self.name, "path": self.path, "url": url}


class ProbeResult(NamedTuple):
    exists: bool
    size: int

    def to_dict(self):
        return {"exists": self.exists, "size": self.size}


def _natural_sort_key(filename):
    parts = re.split(r"(\d+)", str(filename))
    result = []
    for p in parts:
        if p.isdigit():
            result.append((0, int(p), ""))
        else:
            result.append((1, 0, p.lower()))
    return result


def list_videos(path):
    """
    List allow-listed video files directly inside path.

    Returns (records, ok). ok is False, with no records, when the folder
    could not be read at all; a readable folder without videos gives
    ([], True). Records are in natural name order.
    """
    folder = str(path or "").strip()
    if not folder:
        return [], False
    try:
        base = os.path.abspath(folder)
        with os.scandir(base) as it:
            entries = list(it)
    except (OSError, ValueError) as e:
        print(f"[scan] Cannot read {folder!r}: {e}")
        return [], False

    records = []
    for entry in entries:
        if not is_video_path(entry.name):
            continue
        try:
            if not entry.is_file():
                continue
        except OSError:
            continue
        records.append(VideoFileRecord(entry.name, os.path.join(base, entry.name)))

    records.sort(key=lambda r: (_natural_sort_key(r.name), r.name))
    print(f"[scan] {len(records)} video(s) of {len(entries)} entries in {base!r}")
    return records, True


def probe(path) -> ProbeResult:
    """Existence and size of a regular file, from metadata only."""
    fp = str(path or "").strip()
    if not fp:
        return ProbeResult(False, 0)
    try:
        st = os.stat(fp)
    except (OSError, ValueError):
        return ProbeResult(False, 0)
    if not stat.S_ISREG(st.st_mode):
        return ProbeResult(False, 0)
    return ProbeResult(True, st.st_size)
