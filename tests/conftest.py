import pytest
from PySide6.QtCore import QCoreApplication


@pytest.fixture(scope="session")
def qapp():
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication(["reelbox-tests"])
    return app


@pytest.fixture
def video_dir(tmp_path):
    """Folder with three listable videos and a few non-matching entries."""
    folder = tmp_path / "videos"
    folder.mkdir()
    (folder / "Episode 10.mkv").write_bytes(b"\x1aE\xdf\xa3" + b"k" * 300)
    (folder / "Episode 2.MP4").write_bytes(b"\x00\x00\x00\x18ftyp" + b"m" * 200)
    (folder / "clip.webm").write_bytes(b"\x1aE\xdf\xa3" + b"w" * 50)
    (folder / "notes.txt").write_text("not a video")
    (folder / "poster.jpg").write_bytes(b"\xff\xd8\xff")
    (folder / "archive.mp4.bak").write_bytes(b"old")
    (folder / "nested.mp4").mkdir()
    return folder

