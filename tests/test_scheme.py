import os

import pytest
import shiboken6
from PySide6.QtCore import QByteArray, QObject, QUrl

scheme = pytest.importorskip("reelbox.scheme", exc_type=ImportError)

from reelbox.media import MediaLibrary  # noqa: E402
from reelbox.stream import ABORTED, COMPLETED, StreamRegistry  # noqa: E402

_Error = scheme.QWebEngineUrlRequestJob.Error


class FakeJob(QObject):
    """Just enough of QWebEngineUrlRequestJob for requestStarted()."""

    def __init__(self, url, method=b"GET"):
        super().__init__()
        self._url = QUrl(url)
        self._method = QByteArray(method)
        self.failed = []
        self.replied = None

    def requestUrl(self):
        return self._url

    def requestMethod(self):
        return self._method

    def fail(self, error):
        self.failed.append(error)

    def reply(self, content_type, device):
        self.replied = (content_type, device)


@pytest.fixture
def setup(qapp, video_dir):
    library = MediaLibrary(str(video_dir))
    registry = StreamRegistry(2)
    handler = scheme.MediaSchemeHandler(library, registry, chunk_size=32)
    return handler, library, registry


def test_valid_request_replies_with_stream(setup, video_dir):
    handler, library, registry = setup
    target = video_dir / "clip.webm"
    job = FakeJob(library.reference_for(str(target)))

    handler.requestStarted(job)

    assert job.failed == []
    content_type, device = job.replied
    assert content_type == b"video/webm"
    assert registry.active == 1

    out = bytearray()
    while True:
        chunk = bytes(device.read(16))
        if not chunk:
            break
        out += chunk
    assert bytes(out) == target.read_bytes()
    assert device.session.state == COMPLETED
    assert registry.active == 0


def test_mid_stream_failure_fails_the_job(setup, video_dir):
    handler, library, registry = setup
    target = video_dir / "Episode 10.mkv"
    job = FakeJob(library.reference_for(str(target)))
    handler.requestStarted(job)
    content_type, device = job.replied
    assert job.failed == []

    # Shrinks after validation: the stream must end in an error, not EOF
    os.truncate(target, 20)
    got = bytearray()
    while True:
        chunk = bytes(device.read(16))
        if not chunk:
            break
        got += chunk

    assert len(got) == 20
    assert job.failed == [_Error.RequestFailed]
    assert device.session.state == ABORTED
    assert "truncated" in device.errorString()
    assert registry.active == 0


def test_missing_file_fails_not_found(setup):
    handler, library, registry = setup
    job = FakeJob(f"media://{library.install_root_id}/missing.mp4")
    handler.requestStarted(job)
    assert job.failed == [_Error.UrlNotFound]
    assert job.replied is None
    assert registry.active == 0


def test_non_get_is_denied(setup, video_dir):
    handler, library, _ = setup
    job = FakeJob(library.reference_for(str(video_dir / "clip.webm")), method=b"POST")
    handler.requestStarted(job)
    assert job.failed == [_Error.RequestDenied]


def test_stream_limit_is_denied(setup, video_dir):
    handler, library, registry = setup
    url = library.reference_for(str(video_dir / "clip.webm"))
    jobs = [FakeJob(url) for _ in range(3)]
    for job in jobs:
        handler.requestStarted(job)
    assert [bool(j.replied) for j in jobs] == [True, True, False]
    assert jobs[2].failed == [_Error.RequestDenied]
    for job in jobs[:2]:
        job.replied[1].cancel()
    assert registry.active == 0


def test_destroying_job_releases_handle(setup, video_dir):
    handler, library, registry = setup
    job = FakeJob(library.reference_for(str(video_dir / "Episode 10.mkv")))
    handler.requestStarted(job)
    session = job.replied[1].session
    assert registry.active == 1

    shiboken6.delete(job)

    assert session.state == ABORTED
    assert registry.active == 0
