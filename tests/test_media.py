import os

import pytest

from reelbox.media import (
    NOT_FOUND_BODY,
    VIDEO_CONTENT_TYPES,
    VIDEO_EXTENSIONS,
    MediaLibrary,
    content_type_for,
    is_path_within,
    is_video_path,
    open_media,
    root_id_for,
)
from reelbox.stream import ABORTED, COMPLETED, STREAMING, StreamRegistry


@pytest.fixture
def library(video_dir):
    return MediaLibrary(str(video_dir))


@pytest.fixture
def registry():
    return StreamRegistry(4)


def _ref(library, path):
    ref = library.reference_for(str(path))
    assert ref.startswith("media://")
    return ref


def test_listing_and_serving_share_one_allow_list():
    assert VIDEO_EXTENSIONS == frozenset(VIDEO_CONTENT_TYPES)
    assert is_video_path("A.MKV")
    assert not is_video_path("a.txt")
    assert not is_video_path("")


def test_content_type_follows_extension():
    assert content_type_for("x.mp4") == "video/mp4"
    assert content_type_for("x.MKV") == "video/x-matroska"
    assert content_type_for("x.webm") == "video/webm"
    assert content_type_for("x.txt") == ""


def test_reference_hides_absolute_path(library, video_dir):
    ref = _ref(library, video_dir / "Episode 2.MP4")
    assert str(video_dir) not in ref
    assert ref.endswith("/Episode%202.MP4")


def test_reference_resolves_back(library, video_dir):
    target = video_dir / "Episode 10.mkv"
    assert library.resolve(_ref(library, target)) == os.path.realpath(target)


def test_reference_outside_roots_is_empty(library, tmp_path):
    other = tmp_path / "elsewhere.mp4"
    other.write_bytes(b"x")
    assert library.reference_for(str(other)) == ""


@pytest.mark.parametrize("suffix", ["/../secret.mp4", "/%2E%2E/secret.mp4", "/", ""])
def test_resolve_rejects_escapes_and_empty_paths(library, video_dir, suffix):
    (video_dir.parent / "secret.mp4").write_bytes(b"x")
    rid = library.install_root_id
    assert library.resolve(f"media://{rid}{suffix}") is None


def test_resolve_rejects_symlink_escape(library, video_dir, tmp_path):
    outside = tmp_path / "outside.mp4"
    outside.write_bytes(b"x")
    link = video_dir / "link.mp4"
    try:
        link.symlink_to(outside)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks unavailable")
    assert library.resolve(f"media://{library.install_root_id}/link.mp4") is None


@pytest.mark.parametrize("ref", [
    "media://0000000000000000/clip.webm",
    "file:///etc/passwd",
    "clip.webm",
    None,
])
def test_resolve_rejects_unknown_root_or_scheme(library, ref):
    assert library.resolve(ref) is None


def test_innermost_root_wins(video_dir):
    lib = MediaLibrary(str(video_dir.parent))
    inner = lib.add_root(str(video_dir))
    ref = lib.reference_for(str(video_dir / "clip.webm"))
    assert ref == f"media://{inner}/clip.webm"


def test_serves_exact_bytes_with_matching_type(library, registry, video_dir):
    target = video_dir / "Episode 10.mkv"
    response = open_media(_ref(library, target), library, registry, chunk_size=64)

    assert response.status == 200
    assert response.content_type == "video/x-matroska"
    assert response.body == b""
    session = response.session
    assert session.state == STREAMING

    data = b"".join(session.iter_chunks())
    assert data == target.read_bytes()
    assert session.sent == target.stat().st_size
    assert session.state == COMPLETED
    assert registry.active == 0


@pytest.mark.parametrize("name", ["notes.txt", "missing.mp4", "nested.mp4"])
def test_invalid_targets_are_not_found(library, registry, name):
    rid = library.install_root_id
    response = open_media(f"media://{rid}/{name}", library, registry, chunk_size=64)
    assert response.status == 404
    assert response.content_type == "text/plain"
    assert response.body == NOT_FOUND_BODY
    assert response.session is None
    assert registry.active == 0


def test_stream_limit_rejects_extra_requests(library, video_dir):
    registry = StreamRegistry(1)
    ref = _ref(library, video_dir / "clip.webm")

    first = open_media(ref, library, registry, chunk_size=64)
    assert first.status == 200
    second = open_media(ref, library, registry, chunk_size=64)
    assert second.status == 503
    assert second.session is None

    first.session.cancel()
    assert first.session.state == ABORTED
    third = open_media(ref, library, registry, chunk_size=64)
    assert third.status == 200
    third.session.cancel()


def test_open_failure_releases_slot(library, registry, video_dir, monkeypatch):
    ref = _ref(library, video_dir / "clip.webm")

    def refuse(*_args, **_kwargs):
        raise PermissionError("denied")

    monkeypatch.setattr("builtins.open", refuse)
    response = open_media(ref, library, registry, chunk_size=64)
    monkeypatch.undo()

    assert response.status == 500
    assert response.session is None
    assert registry.active == 0


def test_is_path_within():
    assert is_path_within("/a/b", "/a/b/c.mp4")
    assert is_path_within("/a/b", "/a/b")
    assert not is_path_within("/a/b", "/a/bc/d.mp4")
    assert not is_path_within("/a/b", "/a/b/../c.mp4")


def test_empty_file_is_served_as_completed(library, registry, video_dir):
    empty = video_dir / "empty.mp4"
    empty.write_bytes(b"")
    response = open_media(_ref(library, empty), library, registry, chunk_size=64)

    assert response.status == 200
    assert response.session.state == COMPLETED
    assert response.session.read() == b""
    assert registry.active == 0


@pytest.mark.skipif(os.name != "posix", reason="POSIX filenames are raw bytes")
def test_undecodable_name_round_trips(library, video_dir):
    raw = os.path.join(os.fsencode(str(video_dir)), b"bad\xff.mp4")
    try:
        with open(raw, "wb") as f:
            f.write(b"\x00" * 10)
    except OSError:
        pytest.skip("filesystem rejects non-UTF-8 names")
    path = os.fsdecode(raw)

    ref = library.reference_for(path)
    assert ref.endswith("/bad%FF.mp4")
    assert library.resolve(ref) == os.path.realpath(path)


@pytest.mark.skipif(os.name != "posix", reason="POSIX filenames are raw bytes")
def test_root_id_accepts_undecodable_folder():
    assert len(root_id_for(os.fsdecode(b"/srv/bad\xff"))) == 16
