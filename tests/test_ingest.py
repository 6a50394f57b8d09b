import io
import os

import pytest

import metadata_store
from groups import find_group
from ingest import classify_link, derive_order, extract_order, ingest, ingest_link
from items import SENTINEL_ORDER, ExternalLink, StoredFile, ValidationError
from media import list_media_files


@pytest.mark.parametrize("name,expected", [
    ("photo_2.jpg", 1),
    ("1.png", 0),
    ("image12.webp", 11),
    ("3_image.gif", 2),
    ("holiday.jpg", None),
    ("0.jpg", None),
    ("10000.jpg", None),
    ("IMG_2023_0001.jpg", 2022),
    ("clip7.mp4", 6),
    ("photo_\u0663.jpg", None),
])
def test_extract_order(name, expected):
    assert extract_order(name) == expected


def test_extension_digits_are_ignored():
    assert extract_order("video.mp4") is None


def test_derive_order_falls_back_to_group_max():
    items = {
        "a.jpg": StoredFile(id="a.jpg", group_id="g", order=0),
        "b.jpg": StoredFile(id="b.jpg", group_id="g", order=4),
        "c.jpg": StoredFile(id="c.jpg", group_id="other", order=50),
    }
    assert derive_order(items, "cover.jpg", "g") == 5
    assert derive_order(items, "cover.jpg", "new-group") == 0
    assert derive_order(items, "cover.jpg", None) == SENTINEL_ORDER
    assert derive_order(items, "photo_3.jpg", "g") == 2


@pytest.mark.parametrize("url,kind,embed", [
    ("https://youtu.be/abc123", "youtube", "https://www.youtube.com/embed/abc123"),
    ("https://youtu.be/abc123?t=10", "youtube", "https://www.youtube.com/embed/abc123"),
    ("https://www.youtube.com/watch?v=XyZ_9&list=PL1", "youtube", "https://www.youtube.com/embed/XyZ_9"),
    ("https://drive.google.com/file/d/F1le-Id/view?usp=sharing", "googledrive",
     "https://drive.google.com/file/d/F1le-Id/preview"),
    ("https://example.com/clip.mp4", "unknown", "https://example.com/clip.mp4"),
])
def test_classify_link(url, kind, embed):
    video_type, embed_url, _ = classify_link(url)
    assert video_type == kind
    assert embed_url == embed


def _upload(context, name, data=b"x" * 64, mimetype="image/jpeg", **kwargs):
    return ingest(context, io.BytesIO(data), name, mimetype, **kwargs)


def test_upload_creates_one_file_and_one_record(context):
    item = _upload(context, "holiday.jpg", category="trips", description="Lake")

    assert list_media_files(context.uploads_dir) == [item.id]
    items = metadata_store.load(context)
    assert list(items) == [item.id]
    record = items[item.id]
    assert (record.category, record.description, record.type) == ("trips", "Lake", "image")
    assert item.id.endswith(".jpg")
    assert item.order == SENTINEL_ORDER


def test_upload_ids_are_unique(context):
    ids = {_upload(context, "a.png", mimetype="image/png").id for _ in range(20)}
    assert len(ids) == 20


def test_grouped_uploads_order_by_filename(context):
    second = _upload(context, "photo_2.jpg", data=b"2" * 2048, group_id="group-1")
    first = _upload(context, "photo_1.jpg", group_id="group-1")

    assert second.order == 1
    assert second.type == "image"
    assert first.order == 0

    group = find_group(metadata_store.load(context), list_media_files(context.uploads_dir), "group-1")
    assert [m.id for m in group.members] == [first.id, second.id]


def test_video_type_comes_from_mimetype(context):
    item = _upload(context, "clip.mp4", mimetype="video/mp4")
    assert item.type == "video"


@pytest.mark.parametrize("name,mimetype", [
    ("notes.txt", "text/plain"),
    ("photo.jpg", "application/octet-stream"),
    ("script.exe", "image/jpeg"),
])
def test_rejects_disallowed_types_without_writing(context, name, mimetype):
    with pytest.raises(ValidationError):
        _upload(context, name, mimetype=mimetype)
    assert os.listdir(context.uploads_dir) == []
    assert metadata_store.load(context) == {}


def test_rejects_oversized_upload(tmp_path):
    from storage_context import StorageContext

    small = StorageContext.from_root(tmp_path / "small", max_upload_bytes=10)
    small.ensure_directories()
    with pytest.raises(ValidationError):
        _upload(small, "big.jpg", data=b"y" * 11)
    assert os.listdir(small.uploads_dir) == []
    assert metadata_store.load(small) == {}


def test_failed_metadata_save_removes_stored_bytes(context, monkeypatch):
    from items import StorageError

    monkeypatch.setattr(metadata_store, "save", lambda ctx, items: False)
    with pytest.raises(StorageError):
        _upload(context, "a.jpg")
    assert list_media_files(context.uploads_dir) == []


def test_youtube_link_without_group(context):
    link = ingest_link(context, "https://youtu.be/abc123")

    assert isinstance(link, ExternalLink)
    assert link.video_type == "youtube"
    assert link.embed_url == "https://www.youtube.com/embed/abc123"
    assert link.order == 999
    assert link.id.startswith("link-")
    assert link.type == "video"
    assert metadata_store.load(context)[link.id] == link


def test_unknown_link_uses_last_path_segment_for_order(context):
    link = ingest_link(context, "https://example.com/videos/part_3.mp4")
    assert link.video_type == "unknown"
    assert link.embed_url == "https://example.com/videos/part_3.mp4"
    assert link.order == 2


def test_link_joins_group_after_existing_members(context):
    _upload(context, "photo_2.jpg", group_id="group-1")
    link = ingest_link(context, "https://youtu.be/abc123", group_id="group-1")
    assert link.order == 2


def test_link_requires_url(context):
    with pytest.raises(ValidationError):
        ingest_link(context, "   ")
    assert metadata_store.load(context) == {}


class _FailingStream:
    """Hands out one chunk, then breaks like a dropped client connection."""

    def __init__(self):
        self.calls = 0

    def read(self, size=-1):
        self.calls += 1
        if self.calls == 1:
            return b"0123456789"
        raise RuntimeError("connection reset")


def test_stream_failure_leaves_no_partial_file(context):
    with pytest.raises(RuntimeError):
        ingest(context, _FailingStream(), "a.jpg", "image/jpeg")
    assert os.listdir(context.uploads_dir) == []
    assert metadata_store.load(context) == {}
