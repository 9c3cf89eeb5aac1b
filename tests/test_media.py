import threading

import pytest

from classifieds.errors import AuthorizationError, NotFoundError, QuotaExceededError, StorageError, ValidationError
from classifieds.services.media import MediaAttachmentCoordinator, UploadBatch, UploadedFile, storage_key
from classifieds.storage.blob_store import InMemoryBlobStore
from conftest import BASE_TIME, OTHER_USER_ID, OWNER_ID, FixedClock, FlakyBlobStore


class LockstepBlobStore(InMemoryBlobStore):
    """Holds every upload until all parallel batches are uploading"""

    def __init__(self, parties):
        super().__init__("/media")
        self.barrier = threading.Barrier(parties, timeout=10)

    def upload(self, key, data, content_type=None):
        self.barrier.wait()
        return super().upload(key, data, content_type)


def photo(name, content=None):
    return UploadedFile(filename=name, content=content or name.encode(), content_type="image/jpeg")


def stored_images(gateway, listing_id):
    return gateway.query("listing_images", {"listing_id": listing_id}, order=["sort_order"])


def test_storage_key_layout():
    key = storage_key("owner-1", "abc123", 1700000000000, "a1b2c3d4", 2, "Photo.JPG")
    assert key == "owner-1/abc123/1700000000000-a1b2c3d4-2.jpg"


def test_storage_key_sanitizes_segments():
    key = storage_key("../evil", "abc", 1, "t/../x", 0, "x.p/ng")
    assert ".." not in key
    assert key.count("/") == 2


def test_upload_batch_collects_outcomes():
    batch = UploadBatch()

    def fail():
        raise StorageError("disk full")

    batch.attempt(0, "a.jpg", "k/a", lambda: "/media/k/a")
    batch.attempt(1, "b.jpg", "k/b", fail)

    assert [o.index for o in batch.successes] == [0]
    assert [o.index for o in batch.failures] == [1]
    assert batch.failures[0].error == "disk full"


def test_attach_images(gateway, blob_store, make_listing):
    listing = make_listing(gateway)
    media = MediaAttachmentCoordinator(gateway, blob_store, clock=FixedClock())

    report = media.attach_images(listing["id"], OWNER_ID, [photo("a.jpg"), photo("b.png")])

    assert [img.sort_order for img in report.attached] == [0, 1]
    assert report.failed == []
    assert report.warning is None
    stamp = int(BASE_TIME.timestamp() * 1000)
    first, second = blob_store.keys()
    assert first.startswith(f"owner-1/{listing['id']}/{stamp}-")
    assert first.endswith("-0.jpg")
    assert second.endswith("-1.png")
    # one token per batch
    assert first.rsplit("-", 1)[0] == second.rsplit("-", 1)[0]
    assert report.attached[0].image_url == f"/media/{first}"


def test_batches_in_the_same_millisecond_get_distinct_keys(gateway, blob_store, make_listing):
    listing = make_listing(gateway)
    media = MediaAttachmentCoordinator(gateway, blob_store, clock=lambda: BASE_TIME)

    media.attach_images(listing["id"], OWNER_ID, [photo("a.jpg", b"AAA")])
    media.attach_images(listing["id"], OWNER_ID, [photo("b.jpg", b"BBB")])

    rows = stored_images(gateway, listing["id"])
    assert [r["sort_order"] for r in rows] == [0, 1]
    assert rows[0]["storage_key"] != rows[1]["storage_key"]
    assert [blob_store.read(r["storage_key"]) for r in rows] == [b"AAA", b"BBB"]

def test_partial_failure_keeps_successful_files(gateway, make_listing):
    listing = make_listing(gateway)
    store = FlakyBlobStore(fail_on={b"broken"})
    media = MediaAttachmentCoordinator(gateway, store)

    report = media.attach_images(
        listing["id"], OWNER_ID, [photo("1.jpg"), photo("2.jpg", b"broken"), photo("3.jpg")]
    )

    assert store.upload_calls == 3
    assert [f.index for f in report.failed] == [1]
    assert report.failed[0].filename == "2.jpg"
    assert report.warning == "1 of 3 images could not be uploaded"
    # original index is kept, so the gap marks the missing file
    assert [r["sort_order"] for r in stored_images(gateway, listing["id"])] == [0, 2]
    assert gateway.get("listings", listing["id"])["status"] == "pending"


def test_all_uploads_failing_keeps_listing_without_images(gateway, make_listing):
    listing = make_listing(gateway)
    store = FlakyBlobStore(fail_on={b"x", b"y"})
    media = MediaAttachmentCoordinator(gateway, store)

    report = media.attach_images(listing["id"], OWNER_ID, [photo("1.jpg", b"x"), photo("2.jpg", b"y")])

    assert report.attached == []
    assert len(report.failed) == 2
    assert report.warning
    assert stored_images(gateway, listing["id"]) == []
    assert gateway.get("listings", listing["id"])["id"] == listing["id"]


def test_second_batch_is_appended(gateway, blob_store, make_listing):
    listing = make_listing(gateway)
    media = MediaAttachmentCoordinator(gateway, blob_store, clock=FixedClock())

    media.attach_images(listing["id"], OWNER_ID, [photo("1.jpg"), photo("2.jpg")])
    report = media.attach_images(listing["id"], OWNER_ID, [photo("3.jpg"), photo("4.jpg")])

    assert [img.sort_order for img in report.attached] == [2, 3]
    assert [r["sort_order"] for r in stored_images(gateway, listing["id"])] == [0, 1, 2, 3]
    assert len(blob_store.keys()) == 4


def test_quota_is_checked_before_uploading(gateway, make_listing):
    listing = make_listing(gateway)
    store = FlakyBlobStore()
    media = MediaAttachmentCoordinator(gateway, store, max_images=3)
    media.attach_images(listing["id"], OWNER_ID, [photo("1.jpg"), photo("2.jpg")])

    with pytest.raises(QuotaExceededError):
        media.attach_images(listing["id"], OWNER_ID, [photo("3.jpg"), photo("4.jpg")])

    assert store.upload_calls == 2
    assert len(stored_images(gateway, listing["id"])) == 2


def test_only_owner_can_attach(gateway, blob_store, make_listing):
    listing = make_listing(gateway)
    media = MediaAttachmentCoordinator(gateway, blob_store)

    with pytest.raises(AuthorizationError):
        media.attach_images(listing["id"], OTHER_USER_ID, [photo("1.jpg")])
    with pytest.raises(AuthorizationError):
        media.attach_images(listing["id"], None, [photo("1.jpg")])
    assert blob_store.keys() == []


def test_unknown_listing_and_empty_batch(gateway, blob_store, make_listing):
    media = MediaAttachmentCoordinator(gateway, blob_store)
    with pytest.raises(NotFoundError):
        media.attach_images("missing", OWNER_ID, [photo("1.jpg")])

    listing = make_listing(gateway)
    with pytest.raises(ValidationError) as exc:
        media.attach_images(listing["id"], OWNER_ID, [])
    assert exc.value.field == "files"


def test_row_insert_failure_discards_uploaded_blobs(gateway, blob_store, make_listing, monkeypatch):
    listing = make_listing(gateway)
    media = MediaAttachmentCoordinator(gateway, blob_store)

    def broken_insert(*args, **kwargs):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(gateway, "insert_children", broken_insert)

    with pytest.raises(RuntimeError):
        media.attach_images(listing["id"], OWNER_ID, [photo("1.jpg"), photo("2.jpg")])
    assert blob_store.keys() == []


def test_concurrent_batches_cannot_exceed_quota(any_gateway, make_listing):
    listing = make_listing(any_gateway)
    store = LockstepBlobStore(parties=4)
    media = MediaAttachmentCoordinator(any_gateway, store, max_images=8)
    outcomes = []

    def attach(n):
        files = [photo(f"{n}-{i}.jpg") for i in range(3)]
        try:
            media.attach_images(listing["id"], OWNER_ID, files)
        except QuotaExceededError:
            outcomes.append("quota")
        else:
            outcomes.append("ok")

    # all four batches pass the early count check before any row is written
    threads = [threading.Thread(target=attach, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["ok", "ok", "quota", "quota"]
    rows = stored_images(any_gateway, listing["id"])
    assert len(rows) == 6
    # blobs of the refused batches are discarded
    assert sorted(store.keys()) == sorted(r["storage_key"] for r in rows)
