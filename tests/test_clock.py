from datetime import datetime, timedelta, timezone

from app.core.clock import StorageClock, to_naive_utc, utc_now
from app.exceptions.errors import AttachmentRejected
from app.utils.file_utils import LocalBlobStore, blob_store, get_blob_store


def test_utc_now_is_naive_utc():
    now = utc_now()
    assert now.tzinfo is None
    reference = datetime.now(timezone.utc).replace(tzinfo=None)
    assert abs(reference - now) < timedelta(seconds=5)


def test_to_naive_utc_converts_offsets():
    aware = datetime(2026, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=3)))
    assert to_naive_utc(aware) == datetime(2026, 3, 1, 9, 0)
    assert to_naive_utc(datetime(2026, 3, 1, 9, 0)) == datetime(2026, 3, 1, 9, 0)


async def test_storage_clock_falls_back_to_host_clock_off_postgres(db):
    now = await StorageClock().now(db)
    assert now.tzinfo is None
    assert abs(utc_now() - now) < timedelta(seconds=5)


def test_blob_store_dependency_is_shared():
    assert isinstance(get_blob_store(), LocalBlobStore)
    assert get_blob_store() is blob_store


def test_attachment_rejection_statuses():
    assert AttachmentRejected("too_large").status_code == 413
    assert AttachmentRejected("mime_not_allowed").status_code == 415
    assert AttachmentRejected("already_used").status_code == 422
