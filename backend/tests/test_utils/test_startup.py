"""Tests for startup recovery and the expiry sweep."""
from createtree.schemas.common import JobKind, JobStatus
from createtree.utils.startup import ORPHANED_JOB_MESSAGE, cleanup_orphaned_jobs, purge_expired_jobs


def test_orphaned_jobs_marked_failed(store):
    orphan = store.create(JobKind.MUSIC, {})
    done = store.create(JobKind.IMAGE, {})
    store.update(done.id, status=JobStatus.COMPLETED, result={"image_url": "https://img/x.png"})

    assert cleanup_orphaned_jobs(store) == 1
    recovered = store.read(orphan.id)
    assert recovered.status is JobStatus.FAILED
    assert recovered.error == ORPHANED_JOB_MESSAGE
    assert store.read(done.id).status is JobStatus.COMPLETED


def test_no_orphans(store):
    assert cleanup_orphaned_jobs(store) == 0


def test_purge_disabled_with_zero_retention(store):
    record = store.create(JobKind.MUSIC, {})
    store.update(record.id, status=JobStatus.FAILED, error="boom")
    assert purge_expired_jobs(store, 0) == 0
    assert store.read(record.id) is not None


def test_purge_keeps_recent_jobs(store):
    record = store.create(JobKind.MUSIC, {})
    store.update(record.id, status=JobStatus.COMPLETED)
    assert purge_expired_jobs(store, 7) == 0
