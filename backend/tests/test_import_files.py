import logging

import pytest
from sqlalchemy.exc import OperationalError

from archive_ingest.core.errors import (
    ConflictingState,
    InvalidTransition,
    NotFound,
    StorageError,
    ValidationError,
)
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.models import Batch, FileStatus
from archive_ingest.services import import_files, work_queue
from archive_ingest.utils.validators import sha256_from_hex, sha256_to_hex

DIGEST = "AB" * 32


def _claim_one(session, owner, policy):
    (record,) = work_queue.claim_next(session, owner.id, 1, policy)
    return record


def test_register_stores_raw_digest_and_reports_lowercase_hex(session, make_import):
    owner = make_import()
    record = import_files.register_file(
        session, import_id=owner.id, path="  /archive/a.pdf ", sha256=DIGEST, size_bytes=10
    )

    assert record.status == FileStatus.PENDING
    assert record.attempt_count == 0
    assert record.path == "/archive/a.pdf"
    assert record.sha256 == bytes.fromhex(DIGEST)
    assert sha256_to_hex(record.sha256) == DIGEST.lower()


def test_register_collects_every_field_error(session, make_import):
    owner = make_import()
    with pytest.raises(ValidationError) as exc_info:
        import_files.register_file(
            session, import_id=owner.id, path="   ", sha256="xyz", size_bytes=-1
        )
    fields = {error["field"] for error in exc_info.value.errors}
    assert fields == {"path", "sha256", "size_bytes"}


def test_register_rejects_unknown_import(session):
    with pytest.raises(NotFound):
        import_files.register_file(
            session,
            import_id="00000000-0000-0000-0000-000000000000",
            path="/a",
            sha256=DIGEST,
        )


def test_register_inherits_batch_and_counts_discovery(session, make_batch, make_import, add_files):
    batch = make_batch(file_count_expected=2)
    owner = make_import(batch)
    (record,) = add_files(owner, 1)

    assert record.batch_id == batch.id
    session.refresh(batch)
    assert batch.file_count_discovered == 1


def test_register_refuses_files_beyond_expected_count(session, make_batch, make_import, add_files):
    batch = make_batch(file_count_expected=1)
    owner = make_import(batch)
    add_files(owner, 1)
    with pytest.raises(ConflictingState):
        add_files(owner, 1, start=1)


def test_lookup_by_hex_is_case_insensitive(session, make_import):
    owner = make_import()
    import_files.register_file(session, import_id=owner.id, path="/a", sha256=DIGEST)

    upper, total_upper = import_files.list_files(session, sha256=DIGEST.upper())
    lower, total_lower = import_files.list_files(session, sha256=DIGEST.lower())
    assert total_upper == total_lower == 1
    assert upper[0].id == lower[0].id


def test_list_files_is_newest_first_and_paginated(session, make_import, add_files):
    owner = make_import()
    records = add_files(owner, 5)

    page, total = import_files.list_files(session, import_id=owner.id, page=1, limit=2)
    assert total == 5
    assert [r.id for r in page] == [records[4].id, records[3].id]


def test_full_happy_path(session, make_import, add_files, policy):
    owner = make_import()
    (record,) = add_files(owner, 1)

    import_files.enqueue_file(session, record.id)
    claimed = _claim_one(session, owner, policy)
    assert claimed.id == record.id
    done = import_files.mark_ingested(session, record.id, policy)

    assert done.status == FileStatus.INGESTED
    assert done.ingested_at is not None


def test_mark_ingested_is_idempotent(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    record = _claim_one(session, owner, policy)
    first = import_files.mark_ingested(session, record.id, policy)
    stamp = first.ingested_at

    again = import_files.mark_ingested(session, record.id, policy)
    assert again.status == FileStatus.INGESTED
    assert again.ingested_at == stamp


def test_illegal_transition_leaves_row_untouched(session, make_import, add_files, policy):
    owner = make_import()
    (record,) = add_files(owner, 1)

    with pytest.raises(InvalidTransition) as exc_info:
        import_files.mark_ingested(session, record.id, policy)
    assert exc_info.value.current == "PENDING"
    assert import_files.get_file(session, record.id).status == FileStatus.PENDING


def test_terminal_file_cannot_be_retried(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    record = _claim_one(session, owner, policy)
    import_files.mark_quarantined(session, record.id, "corrupt TIFF header", policy)

    with pytest.raises(InvalidTransition):
        import_files.retry_file(session, record.id)


def test_failure_counts_attempts_and_retry_keeps_count(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    record = _claim_one(session, owner, policy)

    failed = import_files.mark_failed(session, record.id, "checksum mismatch", policy)
    assert failed.attempt_count == 1
    assert failed.last_error == "checksum mismatch"

    retried = import_files.retry_file(session, record.id)
    assert retried.status == FileStatus.PROCESSING
    assert retried.attempt_count == 1


def test_failure_requires_message(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    record = _claim_one(session, owner, policy)
    with pytest.raises(ValidationError):
        import_files.mark_failed(session, record.id, "   ", policy)
    with pytest.raises(ValidationError):
        import_files.mark_quarantined(session, record.id, "", policy)


def test_long_error_messages_are_clipped(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    record = _claim_one(session, owner, policy)
    failed = import_files.mark_failed(session, record.id, "x" * 20000, policy)
    assert len(failed.last_error) == 10000


def test_retry_refused_after_import_cancelled(session, make_import, add_files, policy):
    from archive_ingest.services import imports

    owner = make_import()
    add_files(owner, 1)
    record = _claim_one(session, owner, policy)
    import_files.mark_failed(session, record.id, "timeout", policy)
    imports.cancel_import(session, owner.id)

    with pytest.raises(ConflictingState):
        import_files.retry_file(session, record.id)


def test_heartbeat_only_for_processing_files(session, make_import, add_files, policy):
    owner = make_import()
    (pending,) = add_files(owner, 1)
    with pytest.raises(InvalidTransition):
        import_files.heartbeat(session, pending.id)

    record = _claim_one(session, owner, policy)
    before = record.updated_at
    assert import_files.heartbeat(session, record.id).updated_at >= before


def test_delete_refused_while_processing(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    record = _claim_one(session, owner, policy)

    with pytest.raises(ConflictingState):
        import_files.delete_file(session, record.id)
    assert import_files.get_file(session, record.id).status == FileStatus.PROCESSING


def test_delete_updates_batch_counters(session, make_batch, make_import, add_files, policy):
    batch = make_batch()
    owner = make_import(batch)
    add_files(owner, 2)
    first = _claim_one(session, owner, policy)
    import_files.mark_ingested(session, first.id, IngestPolicy(rollup_on_transition=False))

    import_files.delete_file(session, first.id)

    with pytest.raises(NotFound):
        import_files.get_file(session, first.id)
    refreshed = session.get(Batch, batch.id, populate_existing=True)
    assert refreshed.file_count_discovered == 1
    assert refreshed.file_count_ingested == 0


def test_resolve_duplicate_within_import(session, make_import, policy):
    owner = make_import()
    for path in ("/a/original.wav", "/b/copy.wav"):
        import_files.register_file(session, import_id=owner.id, path=path, sha256=DIGEST)

    original = _claim_one(session, owner, policy)
    import_files.mark_ingested(session, original.id, policy)
    copy = _claim_one(session, owner, policy)

    found = import_files.resolve_duplicate(session, copy.id, policy)
    assert found.id == original.id
    assert import_files.get_file(session, copy.id).status == FileStatus.SKIPPED_DEDUP


def test_dedup_scope_controls_cross_import_matches(session, make_import):
    first, second = make_import(), make_import()
    scoped = IngestPolicy(dedup_scope="import")
    everywhere = IngestPolicy(dedup_scope="global")

    import_files.register_file(session, import_id=first.id, path="/a", sha256=DIGEST)
    done = _claim_one(session, first, scoped)
    import_files.mark_ingested(session, done.id, scoped)

    import_files.register_file(session, import_id=second.id, path="/b", sha256=DIGEST)
    candidate = _claim_one(session, second, scoped)

    assert import_files.resolve_duplicate(session, candidate.id, scoped) is None
    assert import_files.get_file(session, candidate.id).status == FileStatus.PROCESSING
    assert import_files.resolve_duplicate(session, candidate.id, everywhere).id == done.id


def test_resolve_duplicate_requires_processing(session, make_import, add_files, policy):
    owner = make_import()
    (record,) = add_files(owner, 1)
    with pytest.raises(InvalidTransition):
        import_files.resolve_duplicate(session, record.id, policy)


@pytest.mark.parametrize("value", ["ab" * 32 + "\n", " " + "ab" * 32, "ab" * 31 + "zz"])
def test_digest_must_be_exactly_64_hex_characters(value):
    with pytest.raises(ValidationError):
        sha256_from_hex(value)


def test_update_file_corrects_path_and_size(session, make_import, add_files, policy):
    owner = make_import()
    (record,) = add_files(owner, 1)

    updated = import_files.update_file(session, record.id, path=" /archive/renamed.tif ")
    assert updated.path == "/archive/renamed.tif"
    assert updated.size_bytes == record.size_bytes

    _claim_one(session, owner, policy)
    assert import_files.update_file(session, record.id, size_bytes=4096).size_bytes == 4096


def test_update_file_validates_fields(session, make_import, add_files):
    (record,) = add_files(make_import(), 1)
    with pytest.raises(ValidationError) as excinfo:
        import_files.update_file(session, record.id, path="   ", size_bytes=-1)
    assert {e["field"] for e in excinfo.value.errors} == {"path", "size_bytes"}

    with pytest.raises(ValidationError):
        import_files.update_file(session, record.id)
    with pytest.raises(NotFound):
        import_files.update_file(session, 999_999, size_bytes=1)


def test_update_file_refused_once_terminal(session, make_import, add_files, policy):
    owner = make_import()
    (record,) = add_files(owner, 1)
    _claim_one(session, owner, policy)
    import_files.mark_ingested(session, record.id, policy)

    with pytest.raises(ConflictingState):
        import_files.update_file(session, record.id, size_bytes=1)
    assert import_files.get_file(session, record.id).size_bytes == record.size_bytes


def test_driver_failures_surface_as_opaque_storage_errors(
    session, make_import, add_files, monkeypatch, caplog
):
    (record,) = add_files(make_import(), 1)

    def broken(*args, **kwargs):
        raise OperationalError("UPDATE import_files", {}, Exception("disk I/O error"))

    monkeypatch.setattr(session, "execute", broken)
    with caplog.at_level(logging.ERROR, logger="archive_ingest"):
        with pytest.raises(StorageError) as excinfo:
            import_files.enqueue_file(session, record.id)

    assert str(excinfo.value) == "Storage failure"
    (entry,) = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert entry.name == "archive_ingest.db.guard"
    assert "disk I/O error" in entry.getMessage()
