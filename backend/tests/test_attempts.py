import pytest

from archive_ingest.core.errors import ConflictingState, InvalidTransition, NotFound
from archive_ingest.core.policy import IngestPolicy
from archive_ingest.db.models import AttemptStatus
from archive_ingest.services import attempts, import_files, imports, work_queue


def test_attempt_lifecycle(session, make_import, policy):
    owner = make_import()
    attempt = attempts.start_attempt(session, owner.id, policy)
    assert attempt.status == AttemptStatus.PENDING
    assert attempt.ended_at is None
    assert attempts.attempt_duration(attempt) is None

    running = attempts.mark_running(session, attempt.id)
    assert running.status == AttemptStatus.RUNNING

    done = attempts.mark_completed(session, attempt.id)
    assert done.status == AttemptStatus.COMPLETED
    assert done.ended_at >= done.started_at
    assert attempts.attempt_duration(done) is not None


def test_terminal_attempt_does_not_move(session, make_import, policy):
    owner = make_import()
    attempt = attempts.start_attempt(session, owner.id, policy)
    attempts.mark_cancelled(session, attempt.id)

    with pytest.raises(InvalidTransition) as exc_info:
        attempts.mark_running(session, attempt.id)
    assert exc_info.value.current == "CANCELLED"


def test_failed_attempt_keeps_summary(session, make_import, policy):
    owner = make_import()
    attempt = attempts.start_attempt(session, owner.id, policy)
    failed = attempts.mark_failed(session, attempt.id, "disk full on ingest node")
    assert failed.error_summary == "disk full on ingest node"
    assert failed.ended_at is not None


def test_single_active_attempt_per_import(session, make_import, policy):
    owner = make_import()
    first = attempts.start_attempt(session, owner.id, policy)
    with pytest.raises(ConflictingState):
        attempts.start_attempt(session, owner.id, policy)

    attempts.mark_completed(session, first.id)
    assert attempts.start_attempt(session, owner.id, policy).id != first.id


def test_parallel_attempts_allowed_when_policy_relaxed(session, make_import):
    relaxed = IngestPolicy(single_active_attempt=False)
    owner = make_import()
    attempts.start_attempt(session, owner.id, relaxed)
    attempts.start_attempt(session, owner.id, relaxed)

    items, total = attempts.list_attempts(session, import_id=owner.id)
    assert total == 2
    assert all(a.status == AttemptStatus.PENDING for a in items)


def test_attempt_refused_for_cancelled_import(session, make_import, policy):
    owner = make_import()
    imports.cancel_import(session, owner.id)
    with pytest.raises(ConflictingState):
        attempts.start_attempt(session, owner.id, policy)


def test_finish_waits_for_in_flight_files(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    attempt = attempts.start_attempt(session, owner.id, policy)
    with pytest.raises(ConflictingState):
        attempts.finish_attempt(session, attempt.id)


def test_finish_reports_failures(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 2)
    attempt = attempts.start_attempt(session, owner.id, policy)
    attempts.mark_running(session, attempt.id)
    good, bad = work_queue.claim_next(session, owner.id, 2, policy)
    import_files.mark_ingested(session, good.id, policy)
    import_files.mark_failed(session, bad.id, "unreadable", policy)

    finished = attempts.finish_attempt(session, attempt.id)
    assert finished.status == AttemptStatus.FAILED
    assert finished.error_summary == "1 failed of 2 file(s)"


def test_finish_completes_clean_run(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    attempt = attempts.start_attempt(session, owner.id, policy)
    (record,) = work_queue.claim_next(session, owner.id, 1, policy)
    import_files.mark_ingested(session, record.id, policy)

    assert attempts.finish_attempt(session, attempt.id).status == AttemptStatus.COMPLETED


def test_delete_attempt_only_when_finished(session, make_import, policy):
    owner = make_import()
    attempt = attempts.start_attempt(session, owner.id, policy)
    with pytest.raises(ConflictingState):
        attempts.delete_attempt(session, attempt.id)

    attempts.mark_cancelled(session, attempt.id)
    attempts.delete_attempt(session, attempt.id)
    session.expunge_all()
    with pytest.raises(NotFound):
        attempts.get_attempt(session, attempt.id)


def test_delete_import_cascades(session, make_import, add_files, policy):
    owner = make_import()
    records = add_files(owner, 2)
    attempt = attempts.start_attempt(session, owner.id, policy)
    attempts.mark_completed(session, attempt.id)

    imports.delete_import(session, owner.id, policy)
    session.expunge_all()

    with pytest.raises(NotFound):
        imports.get_import(session, owner.id)
    with pytest.raises(NotFound):
        import_files.get_file(session, records[0].id)
    with pytest.raises(NotFound):
        attempts.get_attempt(session, attempt.id)


def test_delete_import_refused_while_running(session, make_import, add_files, policy):
    owner = make_import()
    add_files(owner, 1)
    attempts.start_attempt(session, owner.id, policy)
    with pytest.raises(ConflictingState):
        imports.delete_import(session, owner.id, policy)
