import pytest

from app.models.submission import SubmissionStatus, WorkflowAction
from app.models.workflow import Actor, ErrorKind, TransitionKind, WorkflowError
from app.services.state_machine import SubmissionStateMachine


@pytest.fixture
def machine(store):
    return SubmissionStateMachine(store)


@pytest.fixture
def actor():
    return Actor(id="editor-1", roles=frozenset({"editor"}), name="Eve Editor")


def _seed(fake_db, status="submitted", **extra):
    return fake_db.seed("submissions", {"author_id": "author-1", "title": "T", "status": status, **extra})


def test_transition_writes_status_and_timeline(fake_db, machine, actor):
    submission = _seed(fake_db)

    updated = machine.transition(
        submission,
        action=WorkflowAction.ASSIGN_EDITOR,
        to_status=SubmissionStatus.INITIAL_REVIEW,
        actor=actor,
        event=TransitionKind.EDITOR_ASSIGNED,
    )

    assert updated["status"] == "initial_review"
    events = fake_db.rows("submission_timeline", submission_id=submission["id"])
    assert len(events) == 1
    assert events[0]["from_status"] == "submitted"
    assert events[0]["to_status"] == "initial_review"
    assert events[0]["description"] == "Status changed from submitted to initial_review"
    assert events[0]["performed_by"] == "editor-1"
    assert events[0]["performed_by_name"] == "Eve Editor"


def test_illegal_transition_raises_invalid_state_without_writes(fake_db, machine, actor):
    submission = _seed(fake_db, status="draft")

    with pytest.raises(WorkflowError) as exc:
        machine.transition(
            submission,
            action=WorkflowAction.PUBLISH,
            to_status=SubmissionStatus.PUBLISHED,
            actor=actor,
            event=TransitionKind.PUBLISHED,
        )

    assert exc.value.kind is ErrorKind.INVALID_STATE
    assert exc.value.details["current_status"] == "draft"
    assert fake_db.rows("submissions")[0]["status"] == "draft"
    assert fake_db.rows("submission_timeline") == []


def test_concurrent_change_is_reported_as_conflict(fake_db, machine, actor):
    submission = _seed(fake_db)

    def _someone_else_wins(db):
        db.rows("submissions")[0]["status"] = "rejected"

    fake_db.fail_next("submissions", "update", before=_someone_else_wins)

    with pytest.raises(WorkflowError) as exc:
        machine.transition(
            submission,
            action=WorkflowAction.ASSIGN_EDITOR,
            to_status=SubmissionStatus.INITIAL_REVIEW,
            actor=actor,
            event=TransitionKind.EDITOR_ASSIGNED,
        )

    assert exc.value.kind is ErrorKind.CONFLICT
    assert exc.value.details["current_status"] == "rejected"
    assert fake_db.rows("submission_timeline") == []


def test_deleted_submission_is_reported_as_not_found(fake_db, machine, actor):
    submission = _seed(fake_db)
    fake_db.tables["submissions"] = []

    with pytest.raises(WorkflowError) as exc:
        machine.transition(
            submission,
            action=WorkflowAction.ASSIGN_EDITOR,
            to_status=SubmissionStatus.INITIAL_REVIEW,
            actor=actor,
            event=TransitionKind.EDITOR_ASSIGNED,
        )

    assert exc.value.kind is ErrorKind.NOT_FOUND


def test_timeline_failure_rolls_back_status_and_extra_fields(fake_db, machine, actor):
    submission = _seed(fake_db, status="under_review", accepted_at=None)
    fake_db.fail_next("submission_timeline", "insert", RuntimeError("timeline down"))

    with pytest.raises(RuntimeError):
        machine.transition(
            submission,
            action=WorkflowAction.MAKE_DECISION,
            to_status=SubmissionStatus.ACCEPTED,
            actor=actor,
            event=TransitionKind.DECISION_MADE,
            extra_updates={"accepted_at": "2026-01-01T00:00:00+00:00"},
        )

    row = fake_db.rows("submissions")[0]
    assert row["status"] == "under_review"
    assert row["accepted_at"] is None


def test_self_loop_keeps_status_and_records_event(fake_db, machine, actor):
    submission = _seed(fake_db, status="under_review")

    machine.transition(
        submission,
        action=WorkflowAction.ASSIGN_REVIEWER,
        to_status=SubmissionStatus.UNDER_REVIEW,
        actor=actor,
        event=TransitionKind.REVIEWER_ASSIGNED,
        description="Reviewer assigned",
    )

    events = fake_db.rows("submission_timeline")
    assert events[0]["from_status"] == events[0]["to_status"] == "under_review"


def test_record_writes_non_status_event(fake_db, machine, actor):
    submission = _seed(fake_db, status="accepted")

    machine.record(submission, event=TransitionKind.DOI_ASSIGNED, actor=actor, description="DOI assigned")

    event = fake_db.rows("submission_timeline")[0]
    assert event["event"] == "doi_assigned"
    assert event["from_status"] == event["to_status"] == "accepted"


def test_rollback_uses_pre_write_values_even_if_caller_dict_is_mutated(fake_db, machine, actor):
    _seed(fake_db, status="under_review", accepted_at=None)
    live_row = fake_db.rows("submissions")[0]
    fake_db.fail_next("submission_timeline", "insert", RuntimeError("timeline down"))

    with pytest.raises(RuntimeError):
        machine.transition(
            live_row,
            action=WorkflowAction.MAKE_DECISION,
            to_status=SubmissionStatus.ACCEPTED,
            actor=actor,
            event=TransitionKind.DECISION_MADE,
            extra_updates={"accepted_at": "2026-01-01T00:00:00+00:00"},
        )

    row = fake_db.rows("submissions")[0]
    assert row["status"] == "under_review"
    assert row["accepted_at"] is None


def test_seeded_rows_are_detached_from_storage(fake_db):
    seeded = _seed(fake_db)
    seeded["status"] = "published"

    assert fake_db.rows("submissions")[0]["status"] == "submitted"
