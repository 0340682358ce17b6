from app.models.submission import SubmissionStatus
from app.models.decision import EditorialDecision
from app.services.timeline_service import TimelineRecorder

S = SubmissionStatus


def _event(src, dst, event_id=None, event="decision_made"):
    return {"id": event_id, "event": event, "from_status": src, "to_status": dst}


def test_full_lifecycle_timeline_is_legal(services, people, flow, fake_db, issue):
    sid = flow.accepted()
    payment = fake_db.rows("payments", submission_id=sid)[0]
    services.payments.mark_payment_as_paid(payment["id"], people.admin)
    services.publication.publish_submission(sid, people.editor, issue["id"], assign_doi_if_missing=True)

    events = services.submissions.get_timeline(sid, people.author).data

    assert TimelineRecorder.find_illegal_steps(events) == []
    assert TimelineRecorder.status_path(events) == [
        S.DRAFT,
        S.SUBMITTED,
        S.INITIAL_REVIEW,
        S.UNDER_REVIEW,
        S.ACCEPTED,
        S.PAYMENT_PENDING,
        S.ACCEPTED,
        S.PUBLISHED,
    ]


def test_revision_cycle_timeline_is_legal(services, people, flow):
    from app.models.revision import RevisionCreate

    sid = flow.reviewed()
    flow.decide(sid, EditorialDecision.REVISION_REQUIRED)
    services.revisions.create_revision(sid, people.author, RevisionCreate(response_to_reviewers="ok"))

    events = services.submissions.get_timeline(sid, people.author).data

    assert TimelineRecorder.find_illegal_steps(events) == []
    assert TimelineRecorder.status_path(events)[-2:] == [S.REVISION_REQUIRED, S.REVISED]


def test_find_illegal_steps_flags_jumps_and_broken_chain():
    events = [
        _event(None, "draft", "e1", "submission_created"),
        _event("draft", "published", "e2", "published"),
        _event("under_review", "accepted", "e3"),
    ]

    problems = TimelineRecorder.find_illegal_steps(events)

    assert [p.event_id for p in problems] == ["e2", "e3"]


def test_status_path_ignores_self_loops():
    events = [
        _event("submitted", "under_review"),
        _event("under_review", "under_review"),
        _event("under_review", "rejected"),
    ]

    assert TimelineRecorder.status_path(events) == [S.SUBMITTED, S.UNDER_REVIEW, S.REJECTED]


def test_step_must_match_the_action_of_its_event():
    events = [
        _event(None, "draft", "e1", "submission_created"),
        _event("draft", "accepted", "e2", "decision_made"),
    ]

    problems = TimelineRecorder.find_illegal_steps(events)

    assert [(p.event_id, p.event) for p in problems] == [("e2", "decision_made")]


def test_override_edges_only_accepted_on_status_override_events():
    start = [
        _event(None, "draft", "e1", "submission_created"),
        _event("draft", "submitted", "e2", "submission_submitted"),
    ]

    as_override = start + [_event("submitted", "accepted", "e3", "status_override")]
    as_decision = start + [_event("submitted", "accepted", "e3", "decision_made")]
    without_event = start + [_event("submitted", "initial_review", "e3", None)]

    assert TimelineRecorder.find_illegal_steps(as_override) == []
    assert [p.event_id for p in TimelineRecorder.find_illegal_steps(as_decision)] == ["e3"]
    assert [p.event_id for p in TimelineRecorder.find_illegal_steps(without_event)] == ["e3"]


def test_admin_override_timeline_is_legal(services, people, flow):
    sid = flow.submitted()
    result = services.submissions.override_status(sid, people.admin, "under_review", "Reviewers arranged offline")
    assert result.success

    events = services.submissions.get_timeline(sid, people.admin).data

    assert TimelineRecorder.find_illegal_steps(events) == []
    assert events[-1]["event"] == "status_override"
