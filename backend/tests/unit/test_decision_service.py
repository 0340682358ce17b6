import pytest

from app.api.v1.common import WorkflowServices
from app.models.decision import DecisionRequest, EditorialDecision, RevisionDecision
from app.models.revision import RevisionCreate
from app.models.submission import SubmissionStatus
from app.models.workflow import ErrorKind
from app.services.decision_service import decide

from conftest import Flow, make_config


@pytest.fixture
def no_fee_services(store):
    return WorkflowServices.build(store, make_config(apc_required=False))


@pytest.fixture
def no_fee_flow(no_fee_services, people):
    return Flow(no_fee_services, people)


def test_decide_maps_decisions_to_statuses():
    assert decide(EditorialDecision.ACCEPT) is SubmissionStatus.ACCEPTED
    assert decide("reject") is SubmissionStatus.REJECTED
    assert decide(EditorialDecision.REVISION_REQUIRED) is SubmissionStatus.REVISION_REQUIRED


def test_accept_with_completed_review_records_single_transition(no_fee_services, no_fee_flow, people, fake_db):
    sid = no_fee_flow.reviewed()
    before = len(fake_db.rows("submission_timeline", submission_id=sid))

    result = no_fee_services.decisions.make_decision(
        sid, people.editor, DecisionRequest(decision=EditorialDecision.ACCEPT, comments="Well done")
    )

    assert result.success
    submission = result.data["submission"]
    assert submission["status"] == "accepted"
    assert submission["accepted_at"]
    assert result.data["payment"] is None
    new_events = fake_db.rows("submission_timeline", submission_id=sid)[before:]
    assert [(e["from_status"], e["to_status"]) for e in new_events] == [("under_review", "accepted")]
    assert result.effects[0].template == "decision.html"


def test_accept_without_completed_review_is_invalid_state(services, people, flow, fake_db):
    sid = flow.under_review()

    result = services.decisions.make_decision(sid, people.editor, DecisionRequest(decision=EditorialDecision.ACCEPT))

    assert result.error_kind is ErrorKind.INVALID_STATE
    assert fake_db.rows("submissions", id=sid)[0]["status"] == "under_review"


def test_reject_without_completed_review_is_allowed(services, people, flow):
    sid = flow.under_review()

    result = services.decisions.make_decision(sid, people.editor, DecisionRequest(decision=EditorialDecision.REJECT))

    assert result.success
    assert result.data["submission"]["status"] == "rejected"
    assert result.data["submission"]["rejected_at"]


def test_decision_outside_review_is_invalid_state(services, people, flow):
    sid = flow.submitted()
    flow.with_editor(sid)

    result = services.decisions.make_decision(sid, people.editor, DecisionRequest(decision=EditorialDecision.REJECT))

    assert result.error_kind is ErrorKind.INVALID_STATE


def test_decision_by_unassigned_editor_is_forbidden(services, people, flow):
    sid = flow.reviewed()

    result = services.decisions.make_decision(
        sid, people.other_editor, DecisionRequest(decision=EditorialDecision.ACCEPT)
    )

    assert result.error_kind is ErrorKind.FORBIDDEN


def test_concurrent_decisions_only_one_wins(services, people, flow, fake_db):
    sid = flow.reviewed()

    def _reject_lands_first(db):
        row = db.rows("submissions", id=sid)[0]
        row["status"] = "rejected"
        row["decision"] = "reject"

    fake_db.fail_next("submissions", "update", before=_reject_lands_first)

    result = services.decisions.make_decision(sid, people.editor, DecisionRequest(decision=EditorialDecision.ACCEPT))

    assert result.error_kind is ErrorKind.CONFLICT
    row = fake_db.rows("submissions", id=sid)[0]
    assert row["status"] == "rejected"
    assert row["decision"] == "reject"
    assert row.get("accepted_at") is None
    assert fake_db.rows("payments", submission_id=sid) == []


def test_accept_with_fee_creates_payment_obligation(services, people, flow, fake_db):
    sid = flow.reviewed()
    before = len(fake_db.rows("submission_timeline", submission_id=sid))

    result = services.decisions.make_decision(sid, people.editor, DecisionRequest(decision=EditorialDecision.ACCEPT))

    assert result.success
    assert result.data["submission"]["status"] == "payment_pending"
    payment = result.data["payment"]
    assert payment["status"] == "pending"
    assert payment["amount"] == 299.0
    assert payment["currency"] == "INR"
    assert payment["invoice_number"].startswith("INV-")
    templates = [e.template for e in result.effects]
    assert templates == ["decision.html", "payment_request.html"]
    new_events = fake_db.rows("submission_timeline", submission_id=sid)[before:]
    assert [(e["event"], e["from_status"], e["to_status"]) for e in new_events] == [
        ("decision_made", "under_review", "accepted"),
        ("payment_requested", "accepted", "payment_pending"),
    ]


def test_failed_payment_obligation_keeps_decision(services, people, flow, fake_db):
    sid = flow.reviewed()
    fake_db.seed("payments", {"submission_id": sid, "status": "paid", "amount": 299.0, "invoice_number": "INV-old"})

    result = services.decisions.make_decision(sid, people.editor, DecisionRequest(decision=EditorialDecision.ACCEPT))

    assert result.success
    assert result.data["submission"]["status"] == "accepted"
    assert result.data["payment"] is None


def test_revision_required_then_re_review(services, people, flow, fake_db):
    sid = flow.reviewed()
    assert flow.decide(sid, EditorialDecision.REVISION_REQUIRED)["submission"]["status"] == "revision_required"
    assert services.revisions.create_revision(
        sid, people.author, RevisionCreate(response_to_reviewers="Addressed all comments")
    ).success

    result = services.decisions.handle_revision(sid, people.editor, RevisionDecision.SEND_FOR_RE_REVIEW)

    assert result.success
    assert result.data["submission"]["status"] == "under_review"
    assert result.effects == []
    event = fake_db.rows("submission_timeline", submission_id=sid, event="revision_handled")[0]
    assert (event["from_status"], event["to_status"]) == ("revised", "under_review")


def test_handle_revision_requires_revised_status(services, people, flow):
    sid = flow.reviewed()

    result = services.decisions.handle_revision(sid, people.editor, RevisionDecision.ACCEPT_REVISION)

    assert result.error_kind is ErrorKind.INVALID_STATE


def test_decision_from_revised_is_allowed(no_fee_services, no_fee_flow, people):
    sid = no_fee_flow.reviewed()
    no_fee_flow.decide(sid, EditorialDecision.REVISION_REQUIRED)
    assert no_fee_services.revisions.create_revision(
        sid, people.author, RevisionCreate(response_to_reviewers="Done")
    ).success

    result = no_fee_services.decisions.make_decision(
        sid, people.editor, DecisionRequest(decision=EditorialDecision.ACCEPT)
    )

    assert result.data["submission"]["status"] == "accepted"
