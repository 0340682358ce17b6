import pytest

from app.models.submission import (
    CLOSED_STATUSES,
    TRANSITIONS,
    SubmissionStatus,
    WorkflowAction,
    allowed_targets,
    is_transition_allowed,
    normalize_status,
)

S = SubmissionStatus


def test_normalize_status_accepts_common_spellings():
    assert normalize_status("Under Review") is S.UNDER_REVIEW
    assert normalize_status("payment-pending") is S.PAYMENT_PENDING
    assert normalize_status(S.DRAFT) is S.DRAFT
    assert normalize_status("") is None
    assert normalize_status(None) is None
    assert normalize_status("pending_quality") is None


@pytest.mark.parametrize(
    "action,current,target",
    [
        (WorkflowAction.SUBMIT, S.DRAFT, S.SUBMITTED),
        (WorkflowAction.SUBMIT, S.RETURNED_FOR_FORMATTING, S.SUBMITTED),
        (WorkflowAction.ASSIGN_EDITOR, S.SUBMITTED, S.INITIAL_REVIEW),
        (WorkflowAction.INITIAL_SCREENING, S.INITIAL_REVIEW, S.RETURNED_FOR_FORMATTING),
        (WorkflowAction.ASSIGN_REVIEWER, S.INITIAL_REVIEW, S.UNDER_REVIEW),
        (WorkflowAction.MAKE_DECISION, S.REVISED, S.REVISION_REQUIRED),
        (WorkflowAction.CREATE_REVISION, S.REVISION_REQUIRED, S.REVISED),
        (WorkflowAction.CREATE_REVISION, S.REVISED, S.REVISED),
        (WorkflowAction.HANDLE_REVISION, S.REVISED, S.UNDER_REVIEW),
        (WorkflowAction.REQUEST_PAYMENT, S.ACCEPTED, S.PAYMENT_PENDING),
        (WorkflowAction.CONFIRM_PAYMENT, S.PAYMENT_PENDING, S.ACCEPTED),
        (WorkflowAction.PUBLISH, S.ACCEPTED, S.PUBLISHED),
        (WorkflowAction.WITHDRAW, S.UNDER_REVIEW, S.WITHDRAWN),
    ],
)
def test_allowed_transitions(action, current, target):
    assert is_transition_allowed(action, current, target)


@pytest.mark.parametrize(
    "action,current,target",
    [
        (WorkflowAction.SUBMIT, S.SUBMITTED, S.SUBMITTED),
        (WorkflowAction.MAKE_DECISION, S.SUBMITTED, S.ACCEPTED),
        (WorkflowAction.MAKE_DECISION, S.REVISION_REQUIRED, S.ACCEPTED),
        (WorkflowAction.PUBLISH, S.PAYMENT_PENDING, S.PUBLISHED),
        (WorkflowAction.PUBLISH, S.UNDER_REVIEW, S.PUBLISHED),
        (WorkflowAction.WITHDRAW, S.PUBLISHED, S.WITHDRAWN),
        (WorkflowAction.WITHDRAW, S.WITHDRAWN, S.WITHDRAWN),
        (WorkflowAction.ADMIN_OVERRIDE, S.ACCEPTED, S.PUBLISHED),
        (WorkflowAction.ADMIN_OVERRIDE, S.PUBLISHED, S.ACCEPTED),
    ],
)
def test_rejected_transitions(action, current, target):
    assert not is_transition_allowed(action, current, target)


def test_published_and_withdrawn_are_terminal():
    for action, table in TRANSITIONS.items():
        assert S.PUBLISHED not in table, action
        assert S.WITHDRAWN not in table, action


def test_only_publish_reaches_published():
    reaching = [
        action for action, table in TRANSITIONS.items() if any(S.PUBLISHED in targets for targets in table.values())
    ]
    assert reaching == [WorkflowAction.PUBLISH]


def test_rejected_can_only_be_left_by_override_or_withdraw():
    actions = {action for action, table in TRANSITIONS.items() if S.REJECTED in table}
    assert actions == {WorkflowAction.ADMIN_OVERRIDE, WorkflowAction.WITHDRAW}
    assert S.REJECTED in CLOSED_STATUSES


def test_admin_override_never_targets_current_status():
    for current in S:
        assert current not in allowed_targets(WorkflowAction.ADMIN_OVERRIDE, current)


def test_unknown_status_has_no_targets():
    assert allowed_targets(WorkflowAction.SUBMIT, "archived") == frozenset()
