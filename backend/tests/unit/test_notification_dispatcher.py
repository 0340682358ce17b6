from unittest.mock import MagicMock

import httpx
import pytest

from app.models.workflow import Effect, EffectKind, TransitionKind, email, notify
from app.services.feed_client import FeedClient
from app.services.notification_dispatcher import NotificationDispatcher, render_message
from app.services.notification_service import NotificationService

from conftest import make_config


@pytest.fixture
def email_service():
    svc = MagicMock()
    svc.send_template_email.return_value = True
    return svc


@pytest.fixture
def feeds():
    return MagicMock()


@pytest.fixture
def dispatcher(store, fake_db, people, email_service, feeds):
    return NotificationDispatcher(
        store,
        notifications=NotificationService(fake_db),
        email_service=email_service,
        feed_client=feeds,
        config=make_config(),
    )


def test_render_message_tolerates_missing_context():
    title, body = render_message(TransitionKind.PAYMENT_REQUESTED, {"submission_title": "Vents", "amount": None})
    assert title == "Payment requested"
    assert "Vents" in body
    assert "None" not in body


def test_notify_creates_notification_and_templated_email(dispatcher, fake_db, people, email_service):
    effect = notify(
        TransitionKind.DECISION_MADE,
        "sub-1",
        [people.author.id, None, people.author.id],
        template="decision.html",
        submission_title="Vents",
        decision="accepted",
    )

    summary = dispatcher.dispatch([effect])

    assert summary == {"delivered": 1, "failed": 0}
    rows = fake_db.rows("notifications", user_id=people.author.id)
    assert len(rows) == 1
    assert rows[0]["type"] == "decision_made"
    assert rows[0]["action_url"] == "/dashboard/submissions/sub-1"
    kwargs = email_service.send_template_email.call_args.kwargs
    assert kwargs["to_email"] == "author-1@example.com"
    assert kwargs["template_name"] == "decision.html"
    assert kwargs["context"]["recipient_name"] == "Ada Author"
    assert kwargs["context"]["action_url"] == "http://localhost:3000/dashboard/submissions/sub-1"


def test_notify_without_template_sends_no_email(dispatcher, people, email_service):
    dispatcher.dispatch([notify(TransitionKind.REVIEW_SUBMITTED, "sub-1", [people.editor.id])])
    email_service.send_template_email.assert_not_called()


def test_email_effect_goes_to_addresses(dispatcher, email_service):
    effect = email(
        TransitionKind.PUBLISHED,
        "sub-1",
        ["co@example.com", " ", "co@example.com"],
        template="publication_notification.html",
        submission_title="Vents",
    )

    dispatcher.dispatch([effect])

    email_service.send_template_email.assert_called_once()
    assert email_service.send_template_email.call_args.kwargs["to_email"] == "co@example.com"


def test_failures_are_logged_and_do_not_stop_other_effects(dispatcher, feeds, fake_db, people, caplog):
    feeds.regenerate.side_effect = httpx.ConnectError("feed service down")
    effects = [
        Effect(kind=EffectKind.REGENERATE_FEEDS, event=TransitionKind.PUBLISHED, submission_id="sub-1"),
        notify(TransitionKind.PUBLISHED, "sub-1", [people.author.id], submission_title="Vents"),
    ]

    with caplog.at_level("WARNING", logger="manuscripts.dispatch"):
        summary = dispatcher.dispatch(effects)

    assert summary == {"delivered": 1, "failed": 1}
    assert "failed (ignored)" in caplog.text
    assert len(fake_db.rows("notifications")) == 1


def test_notification_insert_failure_is_swallowed(store, people, email_service, feeds):
    client = MagicMock()
    client.table.return_value.insert.return_value.execute.side_effect = RuntimeError("db down")
    dispatcher = NotificationDispatcher(
        store,
        notifications=NotificationService(client),
        email_service=email_service,
        feed_client=feeds,
        config=make_config(),
    )

    summary = dispatcher.dispatch([notify(TransitionKind.WITHDRAWN, "sub-1", [people.editor.id])])

    assert summary == {"delivered": 1, "failed": 0}


def test_feed_client_skips_without_url():
    assert FeedClient(make_config()).regenerate({"submission_id": "s"}) is False


def test_feed_client_posts_payload(monkeypatch):
    calls = {}

    def fake_post(url, json, timeout):
        calls.update(url=url, json=json, timeout=timeout)
        return httpx.Response(202, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx, "post", fake_post)
    client = FeedClient(make_config(feed_regenerate_url="http://feeds.local/regenerate"), timeout=3)

    assert client.regenerate({"submission_id": "s"}) is True
    assert calls == {"url": "http://feeds.local/regenerate", "json": {"submission_id": "s"}, "timeout": 3}


def test_feed_client_raises_on_http_error(monkeypatch):
    monkeypatch.setattr(
        httpx, "post", lambda url, json, timeout: httpx.Response(500, request=httpx.Request("POST", url))
    )
    client = FeedClient(make_config(feed_regenerate_url="http://feeds.local/regenerate"))

    with pytest.raises(httpx.HTTPStatusError):
        client.regenerate({})
