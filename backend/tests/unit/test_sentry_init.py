from app.core.sentry_init import _before_send, init_sentry


def test_before_send_filters_request_body_and_sensitive_headers():
    event = {
        "request": {
            "headers": {
                "Authorization": "Bearer secret",
                "Cookie": "a=b",
                "X-Request-Id": "r-1",
            },
            "data": {"confidential_comments": "reject quietly"},
            "cookies": {"a": "b"},
            "body": "raw-body",
        },
        "extra": {"password": "cleartext"},
    }

    out = _before_send(event, {})
    assert out is not None

    request = out["request"]
    assert request["data"] == "[Filtered]"
    assert request["body"] == "[Filtered]"
    assert request["cookies"] == "[Filtered]"
    assert "Authorization" not in request["headers"]
    assert "Cookie" not in request["headers"]
    assert request["headers"]["X-Request-Id"] == "r-1"
    assert out["extra"]["password"] == "[Filtered]"


def test_before_send_scrubs_confidential_review_fields_recursively():
    event = {
        "extra": {
            "review": {
                "author_comments": "Nice work",
                "confidential_comments": "Looks plagiarised",
            },
            "payments": [{"transaction_reference": "txn-1", "amount": 299.0}],
        },
        "contexts": {"decision": {"decision_confidential_comments": "keep away from author"}},
    }

    out = _before_send(event, {})

    assert out["extra"]["review"]["author_comments"] == "Nice work"
    assert out["extra"]["review"]["confidential_comments"] == "[Filtered]"
    assert out["extra"]["payments"][0]["transaction_reference"] == "[Filtered]"
    assert out["extra"]["payments"][0]["amount"] == 299.0
    assert out["contexts"]["decision"]["decision_confidential_comments"] == "[Filtered]"


def test_init_sentry_disabled_without_dsn(monkeypatch):
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    monkeypatch.delenv("SENTRY_ENABLED", raising=False)
    assert init_sentry() is False


def test_init_sentry_disabled_by_flag(monkeypatch):
    monkeypatch.setenv("SENTRY_DSN", "https://key@o0.ingest.sentry.io/0")
    monkeypatch.setenv("SENTRY_ENABLED", "false")
    assert init_sentry() is False
