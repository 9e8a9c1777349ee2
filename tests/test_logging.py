from correlauth.logging import _redact_credentials, get_request_id, set_request_id
from correlauth.service.tokens import SharedSecret, TokenCodec


def redact(**event):
    return _redact_credentials(None, "info", dict(event))


def test_sensitive_keys_are_masked():
    event = redact(jwt_secret="super-secret-value", authorization="Bearer abc.def.ghi")

    assert event["jwt_secret"] == "su***ue"
    assert event["authorization"] == "Be***hi"


def test_short_values_fully_masked():
    assert redact(secret="abc")["secret"] == "***"


def test_correlation_claim_keeps_id():
    event = redact(correlation={"id": "10", "secret": "OpenDoor"})

    assert event["correlation"] == {"id": "10", "secret": "Op***or"}


def test_token_under_any_key_is_masked():
    token = TokenCodec(SharedSecret("logging-secret-value-0123456789abcdef")).sign({"user": 1})

    event = redact(header=token)

    assert event["header"] != token
    assert "***" in event["header"]


def test_plain_context_untouched():
    event = redact(event="auth_failed", correlation="10", known=True, reason="jwt expired")

    assert event == {
        "event": "auth_failed",
        "correlation": "10",
        "known": True,
        "reason": "jwt expired",
    }


def test_request_id_generated_when_missing():
    rid = set_request_id()

    assert rid
    assert get_request_id() == rid
    assert set_request_id("given") == "given"
