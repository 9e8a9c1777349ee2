from fastapi import Response

from correlauth.api.transport import (
    DIAGNOSTIC_HEADER,
    HttpResponseSink,
    extract_bearer,
    stream_credentials,
)
from correlauth.config import Settings


def test_extract_bearer():
    assert extract_bearer("Bearer abc.def.ghi") == "abc.def.ghi"
    assert extract_bearer("bearer   abc") == "abc"
    assert extract_bearer("Basic abc") is None
    assert extract_bearer("Bearer ") is None
    assert extract_bearer(None) is None


def test_stream_credentials_accept_either_key():
    assert stream_credentials({"authorization": "Bearer a"}).token == "a"
    assert stream_credentials({"Authorization": "Bearer b"}).token == "b"


def test_stream_credentials_never_carry_identifier():
    credentials = stream_credentials({"authorization": "Bearer a", "x-correlation-id": "10"})

    assert credentials.correlation_id is None


def test_stream_credentials_ignore_non_string_header():
    assert stream_credentials({"authorization": ["Bearer a"]}).token is None


class TestHttpResponseSink:
    def test_token_written_to_authorization_header(self):
        response = Response()
        HttpResponseSink(response, Settings()).set_token("abc")

        assert response.headers["authorization"] == "abc"

    def test_identifier_cookie_attributes(self):
        response = Response()
        HttpResponseSink(response, Settings(correlation_cookie_max_age=60)).set_correlation_id("90")

        cookie = response.headers["set-cookie"]
        assert cookie.startswith("x-correlation-id=90")
        assert "Max-Age=60" in cookie
        assert "HttpOnly" in cookie

    def test_diagnostic_header(self):
        response = Response()
        HttpResponseSink(response, Settings()).add_diagnostic("jwt expired")

        assert response.headers[DIAGNOSTIC_HEADER] == "jwt expired"

    def test_clearing_identifier_expires_cookie(self):
        response = Response()
        HttpResponseSink(response, Settings()).clear_correlation_id()

        cookie = response.headers["set-cookie"]
        assert cookie.startswith("x-correlation-id=")
        assert "Max-Age=0" in cookie
        assert "HttpOnly" in cookie
