import pytest
import requests

from page_mirror import (
    DEFAULT_USER_AGENT,
    ContentError,
    Fetcher,
    RequestError,
    Settings,
    build_session,
)


def make_response(url, status=200, content=b"", content_type=None):
    r = requests.Response()
    r.status_code = status
    r.url = url
    r._content = content
    if content_type:
        r.headers["Content-Type"] = content_type
    r.encoding = requests.utils.get_encoding_from_headers(r.headers)
    return r


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.calls = []
        self.closed = False

    def get(self, url):
        self.calls.append(url)
        value = self.responses[url]
        if isinstance(value, Exception):
            raise value
        return value

    def close(self):
        self.closed = True


def test_build_session_identity_and_tls():
    s = build_session(Settings())
    assert s.headers["User-Agent"] == DEFAULT_USER_AGENT
    assert s.verify is True

    s = build_session(Settings(user_agent="probe/1.0", verify_tls=False))
    assert s.headers["User-Agent"] == "probe/1.0"
    assert s.verify is False


def test_fetch_text_decodes_declared_charset():
    url = "https://example.com/"
    body = "<p>café</p>".encode("utf-8")
    session = FakeSession(
        {url: make_response(url, content=body, content_type="text/html; charset=utf-8")}
    )
    assert Fetcher(Settings(), session).fetch_text(url) == "<p>café</p>"


def test_fetch_text_without_charset_uses_apparent_encoding():
    url = "https://example.com/"
    text = "<p>Crème brûlée, café, déjà vu, naïve façade, garçon, über straße.</p>\n" * 8
    response = make_response(url, content=text.encode("utf-8"), content_type="text/html")
    # requests defaults text/* without a charset to ISO-8859-1
    assert response.encoding == "ISO-8859-1"
    session = FakeSession({url: response})
    assert Fetcher(Settings(), session).fetch_text(url) == text


def test_fetch_text_accepts_missing_content_type():
    url = "https://example.com/"
    session = FakeSession({url: make_response(url, content=b"<p>plain</p>")})
    assert Fetcher(Settings(), session).fetch_text(url) == "<p>plain</p>"


def test_fetch_bytes_returns_raw_body():
    url = "https://example.com/logo.png"
    session = FakeSession({url: make_response(url, content=b"\x89PNG", content_type="image/png")})
    assert Fetcher(Settings(), session).fetch_bytes(url) == b"\x89PNG"


def test_non_success_status_raises_request_error():
    url = "https://example.com/missing.css"
    session = FakeSession({url: make_response(url, status=404)})
    with pytest.raises(RequestError) as exc:
        Fetcher(Settings(), session).fetch_bytes(url)
    assert exc.value.kind == "request"
    assert isinstance(exc.value.__cause__, requests.HTTPError)


def test_transport_failure_raises_request_error():
    url = "https://example.com/"
    session = FakeSession({url: requests.ConnectionError("connection refused")})
    with pytest.raises(RequestError):
        Fetcher(Settings(), session).fetch_text(url)


def test_fetch_text_rejects_binary_content_type():
    url = "https://example.com/"
    session = FakeSession({url: make_response(url, content=b"\x00\x01", content_type="image/png")})
    with pytest.raises(ContentError):
        Fetcher(Settings(), session).fetch_text(url)


def test_plaintext_allowed_by_default():
    url = "http://example.com/"
    session = FakeSession(
        {url: make_response(url, content=b"ok", content_type="text/plain; charset=utf-8")}
    )
    assert Fetcher(Settings(), session).fetch_text(url) == "ok"


def test_https_only_refuses_plaintext_without_io():
    session = FakeSession({})
    with pytest.raises(RequestError):
        Fetcher(Settings(https_only=True), session).fetch_bytes("http://example.com/a.js")
    assert session.calls == []


def test_close_closes_session():
    session = FakeSession({})
    Fetcher(Settings(), session).close()
    assert session.closed
