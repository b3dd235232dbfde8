"""工具模块测试：net / http / logger / yaml_io / exceptions"""

from __future__ import annotations

import json
import logging
import urllib.error
from pathlib import Path

import pytest

from fhircache.core.exceptions import (
    FhirCacheError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from fhircache.utils import http as httpmod
from fhircache.utils.http import HttpResponse, UrllibTransport
from fhircache.utils.logger import JSONFormatter, reset_logging, setup_logging
from fhircache.utils.net import ensure_trailing_slash, url_folder, validate_url_scheme
from fhircache.utils.yaml_io import MAX_YAML_SIZE, atomic_write, load_yaml

# =========================================================================
# net.py
# =========================================================================


class TestValidateUrlScheme:
    @pytest.mark.parametrize("url", ["http://example.com/api", "https://example.com/api"])
    def test_allowed(self, url: str) -> None:
        validate_url_scheme(url)

    @pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://evil.com/payload", "/local/path"])
    def test_rejected(self, url: str) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme(url)

    def test_context_in_error(self) -> None:
        with pytest.raises(ValueError, match="package download"):
            validate_url_scheme("file:///x", context="package download")


def test_url_helpers() -> None:
    assert ensure_trailing_slash("http://a/b") == "http://a/b/"
    assert ensure_trailing_slash("http://a/b/") == "http://a/b/"
    assert url_folder("http://a/b/package.tgz") == "http://a/b/"
    assert url_folder("http://a/b/") == "http://a/b/"


# =========================================================================
# http.py
# =========================================================================


class _FakeResponse:
    def __init__(self, status: int, body: bytes) -> None:
        self.status = status
        self._body = body
        self.headers = {"Content-Type": "application/json"}
        self.closed = False

    def read(self) -> bytes:
        return self._body

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> _FakeResponse:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class TestHttpResponse:
    def test_text_strips_bom(self) -> None:
        resp = HttpResponse(url="u", status=200, body="\ufeff{\"a\": 1}".encode())
        assert resp.ok
        assert resp.json() == {"a": 1}

    def test_not_ok(self) -> None:
        assert not HttpResponse(url="u", status=404).ok


class TestUrllibTransport:
    def test_get(self, monkeypatch: pytest.MonkeyPatch) -> None:
        seen = {}

        def fake_urlopen(req, timeout):
            seen["ua"] = req.get_header("User-agent")
            seen["timeout"] = timeout
            return _FakeResponse(200, b'{"ok": true}')

        monkeypatch.setattr(httpmod.urllib.request, "urlopen", fake_urlopen)
        resp = UrllibTransport(timeout=5).get("http://reg.test/a.b")
        assert resp.json() == {"ok": True}
        assert seen["ua"].startswith("fhircache/")
        assert seen["timeout"] == 5

    def test_http_error_is_status(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, None)

        monkeypatch.setattr(httpmod.urllib.request, "urlopen", fake_urlopen)
        assert UrllibTransport().get("http://reg.test/x").status == 404
        assert UrllibTransport().head("http://reg.test/x") == 404

    def test_connection_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.URLError("refused")

        monkeypatch.setattr(httpmod.urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(TransportError):
            UrllibTransport().get("http://reg.test/x")

    def test_rejects_non_http(self) -> None:
        with pytest.raises(ValidationError):
            UrllibTransport().get("file:///etc/passwd")

    def test_open_stream(self, monkeypatch: pytest.MonkeyPatch) -> None:
        fake = _FakeResponse(200, b"data")
        monkeypatch.setattr(httpmod.urllib.request, "urlopen", lambda req, timeout: fake)
        with UrllibTransport().open_stream("http://reg.test/a.tgz") as stream:
            assert stream.read() == b"data"
        assert fake.closed

    @pytest.mark.parametrize(("code", "exc"), [(404, NotFoundError), (500, TransportError)])
    def test_open_stream_errors(self, monkeypatch: pytest.MonkeyPatch, code: int, exc: type) -> None:
        def fake_urlopen(req, timeout):
            raise urllib.error.HTTPError(req.full_url, code, "err", {}, None)

        monkeypatch.setattr(httpmod.urllib.request, "urlopen", fake_urlopen)
        with pytest.raises(exc) as exc_info, UrllibTransport().open_stream("http://reg.test/a.tgz"):
            pass
        assert exc_info.value.status == code


# =========================================================================
# logger.py
# =========================================================================


class TestLogging:
    def test_json_formatter(self) -> None:
        record = logging.LogRecord("fhircache.x", logging.INFO, __file__, 10, "已缓存: %s", ("a#1",), None)
        record.directive = "a#1"
        data = json.loads(JSONFormatter().format(record))
        assert data["message"] == "已缓存: a#1"
        assert data["directive"] == "a#1"
        assert data["level"] == "INFO"

    def test_setup_is_idempotent(self) -> None:
        try:
            setup_logging("DEBUG", json_output=True)
            setup_logging("warning")
            root = logging.getLogger()
            assert len(root.handlers) == 1
            assert root.level == logging.WARNING
            assert logging.getLogger("urllib3").level == logging.WARNING
        finally:
            reset_logging()


# =========================================================================
# yaml_io.py
# =========================================================================


class TestYamlIo:
    def test_atomic_write(self, tmp_path: Path) -> None:
        target = tmp_path / "sub" / "a.ini"
        atomic_write(target, "x=1\n")
        atomic_write(target, "x=2\n")
        assert target.read_text(encoding="utf-8") == "x=2\n"
        assert [p.name for p in target.parent.iterdir()] == ["a.ini"]

    @pytest.mark.parametrize(("content", "expected"), [
        ("a: 1\n", {"a": 1}),
        ("", {}),
        ("- 1\n- 2\n", {}),
    ])
    def test_load_yaml(self, tmp_path: Path, content: str, expected: dict) -> None:
        path = tmp_path / "c.yml"
        path.write_text(content, encoding="utf-8")
        assert load_yaml(path) == expected

    def test_load_missing(self, tmp_path: Path) -> None:
        assert load_yaml(tmp_path / "missing.yml") == {}

    def test_load_too_large(self, tmp_path: Path) -> None:
        path = tmp_path / "big.yml"
        path.write_bytes(b"a" * (MAX_YAML_SIZE + 1))
        with pytest.raises(ValueError, match="过大"):
            load_yaml(path)


# =========================================================================
# exceptions.py
# =========================================================================


def test_exception_codes() -> None:
    err = NotFoundError("x", url="http://a/", status=404)
    assert isinstance(err, TransportError) and isinstance(err, FhirCacheError)
    assert err.code == "NOT_FOUND"
    assert isinstance(ValidationError("bad"), ValueError)
