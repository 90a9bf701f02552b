from __future__ import annotations

import asyncio
import http.client
import io
import urllib.error
from typing import Any, List

import pytest

import nftpub.fetcher as fetcher_mod
from nftpub.errors import TransientFetchError
from nftpub.fetcher import UrllibFetcher


class _Resp:
    def __init__(self, body: bytes, status: int = 200) -> None:
        self.status = status
        self._body = io.BytesIO(body)

    def read(self, n: int = -1) -> bytes:
        return self._body.read(n)

    def __enter__(self) -> "_Resp":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None


class _TruncatedResp(_Resp):
    """Gateway closed a chunked body before the declared length arrived."""

    def read(self, n: int = -1) -> bytes:
        raise http.client.IncompleteRead(b"", 100)


def _patch(monkeypatch: pytest.MonkeyPatch, handler) -> List[Any]:
    seen: List[Any] = []

    def _urlopen(req, timeout=None):
        seen.append((req.full_url, req.get_method(), dict(req.header_items()), timeout))
        return handler(req)

    monkeypatch.setattr(fetcher_mod.urllib.request, "urlopen", _urlopen)
    return seen


def test_fetch_json_parses_body(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _patch(monkeypatch, lambda req: _Resp(b'{"name": "X"}'))

    doc = asyncio.run(UrllibFetcher(timeout_s=5).fetch_json("https://gw/meta"))
    assert doc == {"name": "X"}
    url, method, headers, timeout = seen[0]
    assert url == "https://gw/meta"
    assert method == "GET"
    assert timeout == 5.0
    assert headers.get("Accept") == "application/json"


def test_fetch_bytes_returns_raw(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch(monkeypatch, lambda req: _Resp(b"\x00\x01raw"))
    assert asyncio.run(UrllibFetcher().fetch_bytes("https://gw/img")) == b"\x00\x01raw"


def test_http_error_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    def _404(req):
        raise urllib.error.HTTPError(req.full_url, 404, "Not Found", {}, io.BytesIO(b""))

    _patch(monkeypatch, _404)
    with pytest.raises(TransientFetchError) as e:
        asyncio.run(UrllibFetcher().fetch_json("https://gw/meta"))
    assert e.value.reason == "http_404"


def test_network_error_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    def _down(req):
        raise urllib.error.URLError("connection refused")

    _patch(monkeypatch, _down)
    with pytest.raises(TransientFetchError):
        asyncio.run(UrllibFetcher().fetch_bytes("https://gw/img"))


def test_malformed_json_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch(monkeypatch, lambda req: _Resp(b"<html>gateway timeout</html>"))
    with pytest.raises(TransientFetchError) as e:
        asyncio.run(UrllibFetcher().fetch_json("https://gw/meta"))
    assert e.value.reason == "bad_json"


def test_non_2xx_status_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch(monkeypatch, lambda req: _Resp(b"{}", status=304))
    with pytest.raises(TransientFetchError):
        asyncio.run(UrllibFetcher().fetch_json("https://gw/meta"))


def test_oversized_body_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch(monkeypatch, lambda req: _Resp(b"x" * 11))
    with pytest.raises(TransientFetchError) as e:
        asyncio.run(UrllibFetcher(max_bytes=10).fetch_bytes("https://gw/img"))
    assert e.value.reason == "body_too_large"


def test_ipfs_uri_resolves_through_gateway(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _patch(monkeypatch, lambda req: _Resp(b"img"))
    f = UrllibFetcher(gateway_base="http://127.0.0.1:8080/")
    asyncio.run(f.fetch_bytes("ipfs://bafyexample/image.png"))
    assert seen[0][0] == "http://127.0.0.1:8080/ipfs/bafyexample/image.png"


def test_ipfs_uri_without_gateway_fails() -> None:
    with pytest.raises(TransientFetchError):
        asyncio.run(UrllibFetcher().fetch_bytes("ipfs://bafyexample"))


def test_truncated_body_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch(monkeypatch, lambda req: _TruncatedResp(b""))
    with pytest.raises(TransientFetchError) as e:
        asyncio.run(UrllibFetcher().fetch_json("https://gw/meta"))
    assert e.value.reason == "IncompleteRead"


def test_bad_status_line_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    def _garbled(req):
        raise http.client.BadStatusLine("garbage")

    _patch(monkeypatch, _garbled)
    with pytest.raises(TransientFetchError) as e:
        asyncio.run(UrllibFetcher().fetch_bytes("https://gw/img"))
    assert e.value.reason == "BadStatusLine"


def test_verifier_fails_cleanly_on_truncated_gateway(monkeypatch: pytest.MonkeyPatch) -> None:
    from nftpub.models import Failed, PublishLocators, VerifyMode
    from nftpub.verifier import PublishVerifier

    _patch(monkeypatch, lambda req: _TruncatedResp(b""))

    async def _nosleep(seconds: float) -> None:
        return None

    verifier = PublishVerifier(UrllibFetcher(), sleep=_nosleep, max_attempts={VerifyMode.METADATA_ONLY: 2})
    out = asyncio.run(verifier.verify(PublishLocators(metadata_uri="https://gw/meta"), None, VerifyMode.METADATA_ONLY))

    assert isinstance(out, Failed)
    assert out.attempts_exhausted == 2
