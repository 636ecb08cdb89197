from __future__ import annotations

import json
from urllib.parse import parse_qsl, urlsplit

import pytest

pytest.importorskip("loguru")
pytest.importorskip("pydantic")

from oems.auth.token import AUTH_PATH, DeribitTokenManager
from oems.exchanges.types import ApiResponse, ErrorKind, RequestDescriptor


def _auth_body(access: str = "acc-1", refresh: str = "ref-1", expires_in: int = 900) -> str:
    return json.dumps(
        {"jsonrpc": "2.0", "result": {"access_token": access, "refresh_token": refresh, "expires_in": expires_in}}
    )


class FakeDispatcher:
    def __init__(self, *responses: ApiResponse) -> None:
        self.responses = list(responses)
        self.sent: list[RequestDescriptor] = []

    def dispatch(self, descriptor: RequestDescriptor) -> ApiResponse:
        self.sent.append(descriptor)
        return self.responses.pop(0)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def _grant(desc: RequestDescriptor) -> dict[str, str]:
    return dict(parse_qsl(urlsplit(desc.target).query))


def test_new_manager_is_expired() -> None:
    """トークン未取得なら期限切れ扱い"""
    tm = DeribitTokenManager(FakeDispatcher())
    assert tm.is_token_expired() is True
    assert tm.current_token() == ""


def test_refresh_with_client_credentials_and_expiry() -> None:
    """client_credentials で取得し、期限（余裕込み）で再び期限切れになること"""
    clock = FakeClock()
    dispatcher = FakeDispatcher(ApiResponse.ok(_auth_body(expires_in=900)))
    tm = DeribitTokenManager(dispatcher, expiry_margin_s=30.0, clock=clock)

    assert tm.refresh_token("key", "secret") is True
    assert tm.current_token() == "acc-1"
    assert tm.is_token_expired() is False
    desc = dispatcher.sent[0]
    assert desc.path == AUTH_PATH
    assert _grant(desc) == {"grant_type": "client_credentials", "client_id": "key", "client_secret": "secret"}

    clock.now += 869
    assert tm.is_token_expired() is False
    clock.now += 1
    assert tm.is_token_expired() is True


def test_second_refresh_uses_refresh_token() -> None:
    """2回目以降はリフレッシュトークンで更新すること"""
    dispatcher = FakeDispatcher(ApiResponse.ok(_auth_body()), ApiResponse.ok(_auth_body(access="acc-2")))
    tm = DeribitTokenManager(dispatcher, clock=FakeClock())
    tm.refresh_token("key", "secret")
    assert tm.refresh_token("key", "secret") is True
    assert _grant(dispatcher.sent[1]) == {"grant_type": "refresh_token", "refresh_token": "ref-1"}
    assert tm.current_token() == "acc-2"


def test_rejected_refresh_token_falls_back_to_credentials() -> None:
    """リフレッシュトークンが拒否されたら資格情報で取り直すこと"""
    dispatcher = FakeDispatcher(
        ApiResponse.ok(_auth_body()),
        ApiResponse.fail(ErrorKind.PROTOCOL, "invalid_token (code: 13009)"),
        ApiResponse.ok(_auth_body(access="acc-3")),
    )
    tm = DeribitTokenManager(dispatcher, clock=FakeClock())
    tm.refresh_token("key", "secret")
    assert tm.refresh_token("key", "secret") is True
    assert _grant(dispatcher.sent[2])["grant_type"] == "client_credentials"
    assert tm.current_token() == "acc-3"


def test_refresh_failure_returns_false() -> None:
    """取得に失敗したら False で、トークンは空のまま"""
    tm = DeribitTokenManager(FakeDispatcher(ApiResponse.fail(ErrorKind.TIMEOUT, "Timeout waiting for response")))
    assert tm.refresh_token("key", "secret") is False
    assert tm.current_token() == ""
    assert tm.is_token_expired() is True


def test_malformed_auth_payload_returns_false() -> None:
    """result.access_token が無い応答は失敗扱い"""
    tm = DeribitTokenManager(FakeDispatcher(ApiResponse.ok('{"result":{}}')))
    assert tm.refresh_token("key", "secret") is False
