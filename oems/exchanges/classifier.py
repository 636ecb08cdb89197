# これは「トランスポートの生結果を一律の ApiResponse に分類する」ファイルです。
from __future__ import annotations

import json
from typing import Any

from loguru import logger

from oems.core.errors import NetworkError, ProtocolError

from .types import ApiResponse, TransportOutcome


def parse_error_envelope(body: str) -> tuple[str, int | None] | None:
    """これは何をする関数？
    → JSON 本文のトップレベルに error エンベロープがあれば (message, code) を、無ければ None を返します。
      JSON として読めない本文も None（エラー判定は classify_outcome 側で行う）。
    """
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        return None
    return _envelope_from_payload(payload)


def _envelope_from_payload(payload: Any) -> tuple[str, int | None] | None:
    if not isinstance(payload, dict) or payload.get("error") is None:
        return None
    err = payload["error"]
    if not isinstance(err, dict):
        return str(err), None
    message = str(err.get("message") or "Unknown API error")
    code = err.get("code")
    try:
        code = int(code) if code is not None else None
    except (TypeError, ValueError):
        code = None
    return message, code


def classify_outcome(outcome: TransportOutcome) -> ApiResponse:
    """これは何をする関数？
    → 4 段階で分類します（HTTP 成功はアプリ成功を意味しない）。
      1) 送受信失敗 → Network error
      2) 応答オブジェクトなし → Empty response
      3) HTTP != 200 → "HTTP error: <code>"（診断用に本文も付ける）
      4) HTTP 200 → JSON を読み、error エンベロープがあれば取引所の拒否として失敗、無ければ成功
    """
    if outcome.error is not None:
        logger.debug("classify network error: {}", outcome.error)
        return ApiResponse.from_error(NetworkError("Network error"))
    if not outcome.has_response:
        return ApiResponse.from_error(NetworkError("Empty response"))
    if outcome.status != 200:
        return ApiResponse.from_error(ProtocolError(f"HTTP error: {outcome.status}", body=outcome.body))

    try:
        payload = json.loads(outcome.body)
    except (TypeError, ValueError):
        return ApiResponse.from_error(ProtocolError("Invalid JSON response", body=outcome.body))

    envelope = _envelope_from_payload(payload)
    if envelope is not None:
        message, code = envelope
        text = f"{message} (code: {code})" if code is not None else message
        return ApiResponse.from_error(ProtocolError(text, code=code, body=outcome.body))
    return ApiResponse.ok(outcome.body)
