from __future__ import annotations

from pathlib import Path

import pytest

pytest.importorskip("loguru")
pytest.importorskip("pydantic")

from oems.auth.credentials import (
    MAX_KEY_LENGTH,
    FileCredentials,
    StaticCredentials,
    credentials_from_config,
    read_credential_file,
)
from oems.config.models import AppConfig
from oems.core.errors import CredentialError


def test_read_credential_file_strips_first_line(tmp_path: Path) -> None:
    """1行目だけを読み、前後の空白を落とすこと"""
    p = tmp_path / "client_key.txt"
    p.write_text("  abc123  \nignored\n", encoding="utf-8")
    assert read_credential_file(p) == "abc123"


def test_read_credential_file_missing(tmp_path: Path) -> None:
    """存在しないファイルは CredentialError"""
    with pytest.raises(CredentialError, match="Unable to open"):
        read_credential_file(tmp_path / "nope.txt")


def test_read_credential_file_empty(tmp_path: Path) -> None:
    """空ファイルは CredentialError"""
    p = tmp_path / "client_secret.txt"
    p.write_text("\n", encoding="utf-8")
    with pytest.raises(CredentialError, match="empty"):
        read_credential_file(p)


def test_static_credentials_validate_length() -> None:
    """長すぎるキーは受け付けないこと"""
    with pytest.raises(CredentialError):
        StaticCredentials("k" * (MAX_KEY_LENGTH + 1), "secret")
    creds = StaticCredentials(" key ", "secret")
    assert creds.read_key() == "key"
    assert creds.read_secret() == "secret"


def test_credentials_from_config_prefers_keys(tmp_path: Path) -> None:
    """keys があれば設定値、無ければファイルから読むこと"""
    cfg = AppConfig.from_dict({"keys": {"api_key": "K", "api_secret": "S"}})
    creds = credentials_from_config(cfg)
    assert (creds.read_key(), creds.read_secret()) == ("K", "S")

    (tmp_path / "k.txt").write_text("FILEKEY\n", encoding="utf-8")
    (tmp_path / "s.txt").write_text("FILESECRET\n", encoding="utf-8")
    cfg = AppConfig.from_dict(
        {"credentials": {"key_file": str(tmp_path / "k.txt"), "secret_file": str(tmp_path / "s.txt")}}
    )
    creds = credentials_from_config(cfg)
    assert isinstance(creds, FileCredentials)
    assert (creds.read_key(), creds.read_secret()) == ("FILEKEY", "FILESECRET")
