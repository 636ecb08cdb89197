# これは「API キー/シークレットをファイルまたは設定から読み、検証して渡す」コラボレータです。
from __future__ import annotations

from pathlib import Path

from loguru import logger

from oems.config.models import AppConfig
from oems.core.errors import CredentialError

MAX_KEY_LENGTH = 128


def _validate(name: str, value: str) -> str:
    value = value.strip()
    if not value:
        raise CredentialError(f"API {name} cannot be empty")
    if len(value) > MAX_KEY_LENGTH:
        raise CredentialError(f"API {name} exceeds maximum allowed length ({MAX_KEY_LENGTH})")
    return value


def read_credential_file(path: str | Path) -> str:
    """これは何をする関数？
    → 資格情報ファイルの 1 行目を読み、前後の空白を除いて返します（空なら CredentialError）。
    """
    p = Path(path)
    try:
        with p.open("r", encoding="utf-8") as f:
            content = f.readline()
    except OSError as e:
        raise CredentialError(f"Unable to open credential file: {p}") from e
    content = content.strip()
    if not content:
        raise CredentialError(f"Credential file is empty: {p}")
    logger.info("credentials read from {}", p)  # 中身はログに出さない
    return content


class StaticCredentials:
    """検証済みのキー/シークレットをそのまま返す（.env / YAML の keys セクション用）。"""

    def __init__(self, key: str, secret: str) -> None:
        self._key = _validate("key", key)
        self._secret = _validate("secret", secret)

    def read_key(self) -> str:
        return self._key

    def read_secret(self) -> str:
        return self._secret


class FileCredentials(StaticCredentials):
    """client_key.txt / client_secret.txt のようなファイルから読み込む。"""

    def __init__(self, key_file: str | Path, secret_file: str | Path) -> None:
        logger.info("initializing API credentials from files")
        super().__init__(read_credential_file(key_file), read_credential_file(secret_file))


def credentials_from_config(cfg: AppConfig) -> StaticCredentials:
    """これは何をする関数？
    → 設定に keys があればそれを、無ければ credentials.key_file / secret_file を使ってコラボレータを作ります。
    """
    if cfg.keys is not None and cfg.keys.api_key and cfg.keys.api_secret:
        return StaticCredentials(cfg.keys.api_key, cfg.keys.api_secret)
    return FileCredentials(cfg.credentials.key_file, cfg.credentials.secret_file)
