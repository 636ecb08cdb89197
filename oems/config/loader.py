# 設定の読み込み: 環境変数 > .env > YAML > AppConfig のデフォルト値 の順で優先する。
from __future__ import annotations

import os
import re
from io import StringIO
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore[import-untyped]
from dotenv import dotenv_values
from pydantic import ValidationError as PydanticValidationError

from oems.core.errors import ConfigError

from .models import AppConfig

DEFAULT_CONFIG_FILE = "config/app.yaml"
ENV_SECTIONS = ("KEYS", "EXCHANGE", "RETRY", "LOGGING", "CREDENTIALS")  # SECTION__FIELD 形式で受け付ける
SECRET_FIELDS = ("api_key", "api_secret")

_EXPORT_PREFIX = re.compile(r"^\s*export\s+", flags=re.MULTILINE)


def env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    """これは何をする関数？
    → EXCHANGE__BASE_URL=... のような環境変数を {"exchange": {"base_url": ...}} に変換します。
      対象セクション以外のキーは無視します。
    """
    out: dict[str, Any] = {}
    for key, value in environ.items():
        section, sep, _ = key.partition("__")
        if not sep or section not in ENV_SECTIONS:
            continue
        *parents, leaf = key.lower().split("__")
        node = out
        for p in parents:
            child = node.get(p)
            if not isinstance(child, dict):
                child = node[p] = {}
            node = child
        node[leaf] = value
    return out


def _merge(base: dict[str, Any], top: Mapping[str, Any]) -> dict[str, Any]:
    """top の値で base を再帰的に上書きする（base を書き換えて返す）。"""
    for k, v in top.items():
        if isinstance(v, Mapping) and isinstance(base.get(k), dict):
            _merge(base[k], v)
        else:
            base[k] = v
    return base


def _decode_dotenv(raw: bytes) -> str | None:
    encoding = "utf-16" if raw.startswith((b"\xff\xfe", b"\xfe\xff")) else "utf-8-sig"
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError:
        return None


def load_env_robust(dotenv_path: Path, override: bool = True) -> dict[str, str | None]:
    """.env を読み os.environ に反映する。BOM 付き UTF-8/UTF-16 と 'export KEY=VAL' 行を受け付ける。

    override=False なら既に設定済みの環境変数は残す。読めない .env は空扱い。
    """
    try:
        raw = dotenv_path.read_bytes()
    except FileNotFoundError:
        return {}
    text = _decode_dotenv(raw)
    if text is None:
        return {}

    values = dotenv_values(stream=StringIO(_EXPORT_PREFIX.sub("", text)))
    for k, v in values.items():
        if v is not None and (override or k not in os.environ):
            os.environ[k] = v
    return values


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data if isinstance(data, dict) else {}


def load_config(config_path: str | os.PathLike[str] | None = None) -> AppConfig:
    """これは何をする関数？
    → .env と YAML（引数 > APP_CONFIG_FILE > config/app.yaml）を読み、環境変数で上書きして AppConfig を返します。
      値の型が合わないときは ConfigError。
    """
    load_env_robust(Path(".env"), override=False)

    path = Path(config_path) if config_path is not None else Path(os.environ.get("APP_CONFIG_FILE", DEFAULT_CONFIG_FILE))
    merged = _merge(_read_yaml(path), env_overrides(os.environ))
    try:
        return AppConfig.from_dict(merged)
    except PydanticValidationError as e:
        raise ConfigError(f"invalid config ({path}): {e}") from e


def redact_secrets(config: AppConfig) -> dict[str, Any]:
    """表示用の dict を返す。API キー/シークレットは *** に置き換える。"""
    safe = config.to_dict()
    keys = safe.get("keys")
    if isinstance(keys, dict):
        for name in SECRET_FIELDS:
            if keys.get(name):
                keys[name] = "***"
    return safe
