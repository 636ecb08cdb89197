"""マージ済みの設定を秘匿情報を伏せて JSON で表示する（エントリポイント: oems-show-config）。"""

from __future__ import annotations

import argparse
import json
import sys

from oems.config.loader import load_config, redact_secrets
from oems.core.errors import ConfigError


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show the merged oems config (.env + YAML + env) with secrets masked")
    parser.add_argument("--config", type=str, default=None, help="YAML設定ファイルのパス(省略可)")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(json.dumps(redact_secrets(cfg), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
