"""authflowのCLIエントリーポイント"""

import json
import logging
import sys
from typing import List

from pydantic import ValidationError

from authflow import __version__
from authflow.cli.main import AuthflowCLI
from authflow.cli.parser import ArgumentParser
from authflow.config.settings import AuthflowSettings


def main(args: List[str] | None = None) -> int:
    """
    authflowのメインエントリーポイント

    Args:
        args: コマンドライン引数（Noneの場合はsys.argvを使用）

    Returns:
        終了コード（0: 成功、非0: エラー）
    """
    if args is None:
        args = sys.argv[1:]

    parser = ArgumentParser()
    parsed = parser.parse(args)

    if parsed.options.get("version"):
        print(f"authflow {__version__}")
        return 0

    if parsed.options.get("help") or (not parsed.command and not args):
        parsed.command = "help"

    validation = parser.validate(parsed)
    if not validation.is_valid:
        for error in validation.errors:
            print(error, file=sys.stderr)
        return 1

    try:
        settings = AuthflowSettings()
    except ValidationError as exc:
        # client_idがなくてもヘルプ系コマンドは動作させる
        if parsed.command in ("help", "version"):
            settings = AuthflowSettings.model_construct(client_id="")
        else:
            print(f"Configuration error: {exc}", file=sys.stderr)
            return 1

    logging.basicConfig(
        level=settings.logging_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if parsed.options.get("config_check"):
        print(json.dumps(settings.dump_masked(), ensure_ascii=False, indent=2))
        return 0

    cli = AuthflowCLI(settings)
    return cli.run(parsed.command, parsed.args, options=parsed.options)


if __name__ == "__main__":
    sys.exit(main())
