"""
authflow CLIメインモジュール

トークン取得、コード取得、プロフィール取得の各コマンドを実行する
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import sys
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import httpx

from authflow import __version__
from authflow.auth.base import AuthorizationLauncher
from authflow.auth.callback_server import LoopbackCallbackReceiver
from authflow.auth.coordinator import AuthorizationCoordinator
from authflow.auth.storage import TokenManager
from authflow.auth.token_exchange import TokenExchangeClient
from authflow.cli.parser import VALID_COMMANDS
from authflow.config.settings import AuthflowSettings
from authflow.errors import AuthflowException
from authflow.http.single_flight import SingleFlightRequester
from authflow.models import (
    AuthorizationResult,
    CancelledResult,
    CodeResult,
    ErrorResult,
    HttpResponse,
    ResponseType,
    TokenResult,
)

logger = logging.getLogger(__name__)

TOKEN_ACCOUNT = "authflow.access_token"
NEED_TOKEN_WARNING = "You need to get an access token first! Run `authflow token`."

ReceiverFactory = Callable[[AuthflowSettings], LoopbackCallbackReceiver]


def build_receiver(settings: AuthflowSettings) -> LoopbackCallbackReceiver:
    """設定のリダイレクト先がループバックURLであればその host/port/path で待ち受ける"""
    parsed = urlparse(settings.resolved_redirect_uri)
    if parsed.scheme == "http" and parsed.hostname in ("127.0.0.1", "localhost"):
        return LoopbackCallbackReceiver(
            host=parsed.hostname,
            port=parsed.port or 0,
            path=parsed.path or "/callback",
            timeout_seconds=settings.callback_timeout,
        )
    logger.warning(
        f"Redirect URI {settings.resolved_redirect_uri} is not a loopback URL; "
        "using an ephemeral local port instead"
    )
    return LoopbackCallbackReceiver(timeout_seconds=settings.callback_timeout)


class AuthflowCLI:
    """authflowのコマンド実行"""

    def __init__(
        self,
        settings: AuthflowSettings,
        token_manager: Optional[TokenManager] = None,
        launcher: Optional[AuthorizationLauncher] = None,
        receiver_factory: Optional[ReceiverFactory] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """初期化

        Args:
            settings: 設定
            token_manager: トークン保存先
            launcher: 外部認可画面のランチャー
            receiver_factory: コールバック受信サーバーの生成関数
            transport: HTTP通信に使うトランスポート
        """
        self.settings = settings
        self.token_manager = token_manager or TokenManager()
        self.launcher = launcher
        self.receiver_factory = receiver_factory or build_receiver
        self.transport = transport

    def run(self, command: str, args: List[str], options: Dict[str, Any] | None = None) -> int:
        """コマンドを実行し、Exit Codeを返す"""
        options = options or {}

        if command == "help":
            self.show_help()
            return 0

        if command == "version":
            self.show_version()
            return 0

        if command not in VALID_COMMANDS:
            print(
                f"Unknown command: '{command}'. "
                f"Available commands: {', '.join(sorted(VALID_COMMANDS))}",
                file=sys.stderr,
            )
            return 1

        if command == "token":
            return self._run_token_command(options)
        if command == "code":
            return self._run_code_command(options)
        if command == "profile":
            return self._run_profile_command(options)
        return self._run_logout_command()

    def _run_token_command(self, options: Dict[str, Any]) -> int:
        """インプリシットグラントでアクセストークンを取得し、保存する"""
        try:
            result = asyncio.run(self._authorize(ResponseType.TOKEN, options))
        except AuthflowException as exc:
            return self._report_exception(exc)
        except Exception as exc:
            logger.debug("Authorization flow aborted", exc_info=True)
            print(f"Authorization error: {exc}", file=sys.stderr)
            return 1

        if not isinstance(result, TokenResult):
            return self._report_failure(result)

        self.token_manager.store(TOKEN_ACCOUNT, result.value, result.expires_in)
        print(f"Access token: {result.value}")
        return 0

    def _run_code_command(self, options: Dict[str, Any]) -> int:
        """認可コードを取得する。PKCE有効時はアクセストークンに交換して保存する"""
        try:
            result = asyncio.run(self._authorize(ResponseType.CODE, options))
        except AuthflowException as exc:
            return self._report_exception(exc)
        except Exception as exc:
            logger.debug("Authorization flow aborted", exc_info=True)
            print(f"Authorization error: {exc}", file=sys.stderr)
            return 1

        if not isinstance(result, CodeResult):
            return self._report_failure(result)

        print(f"Authorization code: {result.value}")
        return 0

    def _run_profile_command(self, options: Dict[str, Any]) -> int:
        """保存済みトークンでユーザープロフィールを取得する"""
        token = self.token_manager.load(TOKEN_ACCOUNT)
        if token is None:
            print(NEED_TOKEN_WARNING, file=sys.stderr)
            return 1

        endpoint = options.get("endpoint") or self.settings.profile_endpoint
        outcome = asyncio.run(self._fetch_profile(token, endpoint))
        if isinstance(outcome, HttpResponse):
            print(outcome.body)
            return 0 if outcome.status < 400 else 1

        print(outcome.detail, file=sys.stderr)
        return 1

    def _run_logout_command(self) -> int:
        try:
            self.token_manager.delete(TOKEN_ACCOUNT)
        except Exception as exc:
            print(f"Logout failed: {exc}", file=sys.stderr)
            return 1
        print("Logged out.", file=sys.stderr)
        return 0

    async def _authorize(self, response_type: ResponseType, options: Dict[str, Any]) -> AuthorizationResult:
        coordinator = AuthorizationCoordinator(
            launcher=self.launcher,
            authorize_url=self.settings.authorize_url,
            use_pkce=self.settings.use_pkce,
        )
        with self.receiver_factory(self.settings) as receiver:
            request = coordinator.build_request(
                self.settings.client_id,
                response_type,
                receiver.redirect_uri,
                self.settings.scopes,
                self.settings.campaign,
                show_dialog=bool(options.get("show_dialog") or self.settings.show_dialog),
                state=secrets.token_urlsafe(16),
            )
            handle = coordinator.begin_authorization(request)
            result_code, payload = await receiver.wait()

        result = coordinator.complete_authorization(handle, result_code, payload)

        if isinstance(result, CodeResult) and request.code_verifier:
            exchange = TokenExchangeClient(
                self.settings.client_id,
                token_url=self.settings.token_url,
                timeout_seconds=self.settings.timeout,
                transport=self.transport,
            )
            tokens = await exchange.exchange(result.value, request.redirect_uri, request.code_verifier)
            self.token_manager.store(TOKEN_ACCOUNT, tokens.access_token, tokens.expires_in)
            print("Access token stored from code exchange.", file=sys.stderr)
        return result

    async def _fetch_profile(self, token: str, endpoint: str):
        async with SingleFlightRequester(timeout=self.settings.timeout, transport=self.transport) as requester:
            return await requester.fetch(token, endpoint)

    def _report_exception(self, exc: AuthflowException) -> int:
        """例外のログレベルで記録し、復旧可能であれば再実行を促す"""
        logger.log(exc.log_level, f"Authorization error: {exc}")
        print(f"Authorization error: {exc.error.message}", file=sys.stderr)
        if exc.error.recoverable:
            print("This error may be temporary. Please try again.", file=sys.stderr)
        return 1

    def _report_failure(self, result: AuthorizationResult) -> int:
        if isinstance(result, CancelledResult):
            print("Authorization was cancelled.", file=sys.stderr)
        elif isinstance(result, ErrorResult):
            print(f"Authorization failed ({result.kind.value}): {result.message}", file=sys.stderr)
        else:  # pragma: no cover - 想定外の結果
            print(f"Unexpected authorization result: {result!r}", file=sys.stderr)
        return 1

    def show_help(self) -> None:
        """ヘルプメッセージを表示"""
        print(HELP_TEXT.format(version=__version__))

    def show_version(self) -> None:
        """バージョン情報を表示"""
        print(f"authflow {__version__}")


HELP_TEXT = """authflow v{version} - ベンダー認可とユーザープロフィール取得のサンプルCLI

Usage:
    authflow <command> [options]

Commands:
    token       ブラウザで認可し、アクセストークンを取得する
    code        ブラウザで認可し、認可コードを取得する
    profile     保存済みトークンでユーザープロフィールを取得する
    logout      保存済みトークンを削除する
    help        このヘルプメッセージを表示
    version     バージョン情報を表示

Options:
    -h, --help           ヘルプメッセージを表示
    -v, --version        バージョン情報を表示
    --config-check       設定内容を検証して表示（client_idはマスク）
    --show-dialog        認可ダイアログを毎回表示する
    --endpoint <url>     プロフィール取得先を上書きする

Environment:
    AUTHFLOW_CLIENT_ID, AUTHFLOW_REDIRECT_URI, AUTHFLOW_SCOPES, AUTHFLOW_CAMPAIGN,
    AUTHFLOW_PROFILE_ENDPOINT, AUTHFLOW_LOG_LEVEL など（.env も可）
"""
