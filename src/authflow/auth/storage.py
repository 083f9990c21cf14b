"""取得したアクセストークンの保存を提供する。"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import time
import warnings

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

logger = logging.getLogger(__name__)


class TokenManager:
    """アクセストークンの保存と取得を管理する。

    keyringが使えない環境ではホームディレクトリ配下のJSONファイルに保存する。
    """

    def __init__(self, keyring_service: str = "authflow", fallback_path: Path | None = None) -> None:
        """TokenManagerを初期化する。

        Args:
            keyring_service: keyringに保存する際のサービス名。
            fallback_path: keyringが使えない場合の保存先。
        """

        self._keyring_service = keyring_service
        self._fallback_path = fallback_path or Path.home() / ".authflow" / "tokens.json"
        self._use_keyring = True

    def store(self, account: str, access_token: str, expires_in: int | None = None) -> None:
        """アクセストークンを有効期限付きで保存する。

        Args:
            account: 保存キー（例: authflow.token）。
            access_token: アクセストークン。
            expires_in: 有効期間（秒）。
        """

        expires_at = int(time.time() + expires_in) if expires_in else None
        payload = {"access_token": access_token, "expires_at": expires_at}
        self._set(account, json.dumps(payload, ensure_ascii=False))

    def load(self, account: str) -> str | None:
        """有効なアクセストークンを返す。期限切れや未保存の場合はNone。"""

        stored = self._get(account)
        if not stored:
            return None

        try:
            payload = json.loads(stored)
        except json.JSONDecodeError:
            return stored

        if not isinstance(payload, dict):
            return stored

        expires_at = payload.get("expires_at")
        if isinstance(expires_at, (int, float)) and time.time() >= float(expires_at):
            logger.info(f"Stored token for {account} has expired")
            return None

        token = payload.get("access_token")
        return token if isinstance(token, str) and token else None

    def delete(self, account: str) -> None:
        if self._use_keyring:
            try:
                keyring.delete_password(self._keyring_service, account)
                return
            except PasswordDeleteError:
                return
            except KeyringError as exc:
                self._switch_to_fallback(exc)

        tokens = self._read_fallback_tokens()
        if account in tokens:
            tokens.pop(account)
            self._write_fallback_tokens(tokens)

    def _set(self, account: str, value: str) -> None:
        if self._use_keyring:
            try:
                keyring.set_password(self._keyring_service, account, value)
                return
            except KeyringError as exc:
                self._switch_to_fallback(exc)

        tokens = self._read_fallback_tokens()
        tokens[account] = value
        self._write_fallback_tokens(tokens)

    def _get(self, account: str) -> str | None:
        if self._use_keyring:
            try:
                return keyring.get_password(self._keyring_service, account)
            except KeyringError as exc:
                self._switch_to_fallback(exc)

        return self._read_fallback_tokens().get(account)

    def _switch_to_fallback(self, exc: Exception) -> None:
        if self._use_keyring:
            warnings.warn(
                f"keyringが利用できないため、ローカルファイルに保存します: {exc}",
                RuntimeWarning,
                stacklevel=3,
            )
            self._use_keyring = False

    def _read_fallback_tokens(self) -> dict[str, str]:
        if not self._fallback_path.exists():
            return {}

        os.chmod(self._fallback_path, 0o600)
        try:
            with self._fallback_path.open("r", encoding="utf-8") as file:
                data = json.load(file)
        except json.JSONDecodeError:
            warnings.warn(
                "トークン保存ファイルの形式が不正です。空として扱います。",
                RuntimeWarning,
                stacklevel=3,
            )
            return {}

        if not isinstance(data, dict):
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def _write_fallback_tokens(self, tokens: dict[str, str]) -> None:
        self._fallback_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        with self._fallback_path.open("w", encoding="utf-8") as file:
            json.dump(tokens, file, ensure_ascii=False, indent=2)
        os.chmod(self._fallback_path, 0o600)
