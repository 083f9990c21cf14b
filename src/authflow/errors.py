"""
エラー定義

authflowで使用されるエラー種別、エラーコードと例外クラス
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """エラー種別

    呼び出し側に返却される結果で使われる分類。
    """
    INVALID_CONFIG = "invalid_config"
    PARSE_FAILURE = "parse_failure"
    AUTHORIZATION_DENIED = "authorization_denied"
    TRANSPORT = "transport"
    DECODE = "decode"
    CANCELLED = "cancelled"


class ErrorCode(Enum):
    """エラーコード

    カテゴリ別にエラーコードを定義:
    - CONFIG_xxx: 設定エラー
    - AUTH_xxx: 認可エラー
    - HTTP_xxx: 通信エラー
    - FLOW_xxx: フロー制御
    """
    # 設定エラー
    CONFIG_INVALID_VALUE = "CONFIG_001"

    # 認可エラー
    AUTH_PARSE_FAILURE = "AUTH_001"
    AUTH_DENIED = "AUTH_002"

    # 通信エラー
    HTTP_TRANSPORT = "HTTP_001"
    HTTP_DECODE = "HTTP_002"

    # フロー制御
    FLOW_CANCELLED = "FLOW_001"


ERROR_KIND_CODE: Dict[ErrorKind, ErrorCode] = {
    ErrorKind.INVALID_CONFIG: ErrorCode.CONFIG_INVALID_VALUE,
    ErrorKind.PARSE_FAILURE: ErrorCode.AUTH_PARSE_FAILURE,
    ErrorKind.AUTHORIZATION_DENIED: ErrorCode.AUTH_DENIED,
    ErrorKind.TRANSPORT: ErrorCode.HTTP_TRANSPORT,
    ErrorKind.DECODE: ErrorCode.HTTP_DECODE,
    ErrorKind.CANCELLED: ErrorCode.FLOW_CANCELLED,
}


@dataclass
class AuthflowError:
    """authflowエラー情報

    Attributes:
        code: エラーコード文字列
        message: エラーメッセージ
        details: 追加のエラー詳細情報
        recoverable: 呼び出し側のリトライで復旧し得るかどうか
    """
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None
    recoverable: bool = False
    log_level: int = logging.ERROR

    @property
    def kind(self) -> ErrorKind:
        """エラーコードに対応するエラー種別"""
        for kind, code in ERROR_KIND_CODE.items():
            if code.value == self.code:
                return kind
        raise ValueError(f"Unknown error code: {self.code}")


class AuthflowException(Exception):
    """authflow例外クラス

    AuthflowErrorをラップする例外クラス
    """

    def __init__(self, error: AuthflowError):
        """AuthflowExceptionを初期化

        Args:
            error: AuthflowErrorインスタンス
        """
        self.error = error
        self.log_level = error.log_level
        super().__init__(f"[{error.code}] {error.message}")

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind


def create_config_error(message: str, details: Optional[Dict[str, Any]] = None) -> AuthflowError:
    """設定エラーを作成

    Args:
        message: エラーメッセージ
        details: 追加詳細

    Returns:
        AuthflowError: 設定エラー
    """
    return AuthflowError(
        code=ErrorCode.CONFIG_INVALID_VALUE.value,
        message=message,
        details=details,
        recoverable=False,
    )


def create_parse_error(message: str, details: Optional[Dict[str, Any]] = None) -> AuthflowError:
    """認可コールバックの解析エラーを作成

    Args:
        message: エラーメッセージ
        details: 追加詳細

    Returns:
        AuthflowError: 解析エラー
    """
    return AuthflowError(
        code=ErrorCode.AUTH_PARSE_FAILURE.value,
        message=message,
        details=details,
        recoverable=False,
        log_level=logging.WARNING,
    )


def create_transport_error(message: str, details: Optional[Dict[str, Any]] = None) -> AuthflowError:
    """通信エラーを作成（呼び出し側でのリトライが可能）"""
    return AuthflowError(
        code=ErrorCode.HTTP_TRANSPORT.value,
        message=message,
        details=details,
        recoverable=True,
    )


def create_decode_error(message: str, details: Optional[Dict[str, Any]] = None) -> AuthflowError:
    """レスポンス本文のデコードエラーを作成"""
    return AuthflowError(
        code=ErrorCode.HTTP_DECODE.value,
        message=message,
        details=details,
        recoverable=False,
    )


def create_denied_error(message: str, details: Optional[Dict[str, Any]] = None) -> AuthflowError:
    """認可サーバーに拒否された場合のエラーを作成"""
    return AuthflowError(
        code=ErrorCode.AUTH_DENIED.value,
        message=message,
        details=details,
        recoverable=False,
        log_level=logging.WARNING,
    )
