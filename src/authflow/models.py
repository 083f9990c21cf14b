"""
共通データモデル

認可リクエスト、認可結果、HTTPリクエスト結果のデータ構造を定義
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from authflow.errors import AuthflowException, ErrorKind, create_parse_error

DEFAULT_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SCOPES_SEPARATOR = " "
UTM_SOURCE = "spotify-sdk"
DEFAULT_CAMPAIGN = "android-sdk"


class QueryParam:
    """認可画面とのやり取りで使うクエリパラメータ名"""
    CLIENT_ID = "client_id"
    RESPONSE_TYPE = "response_type"
    REDIRECT_URI = "redirect_uri"
    STATE = "state"
    SCOPE = "scope"
    SHOW_DIALOG = "show_dialog"
    UTM_SOURCE = "utm_source"
    UTM_MEDIUM = "utm_medium"
    UTM_CAMPAIGN = "utm_campaign"
    CODE_CHALLENGE = "code_challenge"
    CODE_CHALLENGE_METHOD = "code_challenge_method"
    ERROR = "error"
    CODE = "code"
    ACCESS_TOKEN = "access_token"
    EXPIRES_IN = "expires_in"


RESERVED_PARAMS = frozenset({
    QueryParam.CLIENT_ID,
    QueryParam.RESPONSE_TYPE,
    QueryParam.REDIRECT_URI,
    QueryParam.STATE,
    QueryParam.SCOPE,
    QueryParam.SHOW_DIALOG,
    QueryParam.UTM_SOURCE,
    QueryParam.UTM_MEDIUM,
    QueryParam.UTM_CAMPAIGN,
    QueryParam.CODE_CHALLENGE,
    QueryParam.CODE_CHALLENGE_METHOD,
})


class ResponseType(Enum):
    """認可レスポンスの種類"""
    TOKEN = "token"
    CODE = "code"


class ResultCode(IntEnum):
    """外部認可画面から返される結果コード"""
    OK = -1
    CANCELED = 0
    ERROR = -2


class SessionState(Enum):
    """認可セッションの状態"""
    IDLE = "idle"
    AWAITING_EXTERNAL_RESULT = "awaiting_external_result"
    RESOLVED = "resolved"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.RESOLVED, SessionState.FAILED, SessionState.CANCELLED)


@dataclass(frozen=True)
class SessionHandle:
    """認可リクエストとコールバックを対応付ける識別子"""
    id: str


@dataclass(frozen=True)
class AuthorizationRequest:
    """認可リクエスト

    Attributes:
        client_id: クライアントID
        redirect_uri: リダイレクト先URI
        response_type: 要求するレスポンス種別
        scopes: 要求するスコープ
        show_dialog: 認可ダイアログを毎回表示するか
        campaign_tag: キャンペーン識別子
        state: CSRF対策用のstate値
        custom_params: 追加のクエリパラメータ
        code_challenge: PKCEのチャレンジ値
        code_challenge_method: PKCEのチャレンジ方式
        code_verifier: PKCEのverifier（URLには含めない）
    """
    client_id: str
    redirect_uri: str
    response_type: ResponseType
    scopes: frozenset = field(default_factory=frozenset)
    show_dialog: bool = False
    campaign_tag: Optional[str] = None
    state: Optional[str] = None
    custom_params: Tuple[Tuple[str, str], ...] = ()
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    code_verifier: Optional[str] = field(default=None, repr=False, compare=False)

    @property
    def campaign(self) -> str:
        """キャンペーン識別子（未設定時は既定値）"""
        return self.campaign_tag or DEFAULT_CAMPAIGN

    def custom_param(self, key: str) -> Optional[str]:
        return dict(self.custom_params).get(key)

    def to_query_params(self) -> List[Tuple[str, str]]:
        """認可画面が期待するクエリパラメータ列に変換する"""
        params: List[Tuple[str, str]] = [
            (QueryParam.CLIENT_ID, self.client_id),
            (QueryParam.RESPONSE_TYPE, self.response_type.value),
            (QueryParam.REDIRECT_URI, self.redirect_uri),
            (QueryParam.SHOW_DIALOG, "true" if self.show_dialog else "false"),
            (QueryParam.UTM_SOURCE, UTM_SOURCE),
            (QueryParam.UTM_MEDIUM, DEFAULT_CAMPAIGN),
            (QueryParam.UTM_CAMPAIGN, self.campaign),
        ]
        if self.scopes:
            params.append((QueryParam.SCOPE, SCOPES_SEPARATOR.join(sorted(self.scopes))))
        if self.state is not None:
            params.append((QueryParam.STATE, self.state))
        if self.code_challenge:
            params.append((QueryParam.CODE_CHALLENGE, self.code_challenge))
            params.append((QueryParam.CODE_CHALLENGE_METHOD, self.code_challenge_method or "S256"))
        params.extend(self.custom_params)
        return params

    def to_url(self, base_url: str = DEFAULT_AUTHORIZE_URL) -> str:
        return str(httpx.URL(base_url).copy_merge_params(self.to_query_params()))

    @classmethod
    def from_url(cls, url: str) -> "AuthorizationRequest":
        """to_url で生成したURLから認可リクエストを復元する

        Raises:
            AuthflowException: 必須パラメータが欠けている場合
        """
        params = httpx.URL(url).params
        client_id = params.get(QueryParam.CLIENT_ID)
        redirect_uri = params.get(QueryParam.REDIRECT_URI)
        raw_type = params.get(QueryParam.RESPONSE_TYPE)
        if not client_id or not redirect_uri or not raw_type:
            raise AuthflowException(
                create_parse_error("Authorization URL is missing required parameters.", {"url": url})
            )
        try:
            response_type = ResponseType(raw_type)
        except ValueError as exc:
            raise AuthflowException(
                create_parse_error(f"Unknown response type: {raw_type}", {"url": url})
            ) from exc

        raw_scope = params.get(QueryParam.SCOPE, "")
        campaign = params.get(QueryParam.UTM_CAMPAIGN)
        custom = tuple(
            (key, value) for key, value in params.multi_items() if key not in RESERVED_PARAMS
        )
        return cls(
            client_id=client_id,
            redirect_uri=redirect_uri,
            response_type=response_type,
            scopes=frozenset(s for s in raw_scope.split(SCOPES_SEPARATOR) if s),
            show_dialog=params.get(QueryParam.SHOW_DIALOG) == "true",
            campaign_tag=None if campaign in (None, DEFAULT_CAMPAIGN) else campaign,
            state=params.get(QueryParam.STATE),
            custom_params=custom,
            code_challenge=params.get(QueryParam.CODE_CHALLENGE),
            code_challenge_method=params.get(QueryParam.CODE_CHALLENGE_METHOD),
        )


@dataclass(frozen=True)
class TokenResult:
    """アクセストークンを取得できた認可結果"""
    value: str
    expires_in: Optional[int] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class CodeResult:
    """認可コードを取得できた認可結果"""
    value: str
    state: Optional[str] = None


@dataclass(frozen=True)
class ErrorResult:
    """失敗した認可結果"""
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class CancelledResult:
    """ユーザーが中断した認可結果"""


AuthorizationResult = Union[TokenResult, CodeResult, ErrorResult, CancelledResult]


@dataclass(frozen=True)
class HttpResponse:
    """認証付きリクエストの成功結果

    Attributes:
        status: HTTPステータスコード
        body: インデント3で整形したJSON文字列
        data: デコード済みのJSONオブジェクト
    """
    status: int
    body: str
    data: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RequestFailure:
    """認証付きリクエストの失敗結果"""
    kind: ErrorKind
    detail: str


RequestOutcome = Union[HttpResponse, RequestFailure]
