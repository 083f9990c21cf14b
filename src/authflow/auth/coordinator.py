"""認可リクエストの構築と認可コールバックの解析を行う。"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
import logging
import threading
from typing import Any, Iterable, Mapping
from urllib.parse import parse_qsl, urlparse
import uuid

from authflow.auth.base import AuthorizationLauncher, BrowserLauncher
from authflow.auth.pkce import create_pkce_information
from authflow.errors import AuthflowException, ErrorKind, create_config_error
from authflow.models import (
    DEFAULT_AUTHORIZE_URL,
    AuthorizationRequest,
    AuthorizationResult,
    CancelledResult,
    CodeResult,
    ErrorResult,
    QueryParam,
    RESERVED_PARAMS,
    ResponseType,
    ResultCode,
    SessionHandle,
    SessionState,
    TokenResult,
)

logger = logging.getLogger(__name__)

# 一部の認可画面は access_token ではなく token というキーで返す
_TOKEN_KEYS = (QueryParam.ACCESS_TOKEN, "token")

# 二重完了を検出するために保持する完了済みセッション数の上限
MAX_FINISHED_SESSIONS = 128


@dataclass(slots=True)
class _Session:
    request: AuthorizationRequest
    state: SessionState = SessionState.IDLE


class AuthorizationCoordinator:
    """認可リクエストを外部認可画面に引き渡し、その結果を型付きで返す。

    どのフロー（トークン／コード）の結果として解析するかは、
    begin_authorization で発行したセッションハンドルで決まる。
    完了したセッションは保持せず、終了状態のみを上限付きで記録する。
    """

    def __init__(
        self,
        launcher: AuthorizationLauncher | None = None,
        authorize_url: str = DEFAULT_AUTHORIZE_URL,
        use_pkce: bool = False,
    ) -> None:
        """AuthorizationCoordinatorを初期化する。

        Args:
            launcher: 外部認可画面のランチャー。
            authorize_url: 認可エンドポイントのURL。
            use_pkce: コードフローでPKCEを付与するかどうか。
        """

        self._launcher = launcher or BrowserLauncher()
        self._authorize_url = authorize_url
        self._use_pkce = use_pkce
        self._sessions: dict[str, _Session] = {}
        self._finished: OrderedDict[str, SessionState] = OrderedDict()
        self._lock = threading.Lock()

    def build_request(
        self,
        client_id: str,
        response_type: ResponseType,
        redirect_uri: str,
        scopes: Iterable[str] = (),
        campaign_tag: str | None = None,
        *,
        show_dialog: bool = False,
        state: str | None = None,
        custom_params: Mapping[str, str] | None = None,
    ) -> AuthorizationRequest:
        """認可リクエストを構築する。

        Raises:
            AuthflowException: client_id または redirect_uri が空の場合、
                または追加パラメータが空か予約済みのキーを使っている場合。
        """

        if not client_id:
            raise AuthflowException(create_config_error("Client ID can't be empty"))
        if not redirect_uri:
            raise AuthflowException(create_config_error("Redirect URI can't be empty"))

        params: list[tuple[str, str]] = []
        for key, value in (custom_params or {}).items():
            if not key:
                raise AuthflowException(create_config_error("Custom parameter key can't be empty"))
            if key in RESERVED_PARAMS:
                raise AuthflowException(
                    create_config_error(f"Custom parameter key is reserved: {key}", {"key": key})
                )
            if not value:
                raise AuthflowException(
                    create_config_error("Custom parameter value can't be empty", {"key": key})
                )
            params.append((key, value))

        pkce = None
        if self._use_pkce and response_type is ResponseType.CODE:
            pkce = create_pkce_information()

        return AuthorizationRequest(
            client_id=client_id,
            redirect_uri=redirect_uri,
            response_type=response_type,
            scopes=frozenset(scopes),
            show_dialog=show_dialog,
            campaign_tag=campaign_tag,
            state=state,
            custom_params=tuple(params),
            code_challenge=pkce.challenge if pkce else None,
            code_challenge_method=pkce.method if pkce else None,
            code_verifier=pkce.verifier if pkce else None,
        )

    def begin_authorization(self, request: AuthorizationRequest) -> SessionHandle:
        """外部認可画面に認可リクエストを引き渡す。

        同じリクエストを再度渡した場合は新しいセッションとして扱い、
        PKCEのverifierもリクエストのものを引き継ぐ。

        Returns:
            SessionHandle: complete_authorization に渡すセッションハンドル。
        """

        handle = SessionHandle(id=uuid.uuid4().hex)
        with self._lock:
            self._sessions[handle.id] = _Session(
                request=request, state=SessionState.AWAITING_EXTERNAL_RESULT
            )

        url = request.to_url(self._authorize_url)
        try:
            self._launcher.launch(url, handle)
        except Exception:
            with self._lock:
                self._finish(handle.id, SessionState.FAILED)
            logger.exception(f"Failed to launch authorization surface (session={handle.id})")
            raise
        logger.debug(
            f"Authorization started (session={handle.id}, type={request.response_type.value})"
        )
        return handle

    def complete_authorization(
        self,
        handle: SessionHandle,
        result_code: int,
        payload: Mapping[str, Any] | None,
    ) -> AuthorizationResult:
        """外部認可画面のコールバックを型付きの認可結果に変換する。

        結果を返した時点でセッションは破棄される。

        Args:
            handle: begin_authorization が返したセッションハンドル。
            result_code: 外部認可画面の結果コード。
            payload: コールバックのペイロード。

        Returns:
            AuthorizationResult: 認可結果。
        """

        with self._lock:
            finished = self._finished.get(handle.id)
            if finished is not None:
                return ErrorResult(
                    ErrorKind.PARSE_FAILURE,
                    f"Session is not awaiting a result: {finished.value}",
                )
            session = self._sessions.get(handle.id)
            if session is None:
                return ErrorResult(ErrorKind.PARSE_FAILURE, f"Unknown session: {handle.id}")

            result = self._parse_result(session.request, result_code, payload)
            state = _terminal_state(result)
            self._finish(handle.id, state)

        logger.info(f"Authorization completed (session={handle.id}, state={state.value})")
        return result

    def session_state(self, handle: SessionHandle) -> SessionState:
        with self._lock:
            session = self._sessions.get(handle.id)
            if session is not None:
                return session.state
            return self._finished.get(handle.id, SessionState.IDLE)

    def pkce_verifier(self, handle: SessionHandle) -> str | None:
        """結果待ちのセッションに紐づくPKCEのverifierを返す。"""

        request = self.request_for(handle)
        return request.code_verifier if request else None

    def request_for(self, handle: SessionHandle) -> AuthorizationRequest | None:
        with self._lock:
            session = self._sessions.get(handle.id)
        return session.request if session else None

    def discard(self, handle: SessionHandle) -> None:
        with self._lock:
            self._sessions.pop(handle.id, None)
            self._finished.pop(handle.id, None)

    def _finish(self, handle_id: str, state: SessionState) -> None:
        # ロックを保持した状態で呼び出すこと
        self._sessions.pop(handle_id, None)
        self._finished[handle_id] = state
        while len(self._finished) > MAX_FINISHED_SESSIONS:
            self._finished.popitem(last=False)

    @staticmethod
    def parse_redirect_uri(uri: str | None) -> dict[str, Any]:
        """リダイレクトURIをコールバックのペイロードに変換する。

        エラーとコードはクエリから、トークンはフラグメントから取り出す。
        """

        if not uri:
            return {}

        parsed = urlparse(uri)
        query = dict(parse_qsl(parsed.query))
        if QueryParam.ERROR in query:
            return {
                QueryParam.ERROR: query[QueryParam.ERROR],
                QueryParam.STATE: query.get(QueryParam.STATE),
            }
        if QueryParam.CODE in query:
            return {
                QueryParam.CODE: query[QueryParam.CODE],
                QueryParam.STATE: query.get(QueryParam.STATE),
            }

        fragment = dict(parse_qsl(parsed.fragment))
        if not fragment:
            return {}

        payload: dict[str, Any] = {
            QueryParam.ACCESS_TOKEN: fragment.get(QueryParam.ACCESS_TOKEN),
            QueryParam.STATE: fragment.get(QueryParam.STATE),
        }
        expires_in = fragment.get(QueryParam.EXPIRES_IN)
        if expires_in is not None:
            try:
                payload[QueryParam.EXPIRES_IN] = int(expires_in)
            except ValueError:
                pass
        return payload

    def _parse_result(
        self,
        request: AuthorizationRequest,
        result_code: int,
        payload: Mapping[str, Any] | None,
    ) -> AuthorizationResult:
        try:
            code = ResultCode(result_code)
        except ValueError:
            return ErrorResult(ErrorKind.PARSE_FAILURE, f"Unknown result code: {result_code}")

        if code is ResultCode.CANCELED:
            return CancelledResult()

        if payload is not None and not isinstance(payload, Mapping):
            return ErrorResult(ErrorKind.PARSE_FAILURE, "Callback payload is not a mapping")
        payload = payload or {}

        error = payload.get(QueryParam.ERROR)
        if error:
            return ErrorResult(ErrorKind.AUTHORIZATION_DENIED, str(error))
        if code is ResultCode.ERROR:
            return ErrorResult(ErrorKind.AUTHORIZATION_DENIED, "Authorization surface reported an error")

        returned_state = payload.get(QueryParam.STATE)
        if request.state is not None and returned_state != request.state:
            return ErrorResult(ErrorKind.PARSE_FAILURE, "State mismatch in authorization callback")

        if request.response_type is ResponseType.TOKEN:
            token = next(
                (payload[key] for key in _TOKEN_KEYS if isinstance(payload.get(key), str) and payload[key]),
                None,
            )
            if token is None:
                return ErrorResult(ErrorKind.PARSE_FAILURE, "Access token is missing from callback")
            return TokenResult(
                value=token,
                expires_in=_as_int(payload.get(QueryParam.EXPIRES_IN)),
                state=returned_state,
            )

        value = payload.get(QueryParam.CODE)
        if not isinstance(value, str) or not value:
            return ErrorResult(ErrorKind.PARSE_FAILURE, "Authorization code is missing from callback")
        return CodeResult(value=value, state=returned_state)


def _terminal_state(result: AuthorizationResult) -> SessionState:
    if isinstance(result, CancelledResult):
        return SessionState.CANCELLED
    if isinstance(result, ErrorResult):
        return SessionState.FAILED
    return SessionState.RESOLVED


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None
