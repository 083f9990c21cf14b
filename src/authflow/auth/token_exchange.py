"""認可コードをアクセストークンに交換する。"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

import httpx

from authflow.errors import (
    AuthflowException,
    create_decode_error,
    create_denied_error,
    create_parse_error,
    create_transport_error,
)

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL = "https://accounts.spotify.com/api/token"
GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"


@dataclass(frozen=True, slots=True)
class TokenExchangeResponse:
    """トークンエンドポイントの応答。"""

    access_token: str
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "TokenExchangeResponse":
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise AuthflowException(
                create_parse_error("アクセストークンがレスポンスに含まれていません。")
            )
        expires_in = payload.get("expires_in")
        return cls(
            access_token=access_token,
            token_type=payload.get("token_type"),
            expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else None,
            refresh_token=payload.get("refresh_token"),
            scope=payload.get("scope"),
        )


class TokenExchangeClient:
    """PKCEのverifierを用いて認可コードを交換するクライアント。"""

    def __init__(
        self,
        client_id: str,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._token_url = token_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    async def exchange(self, code: str, redirect_uri: str, code_verifier: str) -> TokenExchangeResponse:
        """認可コードをアクセストークンに交換する。

        Args:
            code: 認可コード。
            redirect_uri: 認可リクエストで使用したリダイレクトURI。
            code_verifier: PKCEのverifier。

        Returns:
            TokenExchangeResponse: 交換結果。

        Raises:
            AuthflowException: 通信・デコード・応答内容のいずれかに失敗した場合。
        """

        data = {
            "grant_type": GRANT_TYPE_AUTHORIZATION_CODE,
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self._client_id,
            "code_verifier": code_verifier,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = await client.post(
                    self._token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as exc:
            raise AuthflowException(
                create_transport_error(f"Token exchange failed: {exc}", {"url": self._token_url})
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthflowException(
                create_decode_error(
                    f"Token endpoint returned a non-JSON body (HTTP {response.status_code})",
                    {"status": response.status_code},
                )
            ) from exc

        if not isinstance(payload, dict):
            raise AuthflowException(create_decode_error("Token endpoint returned a non-object body"))

        if response.is_error:
            message = payload.get("error_description") or payload.get("error") or response.reason_phrase
            raise AuthflowException(
                create_denied_error(
                    f"Token exchange was rejected: {message}",
                    {"status": response.status_code},
                )
            )

        logger.debug(f"Token exchange succeeded (status={response.status_code})")
        return TokenExchangeResponse.from_payload(payload)
