"""Pydantic V2 ベースの設定モデル"""

import json
import logging
from typing import Annotated, Any, List, Literal, Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from authflow.auth.token_exchange import DEFAULT_TOKEN_URL
from authflow.models import DEFAULT_AUTHORIZE_URL

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_ENDPOINT = "https://api.spotify.com/v1/me"


class AuthflowSettings(BaseSettings):
    """authflow の設定

    環境変数（AUTHFLOW_ 接頭辞）と .env から読み込む。
    """

    model_config = SettingsConfigDict(
        env_prefix="AUTHFLOW_",
        env_file=".env",
        extra="forbid",
    )

    # クライアント設定
    client_id: str = Field(..., min_length=1, description="Vendor client ID")
    redirect_scheme: str = "authflow"
    redirect_host: str = "callback"
    redirect_uri: Optional[str] = None
    scopes: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["user-read-email"])
    campaign: Optional[str] = None
    show_dialog: bool = False

    # エンドポイント設定
    authorize_url: str = DEFAULT_AUTHORIZE_URL
    token_url: str = DEFAULT_TOKEN_URL
    profile_endpoint: str = DEFAULT_PROFILE_ENDPOINT

    # 通信設定
    timeout: float = Field(default=10.0, gt=0)
    callback_timeout: float = Field(default=180.0, gt=0)
    use_pkce: bool = True

    # ログ設定
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[Any, ...]:
        """設定ソースの優先順位（init > env > dotenv）"""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @field_validator("scopes", mode="before")
    @classmethod
    def split_scopes(cls, value: Any) -> Any:
        """カンマまたは空白区切りの文字列もスコープ一覧として受け付ける"""
        if isinstance(value, str):
            if value.strip().startswith("["):
                return json.loads(value)
            return [s for s in value.replace(",", " ").split() if s]
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def validate_redirect(self) -> "AuthflowSettings":
        if not self.redirect_uri and not (self.redirect_scheme and self.redirect_host):
            raise ValueError("redirect_uri か redirect_scheme/redirect_host のいずれかが必要です")
        return self

    @property
    def resolved_redirect_uri(self) -> str:
        """リダイレクト先URI（明示指定がなければ scheme://host）"""
        if self.redirect_uri:
            return self.redirect_uri
        return f"{self.redirect_scheme}://{self.redirect_host}"

    @property
    def logging_level(self) -> int:
        return logging.getLevelName(self.log_level)

    def dump_masked(self) -> dict:
        """クライアントIDをマスクした設定を返却する"""
        data = self.model_dump()
        client_id = data.get("client_id")
        if client_id:
            data["client_id"] = (
                f"{client_id[:4]}...{client_id[-4:]}" if len(client_id) > 12 else "***"
            )
        return data
