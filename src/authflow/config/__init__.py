"""設定管理 - 設定の読み込みと管理"""

from authflow.config.settings import DEFAULT_PROFILE_ENDPOINT, AuthflowSettings

__all__ = [
    "AuthflowSettings",
    "DEFAULT_PROFILE_ENDPOINT",
]
