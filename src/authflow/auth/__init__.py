"""認可フローの公開API。"""

from __future__ import annotations

from authflow.auth.base import AuthorizationLauncher, BrowserLauncher
from authflow.auth.callback_server import LoopbackCallbackReceiver
from authflow.auth.coordinator import AuthorizationCoordinator
from authflow.auth.pkce import PKCEInformation, create_pkce_information
from authflow.auth.storage import TokenManager
from authflow.auth.token_exchange import TokenExchangeClient, TokenExchangeResponse

__all__ = [
    "AuthorizationCoordinator",
    "AuthorizationLauncher",
    "BrowserLauncher",
    "LoopbackCallbackReceiver",
    "PKCEInformation",
    "TokenExchangeClient",
    "TokenExchangeResponse",
    "TokenManager",
    "create_pkce_information",
]
