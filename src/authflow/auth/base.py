"""外部認可画面への受け渡し基盤。

認可URLを外部の認可画面（ブラウザ等）に引き渡すランチャーの共通インターフェースを定義する。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
import webbrowser

from authflow.models import SessionHandle

logger = logging.getLogger(__name__)


class AuthorizationLauncher(ABC):
    """外部認可画面を起動するランチャーの抽象基底クラス。

    起動のみを担当し、結果の受け取りは呼び出し側が行う。
    """

    @abstractmethod
    def launch(self, url: str, handle: SessionHandle) -> None:
        """認可URLを外部認可画面に引き渡す。"""


class BrowserLauncher(AuthorizationLauncher):
    """既定のWebブラウザで認可URLを開く。"""

    def launch(self, url: str, handle: SessionHandle) -> None:
        logger.info(f"Opening authorization page in browser (session={handle.id})")
        if not webbrowser.open(url):
            logger.warning(f"Browser could not be opened. Visit this URL manually: {url}")
