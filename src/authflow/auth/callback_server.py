"""ローカルのループバックHTTPサーバーで認可コールバックを受け取る。"""

from __future__ import annotations

import asyncio
from http.server import BaseHTTPRequestHandler, HTTPServer
import logging
import threading
from typing import Any
from urllib.parse import urlparse

from authflow.auth.coordinator import AuthorizationCoordinator
from authflow.models import ResultCode

logger = logging.getLogger(__name__)

_FRAGMENT_SUFFIX = "/fragment"

# トークンはURLフラグメントで返るため、ブラウザ側でクエリに載せ替えて送り直させる
_FRAGMENT_RELAY_PAGE = """<!DOCTYPE html>
<html><head><meta charset="utf-8"><title>authflow</title></head>
<body><p>Completing sign in...</p>
<script>
var fragment = window.location.hash.substring(1);
window.location.replace(window.location.pathname + "{suffix}?" + fragment);
</script></body></html>
"""

_DONE_PAGE = b"Authorization finished. You can close this window."


class _CallbackServer(HTTPServer):
    def __init__(self, server_address: tuple[str, int], path: str) -> None:
        super().__init__(server_address, _CallbackHandler)
        self.callback_path = path
        self.redirect_uri: str | None = None
        self.event = threading.Event()


class _CallbackHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        server = self.server
        if not isinstance(server, _CallbackServer):
            self.send_response(500)
            self.end_headers()
            return

        parsed = urlparse(self.path)
        base = server.callback_path
        if parsed.path == base + _FRAGMENT_SUFFIX:
            self._finish(server, f"{base}#{parsed.query}")
            return

        if parsed.path != base:
            self.send_response(404)
            self.end_headers()
            self.wfile.write(b"Not Found")
            return

        if parsed.query:
            self._finish(server, self.path)
            return

        body = _FRAGMENT_RELAY_PAGE.replace("{suffix}", _FRAGMENT_SUFFIX).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(body)

    def _finish(self, server: _CallbackServer, redirect_uri: str) -> None:
        server.redirect_uri = redirect_uri
        server.event.set()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.end_headers()
        self.wfile.write(_DONE_PAGE)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        return


class LoopbackCallbackReceiver:
    """ブラウザからのリダイレクトを待ち受け、(結果コード, ペイロード) を返す。

    with文で使用すると、抜ける際にサーバーを停止する。
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        path: str = "/callback",
        timeout_seconds: float = 180.0,
    ) -> None:
        self._host = host
        self._port = port
        self._path = path
        self._timeout_seconds = timeout_seconds
        self._server: _CallbackServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def redirect_uri(self) -> str:
        if self._server is None:
            raise RuntimeError("Callback receiver is not running")
        port = self._server.server_address[1]
        return f"http://{self._host}:{port}{self._path}"

    def start(self) -> None:
        if self._server is not None:
            return
        self._server = _CallbackServer((self._host, self._port), self._path)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.debug(f"Callback receiver listening on {self.redirect_uri}")

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=1)
        self._server = None
        self._thread = None

    def __enter__(self) -> "LoopbackCallbackReceiver":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    async def wait(self) -> tuple[int, dict[str, Any]]:
        """コールバックを待ち、結果コードとペイロードを返す。

        タイムアウトした場合はキャンセル扱いとする。
        """

        if self._server is None:
            raise RuntimeError("Callback receiver is not running")

        server = self._server
        received = await asyncio.to_thread(server.event.wait, self._timeout_seconds)
        if not received:
            logger.warning("Timed out waiting for the authorization callback")
            return int(ResultCode.CANCELED), {}

        payload = AuthorizationCoordinator.parse_redirect_uri(server.redirect_uri)
        return int(ResultCode.OK), payload
