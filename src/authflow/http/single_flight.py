"""
同時に1件だけ実行される認証付きHTTPリクエスト

新しいリクエストを発行すると、未完了の前回リクエストはキャンセルされ、
その結果が呼び出し側に届くことはない。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import itertools
import json
import logging
import threading
from typing import Callable, Optional

import httpx

from authflow.errors import ErrorKind
from authflow.models import HttpResponse, RequestFailure, RequestOutcome

logger = logging.getLogger(__name__)

JSON_INDENT = 3

ResultCallback = Callable[[RequestOutcome], None]


@dataclass(eq=False)
class InFlightRequest:
    """実行中のリクエスト

    Attributes:
        id: リクエストの識別子
        endpoint: リクエスト先
        cancelled: キャンセル済みかどうか
    """
    id: int
    endpoint: str
    cancelled: bool = False
    _task: Optional[asyncio.Task] = field(default=None, repr=False)

    def cancel(self) -> None:
        """トランスポートにキャンセルを通知する"""
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class _InFlightSlot:
    """実行中リクエストを1件だけ保持する。変更はこのクラスのメソッドに限る。"""

    def __init__(self) -> None:
        self._current: Optional[InFlightRequest] = None
        self._lock = threading.Lock()

    @property
    def current(self) -> Optional[InFlightRequest]:
        with self._lock:
            return self._current

    def replace(self, call: Optional[InFlightRequest]) -> Optional[InFlightRequest]:
        """新しいリクエストに差し替え、直前のリクエストを返す"""
        with self._lock:
            previous, self._current = self._current, call
            return previous

    def release(self, call: InFlightRequest) -> bool:
        """call が現在のリクエストであれば解放して True を返す"""
        with self._lock:
            if self._current is not call:
                return False
            self._current = None
            return True


class SingleFlightRequester:
    """
    Bearerトークン付きGETを同時に1件だけ実行するクライアント。

    結果は request() に渡したコールバックへイベントループ上で通知される。
    通知されるのは差し替えられていない最新のリクエストの結果のみ。
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """SingleFlightRequesterを初期化

        Args:
            client: 使用するhttpxクライアント（省略時は内部で生成し、aclose()で閉じる）
            base_url: 相対エンドポイントの基準URL
            timeout: タイムアウト秒数
            transport: 内部生成するクライアントに渡すトランスポート
        """
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._slot = _InFlightSlot()
        self._ids = itertools.count(1)

    @property
    def in_flight(self) -> Optional[InFlightRequest]:
        return self._slot.current

    def request(self, credential: str, endpoint: str, on_result: ResultCallback) -> InFlightRequest:
        """認証付きリクエストを発行する

        実行中のリクエストがあればキャンセルしてから発行する。
        実行中のイベントループから呼び出すこと。

        Args:
            credential: Bearerトークン
            endpoint: リクエスト先（絶対URLまたは base_url からの相対パス）
            on_result: 結果を受け取るコールバック

        Returns:
            InFlightRequest: 発行したリクエスト
        """
        loop = asyncio.get_running_loop()
        call = InFlightRequest(id=next(self._ids), endpoint=endpoint)

        previous = self._slot.replace(call)
        if previous is not None:
            logger.debug(f"Cancelling superseded request #{previous.id}")
            previous.cancel()

        call._task = loop.create_task(self._run(call, credential, endpoint, on_result))
        return call

    async def fetch(self, credential: str, endpoint: str) -> RequestOutcome:
        """1件のリクエストを発行し、その結果を待つ

        Raises:
            asyncio.CancelledError: 後続のリクエストに差し替えられた場合
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _resolve(outcome: RequestOutcome) -> None:
            if not future.done():
                future.set_result(outcome)

        def _on_task_done(_task: asyncio.Task) -> None:
            # 結果が届かずに終わった場合（差し替え・キャンセル）
            if not future.done():
                future.cancel()

        call = self.request(credential, endpoint, _resolve)
        if call._task is not None:
            call._task.add_done_callback(_on_task_done)

        try:
            return await future
        except asyncio.CancelledError:
            if self._slot.release(call):
                call.cancel()
            raise

    def cancel(self) -> None:
        """実行中のリクエストをキャンセルする"""
        call = self._slot.replace(None)
        if call is not None:
            logger.debug(f"Cancelling request #{call.id}")
            call.cancel()

    async def aclose(self) -> None:
        """実行中のリクエストをキャンセルし、保持しているクライアントを閉じる"""
        call = self._slot.replace(None)
        if call is not None:
            call.cancel()
            if call._task is not None:
                try:
                    await call._task
                except asyncio.CancelledError:
                    pass
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SingleFlightRequester":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _run(
        self,
        call: InFlightRequest,
        credential: str,
        endpoint: str,
        on_result: ResultCallback,
    ) -> None:
        try:
            outcome = await self._perform(credential, endpoint)
        except asyncio.CancelledError:
            self._slot.release(call)
            logger.debug(f"Request #{call.id} was cancelled")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in request #{call.id}")
            outcome = RequestFailure(ErrorKind.TRANSPORT, f"Internal Error: {e}")

        # 差し替え済みのリクエストの結果は破棄する
        if call.cancelled or not self._slot.release(call):
            logger.debug(f"Dropping result of superseded request #{call.id}")
            return

        try:
            on_result(outcome)
        except Exception:
            logger.exception(f"Result callback raised for request #{call.id}")

    async def _perform(self, credential: str, endpoint: str) -> RequestOutcome:
        headers = {"Authorization": f"Bearer {credential}"}
        try:
            response = await self._client.get(endpoint, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Request to {endpoint} failed: {e.__class__.__name__}")
            return RequestFailure(ErrorKind.TRANSPORT, f"Failed to fetch data: {e!r}")

        try:
            data = response.json()
        except ValueError as e:
            return RequestFailure(ErrorKind.DECODE, f"Failed to parse data: {e}")

        if not isinstance(data, dict):
            return RequestFailure(
                ErrorKind.DECODE,
                f"Failed to parse data: expected a JSON object, got {type(data).__name__}",
            )

        return HttpResponse(
            status=response.status_code,
            body=json.dumps(data, indent=JSON_INDENT, ensure_ascii=False),
            data=data,
        )
