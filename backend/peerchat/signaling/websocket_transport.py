"""WebSocket 시그널링 전송.

websockets 클라이언트로 시그널링 서버에 연결하고, 끊기면 지수 백오프로
재연결합니다. 메시지 형식은 ``{"type": <event>, "data": {...}}`` JSON입니다.
"""

import asyncio
import json
import logging
from typing import Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import TransportError
from .config import SignalingConfig, signaling_config
from .transport import SignalingTransport

logger = logging.getLogger(__name__)


class WebSocketTransport(SignalingTransport):
    """재연결을 지원하는 WebSocket 시그널링 전송.

    Attributes:
        url (str): 시그널링 서버 URL (토큰은 쿼리 파라미터로 전달)

    Note:
        - 연결/재연결 시 "connect", 끊김 시 "disconnect" 이벤트를 dispatch
        - 재연결 지연: RECONNECT_BASE_DELAY * 2^attempt (최대 RECONNECT_MAX_DELAY)
        - close() 호출 전까지 재연결을 계속 시도
    """

    def __init__(
        self,
        url: Optional[str] = None,
        token: Optional[str] = None,
        config: SignalingConfig = signaling_config,
    ):
        super().__init__()
        self.config = config
        base_url = url or config.SIGNALING_URL
        token = token if token is not None else config.SIGNALING_TOKEN
        self.url = f"{base_url}?{urlencode({'token': token})}" if token else base_url

        self._ws = None
        self._runner: Optional[asyncio.Task] = None
        self._closing = False
        self._ready = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self, timeout: Optional[float] = 10.0) -> None:
        """연결 루프를 시작하고 첫 연결이 성립될 때까지 기다립니다.

        Raises:
            TransportError: timeout 내에 연결하지 못한 경우
        """
        if self._runner is None or self._runner.done():
            self._closing = False
            self._runner = asyncio.create_task(self._run())

        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise TransportError(f"시그널링 서버 연결 실패: {self.config.SIGNALING_URL}") from e

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            try:
                async with websockets.connect(
                    self.url,
                    ping_interval=self.config.PING_INTERVAL,
                    ping_timeout=self.config.PING_TIMEOUT,
                ) as ws:
                    self._ws = ws
                    self._ready.set()
                    attempt = 0
                    logger.info("[Signaling] 시그널링 서버 연결됨")
                    await self.dispatch("connect", {})

                    async for raw in ws:
                        await self._handle_raw(raw)

            except ConnectionClosed as e:
                logger.warning(f"[Signaling] 연결 종료: {e}")
            except (WebSocketException, OSError, asyncio.TimeoutError) as e:
                # 핸드셰이크 거부 (토큰 불일치 등) 포함
                logger.warning(f"[Signaling] 연결 실패: {e}")
            finally:
                was_connected = self._ws is not None
                self._ws = None
                self._ready.clear()
                if was_connected:
                    await self.dispatch("disconnect", {"reason": "connection_lost"})

            if self._closing:
                break

            delay = self.config.backoff_delay(attempt)
            attempt += 1
            logger.info(f"[Signaling] {delay:.1f}초 후 재연결 시도 ({attempt}회)")
            await asyncio.sleep(delay)

    async def _handle_raw(self, raw) -> None:
        """수신한 원시 메시지를 파싱해 dispatch합니다."""
        try:
            message = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as e:
            logger.warning(f"[Signaling] JSON 파싱 실패, 메시지 무시: {e}")
            return

        if not isinstance(message, dict) or not message.get("type"):
            logger.warning(f"[Signaling] type 없는 메시지 무시: {message!r}")
            return

        data = message.get("data")
        await self.dispatch(message["type"], data if isinstance(data, dict) else {})

    async def send(self, event: str, data: Optional[dict] = None) -> None:
        ws = self._ws
        if ws is None:
            raise TransportError(f"연결되지 않은 상태에서 '{event}' 전송 시도")
        try:
            await ws.send(json.dumps({"type": event, "data": data or {}}))
        except ConnectionClosed as e:
            raise TransportError(f"'{event}' 전송 실패: {e}") from e

    async def close(self) -> None:
        """재연결을 멈추고 연결을 종료합니다."""
        self._closing = True
        if self._ws is not None:
            await self._ws.close()
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        logger.info("[Signaling] 시그널링 전송 종료")
