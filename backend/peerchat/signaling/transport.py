"""시그널링 전송 어댑터 인터페이스.

룸/세션 단위로 이름 붙은 메시지를 주고받는 양방향 채널입니다.
수신 메시지는 도착 순서대로 하나씩 핸들러에 전달되며, 비동기 핸들러는
완료될 때까지 기다린 뒤 다음 메시지를 처리합니다 (룸 단위 FIFO).

전송 계층 이벤트:
    connect: 시그널링 서버 연결(재연결) 완료
    disconnect: 연결 끊김 (재연결은 전송 어댑터가 담당)
"""

import inspect
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from ..errors import TransportError

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Union[None, Awaitable[None]]]


class SignalingTransport:
    """시그널링 전송 어댑터 베이스 클래스.

    하위 클래스는 send()를 구현하고, 수신한 메시지를 dispatch()로 전달합니다.
    """

    def __init__(self):
        # event -> handlers (등록 순서 유지)
        self._handlers: Dict[str, List[Handler]] = defaultdict(list)

    @property
    def connected(self) -> bool:
        raise NotImplementedError

    def on(self, event: str, handler: Handler) -> None:
        """이벤트 핸들러를 등록합니다."""
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Optional[Handler] = None) -> None:
        """이벤트 핸들러를 해제합니다. handler가 없으면 해당 이벤트 전체 해제."""
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event, [])
        self._handlers[event] = [h for h in handlers if h != handler]

    def handler_count(self, event: str) -> int:
        return len(self._handlers.get(event, []))

    async def dispatch(self, event: str, data: Optional[dict] = None) -> None:
        """수신 메시지를 등록된 핸들러에 순서대로 전달합니다."""
        handlers = list(self._handlers.get(event, []))
        if not handlers:
            logger.debug(f"[Signaling] 핸들러 없는 메시지: {event}")
            return

        for handler in handlers:
            try:
                result = handler(data or {})
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[Signaling] '{event}' 핸들러 처리 중 오류: {e}", exc_info=True)

    async def send(self, event: str, data: Optional[dict] = None) -> None:
        """메시지를 전송합니다.

        Raises:
            TransportError: 전송 실패
        """
        raise NotImplementedError

    async def close(self) -> None:
        pass


class InMemoryTransport(SignalingTransport):
    """프로세스 내 시그널링 전송.

    보낸 메시지를 sent 리스트에 기록하고, 연결된 상대 전송이 있으면
    그쪽으로 전달합니다. 임베딩 및 테스트용입니다.

    Examples:
        >>> a, b = InMemoryTransport(), InMemoryTransport()
        >>> a.link(b)
        >>> await a.send("offer", {...})  # b의 offer 핸들러 호출
    """

    def __init__(self):
        super().__init__()
        self.sent: List[Tuple[str, dict]] = []
        self._connected = True
        self._peer: Optional["InMemoryTransport"] = None

    @property
    def connected(self) -> bool:
        return self._connected

    def link(self, peer: "InMemoryTransport") -> None:
        """두 전송을 서로 연결합니다."""
        self._peer = peer
        peer._peer = self

    async def send(self, event: str, data: Optional[dict] = None) -> None:
        if not self._connected:
            raise TransportError(f"연결되지 않은 상태에서 '{event}' 전송 시도")
        payload = data or {}
        self.sent.append((event, payload))
        logger.debug(f"[Signaling] 메시지 전송: {event}")
        if self._peer is not None:
            await self._peer.dispatch(event, payload)

    async def deliver(self, event: str, data: Optional[dict] = None) -> None:
        """서버로부터 메시지가 도착한 것처럼 전달합니다."""
        await self.dispatch(event, data)

    async def disconnect(self) -> None:
        self._connected = False
        await self.dispatch("disconnect", {"reason": "closed"})

    async def reconnect(self) -> None:
        self._connected = True
        await self.dispatch("connect", {})

    def sent_events(self, event: Optional[str] = None) -> List[Any]:
        """보낸 메시지 이벤트 이름 목록 (event 지정 시 해당 payload 목록)."""
        if event is None:
            return [name for name, _ in self.sent]
        return [payload for name, payload in self.sent if name == event]
