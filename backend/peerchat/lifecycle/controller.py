"""세션 라이프사이클 컨트롤러.

매칭 큐 상태(QueueStatus)를 소유하고, 매칭 서버 이벤트와 사용자 명령을
NegotiationEngine 호출로 바꿉니다.

Queue State Machine (자기 자신으로의 전이는 무시):
    idle         -> searching
    searching    -> matched, idle
    matched      -> connecting, searching, disconnected, idle
    connecting   -> connected, searching, disconnected, failed, idle
    connected    -> searching, disconnected, failed, idle
    disconnected -> searching, idle
    failed       -> searching, idle

Events:
    queue_status (QueueStatus): 큐 상태 변경
    match_found (MatchFound): 매칭 성사
    partner_left (str): 상대방 퇴장 (사유)
    negotiation_failed (NegotiationError): 협상 실패로 재매칭
    capture_failed (CaptureUnavailable): 캡처 실패로 idle 전환
    queue_position (Optional[int]): 대기열 순번
    banned (Banned): 계정 정지
    server_error (str): 서버 오류 메시지
    peer_id (str): 서버가 부여한 자신의 peer ID
"""

import asyncio
import logging
from typing import Callable, Optional, Type

from pydantic import ValidationError
from pyee.asyncio import AsyncIOEventEmitter

from ..errors import CaptureUnavailable, NegotiationError, QueueStateError, TransportError
from ..media.capture import MediaCaptureAdapter
from ..shared.dto import (
    Banned,
    ErrorMessage,
    MatchFound,
    PartnerDisconnected,
    PartnerLeft,
    PeerAssigned,
    QueueJoined,
    SignalingPayload,
)
from ..shared.types import ConnectionState, PartyRole, QueueStatus
from ..signaling.transport import SignalingTransport
from ..webrtc.peer_manager import NegotiationEngine
from ..webrtc.session import Session
from .config import LifecycleConfig, lifecycle_config

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    QueueStatus.IDLE: {QueueStatus.SEARCHING},
    QueueStatus.SEARCHING: {QueueStatus.MATCHED, QueueStatus.IDLE},
    QueueStatus.MATCHED: {
        QueueStatus.CONNECTING, QueueStatus.SEARCHING, QueueStatus.DISCONNECTED, QueueStatus.IDLE,
    },
    QueueStatus.CONNECTING: {
        QueueStatus.CONNECTED, QueueStatus.SEARCHING, QueueStatus.DISCONNECTED,
        QueueStatus.FAILED, QueueStatus.IDLE,
    },
    QueueStatus.CONNECTED: {
        QueueStatus.SEARCHING, QueueStatus.DISCONNECTED, QueueStatus.FAILED, QueueStatus.IDLE,
    },
    QueueStatus.DISCONNECTED: {QueueStatus.SEARCHING, QueueStatus.IDLE},
    QueueStatus.FAILED: {QueueStatus.SEARCHING, QueueStatus.IDLE},
}

# 세션이 살아있는 상태
_IN_MATCH = (QueueStatus.MATCHED, QueueStatus.CONNECTING, QueueStatus.CONNECTED)


class SessionLifecycleController(AsyncIOEventEmitter):
    """매칭 큐 상태 머신.

    Attributes:
        transport (SignalingTransport): 시그널링 전송
        engine (NegotiationEngine): 피어 협상 엔진
        capture (MediaCaptureAdapter): 로컬 캡처 어댑터
        peer_id (Optional[str]): 서버가 부여한 자신의 ID
        room_id (Optional[str]): 현재 매칭된 룸
        partner_id (Optional[str]): 현재 매칭 상대

    Note:
        - 공개 명령은 허용되지 않는 상태에서 호출되면 경고 로그 후 False 반환
        - 내부 상태 전이가 표를 벗어나면 QueueStateError
    """

    def __init__(
        self,
        transport: SignalingTransport,
        engine: NegotiationEngine,
        capture: Optional[MediaCaptureAdapter] = None,
        auto_rejoin: Optional[bool] = None,
        rejoin_delay: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        credentials_clearer: Optional[Callable[[], None]] = None,
        config: LifecycleConfig = lifecycle_config,
    ):
        super().__init__()
        self.transport = transport
        self.engine = engine
        self.capture = capture or engine.capture
        self._auto_rejoin = config.AUTO_REJOIN if auto_rejoin is None else auto_rejoin
        self.rejoin_delay = config.REJOIN_DELAY if rejoin_delay is None else rejoin_delay
        self.connect_timeout = config.CONNECT_TIMEOUT if connect_timeout is None else connect_timeout
        self._credentials_clearer = credentials_clearer

        self._status = QueueStatus.IDLE
        self.peer_id: Optional[str] = None
        self.room_id: Optional[str] = None
        self.partner_id: Optional[str] = None

        self._rejoin_task: Optional[asyncio.Task] = None
        self._connect_watchdog: Optional[asyncio.Task] = None

        # 전송 재연결 시 큐 재진입 여부
        self._resume_on_connect = False

        self._handlers = {
            "match_found": self._on_match_found,
            "partner_left": self._on_partner_left,
            "match_ended": self._on_partner_left,
            "partner_disconnected": self._on_partner_disconnected,
            "queue_joined": self._on_queue_joined,
            "queue_left": self._on_queue_left,
            "banned": self._on_banned,
            "error": self._on_error,
            "peer_id": self._on_peer_id,
            "connect": self._on_transport_connect,
            "disconnect": self._on_transport_disconnect,
        }
        for event, handler in self._handlers.items():
            transport.on(event, handler)

        engine.on("connection_state", self._on_connection_state)
        engine.on("negotiation_failed", self._on_negotiation_failed)
        engine.on("capture_failed", self._on_capture_failed)

    # ============================================================
    # 상태
    # ============================================================

    @property
    def queue_status(self) -> QueueStatus:
        return self._status

    @property
    def auto_rejoin(self) -> bool:
        return self._auto_rejoin

    @auto_rejoin.setter
    def auto_rejoin(self, enabled: bool) -> None:
        self._auto_rejoin = enabled
        if not enabled:
            self._cancel_rejoin()
        logger.info(f"[Lifecycle] 자동 재매칭: {enabled}")

    def _transition(self, target: QueueStatus) -> bool:
        """큐 상태를 전이합니다.

        Returns:
            bool: 상태가 바뀌었으면 True (같은 상태면 False)

        Raises:
            QueueStateError: 허용되지 않는 전이
        """
        current = self._status
        if target is current:
            return False
        if target not in _TRANSITIONS[current]:
            raise QueueStateError(current.value, target.value)

        self._status = target
        logger.info(f"[Lifecycle] 큐 상태: {current.value} -> {target.value}")
        self.emit("queue_status", target)
        return True

    # ============================================================
    # 사용자 명령
    # ============================================================

    async def join_queue(self) -> bool:
        """매칭 큐에 들어갑니다. idle 상태에서만 가능합니다.

        Raises:
            CaptureUnavailable: 로컬 캡처 획득 실패
        """
        if self._status is not QueueStatus.IDLE:
            logger.warning(f"[Lifecycle] {self._status.value} 상태에서 join_queue 무시")
            return False

        self._cancel_rejoin()
        await self.capture.acquire()
        if self._status is not QueueStatus.IDLE:
            return False

        self._transition(QueueStatus.SEARCHING)
        await self._send("join_queue")
        return True

    async def leave_queue(self) -> bool:
        """대기열에서 나갑니다 (searching 또는 재매칭 대기 중)."""
        if self._status not in (QueueStatus.SEARCHING, QueueStatus.DISCONNECTED):
            logger.warning(f"[Lifecycle] {self._status.value} 상태에서 leave_queue 무시")
            return False

        self._cancel_rejoin()
        self._transition(QueueStatus.IDLE)
        await self._send("leave_queue")
        return True

    async def next_match(self) -> bool:
        """현재 세션을 끊고 바로 다음 상대를 찾습니다."""
        if self._status is QueueStatus.IDLE:
            logger.warning("[Lifecycle] idle 상태에서 next_match 무시")
            return False

        self._cancel_rejoin()
        self._end_match()
        self._transition(QueueStatus.SEARCHING)
        await self._send("next_match")
        return True

    async def end_chat(self) -> bool:
        """세션과 캡처를 모두 종료하고 idle로 돌아갑니다. 어느 상태에서든 가능합니다."""
        was_idle = self._status is QueueStatus.IDLE

        self._cancel_rejoin()
        self._resume_on_connect = False
        self._end_match()
        self.capture.release()
        self._transition(QueueStatus.IDLE)

        if not was_idle:
            await self._send("end_chat")
        return True

    async def close(self) -> None:
        """핸들러를 해제하고 세션/캡처를 정리합니다."""
        self._cancel_rejoin()
        self._cancel_connect_watchdog()
        for event, handler in self._handlers.items():
            self.transport.off(event, handler)
        await self.engine.aclose()
        self.capture.release()

    # ============================================================
    # 매칭 서버 이벤트
    # ============================================================

    async def _on_match_found(self, data: dict) -> None:
        message = self._parse(MatchFound, data, "match_found")
        if message is None:
            return
        if self._status is not QueueStatus.SEARCHING:
            logger.warning(f"[Lifecycle] {self._status.value} 상태에서 match_found 무시: "
                           f"room={message.room_id}")
            return

        role = message.role or self._fallback_role(message.partner_id)
        if role is None:
            logger.warning(f"[Lifecycle] 역할을 정할 수 없는 매칭 무시: room={message.room_id}")
            return

        self.room_id = message.room_id
        self.partner_id = message.partner_id
        self._transition(QueueStatus.MATCHED)
        logger.info(f"[Lifecycle] 매칭 성사: room={message.room_id}, "
                    f"partner={message.partner_id[:8]}, role={role.value}")
        self.emit("match_found", message)

        self._transition(QueueStatus.CONNECTING)
        self._start_connect_watchdog(message.room_id)

        if role is PartyRole.RESPONDER:
            self.engine.bind(message.room_id)
            return

        try:
            await self.engine.create_session(message.room_id, role)
        except CaptureUnavailable as e:
            await self._on_capture_failed(e)
        except NegotiationError as e:
            if self.room_id == message.room_id:
                await self._requeue(e)

    def _fallback_role(self, partner_id: str) -> Optional[PartyRole]:
        """서버가 역할을 주지 않으면 peer ID가 작은 쪽이 initiator."""
        if self.peer_id is None:
            return None
        return PartyRole.INITIATOR if self.peer_id < partner_id else PartyRole.RESPONDER

    async def _on_partner_left(self, data: dict) -> None:
        message = self._parse(PartnerLeft, data, "partner_left")
        if message is None:
            return
        self._partner_gone(message.reason, message.room_id)

    async def _on_partner_disconnected(self, data: dict) -> None:
        message = self._parse(PartnerDisconnected, data, "partner_disconnected")
        if message is None:
            return
        self._partner_gone("disconnected", message.room_id, rejoin_hint=message.auto_rejoin)

    def _partner_gone(
        self,
        reason: str,
        room_id: Optional[str],
        rejoin_hint: Optional[bool] = None,
    ) -> None:
        if room_id is not None and room_id != self.room_id:
            logger.debug(f"[Lifecycle] 다른 룸의 퇴장 알림 무시: room={room_id}")
            return
        if self._status not in _IN_MATCH:
            logger.debug(f"[Lifecycle] {self._status.value} 상태에서 퇴장 알림 무시")
            return

        logger.info(f"[Lifecycle] 상대방 퇴장: room={self.room_id}, reason={reason}")
        self._end_match()
        self._transition(QueueStatus.DISCONNECTED)
        self.emit("partner_left", reason)

        if self._auto_rejoin and rejoin_hint is not False:
            self._schedule_rejoin()
        else:
            self._transition(QueueStatus.IDLE)

    def _on_queue_joined(self, data: dict) -> None:
        message = self._parse(QueueJoined, data, "queue_joined")
        if message is None:
            return
        logger.info(f"[Lifecycle] 대기열 진입: position={message.position}")
        self.emit("queue_position", message.position)

    def _on_queue_left(self, data: dict) -> None:
        if self._status is QueueStatus.SEARCHING:
            self._transition(QueueStatus.IDLE)

    async def _on_banned(self, data: dict) -> None:
        message = self._parse(Banned, data, "banned") or Banned()
        logger.warning(f"[Lifecycle] 계정 정지: reason={message.reason}, expiry={message.expiry}")

        self._cancel_rejoin()
        self._resume_on_connect = False
        self._end_match()
        self.capture.release()
        self._transition(QueueStatus.IDLE)

        if self._credentials_clearer is not None:
            self._credentials_clearer()
        self.emit("banned", message)

    def _on_error(self, data: dict) -> None:
        message = self._parse(ErrorMessage, data, "error")
        if message is None:
            return
        logger.warning(f"[Lifecycle] 서버 오류: {message.message}")
        self.emit("server_error", message.message)

    def _on_peer_id(self, data: dict) -> None:
        message = self._parse(PeerAssigned, data, "peer_id")
        if message is None:
            return
        self.peer_id = message.peer_id
        logger.info(f"[Lifecycle] peer ID 할당: {message.peer_id[:8]}")
        self.emit("peer_id", message.peer_id)

    # ============================================================
    # 전송 연결 이벤트
    # ============================================================

    def _on_transport_disconnect(self, data: dict) -> None:
        if self._status is QueueStatus.IDLE:
            return
        logger.warning(f"[Lifecycle] 시그널링 연결 끊김 ({self._status.value}) - 세션 정리")
        self._resume_on_connect = True
        self._cancel_rejoin()
        self._end_match()
        self._transition(QueueStatus.IDLE)

    async def _on_transport_connect(self, data: dict) -> None:
        if not self._resume_on_connect:
            return
        self._resume_on_connect = False
        if self._auto_rejoin and self._status is QueueStatus.IDLE:
            logger.info("[Lifecycle] 시그널링 재연결 - 큐 재진입")
            await self.join_queue()

    # ============================================================
    # 엔진 이벤트
    # ============================================================

    def _on_connection_state(self, session: Session, state: ConnectionState) -> None:
        if session.room_id != self.room_id:
            return
        if state is ConnectionState.CONNECTED and self._status is QueueStatus.CONNECTING:
            self._cancel_connect_watchdog()
            self._transition(QueueStatus.CONNECTED)

    async def _on_negotiation_failed(self, session: Session, error: NegotiationError) -> None:
        if session.room_id != self.room_id:
            return
        if self._status not in (QueueStatus.CONNECTING, QueueStatus.CONNECTED):
            return
        await self._requeue(error)

    async def _on_capture_failed(self, error: CaptureUnavailable) -> None:
        logger.error(f"[Lifecycle] 캡처 실패로 매칭 종료: {error}")
        await self.end_chat()
        self.emit("capture_failed", error)

    async def _requeue(self, error: NegotiationError) -> None:
        """협상 실패: 세션을 버리고 다음 상대를 찾습니다."""
        logger.warning(f"[Lifecycle] 협상 실패 - 재매칭: room={self.room_id}, error={error}")
        self._end_match()
        self._transition(QueueStatus.FAILED)
        self.emit("negotiation_failed", error)
        self._transition(QueueStatus.SEARCHING)
        await self._send("next_match")

    # ============================================================
    # 내부 유틸리티
    # ============================================================

    def _end_match(self) -> None:
        self._cancel_connect_watchdog()
        self.engine.teardown()
        self.room_id = None
        self.partner_id = None

    def _schedule_rejoin(self) -> None:
        self._cancel_rejoin()
        self._rejoin_task = asyncio.create_task(self._rejoin_after_delay())
        logger.info(f"[Lifecycle] {self.rejoin_delay}초 후 자동 재매칭")

    async def _rejoin_after_delay(self) -> None:
        await asyncio.sleep(self.rejoin_delay)
        self._rejoin_task = None
        if self._status is not QueueStatus.DISCONNECTED:
            return
        self._transition(QueueStatus.SEARCHING)
        await self._send("join_queue")

    def _cancel_rejoin(self) -> None:
        task, self._rejoin_task = self._rejoin_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _start_connect_watchdog(self, room_id: str) -> None:
        self._cancel_connect_watchdog()
        self._connect_watchdog = asyncio.create_task(self._connect_timeout(room_id))

    async def _connect_timeout(self, room_id: str) -> None:
        await asyncio.sleep(self.connect_timeout)
        self._connect_watchdog = None
        if self.room_id != room_id or self._status is not QueueStatus.CONNECTING:
            return
        await self._requeue(NegotiationError(f"{self.connect_timeout}초 내 연결되지 않음"))

    def _cancel_connect_watchdog(self) -> None:
        task, self._connect_watchdog = self._connect_watchdog, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _send(self, event: str, data: Optional[dict] = None) -> bool:
        try:
            await self.transport.send(event, data or {})
        except TransportError as e:
            # 재연결은 전송 계층 담당, 끊김은 disconnect 이벤트로 처리
            logger.warning(f"[Lifecycle] {event} 전송 실패: {e}")
            return False
        return True

    def _parse(self, model: Type[SignalingPayload], data: dict, event: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[Lifecycle] 잘못된 {event} 메시지 무시: {e.error_count()}개 오류")
            return None
