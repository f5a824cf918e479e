"""WebRTC 피어 협상 엔진.

시그널링 전송으로 들어오는 offer/answer/ICE 후보 메시지를 하나의 1:1
RTCPeerConnection 상태 변화로 바꾸고, 원격 트랙과 연결 상태를 관찰자에게
이벤트로 알립니다.

주요 기능:
    - 세션 생성 (initiator는 즉시 offer 전송, responder는 offer 대기)
    - offer/answer 처리와 glare 해소 (마지막 offer 우선)
    - remote description 설정 전 도착한 ICE 후보의 FIFO 버퍼링
      (aiortc는 로컬 후보를 SDP에 담아 보내므로 후보를 따로 전송하지 않음)
    - 원격 트랙 관리 (종류별 1개, 같은 종류는 교체)
    - 연결 실패 시 새 pc로 1회 ICE 재시작, 이후 실패는 보고
    - 동기식 teardown (여러 번 호출해도 안전)

Concurrency:
    - 모든 비동기 후속 작업은 Session 핸들을 들고 있다가, 재개 시점에
      여전히 활성 세션인지 확인한 뒤에만 상태를 바꿉니다.
    - 피어 연결 이벤트는 (session, pc)를 기억하는 리스너를 거쳐
      _dispatch()로 모이며, 교체된 pc의 이벤트는 버려집니다.

Events:
    session_created (Session): 새 세션 생성
    remote_stream_ready (MediaTrackSet): 세션당 첫 원격 트랙 수신 (1회)
    remote_tracks (MediaTrackSet): 원격 트랙 집합 변경
    connection_state (Session, ConnectionState): 연결 상태 변경
    ice_connection_state (Session, str): ICE 연결 상태 변경
    negotiation_failed (Session, NegotiationError): 협상/연결 실패로 세션 종료
    capture_failed (CaptureUnavailable): responder 세션 생성 중 캡처 실패
    session_closed (Session): 세션 종료

Examples:
    >>> engine = NegotiationEngine(transport, capture)
    >>> engine.on("connection_state", lambda session, state: print(state))
    >>> await engine.create_session("room-1", PartyRole.INITIATOR)
    >>> engine.teardown()

See Also:
    session.py: Session 데이터
    aiortc Documentation: https://aiortc.readthedocs.io/
"""

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Deque, Dict, List, Optional, Set, Tuple, Type

from aiortc import (
    MediaStreamTrack,
    RTCConfiguration,
    RTCIceCandidate,
    RTCIceServer,
    RTCPeerConnection,
)
from pydantic import ValidationError
from pyee.asyncio import AsyncIOEventEmitter

from ..errors import CaptureUnavailable, NegotiationError, StaleMessage
from ..shared.dto import (
    DescriptionMessage,
    IceCandidateMessage,
    SignalingPayload,
    candidate_to_rtc,
    description_from_rtc,
    description_to_rtc,
)
from ..shared.types import ConnectionState, PartyRole, SignalingState
from ..signaling.transport import SignalingTransport
from .config import ConnectionConfig, connection_config, ice_config
from .session import Session
from .tracks import MediaTrackSet

if TYPE_CHECKING:
    from ..media.capture import MediaCaptureAdapter

logger = logging.getLogger(__name__)

PeerConnectionFactory = Callable[[], RTCPeerConnection]

# 피어 연결에서 구독하는 이벤트
PEER_EVENTS = ("track", "connectionstatechange", "iceconnectionstatechange")

# aiortc connectionState -> 관찰자용 상태
_CONNECTION_STATE_MAP = {
    "new": ConnectionState.CONNECTING,
    "connecting": ConnectionState.CONNECTING,
    "connected": ConnectionState.CONNECTED,
    "disconnected": ConnectionState.DISCONNECTED,
    "closed": ConnectionState.DISCONNECTED,
    "failed": ConnectionState.FAILED,
}


def create_peer_connection() -> RTCPeerConnection:
    """설정된 STUN/TURN 서버로 RTCPeerConnection을 생성합니다."""
    ice_servers = [
        RTCIceServer(
            urls=[entry["urls"]],
            username=entry.get("username"),
            credential=entry.get("credential"),
        )
        for entry in ice_config.server_entries()
    ]
    return RTCPeerConnection(configuration=RTCConfiguration(iceServers=ice_servers))


class NegotiationEngine(AsyncIOEventEmitter):
    """1:1 피어 연결 협상과 시그널링 상태를 관리하는 엔진.

    한 번에 하나의 활성 Session만 존재하며, 새 세션을 만들면 이전 세션은
    즉시 종료됩니다. 로컬 캡처 트랙은 MediaCaptureAdapter가 소유하므로
    세션 종료 시 정지하지 않습니다.

    Attributes:
        transport (SignalingTransport): 시그널링 전송
        capture (MediaCaptureAdapter): 로컬 캡처 어댑터
        config (ConnectionConfig): ICE 재시작 타임아웃 등 연결 설정

    Signaling State Machine:
        stable --create offer--> have-local-offer --answer--> stable
        stable --remote offer--> have-remote-offer --create answer--> stable
        have-local-offer --remote offer (glare)--> 로컬 offer 폐기 후 remote offer 처리
        * --teardown--> closed
    """

    def __init__(
        self,
        transport: SignalingTransport,
        capture: "MediaCaptureAdapter",
        peer_connection_factory: Optional[PeerConnectionFactory] = None,
        config: ConnectionConfig = connection_config,
    ):
        super().__init__()
        self.transport = transport
        self.capture = capture
        self.config = config
        self._pc_factory = peer_connection_factory or create_peer_connection

        self._session: Optional[Session] = None
        self._bound_room: Optional[str] = None

        # 세션 생성 전(responder가 offer를 기다리는 동안) 도착한 후보
        self._early_candidates: Deque[RTCIceCandidate] = deque()

        # teardown/unbind마다 증가. await 전후로 비교해 중간 취소를 감지
        self._epoch = 0

        # pc -> 등록한 (event, listener)
        self._listeners: Dict[Any, List[Tuple[str, Callable]]] = {}

        # 백그라운드 pc.close() 태스크
        self._closing: Set[asyncio.Task] = set()

        self._signal_handlers = {
            "offer": self.handle_offer,
            "answer": self.handle_answer,
            "ice_candidate": self.handle_ice_candidate,
        }
        self._peer_event_handlers = {
            "track": self._on_track,
            "connectionstatechange": self._on_connection_state_change,
            "iceconnectionstatechange": self._on_ice_connection_state_change,
        }

    # ============================================================
    # 조회
    # ============================================================

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def bound_room(self) -> Optional[str]:
        return self._bound_room

    @property
    def local_tracks(self) -> MediaTrackSet:
        return self.capture.tracks

    @property
    def remote_tracks(self) -> MediaTrackSet:
        if self._session is None:
            return MediaTrackSet()
        return self._session.remote_tracks

    @property
    def connection_state(self) -> Optional[ConnectionState]:
        if self._session is None:
            return None
        return self._session.connection_state

    def _is_active(self, session: Session) -> bool:
        return self._session is session and not session.closed

    # ============================================================
    # 룸 바인딩
    # ============================================================

    def bind(self, room_id: str) -> None:
        """룸의 offer/answer/ice_candidate 메시지를 받도록 전송에 핸들러를 등록합니다."""
        if self._bound_room == room_id:
            return
        self._unbind()
        for event, handler in self._signal_handlers.items():
            self.transport.on(event, handler)
        self._bound_room = room_id
        logger.info(f"[WebRTC] 룸 바인딩: room={room_id}")

    def _unbind(self) -> None:
        self._epoch += 1
        self._early_candidates.clear()
        if self._bound_room is None:
            return
        for event, handler in self._signal_handlers.items():
            self.transport.off(event, handler)
        logger.debug(f"[WebRTC] 룸 바인딩 해제: room={self._bound_room}")
        self._bound_room = None

    def _accepts(self, room_id: str, message_type: str) -> bool:
        if room_id != self._bound_room:
            logger.debug(f"[WebRTC] 다른 룸의 {message_type} 무시: room={room_id}")
            return False
        return True

    # ============================================================
    # 세션 생성
    # ============================================================

    async def create_session(self, room_id: str, role: PartyRole) -> Optional[Session]:
        """새 세션을 만들고, initiator면 바로 offer를 보냅니다.

        이전 세션은 동기적으로 종료되고, 새 pc에 로컬 캡처 트랙이 추가됩니다.

        Args:
            room_id (str): 매칭된 룸 ID
            role (PartyRole): 로컬 참가자 역할

        Returns:
            Optional[Session]: 생성된 세션. 캡처를 기다리는 동안 teardown되어
            생성이 취소되면 None

        Raises:
            CaptureUnavailable: 로컬 캡처 획득 실패
            NegotiationError: initiator offer 생성/전송 실패 (세션은 closed)
        """
        if self._session is not None:
            self.teardown()
        self.bind(room_id)
        epoch = self._epoch

        try:
            local_tracks = await self.capture.acquire()
        except CaptureUnavailable as e:
            logger.error(f"[WebRTC] 캡처 실패로 세션 생성 불가: room={room_id}, error={e}")
            if self._epoch == epoch:
                self._unbind()
            raise

        if self._epoch != epoch or self._session is not None:
            logger.info(f"[WebRTC] 캡처 대기 중 세션 생성 취소: room={room_id}")
            return None

        session = Session(room_id=room_id, role=role)
        session.pending_ice_candidates.extend(self._early_candidates)
        self._early_candidates.clear()
        self._session = session

        try:
            session.pc = self._build_peer_connection(session, local_tracks)
        except Exception as e:
            self.teardown()
            raise NegotiationError(f"피어 연결 생성 실패: {e}", session=session) from e

        logger.info(f"[WebRTC] 세션 생성: session={session.short_id}, room={room_id}, "
                    f"role={role.value}, 로컬트랙={local_tracks.kinds()}, "
                    f"대기후보={len(session.pending_ice_candidates)}")
        self.emit("session_created", session)

        if role is PartyRole.INITIATOR:
            await self._run_offer(session)
        return session

    def _build_peer_connection(self, session: Session, local_tracks: MediaTrackSet):
        pc = self._pc_factory()

        listeners = []
        for event in PEER_EVENTS:
            listener = self._make_listener(session, pc, event)
            pc.on(event, listener)
            listeners.append((event, listener))
        self._listeners[pc] = listeners

        try:
            for track in local_tracks:
                pc.addTrack(track)
        except Exception:
            self._detach_peer_connection(pc)
            raise
        return pc

    def _make_listener(self, session: Session, pc, event: str) -> Callable:
        def listener(*args):
            return self._dispatch(session, pc, event, *args)
        return listener

    def _detach_peer_connection(self, pc) -> None:
        """pc 리스너를 제거하고 백그라운드에서 닫습니다."""
        for event, listener in self._listeners.pop(pc, []):
            pc.remove_listener(event, listener)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("[WebRTC] 이벤트 루프 밖에서 teardown - 피어 연결을 닫지 못함")
            return

        task = loop.create_task(self._close_peer_connection(pc))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close_peer_connection(self, pc) -> None:
        try:
            await pc.close()
        except Exception as e:
            logger.warning(f"[WebRTC] 피어 연결 종료 중 오류: {e}")

    def _spawn(self, session: Session, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        session.tasks.add(task)
        task.add_done_callback(session.tasks.discard)
        return task

    # ============================================================
    # offer / answer
    # ============================================================

    async def _run_offer(self, session: Session) -> None:
        """offer 생성 -> local description 설정 -> offer 전송.

        Raises:
            NegotiationError: 어느 단계든 실패한 경우 (세션은 teardown됨)
        """
        pc = session.pc
        try:
            offer = await pc.createOffer()
            if not self._is_active(session):
                return
            await pc.setLocalDescription(offer)
            if not self._is_active(session):
                return
            session.signaling_state = SignalingState.HAVE_LOCAL_OFFER

            message = DescriptionMessage(
                room_id=session.room_id,
                description=description_from_rtc(pc.localDescription),
            )
            await self.transport.send("offer", message.to_wire())
        except Exception as e:
            logger.error(f"[WebRTC] offer 실패: session={session.short_id}, error={e}")
            if self._is_active(session):
                self.teardown()
            raise NegotiationError(f"offer 실패: {e}") from e

        logger.info(f"[WebRTC] offer 전송: session={session.short_id}, room={session.room_id}")

    async def handle_offer(self, data: dict) -> None:
        """상대방 offer를 적용하고 answer를 보냅니다.

        세션이 없으면 responder 세션을 만듭니다. 로컬 offer가 진행 중이면
        (glare) 로컬 offer를 폐기하고 상대 offer를 따릅니다.
        """
        message = self._parse(DescriptionMessage, data, "offer")
        if message is None or not self._accepts(message.room_id, "offer"):
            return

        session = self._session
        if session is None:
            try:
                session = await self.create_session(message.room_id, PartyRole.RESPONDER)
            except CaptureUnavailable as e:
                self.emit("capture_failed", e)
                return
            except NegotiationError as e:
                logger.error(f"[WebRTC] responder 세션 생성 실패: {e}")
                if e.session is not None:
                    self.emit("negotiation_failed", e.session, e)
                return
            if session is None or not self._is_active(session):
                return

        if session.signaling_state is SignalingState.HAVE_LOCAL_OFFER:
            logger.warning(f"[WebRTC] glare 감지: session={session.short_id}, 로컬 offer 폐기")
            try:
                self._rollback(session)
            except NegotiationError as e:
                self._fail(session, e)
                return
        elif session.is_remote_description_set:
            # 협상이 끝난 세션에 다시 온 offer는 상대방의 ICE 재시작
            logger.warning(f"[WebRTC] 재시작 offer 수신: session={session.short_id}")
            session.ice_restart_attempted = True
            try:
                self._restart_peer_connection(session)
            except NegotiationError as e:
                self._fail(session, e)
                return
            watchdog = session.restart_watchdog
            if watchdog is None or watchdog.done():
                session.restart_watchdog = self._spawn(session, self._restart_watchdog(session))

        pc = session.pc
        try:
            await pc.setRemoteDescription(description_to_rtc(message.description))
            if not self._is_active(session):
                return
            session.signaling_state = SignalingState.HAVE_REMOTE_OFFER
            session.is_remote_description_set = True

            await self._flush_pending(session)
            if not self._is_active(session):
                return

            answer = await pc.createAnswer()
            if not self._is_active(session):
                return
            await pc.setLocalDescription(answer)
            if not self._is_active(session):
                return
            session.signaling_state = SignalingState.STABLE

            reply = DescriptionMessage(
                room_id=session.room_id,
                description=description_from_rtc(pc.localDescription),
            )
            await self.transport.send("answer", reply.to_wire())
        except Exception as e:
            if self._is_active(session):
                self._fail(session, NegotiationError(f"offer 처리 실패: {e}"))
            return

        logger.info(f"[WebRTC] answer 전송: session={session.short_id}, room={session.room_id}")

    def _rollback(self, session: Session) -> None:
        """로컬 offer를 폐기합니다.

        aiortc는 rollback description을 지원하지 않으므로 pc를 새로 만들어
        stable 상태로 되돌립니다. 대기 중인 ICE 후보는 유지됩니다.

        Raises:
            NegotiationError: 새 pc 생성 실패
        """
        self._replace_peer_connection(session, "로컬 offer rollback")
        logger.info(f"[WebRTC] 로컬 offer rollback 완료: session={session.short_id}")

    def _replace_peer_connection(self, session: Session, reason: str) -> None:
        """같은 세션 안에서 pc를 새로 만들고 로컬 트랙을 다시 붙입니다.

        Raises:
            NegotiationError: 새 pc 생성 실패
        """
        old_pc = session.pc
        session.pc = None
        if old_pc is not None:
            self._detach_peer_connection(old_pc)

        try:
            session.pc = self._build_peer_connection(session, self.capture.tracks)
        except Exception as e:
            raise NegotiationError(f"{reason} 실패: {e}", session=session) from e

        session.signaling_state = SignalingState.STABLE
        session.is_remote_description_set = False

    async def handle_answer(self, data: dict) -> None:
        """상대방 answer를 적용합니다. have-local-offer 상태에서만 유효합니다."""
        message = self._parse(DescriptionMessage, data, "answer")
        if message is None or not self._accepts(message.room_id, "answer"):
            return

        session = self._session
        if session is None:
            logger.debug(f"[WebRTC] 세션 없이 도착한 answer 무시: room={message.room_id}")
            return

        if session.signaling_state is SignalingState.STABLE:
            logger.debug(f"[WebRTC] 중복 answer 무시: session={session.short_id}")
            return
        try:
            self._require_state(session, "answer", SignalingState.HAVE_LOCAL_OFFER)
        except StaleMessage as e:
            logger.warning(f"[WebRTC] {e} - 폐기 (session={session.short_id})")
            return

        pc = session.pc
        try:
            await pc.setRemoteDescription(description_to_rtc(message.description))
        except Exception as e:
            if self._is_active(session):
                self._fail(session, NegotiationError(f"answer 적용 실패: {e}"))
            return

        if not self._is_active(session):
            return
        session.signaling_state = SignalingState.STABLE
        session.is_remote_description_set = True
        logger.info(f"[WebRTC] answer 적용: session={session.short_id}")

        await self._flush_pending(session)

    def _require_state(self, session: Session, message_type: str, expected: SignalingState) -> None:
        if session.signaling_state is not expected:
            raise StaleMessage(message_type, session.signaling_state.value)

    # ============================================================
    # ICE 후보
    # ============================================================

    async def handle_ice_candidate(self, data: dict) -> None:
        """상대방 ICE 후보를 적용하거나, remote description 전이면 대기열에 넣습니다."""
        message = self._parse(IceCandidateMessage, data, "ice_candidate")
        if message is None or not self._accepts(message.room_id, "ice_candidate"):
            return

        if message.candidate is None:
            logger.debug("[WebRTC] 상대방 ICE 후보 수집 완료")
            return

        try:
            candidate = candidate_to_rtc(message.candidate)
        except ValueError as e:
            logger.warning(f"[WebRTC] {e}")
            return
        if candidate is None:
            return

        session = self._session
        if session is None:
            self._early_candidates.append(candidate)
            logger.debug(f"[WebRTC] 세션 전 ICE 후보 보관 ({len(self._early_candidates)}개)")
            return

        # 앞선 후보가 아직 대기 중이면 순서 유지를 위해 뒤에 붙임
        if not session.is_remote_description_set or session.pending_ice_candidates:
            session.pending_ice_candidates.append(candidate)
            logger.debug(f"[WebRTC] ICE 후보 대기열 추가: session={session.short_id}, "
                         f"대기={len(session.pending_ice_candidates)}")
            return

        await self._apply_candidate(session, candidate)

    async def _flush_pending(self, session: Session) -> None:
        """대기 중인 후보를 도착 순서대로 한 번씩 적용합니다."""
        if session.pending_ice_candidates:
            logger.info(f"[WebRTC] 대기 ICE 후보 적용: session={session.short_id}, "
                        f"{len(session.pending_ice_candidates)}개")
        while session.pending_ice_candidates and self._is_active(session):
            candidate = session.pending_ice_candidates.popleft()
            await self._apply_candidate(session, candidate)

    async def _apply_candidate(self, session: Session, candidate: RTCIceCandidate) -> None:
        try:
            await session.pc.addIceCandidate(candidate)
        except Exception as e:
            # 후보 하나의 실패는 연결 전체를 막지 않음
            logger.warning(f"[WebRTC] ICE 후보 적용 실패 (건너뜀): session={session.short_id}, error={e}")

    # ============================================================
    # 피어 연결 이벤트
    # ============================================================

    async def _dispatch(self, session: Session, pc, event: str, *args) -> None:
        if not self._is_active(session) or session.pc is not pc:
            logger.debug(f"[WebRTC] 이전 피어 연결의 {event} 이벤트 무시")
            return
        await self._peer_event_handlers[event](session, *args)

    async def _on_track(self, session: Session, track: MediaStreamTrack) -> None:
        replaced = session.remote_tracks.put(track)
        if replaced is not None:
            replaced.stop()
            logger.info(f"[WebRTC] 원격 {track.kind} 트랙 교체: session={session.short_id}")
        else:
            logger.info(f"[WebRTC] 원격 {track.kind} 트랙 수신: session={session.short_id}")

        @track.on("ended")
        def on_ended():
            if self._is_active(session) and session.remote_tracks.remove(track):
                logger.info(f"[WebRTC] 원격 {track.kind} 트랙 종료: session={session.short_id}")
                self.emit("remote_tracks", session.remote_tracks)

        self.emit("remote_tracks", session.remote_tracks)
        if not session.remote_stream_announced:
            session.remote_stream_announced = True
            self.emit("remote_stream_ready", session.remote_tracks)

    async def _on_connection_state_change(self, session: Session) -> None:
        raw_state = session.pc.connectionState
        state = _CONNECTION_STATE_MAP.get(raw_state)
        logger.info(f"[WebRTC] 연결 상태: session={session.short_id}, state={raw_state}")
        if state is None or state is session.connection_state:
            return

        session.connection_state = state
        self.emit("connection_state", session, state)

        if state is ConnectionState.CONNECTED:
            self._cancel_restart_watchdog(session)
        elif state is ConnectionState.FAILED:
            await self._handle_failure(session)

    async def _on_ice_connection_state_change(self, session: Session) -> None:
        state = session.pc.iceConnectionState
        if state == session.ice_connection_state:
            return
        session.ice_connection_state = state
        logger.info(f"[WebRTC] ICE 상태: session={session.short_id}, state={state}")
        self.emit("ice_connection_state", session, state)

        if state == "failed":
            await self._handle_failure(session)

    # ============================================================
    # 실패 처리 / ICE 재시작
    # ============================================================

    async def _handle_failure(self, session: Session) -> None:
        """연결 실패: 세션당 1회 ICE 재시작, 이후 실패는 보고합니다."""
        watchdog = session.restart_watchdog
        if watchdog is not None and not watchdog.done():
            logger.debug(f"[WebRTC] ICE 재시작 진행 중 - 실패 이벤트 무시: session={session.short_id}")
            return

        if session.ice_restart_attempted:
            self._fail(session, NegotiationError("ICE 재시작 후에도 연결 실패"))
            return

        session.ice_restart_attempted = True
        logger.warning(f"[WebRTC] 연결 실패 - ICE 재시작 시도: session={session.short_id}, "
                       f"role={session.role.value}")
        session.restart_watchdog = self._spawn(session, self._restart_watchdog(session))

        if session.role is PartyRole.INITIATOR:
            await self._restart_ice(session)

    async def _restart_ice(self, session: Session) -> None:
        if session.signaling_state is not SignalingState.STABLE:
            logger.warning(f"[WebRTC] {session.signaling_state.value} 상태라 재시작 offer 생략")
            return
        try:
            self._restart_peer_connection(session)
            await self._run_offer(session)
        except NegotiationError as e:
            if self._is_active(session):
                self._fail(session, e)
            else:
                self.emit("negotiation_failed", session, e)

    def _restart_peer_connection(self, session: Session) -> None:
        """실패한 ICE transport를 버리고 같은 세션에 새 pc를 만듭니다.

        aiortc는 기존 pc에서 ICE 후보 수집을 다시 시작하지 않으므로
        재시작 offer/answer는 항상 새 pc에서 주고받습니다.

        Raises:
            NegotiationError: 새 pc 생성 실패
        """
        # 이전 ICE 세대의 후보
        session.pending_ice_candidates.clear()
        self._replace_peer_connection(session, "ICE 재시작")
        session.ice_connection_state = "new"
        logger.info(f"[WebRTC] ICE 재시작용 피어 연결 생성: session={session.short_id}")

    async def _restart_watchdog(self, session: Session) -> None:
        await asyncio.sleep(self.config.ICE_RESTART_TIMEOUT)
        if not self._is_active(session):
            return
        if session.connection_state is ConnectionState.CONNECTED:
            return
        self._fail(session, NegotiationError(
            f"ICE 재시작 {self.config.ICE_RESTART_TIMEOUT}초 내 연결 복구 실패"
        ))

    def _cancel_restart_watchdog(self, session: Session) -> None:
        watchdog = session.restart_watchdog
        if watchdog is None:
            return
        session.restart_watchdog = None
        if not watchdog.done() and watchdog is not asyncio.current_task():
            watchdog.cancel()
            logger.info(f"[WebRTC] ICE 재시작으로 연결 복구: session={session.short_id}")

    def _fail(self, session: Session, error: NegotiationError) -> None:
        logger.error(f"[WebRTC] 세션 실패: session={session.short_id}, error={error}")
        self.teardown()
        self.emit("negotiation_failed", session, error)

    # ============================================================
    # 종료
    # ============================================================

    def teardown(self) -> None:
        """현재 세션을 동기적으로 종료합니다. 여러 번 호출해도 안전합니다.

        전송 핸들러 해제, pc 종료, 원격 트랙 정지, 대기 후보 비우기를
        수행합니다. 로컬 캡처 트랙은 정지하지 않습니다.
        """
        self._unbind()
        session = self._session
        if session is None:
            return
        self._session = None

        session.signaling_state = SignalingState.CLOSED
        session.pending_ice_candidates.clear()
        session.is_remote_description_set = False

        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in list(session.tasks):
            if task is not current:
                task.cancel()
        session.tasks.clear()
        session.restart_watchdog = None

        if session.pc is not None:
            self._detach_peer_connection(session.pc)
        session.remote_tracks.stop_all()

        logger.info(f"[WebRTC] 세션 종료: session={session.short_id}, room={session.room_id}")
        self.emit("remote_tracks", session.remote_tracks)
        self.emit("session_closed", session)

    async def drain(self) -> None:
        """백그라운드 pc.close()가 모두 끝날 때까지 기다립니다."""
        if self._closing:
            await asyncio.gather(*list(self._closing), return_exceptions=True)

    async def aclose(self) -> None:
        self.teardown()
        await self.drain()

    # ============================================================
    # 유틸리티
    # ============================================================

    def _parse(self, model: Type[SignalingPayload], data: dict, message_type: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.warning(f"[WebRTC] 잘못된 {message_type} 메시지 무시: {e.error_count()}개 오류")
            return None

