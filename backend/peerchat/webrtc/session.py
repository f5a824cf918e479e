"""피어 세션 데이터 모듈.

매칭 한 건당 하나씩 생성되는 Session 값을 정의합니다. Session은 고유 ID를
가지며, 비동기 후속 작업은 이 핸들을 들고 다니면서 "아직 활성 세션인가"를
확인한 뒤에만 상태를 변경합니다.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional, Set

from aiortc import RTCIceCandidate, RTCPeerConnection

from ..shared.types import ConnectionState, PartyRole, SignalingState
from .tracks import MediaTrackSet


@dataclass(eq=False)
class Session:
    """협상된 1:1 피어 연결 하나.

    Attributes:
        room_id (str): 매칭 서버가 부여한 룸 ID
        role (PartyRole): 로컬 참가자 역할 (initiator/responder)
        session_id (str): 세션 고유 식별자
        signaling_state (SignalingState): 시그널링 상태
        ice_connection_state (str): aiortc ICE 연결 상태 원본 값
        connection_state (ConnectionState): 관찰자에게 노출하는 연결 상태
        is_remote_description_set (bool): remote description 설정 여부
        pending_ice_candidates (Deque[RTCIceCandidate]): remote description
            설정 전에 도착한 ICE 후보 (도착 순서 FIFO)
        remote_tracks (MediaTrackSet): 원격 트랙
        pc (Optional[RTCPeerConnection]): 현재 피어 연결 객체
    """

    room_id: str
    role: PartyRole
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    signaling_state: SignalingState = SignalingState.STABLE
    ice_connection_state: str = "new"
    connection_state: ConnectionState = ConnectionState.CONNECTING
    is_remote_description_set: bool = False
    pending_ice_candidates: Deque[RTCIceCandidate] = field(default_factory=deque)
    remote_tracks: MediaTrackSet = field(default_factory=MediaTrackSet)
    remote_stream_announced: bool = False
    ice_restart_attempted: bool = False
    restart_watchdog: Optional[asyncio.Task] = None
    pc: Optional[RTCPeerConnection] = None
    created_at: float = field(default_factory=time.time)

    # GC 방지를 위해 세션이 띄운 태스크 참조 보관
    tasks: Set[asyncio.Task] = field(default_factory=set)

    @property
    def closed(self) -> bool:
        return self.signaling_state is SignalingState.CLOSED

    @property
    def short_id(self) -> str:
        return self.session_id[:8]

    def snapshot(self) -> Dict[str, Any]:
        """디버깅/상태 조회용 요약 정보."""
        return {
            "session_id": self.session_id,
            "room_id": self.room_id,
            "role": self.role.value,
            "signaling_state": self.signaling_state.value,
            "ice_connection_state": self.ice_connection_state,
            "connection_state": self.connection_state.value,
            "is_remote_description_set": self.is_remote_description_set,
            "pending_ice_candidates": len(self.pending_ice_candidates),
            "remote_tracks": self.remote_tracks.kinds(),
            "ice_restart_attempted": self.ice_restart_attempted,
        }
