"""peerchat: 1:1 영상 채팅 피어 연결 엔진.

매칭 큐를 통해 짝지어진 두 사용자 사이의 WebRTC 세션 협상과
시그널링 상태를 관리합니다.

Modules:
    media: 로컬 카메라/마이크 캡처
    signaling: 시그널링 전송 (WebSocket, 인메모리)
    webrtc: 피어 협상 엔진, 세션, 트랙
    lifecycle: 매칭 큐 상태 머신과 제어 인터페이스
    matchmaking: 개발용 매칭 서버의 대기열/룸 관리
"""

from .errors import (
    PeerChatError,
    CaptureUnavailable,
    PermissionDenied,
    DeviceUnavailable,
    NegotiationError,
    StaleMessage,
    TransportError,
    QueueStateError,
)
from .shared import PartyRole, SignalingState, ConnectionState, QueueStatus
from .media import MediaCaptureAdapter, CaptureConstraints
from .signaling import SignalingTransport, InMemoryTransport, WebSocketTransport
from .webrtc import NegotiationEngine, Session, MediaTrackSet
from .lifecycle import SessionLifecycleController, ControlSurface, ControlState

__all__ = [
    # Errors
    "PeerChatError",
    "CaptureUnavailable",
    "PermissionDenied",
    "DeviceUnavailable",
    "NegotiationError",
    "StaleMessage",
    "TransportError",
    "QueueStateError",
    # Types
    "PartyRole",
    "SignalingState",
    "ConnectionState",
    "QueueStatus",
    # Components
    "MediaCaptureAdapter",
    "CaptureConstraints",
    "SignalingTransport",
    "InMemoryTransport",
    "WebSocketTransport",
    "NegotiationEngine",
    "Session",
    "MediaTrackSet",
    "SessionLifecycleController",
    "ControlSurface",
    "ControlState",
]
