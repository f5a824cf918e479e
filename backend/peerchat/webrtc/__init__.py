"""WebRTC 모듈.

1:1 피어 연결 협상, 세션 상태, 미디어 트랙 관리 기능을 제공합니다.

Classes:
    NegotiationEngine: offer/answer/ICE 협상 및 세션 관리
    Session: 매칭 한 건의 피어 세션 데이터
    MediaTrackSet: 종류별 트랙 컨테이너
    SwitchableTrack: 로컬에서 켜고 끌 수 있는 캡처 트랙

Config:
    ice_config: ICE 서버 설정
    connection_config: WebRTC 연결 설정
    capture_config: 로컬 캡처 장치 설정
"""

from .tracks import MediaTrackSet, SwitchableTrack, TRACK_KINDS
from .session import Session
from .peer_manager import NegotiationEngine, create_peer_connection
from .config import (
    ice_config,
    connection_config,
    capture_config,
    ICEServerConfig,
    ConnectionConfig,
    CaptureConfig,
)

__all__ = [
    # Classes
    "NegotiationEngine",
    "Session",
    "MediaTrackSet",
    "SwitchableTrack",
    "TRACK_KINDS",
    "create_peer_connection",
    # Config
    "ice_config",
    "connection_config",
    "capture_config",
    "ICEServerConfig",
    "ConnectionConfig",
    "CaptureConfig",
]
