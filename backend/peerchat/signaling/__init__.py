"""시그널링 전송 모듈.

Classes:
    SignalingTransport: 전송 어댑터 베이스 (핸들러 등록/순차 dispatch)
    InMemoryTransport: 프로세스 내 전송 (임베딩/테스트)
    WebSocketTransport: 재연결을 지원하는 WebSocket 전송

Config:
    signaling_config: 서버 URL, 토큰, 재연결 백오프 설정
"""

from .transport import SignalingTransport, InMemoryTransport
from .websocket_transport import WebSocketTransport
from .config import signaling_config, SignalingConfig

__all__ = [
    "SignalingTransport",
    "InMemoryTransport",
    "WebSocketTransport",
    "signaling_config",
    "SignalingConfig",
]
