"""세션 라이프사이클 모듈.

Classes:
    SessionLifecycleController: 매칭 큐 상태 머신
    ControlSurface: 관찰자용 상태 조회/명령 파사드
    ControlState: 음소거/카메라 상태

Config:
    lifecycle_config: 자동 재매칭, 연결 타임아웃 설정
"""

from .controller import SessionLifecycleController
from .control import ControlSurface, ControlState
from .config import lifecycle_config, LifecycleConfig

__all__ = [
    "SessionLifecycleController",
    "ControlSurface",
    "ControlState",
    "lifecycle_config",
    "LifecycleConfig",
]
