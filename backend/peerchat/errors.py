"""peerchat 예외 정의.

피어 세션 엔진이 발생시키는 예외 계층입니다.

Hierarchy:
    PeerChatError
    ├── CaptureUnavailable      카메라/마이크 획득 실패 (세션 시작 불가)
    │   ├── PermissionDenied    장치 접근 권한 거부
    │   └── DeviceUnavailable   장치 없음/사용 중
    ├── NegotiationError        offer/answer/ICE 협상 실패 (세션 종료)
    ├── StaleMessage            현재 시그널링 상태와 맞지 않는 메시지 (경고 후 폐기)
    ├── TransportError          시그널링 전송 실패
    └── QueueStateError         허용되지 않는 큐 상태 전이
"""


class PeerChatError(Exception):
    """peerchat 최상위 예외."""


class CaptureUnavailable(PeerChatError):
    """로컬 미디어 캡처를 사용할 수 없습니다.

    사용자에게 조치 가능한 메시지를 보여줘야 하며 자동 재시도하지 않습니다.
    """


class PermissionDenied(CaptureUnavailable):
    """카메라/마이크 접근 권한이 거부되었습니다."""


class DeviceUnavailable(CaptureUnavailable):
    """캡처 장치를 찾을 수 없거나 열 수 없습니다."""


class NegotiationError(PeerChatError):
    """세션 협상 실패.

    세션은 종료되고 제어권은 Lifecycle Controller로 넘어갑니다.
    """

    def __init__(self, message: str, session=None):
        super().__init__(message)
        # 실패한 세션 (알 수 있는 경우)
        self.session = session


class StaleMessage(PeerChatError):
    """현재 시그널링 상태에서 처리할 수 없는 메시지.

    네트워크 지터로 인한 정상적인 상황이므로 전파하지 않고 폐기합니다.
    """

    def __init__(self, message_type: str, state: str):
        super().__init__(f"{message_type} 메시지를 {state} 상태에서 처리할 수 없음")
        self.message_type = message_type
        self.state = state


class TransportError(PeerChatError):
    """시그널링 메시지 전송 실패."""


class QueueStateError(PeerChatError):
    """큐 상태 머신이 허용하지 않는 전이."""

    def __init__(self, current: str, target: str):
        super().__init__(f"큐 상태 전이 불가: {current} -> {target}")
        self.current = current
        self.target = target
