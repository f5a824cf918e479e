"""세션/큐 상태 열거형."""

from enum import Enum


class PartyRole(str, Enum):
    """세션 내 로컬 참가자의 역할."""

    INITIATOR = "initiator"
    RESPONDER = "responder"


class SignalingState(str, Enum):
    """세션 시그널링 상태. CLOSED는 종료 상태."""

    STABLE = "stable"
    HAVE_LOCAL_OFFER = "have-local-offer"
    HAVE_REMOTE_OFFER = "have-remote-offer"
    CLOSED = "closed"


class ConnectionState(str, Enum):
    """관찰자에게 노출하는 연결 상태."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


class QueueStatus(str, Enum):
    """매칭 큐 상태.

    DISCONNECTED/FAILED는 IDLE 또는 SEARCHING으로 돌아가는 일시적 상태입니다.
    """

    IDLE = "idle"
    SEARCHING = "searching"
    MATCHED = "matched"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
