"""시그널링 메시지 DTO와 상태 열거형.

엔진, 컨트롤러, 전송이 함께 쓰는 값 타입만 둡니다. 피어 연결 상태나
협상 로직은 webrtc 패키지에 있습니다.
"""

from .types import PartyRole, SignalingState, ConnectionState, QueueStatus
from .dto import (
    SignalingPayload,
    SessionDescriptionData,
    IceCandidateData,
    DescriptionMessage,
    IceCandidateMessage,
    MatchFound,
    PartnerLeft,
    PartnerDisconnected,
    QueueJoined,
    Banned,
    PeerAssigned,
    ErrorMessage,
    description_to_rtc,
    description_from_rtc,
    candidate_to_rtc,
)

__all__ = [
    # Types
    "PartyRole",
    "SignalingState",
    "ConnectionState",
    "QueueStatus",
    # DTOs
    "SignalingPayload",
    "SessionDescriptionData",
    "IceCandidateData",
    "DescriptionMessage",
    "IceCandidateMessage",
    "MatchFound",
    "PartnerLeft",
    "PartnerDisconnected",
    "QueueJoined",
    "Banned",
    "PeerAssigned",
    "ErrorMessage",
    # Codecs
    "description_to_rtc",
    "description_from_rtc",
    "candidate_to_rtc",
]
