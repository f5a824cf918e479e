"""시그널링 메시지 DTO와 aiortc 변환 함수.

와이어 포맷은 ``{"type": <event>, "data": {...}}`` 이며, data 필드는
브라우저 클라이언트와 호환되도록 camelCase 키를 사용합니다.
"""

from typing import Literal, Optional

from aiortc import RTCIceCandidate, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .types import PartyRole


class SignalingPayload(BaseModel):
    """시그널링 메시지 data 필드의 공통 베이스."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        """camelCase 키의 JSON 직렬화 가능한 dict로 변환합니다."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class SessionDescriptionData(SignalingPayload):
    """SDP offer/answer."""

    sdp: str
    type: Literal["offer", "answer", "pranswer", "rollback"]


class IceCandidateData(SignalingPayload):
    """브라우저 RTCIceCandidateInit 형식의 ICE 후보."""

    candidate: str = ""
    sdp_mid: Optional[str] = Field(default=None, alias="sdpMid")
    sdp_mline_index: Optional[int] = Field(default=None, alias="sdpMLineIndex")


class DescriptionMessage(SignalingPayload):
    """offer/answer 메시지."""

    room_id: str = Field(alias="roomId")
    description: SessionDescriptionData


class IceCandidateMessage(SignalingPayload):
    """ice_candidate 메시지. candidate가 None이면 후보 수집 완료."""

    room_id: str = Field(alias="roomId")
    candidate: Optional[IceCandidateData] = None


class MatchFound(SignalingPayload):
    """매칭 성사 알림. role은 매칭 서버가 지정합니다."""

    room_id: str = Field(alias="roomId")
    partner_id: str = Field(alias="partnerId")
    partner_name: Optional[str] = Field(default=None, alias="partnerName")
    role: Optional[PartyRole] = None


class PartnerLeft(SignalingPayload):
    """상대방 퇴장 (partner_left / match_ended)."""

    reason: str = "left"
    room_id: Optional[str] = Field(default=None, alias="roomId")


class PartnerDisconnected(SignalingPayload):
    """상대방 연결 끊김."""

    message: str = ""
    auto_rejoin: Optional[bool] = Field(default=None, alias="autoRejoin")
    room_id: Optional[str] = Field(default=None, alias="roomId")


class QueueJoined(SignalingPayload):
    """큐 진입 확인."""

    position: Optional[int] = None
    message: str = ""


class Banned(SignalingPayload):
    """계정 정지 알림."""

    reason: str = Field(default="", validation_alias=AliasChoices("reason", "banReason"))
    expiry: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("expiry", "banExpiresAt")
    )
    message: str = ""


class PeerAssigned(SignalingPayload):
    """서버가 부여한 자신의 peer ID."""

    peer_id: str = Field(validation_alias=AliasChoices("peer_id", "peerId"))


class ErrorMessage(SignalingPayload):
    """서버 오류 알림."""

    message: str = ""


# ============================================================
# aiortc 변환
# ============================================================

def description_to_rtc(data: SessionDescriptionData) -> RTCSessionDescription:
    return RTCSessionDescription(sdp=data.sdp, type=data.type)


def description_from_rtc(description: RTCSessionDescription) -> SessionDescriptionData:
    return SessionDescriptionData(sdp=description.sdp, type=description.type)


def candidate_to_rtc(data: IceCandidateData) -> Optional[RTCIceCandidate]:
    """브라우저 형식 후보를 aiortc RTCIceCandidate로 변환합니다.

    Returns:
        Optional[RTCIceCandidate]: 빈 후보(end-of-candidates)면 None

    Raises:
        ValueError: 후보 문자열을 파싱할 수 없는 경우
    """
    candidate_str = data.candidate.strip()
    if not candidate_str:
        return None
    if candidate_str.startswith("candidate:"):
        candidate_str = candidate_str[10:]

    try:
        candidate = candidate_from_sdp(candidate_str)
    except (AssertionError, IndexError, ValueError) as e:
        raise ValueError(f"ICE 후보 파싱 실패: {data.candidate!r}") from e

    candidate.sdpMid = data.sdp_mid
    candidate.sdpMLineIndex = data.sdp_mline_index
    return candidate
