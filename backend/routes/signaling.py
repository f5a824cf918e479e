"""매칭/시그널링 WebSocket 라우터.

대기열 진입/이탈, 1:1 매칭, 룸 안에서의 offer/answer/ICE candidate 중계,
상대방 퇴장 알림을 담당합니다. 서버는 SDP를 해석하지 않고 그대로 전달합니다.

메시지 형식:
    {"type": <event>, "data": {...}}
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from peerchat.matchmaking import MatchmakingQueue, Peer
from .deps import verify_ws_token

logger = logging.getLogger(__name__)

router = APIRouter()

# 글로벌 매칭 큐 참조 (app.py에서 설정됨)
_queue: Optional[MatchmakingQueue] = None

# 룸 안에서 상대에게 그대로 전달하는 메시지
RELAY_TYPES = ("offer", "answer", "ice_candidate")


def init_managers(queue: MatchmakingQueue):
    """매칭 큐 인스턴스를 초기화합니다.

    app.py에서 호출하여 글로벌 참조를 설정합니다.

    Args:
        queue: MatchmakingQueue 인스턴스
    """
    global _queue
    _queue = queue
    logger.info("[Matchmaking] 시그널링 라우터 매니저 초기화 완료")


def get_queue() -> Optional[MatchmakingQueue]:
    return _queue


async def send_to_peer(peer: Peer, message_type: str, data: Optional[dict] = None) -> bool:
    """참가자에게 메시지를 보냅니다. 실패하면 로그만 남깁니다."""
    try:
        await peer.websocket.send_json({"type": message_type, "data": data or {}})
        return True
    except Exception as e:
        logger.error(f"[Matchmaking] 피어 {peer.peer_id[:8]}에 {message_type} 전송 실패: {e}")
        return False


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """매칭 및 WebRTC 시그널링을 위한 WebSocket 엔드포인트.

    처리하는 메시지 타입:
        - join_queue: 매칭 대기열 진입
        - leave_queue: 대기열 이탈
        - next_match: 현재 상대와 끊고 다시 대기열 진입
        - end_chat: 현재 상대와 끊고 종료
        - offer / answer / ice_candidate: 같은 룸의 상대에게 중계

    Args:
        websocket: FastAPI WebSocket 연결 객체
        token: 인증 토큰 (쿼리 파라미터)
    """
    if _queue is None:
        logger.error("[Matchmaking] 매칭 큐가 초기화되지 않음")
        await websocket.close(code=1011, reason="Server not ready")
        return

    # 연결 수락 전 토큰 검증
    if not verify_ws_token(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()

    peer_id = str(uuid.uuid4())
    peer = _queue.register(peer_id, websocket)

    # 클라이언트에 peer ID 전송
    await send_to_peer(peer, "peer_id", {"peer_id": peer_id})

    try:
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                logger.warning(f"[Matchmaking] 잘못된 메시지 형식: {message!r}")
                continue

            message_type = message.get("type")
            data = message.get("data") or {}

            if message_type == "join_queue":
                await _handle_join_queue(peer)

            elif message_type == "leave_queue":
                _queue.dequeue(peer_id)
                await send_to_peer(peer, "queue_left")

            elif message_type == "next_match":
                await _handle_leave_room(peer, reason="next")
                await _handle_join_queue(peer)

            elif message_type == "end_chat":
                _queue.dequeue(peer_id)
                await _handle_leave_room(peer, reason="ended")

            elif message_type in RELAY_TYPES:
                await _handle_relay(peer, message_type, data)

            else:
                logger.warning(f"[Matchmaking] 알 수 없는 메시지 타입: {message_type}")

    except WebSocketDisconnect:
        logger.info(f"[Matchmaking] 피어 {peer_id[:8]} 연결 끊김")
    except RuntimeError:
        # 서버가 먼저 닫은 연결 (정지 등)
        logger.info(f"[Matchmaking] 피어 {peer_id[:8]} 연결 종료됨")
    except Exception as e:
        logger.error(f"[Matchmaking] 피어 {peer_id[:8]}의 WebSocket 연결 중 오류: {e}")
    finally:
        room_id = peer.room_id
        partner = _queue.unregister(peer_id)
        if partner is not None:
            await send_to_peer(partner, "partner_disconnected", {
                "message": "상대방의 연결이 끊어졌습니다",
                "autoRejoin": True,
                "roomId": room_id,
            })


async def _handle_join_queue(peer: Peer):
    """대기열 진입. 상대가 있으면 양쪽에 match_found를 보냅니다."""
    room = _queue.enqueue(peer.peer_id)
    if room is None:
        await send_to_peer(peer, "queue_joined", {
            "position": _queue.queue_position(peer.peer_id),
            "message": "매칭 상대를 찾는 중입니다",
        })
        return

    initiator = _queue.get_peer(room.initiator_id)
    responder = _queue.get_peer(room.responder_id)
    await send_to_peer(initiator, "match_found", {
        "roomId": room.room_id,
        "partnerId": responder.peer_id,
        "partnerName": responder.nickname,
        "role": "initiator",
    })
    await send_to_peer(responder, "match_found", {
        "roomId": room.room_id,
        "partnerId": initiator.peer_id,
        "partnerName": initiator.nickname,
        "role": "responder",
    })


async def _handle_leave_room(peer: Peer, reason: str):
    """현재 룸을 종료하고 상대에게 partner_left를 보냅니다."""
    room_id = peer.room_id
    partner = _queue.end_room(peer.peer_id)
    if partner is not None:
        await send_to_peer(partner, "partner_left", {"reason": reason, "roomId": room_id})


async def _handle_relay(peer: Peer, message_type: str, data: dict):
    """offer/answer/ice_candidate를 같은 룸의 상대에게 전달합니다."""
    room_id = data.get("roomId")
    if peer.room_id is None or room_id != peer.room_id:
        logger.warning(f"[Matchmaking] 룸 밖의 {message_type} 무시: peer={peer.peer_id[:8]}, room={room_id}")
        await send_to_peer(peer, "error", {"message": "Not in this room"})
        return

    partner = _queue.get_partner(peer.peer_id)
    if partner is None:
        return
    logger.debug(f"[Matchmaking] {message_type} 중계: {peer.peer_id[:8]} -> {partner.peer_id[:8]}")
    await send_to_peer(partner, message_type, data)


async def ban_peer(peer_id: str, reason: str, expiry: Optional[str] = None) -> bool:
    """참가자를 정지시키고 연결을 끊습니다.

    Returns:
        bool: 대상 참가자가 접속 중이었는지 여부
    """
    if _queue is None:
        return False
    peer = _queue.get_peer(peer_id)
    if peer is None:
        return False

    logger.warning(f"[Matchmaking] 참가자 정지: {peer_id[:8]}, reason={reason}")
    await send_to_peer(peer, "banned", {
        "reason": reason,
        "expiry": expiry,
        "message": "이용이 정지되었습니다",
    })
    try:
        await peer.websocket.close(code=4003, reason="Banned")
    except RuntimeError as e:
        logger.debug(f"[Matchmaking] 이미 닫힌 연결: {e}")
    return True
