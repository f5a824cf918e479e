"""1:1 매칭 큐 관리 모듈.

개발용 시그널링 서버에서 대기열과 1:1 룸을 관리합니다. 먼저 들어온
참가자부터 순서대로 짝을 짓고, 나중에 들어온 쪽이 initiator가 됩니다.

Architecture:
    - peers: Dict[str, Peer] - 접속 중인 참가자
    - waiting: Deque[str] - 매칭 대기열 (FIFO)
    - rooms: Dict[str, Room] - 룸 ID -> 매칭된 두 참가자

Classes:
    Peer: 접속한 참가자
    Room: 매칭된 1:1 룸
    MatchmakingQueue: 대기열과 룸 관리

Examples:
    >>> queue = MatchmakingQueue()
    >>> queue.register("peer-a", ws_a)
    >>> queue.register("peer-b", ws_b)
    >>> queue.enqueue("peer-a")      # None (대기)
    >>> room = queue.enqueue("peer-b")
    >>> room.initiator_id
    'peer-b'
"""

import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class Peer:
    """시그널링 서버에 접속한 참가자.

    Attributes:
        peer_id (str): 참가자 고유 ID (UUID)
        websocket (Any): 참가자와의 WebSocket 연결 객체
        nickname (str): 표시 이름
        room_id (Optional[str]): 현재 매칭된 룸
    """
    peer_id: str
    websocket: Any
    nickname: str = "Anonymous"
    room_id: Optional[str] = None


@dataclass
class Room:
    """매칭된 1:1 룸."""
    room_id: str
    initiator_id: str
    responder_id: str
    created_at: float = field(default_factory=time.time)

    def partner_of(self, peer_id: str) -> Optional[str]:
        if peer_id == self.initiator_id:
            return self.responder_id
        if peer_id == self.responder_id:
            return self.initiator_id
        return None


class MatchmakingQueue:
    """매칭 대기열과 1:1 룸을 관리하는 클래스.

    Thread Safety:
        - asyncio 단일 스레드에서 동작 (await 없이 상태를 변경)
    """

    def __init__(self):
        # peer_id -> Peer
        self.peers: Dict[str, Peer] = {}

        # 매칭 대기열 (먼저 들어온 순)
        self.waiting: Deque[str] = deque()

        # room_id -> Room
        self.rooms: Dict[str, Room] = {}

    def register(self, peer_id: str, websocket: Any, nickname: str = "Anonymous") -> Peer:
        """접속한 참가자를 등록합니다."""
        peer = Peer(peer_id=peer_id, websocket=websocket, nickname=nickname)
        self.peers[peer_id] = peer
        logger.info(f"[Matchmaking] 참가자 등록: {peer_id[:8]} (접속 {len(self.peers)}명)")
        return peer

    def unregister(self, peer_id: str) -> Optional[Peer]:
        """참가자를 제거합니다.

        Returns:
            Optional[Peer]: 매칭 중이었다면 남겨진 상대방
        """
        if peer_id not in self.peers:
            return None
        self.dequeue(peer_id)
        partner = self.end_room(peer_id)
        del self.peers[peer_id]
        logger.info(f"[Matchmaking] 참가자 제거: {peer_id[:8]} (접속 {len(self.peers)}명)")
        return partner

    def get_peer(self, peer_id: str) -> Optional[Peer]:
        return self.peers.get(peer_id)

    def enqueue(self, peer_id: str) -> Optional[Room]:
        """참가자를 대기열에 넣고, 상대가 있으면 바로 매칭합니다.

        Args:
            peer_id (str): 대기열에 들어갈 참가자

        Returns:
            Optional[Room]: 매칭되었으면 새 룸 (이 참가자가 initiator),
                            대기 중이면 None

        Raises:
            KeyError: 등록되지 않은 참가자
        """
        peer = self.peers[peer_id]
        if peer.room_id is not None:
            logger.warning(f"[Matchmaking] 이미 매칭된 참가자의 대기열 요청 무시: {peer_id[:8]}")
            return None
        if peer_id in self.waiting:
            return None

        while self.waiting:
            partner_id = self.waiting.popleft()
            if partner_id in self.peers:
                return self._create_room(initiator_id=peer_id, responder_id=partner_id)

        self.waiting.append(peer_id)
        logger.info(f"[Matchmaking] 대기열 진입: {peer_id[:8]} (대기 {len(self.waiting)}명)")
        return None

    def dequeue(self, peer_id: str) -> bool:
        """대기열에서 참가자를 뺍니다."""
        try:
            self.waiting.remove(peer_id)
        except ValueError:
            return False
        logger.info(f"[Matchmaking] 대기열 이탈: {peer_id[:8]} (대기 {len(self.waiting)}명)")
        return True

    def queue_position(self, peer_id: str) -> Optional[int]:
        """대기열 순번 (1부터). 대기 중이 아니면 None."""
        try:
            return self.waiting.index(peer_id) + 1
        except ValueError:
            return None

    def _create_room(self, initiator_id: str, responder_id: str) -> Room:
        room = Room(room_id=uuid.uuid4().hex, initiator_id=initiator_id, responder_id=responder_id)
        self.rooms[room.room_id] = room
        self.peers[initiator_id].room_id = room.room_id
        self.peers[responder_id].room_id = room.room_id
        logger.info(f"[Matchmaking] 매칭 성사: room={room.room_id[:8]}, "
                    f"initiator={initiator_id[:8]}, responder={responder_id[:8]}")
        return room

    def get_room(self, peer_id: str) -> Optional[Room]:
        peer = self.peers.get(peer_id)
        if peer is None or peer.room_id is None:
            return None
        return self.rooms.get(peer.room_id)

    def get_partner(self, peer_id: str) -> Optional[Peer]:
        """매칭된 상대방을 반환합니다."""
        room = self.get_room(peer_id)
        if room is None:
            return None
        return self.peers.get(room.partner_of(peer_id))

    def end_room(self, peer_id: str) -> Optional[Peer]:
        """참가자가 속한 룸을 종료합니다.

        Returns:
            Optional[Peer]: 남겨진 상대방 (룸이 없었으면 None)
        """
        room = self.get_room(peer_id)
        if room is None:
            return None

        del self.rooms[room.room_id]
        partner = None
        for member_id in (room.initiator_id, room.responder_id):
            member = self.peers.get(member_id)
            if member is None:
                continue
            member.room_id = None
            if member_id != peer_id:
                partner = member

        logger.info(f"[Matchmaking] 룸 종료: room={room.room_id[:8]}, by={peer_id[:8]}")
        return partner

    def get_stats(self) -> Dict[str, int]:
        """접속/대기/룸 수 통계."""
        return {
            "peers": len(self.peers),
            "waiting": len(self.waiting),
            "rooms": len(self.rooms),
        }
