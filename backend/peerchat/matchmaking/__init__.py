"""매칭 큐 모듈 (개발용 시그널링 서버).

Classes:
    MatchmakingQueue: 대기열과 1:1 룸 관리
    Peer: 접속한 참가자
    Room: 매칭된 1:1 룸
"""

from .room_manager import MatchmakingQueue, Peer, Room

__all__ = [
    "MatchmakingQueue",
    "Peer",
    "Room",
]
