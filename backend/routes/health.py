"""Health Check API 라우터.

시그널링 서버 상태와 매칭 큐 통계를 제공합니다.
"""

from fastapi import APIRouter

from .signaling import get_queue

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check():
    """서버 상태를 확인합니다.

    Returns:
        dict: 상태와 접속/대기/룸 수
    """
    queue = get_queue()
    if queue is None:
        return {"status": "not_initialized", "queue": None}
    return {"status": "ok", "queue": queue.get_stats()}
