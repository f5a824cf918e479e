"""관리자 API 라우터.

접속 중인 참가자 정지 기능을 제공합니다.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from .deps import verify_auth_header
from .signaling import ban_peer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class BanRequest(BaseModel):
    """참가자 정지 요청."""
    reason: str = "policy_violation"
    expiry: Optional[str] = None


@router.post("/ban/{peer_id}")
async def ban(peer_id: str, request: BanRequest, _: bool = Depends(verify_auth_header)):
    """참가자에게 banned를 보내고 연결을 끊습니다.

    Raises:
        HTTPException: 접속 중인 참가자가 아니면 404
    """
    if not await ban_peer(peer_id, request.reason, request.expiry):
        raise HTTPException(status_code=404, detail="Peer not connected")
    logger.info(f"[Admin] 참가자 정지 완료: {peer_id[:8]}")
    return {"success": True, "peer_id": peer_id}
