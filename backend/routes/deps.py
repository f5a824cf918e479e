"""공유 의존성 모듈.

라우터들이 공통으로 사용하는 인증 의존성을 정의합니다.
ACCESS_PASSWORD가 비어 있으면 인증 없이 허용합니다.
"""

import os
from typing import Optional

from fastapi import Header, HTTPException


def get_access_password() -> str:
    """접근 비밀번호 (요청 시점의 환경변수 값)."""
    return os.getenv("ACCESS_PASSWORD", "")


async def verify_auth_header(authorization: Optional[str] = Header(None)) -> bool:
    """Bearer Authorization 헤더를 검증합니다.

    Raises:
        HTTPException: 인증 실패 시 401
    """
    password = get_access_password()
    if not password:
        return True
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() != "bearer" or not credential:
        raise HTTPException(status_code=401, detail="Invalid authorization format")
    if credential != password:
        raise HTTPException(status_code=401, detail="Invalid password")
    return True


def verify_ws_token(token: Optional[str]) -> bool:
    """WebSocket 연결 시 쿼리 파라미터 토큰을 검증합니다."""
    password = get_access_password()
    if not password:
        return True
    return token == password
