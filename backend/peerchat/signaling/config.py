"""시그널링 모듈 설정.

시그널링 서버 주소, 인증 토큰, 재연결 백오프 등 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class SignalingConfig:
    """시그널링 WebSocket 연결 설정."""

    # 시그널링 서버 WebSocket URL
    SIGNALING_URL: str = os.getenv("SIGNALING_URL", "ws://localhost:8000/ws")

    # 접근 토큰 (서버 ACCESS_PASSWORD)
    SIGNALING_TOKEN: Optional[str] = os.getenv("SIGNALING_TOKEN")

    # 재연결 백오프 (초)
    RECONNECT_BASE_DELAY: float = float(os.getenv("SIGNALING_RECONNECT_BASE_DELAY", "1.0"))
    RECONNECT_MAX_DELAY: float = float(os.getenv("SIGNALING_RECONNECT_MAX_DELAY", "30.0"))

    # keepalive (초)
    PING_INTERVAL: float = 20.0
    PING_TIMEOUT: float = 10.0

    def backoff_delay(self, attempt: int) -> float:
        """재연결 시도 횟수에 따른 지수 백오프 지연."""
        return min(self.RECONNECT_BASE_DELAY * (2 ** attempt), self.RECONNECT_MAX_DELAY)


signaling_config = SignalingConfig()

logger.info(f"[Signaling Config] 서버 URL: {signaling_config.SIGNALING_URL}")
logger.info(f"[Signaling Config] 토큰 설정: {signaling_config.SIGNALING_TOKEN is not None}")
