"""세션 라이프사이클 설정.

자동 재매칭, 재매칭 대기 시간, 연결 타임아웃 등 환경변수 기반 설정.
"""

import os
import logging
from pathlib import Path
from dataclasses import dataclass

# 환경변수 로드 (상위에서 이미 로드됨)
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


@dataclass(frozen=True)
class LifecycleConfig:
    """매칭 큐 라이프사이클 설정."""

    # 상대방 퇴장 후 자동으로 다시 큐에 들어갈지 여부
    AUTO_REJOIN: bool = os.getenv("AUTO_REJOIN", "true").lower() == "true"

    # 자동 재매칭 전 대기 시간 (초)
    REJOIN_DELAY: float = float(os.getenv("REJOIN_DELAY", "2.0"))

    # 매칭 후 connected까지 허용하는 시간 (초)
    CONNECT_TIMEOUT: float = float(os.getenv("CONNECT_TIMEOUT", "30"))


lifecycle_config = LifecycleConfig()

logger.info(f"[Lifecycle Config] 자동 재매칭: {lifecycle_config.AUTO_REJOIN} "
            f"(대기 {lifecycle_config.REJOIN_DELAY}s)")
logger.info(f"[Lifecycle Config] 연결 타임아웃: {lifecycle_config.CONNECT_TIMEOUT}s")
