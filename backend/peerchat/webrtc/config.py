"""WebRTC 설정.

ICE 서버(STUN/TURN), ICE 재시작 타임아웃, 로컬 캡처 장치 설정을
환경변수(config/.env)에서 읽어 frozen dataclass 싱글톤으로 제공합니다.
"""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_env_path = Path(__file__).parent.parent.parent / "config" / ".env"
load_dotenv(_env_path)


def _env(name: str) -> Optional[str]:
    """빈 문자열 환경변수는 미설정으로 취급합니다."""
    return os.getenv(name) or None


# 설정된 STUN이 없어도 항상 추가하는 공개 STUN
PUBLIC_STUN_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:stun1.l.google.com:19302",
    "stun:stun2.l.google.com:19302",
)


@dataclass(frozen=True)
class ICEServerConfig:
    """STUN/TURN 서버 목록.

    Attributes:
        STUN_SERVER_URL: 추가 STUN 서버 (선택)
        TURN_SERVER_URL / TURN_USERNAME / TURN_CREDENTIAL: 셋 다 있어야 TURN 사용
    """

    STUN_SERVER_URL: Optional[str] = _env("STUN_SERVER_URL")
    TURN_SERVER_URL: Optional[str] = _env("TURN_SERVER_URL")
    TURN_USERNAME: Optional[str] = _env("TURN_USERNAME")
    TURN_CREDENTIAL: Optional[str] = _env("TURN_CREDENTIAL")
    DEFAULT_STUN_SERVERS: tuple = PUBLIC_STUN_SERVERS

    @property
    def has_turn_server(self) -> bool:
        return None not in (self.TURN_SERVER_URL, self.TURN_USERNAME, self.TURN_CREDENTIAL)

    def server_entries(self) -> List[Dict[str, str]]:
        """RTCIceServer 형식 목록 (설정 STUN -> 공개 STUN -> TURN 순)."""
        stun_urls = [self.STUN_SERVER_URL] if self.STUN_SERVER_URL else []
        stun_urls.extend(self.DEFAULT_STUN_SERVERS)
        entries = [{"urls": url} for url in stun_urls]

        if self.has_turn_server:
            entries.append({
                "urls": self.TURN_SERVER_URL,
                "username": self.TURN_USERNAME,
                "credential": self.TURN_CREDENTIAL,
            })
        return entries


@dataclass(frozen=True)
class ConnectionConfig:
    # 연결 실패 후 ICE 재시작으로 복구를 기다리는 시간 (초)
    ICE_RESTART_TIMEOUT: float = float(os.getenv("ICE_RESTART_TIMEOUT", "10"))


def _default_capture_devices() -> tuple:
    """플랫폼별 (video_format, video_device, audio_format, audio_device) 기본값."""
    if sys.platform == "darwin":
        return ("avfoundation", "default:none", "avfoundation", "none:default")
    if sys.platform.startswith("win"):
        return ("dshow", "video=Integrated Camera", "dshow", "audio=Microphone")
    return ("v4l2", "/dev/video0", "pulse", "default")


_VIDEO_FORMAT, _VIDEO_DEVICE, _AUDIO_FORMAT, _AUDIO_DEVICE = _default_capture_devices()


@dataclass(frozen=True)
class CaptureConfig:
    """로컬 카메라/마이크 캡처 설정 (PyAV/FFmpeg 입력 포맷)."""

    VIDEO_FORMAT: str = _env("CAPTURE_VIDEO_FORMAT") or _VIDEO_FORMAT
    VIDEO_DEVICE: str = _env("CAPTURE_VIDEO_DEVICE") or _VIDEO_DEVICE
    AUDIO_FORMAT: str = _env("CAPTURE_AUDIO_FORMAT") or _AUDIO_FORMAT
    AUDIO_DEVICE: str = _env("CAPTURE_AUDIO_DEVICE") or _AUDIO_DEVICE

    # ideal 1280x720 @ 30fps
    VIDEO_WIDTH: int = int(os.getenv("CAPTURE_VIDEO_WIDTH", "1280"))
    VIDEO_HEIGHT: int = int(os.getenv("CAPTURE_VIDEO_HEIGHT", "720"))
    VIDEO_FRAMERATE: int = int(os.getenv("CAPTURE_VIDEO_FRAMERATE", "30"))

    @property
    def video_size(self) -> str:
        return f"{self.VIDEO_WIDTH}x{self.VIDEO_HEIGHT}"


ice_config = ICEServerConfig()
connection_config = ConnectionConfig()
capture_config = CaptureConfig()

logger.info(f"[WebRTC Config] env 파일: {_env_path} (exists={_env_path.exists()})")
logger.info(f"[WebRTC Config] ICE 서버: STUN={ice_config.STUN_SERVER_URL or '공개 STUN만'}, "
            f"TURN={ice_config.TURN_SERVER_URL if ice_config.has_turn_server else '미설정'}")
logger.info(f"[WebRTC Config] ICE 재시작 타임아웃: {connection_config.ICE_RESTART_TIMEOUT}s")
logger.info(f"[WebRTC Config] 캡처 장치: video={capture_config.VIDEO_FORMAT}:{capture_config.VIDEO_DEVICE}, "
            f"audio={capture_config.AUDIO_FORMAT}:{capture_config.AUDIO_DEVICE}")
