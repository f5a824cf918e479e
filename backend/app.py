"""peerchat 매칭 시그널링 서버 (개발용).

peerchat 클라이언트와 브라우저가 접속하는 1:1 매칭 릴레이입니다. 대기열에서
두 참가자를 짝지은 뒤 같은 룸 안에서 offer/answer/ICE candidate를 그대로
전달합니다. 미디어는 서버를 거치지 않고 피어 간에 직접 흐릅니다.

Endpoints:
    WS   /ws                      매칭 + 시그널링
    GET  /api/health              서버 상태와 큐 통계
    GET  /api/ice-servers         브라우저용 STUN/TURN 목록
    POST /api/admin/ban/{peer_id} 참가자 정지

실행:
    cd backend
    python app.py
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

# config/.env 환경변수 로드 (peerchat 설정 모듈보다 먼저)
load_dotenv(Path(__file__).parent / "config" / ".env")

from peerchat.matchmaking import MatchmakingQueue  # noqa: E402
from peerchat.webrtc.config import ice_config  # noqa: E402
from routes import (  # noqa: E402
    admin_router,
    health_router,
    init_signaling_managers,
    signaling_router,
    verify_auth_header,
)

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ENV = os.getenv("ENV", "development")

# 로그 보관 기간 (일)
LOG_RETENTION_DAYS = int(os.getenv("LOG_RETENTION_DAYS", "60"))

logger = logging.getLogger(__name__)


def setup_logging() -> Path:
    """콘솔 + 일자별 파일(server_YYYYMMDD.log) 로깅을 설정합니다.

    Returns:
        Path: 오늘 로그 파일 경로
    """
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / f"server_{datetime.now():%Y%m%d}.log"
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )
    logger.info(f"[Server] 로깅 시작: level={LOG_LEVEL}, env={ENV}, file={log_file}")
    return log_file


def cleanup_old_logs(log_dir: Path = LOG_DIR, retention_days: int = LOG_RETENTION_DAYS) -> int:
    """보관 기간이 지난 server_YYYYMMDD.log 파일을 지우고 지운 개수를 반환합니다."""
    if not log_dir.exists():
        return 0

    cutoff = datetime.now() - timedelta(days=retention_days)
    removed = 0
    for log_file in log_dir.glob("server_*.log"):
        try:
            stamp = datetime.strptime(log_file.stem.removeprefix("server_"), "%Y%m%d")
        except ValueError:
            continue
        if stamp >= cutoff:
            continue
        try:
            log_file.unlink()
        except OSError as e:
            logger.warning(f"[Server] 로그 파일 삭제 실패: {log_file.name} ({e})")
            continue
        removed += 1
    return removed


def create_app(queue: MatchmakingQueue) -> FastAPI:
    """매칭 큐를 사용하는 FastAPI 앱을 만듭니다."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        removed = cleanup_old_logs()
        if removed:
            logger.info(f"[Server] {LOG_RETENTION_DAYS}일 지난 로그 {removed}개 삭제")
        logger.info("[Server] 매칭 시그널링 서버 시작")
        yield
        logger.info(f"[Server] 서버 종료, 남은 접속: {queue.get_stats()}")

    app = FastAPI(title="PeerChat Matchmaking Server", lifespan=lifespan)

    # 개발 환경: localhost 및 사설망 오리진 허용
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^http://(localhost|127\.0\.0\.1|192\.168\.\d{1,3}\.\d{1,3}):\d+$",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(admin_router)
    app.include_router(signaling_router)
    init_signaling_managers(queue)

    @app.get("/")
    async def root():
        return {"status": "ok", "service": "PeerChat Matchmaking Server"}

    @app.get("/api/ice-servers")
    async def get_ice_servers(_: bool = Depends(verify_auth_header)):
        """브라우저 RTCPeerConnection에 넘길 iceServers 목록."""
        entries = ice_config.server_entries()
        logger.info(f"[Server] ICE 서버 {len(entries)}개 제공 (TURN={ice_config.has_turn_server})")
        return entries

    return app


setup_logging()
matchmaking_queue = MatchmakingQueue()
app = create_app(matchmaking_queue)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")), log_level="info")
