"""헤드리스 peerchat 클라이언트.

매칭 서버에 접속해 대기열에 들어가고, 매칭되면 카메라/마이크(또는
--fake-media 테스트 트랙)로 1:1 세션을 맺습니다. 수신한 원격 미디어는
MediaBlackhole로 소비합니다.

사용법:
    cd backend
    python -m peerchat.client --url ws://localhost:8000/ws --fake-media

명령 (stdin):
    n: 다음 상대    m: 음소거 토글    v: 카메라 토글
    j: 대기열 진입  c: 대화 종료      q: 종료
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from aiortc.contrib.media import MediaBlackhole

from .errors import CaptureUnavailable, TransportError
from .lifecycle import ControlSurface, SessionLifecycleController
from .media import CaptureConstraints, MediaCaptureAdapter, synthetic_sources
from .signaling import WebSocketTransport
from .webrtc import MediaTrackSet, NegotiationEngine

logger = logging.getLogger(__name__)

HELP = "명령: n=다음 상대, m=음소거, v=카메라, j=대기열 진입, c=대화 종료, q=종료"


class RemoteMediaSink:
    """원격 트랙을 MediaBlackhole로 소비합니다 (트랙 집합이 바뀌면 다시 시작)."""

    def __init__(self):
        self._blackhole: Optional[MediaBlackhole] = None
        self._lock = asyncio.Lock()

    async def update(self, tracks: MediaTrackSet) -> None:
        async with self._lock:
            await self._stop()
            if len(tracks) == 0:
                return
            blackhole = MediaBlackhole()
            for track in tracks:
                blackhole.addTrack(track)
            await blackhole.start()
            self._blackhole = blackhole
            logger.info(f"[Client] 원격 미디어 수신 중: {tracks.kinds()}")

    async def _stop(self) -> None:
        if self._blackhole is not None:
            await self._blackhole.stop()
            self._blackhole = None

    async def close(self) -> None:
        async with self._lock:
            await self._stop()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="peerchat-client", description="헤드리스 1:1 영상 채팅 클라이언트")
    parser.add_argument("--url", default=None, help="시그널링 서버 URL (기본: SIGNALING_URL)")
    parser.add_argument("--token", default=None, help="접근 토큰 (기본: SIGNALING_TOKEN)")
    parser.add_argument("--fake-media", action="store_true", help="장치 대신 aiortc 테스트 트랙 사용")
    parser.add_argument("--no-video", action="store_true", help="카메라 사용 안 함")
    parser.add_argument("--no-audio", action="store_true", help="마이크 사용 안 함")
    parser.add_argument("--device", default=None, help="비디오 캡처 장치")
    parser.add_argument("--no-auto-rejoin", action="store_true", help="상대 퇴장 후 자동 재매칭 끄기")
    parser.add_argument("--log-level", default="INFO", help="로그 레벨")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> None:
    transport = WebSocketTransport(url=args.url, token=args.token)
    capture = MediaCaptureAdapter(
        source_factory=synthetic_sources if args.fake_media else None,
        constraints=CaptureConstraints(
            video_enabled=not args.no_video,
            audio_enabled=not args.no_audio,
            preferred_device_id=args.device,
        ),
    )
    engine = NegotiationEngine(transport, capture)
    controller = SessionLifecycleController(
        transport, engine, auto_rejoin=not args.no_auto_rejoin
    )
    surface = ControlSurface(controller)
    sink = RemoteMediaSink()

    surface.on("remote_tracks", sink.update)
    surface.on("queue_status", lambda status: print(f"* 상태: {status.value}"))
    surface.on("connection_state", lambda state: print(f"* 연결: {state.value}"))
    controller.on("match_found", lambda match: print(f"* 매칭: {match.partner_name or match.partner_id[:8]}"))
    controller.on("partner_left", lambda reason: print(f"* 상대방 퇴장 ({reason})"))
    controller.on("banned", lambda banned: print(f"* 이용 정지: {banned.reason}"))

    try:
        await transport.connect()
        await controller.join_queue()
    except (TransportError, CaptureUnavailable) as e:
        logger.error(f"[Client] 시작 실패: {e}")
        await controller.close()
        await transport.close()
        return

    print(HELP)
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            command = line.strip().lower()
            if command == "q":
                break
            elif command == "n":
                await surface.next_match()
            elif command == "m":
                print(f"* 음소거: {surface.toggle_mute()}")
            elif command == "v":
                print(f"* 카메라: {surface.toggle_camera()}")
            elif command == "j":
                await surface.join_queue()
            elif command == "c":
                await surface.end_chat()
            elif command:
                print(HELP)
    finally:
        await surface.end_chat()
        await controller.close()
        await sink.close()
        await transport.close()


def main(argv=None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("[Client] 종료")


if __name__ == "__main__":
    main()
