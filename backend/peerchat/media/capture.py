"""로컬 미디어 캡처 어댑터.

카메라/마이크를 열어 SwitchableTrack으로 감싼 로컬 MediaTrackSet을 제공합니다.
캡처 트랙은 세션보다 오래 살아서 다음 세션에서 재사용되며,
release()를 호출해야만 정지됩니다.

Examples:
    >>> capture = MediaCaptureAdapter()
    >>> tracks = await capture.acquire(CaptureConstraints(video_enabled=True))
    >>> capture.set_track_enabled("audio", False)  # 음소거 (시그널링 없음)
    >>> capture.release()
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaPlayer
from aiortc.mediastreams import AudioStreamTrack, VideoStreamTrack
from av.error import FFmpegError
from pyee.asyncio import AsyncIOEventEmitter

from ..errors import CaptureUnavailable, DeviceUnavailable, PermissionDenied
from ..webrtc.config import CaptureConfig, capture_config
from ..webrtc.tracks import MediaTrackSet, SwitchableTrack, TRACK_KINDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureConstraints:
    """캡처 요청 조건.

    Attributes:
        video_enabled (bool): 카메라 캡처 여부
        audio_enabled (bool): 마이크 캡처 여부
        preferred_device_id (Optional[str]): 사용할 비디오 장치 (없으면 설정 기본값)
    """

    video_enabled: bool = True
    audio_enabled: bool = True
    preferred_device_id: Optional[str] = None


SourceFactory = Callable[[CaptureConstraints], List[MediaStreamTrack]]


def open_device_sources(
    constraints: CaptureConstraints,
    config: CaptureConfig = capture_config,
) -> List[MediaStreamTrack]:
    """FFmpeg 입력 장치에서 캡처 트랙을 엽니다."""
    tracks: List[MediaStreamTrack] = []
    try:
        if constraints.video_enabled:
            device = constraints.preferred_device_id or config.VIDEO_DEVICE
            player = MediaPlayer(
                device,
                format=config.VIDEO_FORMAT,
                options={
                    "video_size": config.video_size,
                    "framerate": str(config.VIDEO_FRAMERATE),
                },
            )
            if player.video is None:
                raise DeviceUnavailable(f"비디오 스트림 없음: {device}")
            tracks.append(player.video)

        if constraints.audio_enabled:
            player = MediaPlayer(config.AUDIO_DEVICE, format=config.AUDIO_FORMAT)
            if player.audio is None:
                raise DeviceUnavailable(f"오디오 스트림 없음: {config.AUDIO_DEVICE}")
            tracks.append(player.audio)
    except Exception:
        for track in tracks:
            track.stop()
        raise

    return tracks


def synthetic_sources(constraints: CaptureConstraints) -> List[MediaStreamTrack]:
    """장치 없이 aiortc 테스트 트랙(무음/단색 화면)을 생성합니다."""
    tracks: List[MediaStreamTrack] = []
    if constraints.video_enabled:
        tracks.append(VideoStreamTrack())
    if constraints.audio_enabled:
        tracks.append(AudioStreamTrack())
    return tracks


class MediaCaptureAdapter(AsyncIOEventEmitter):
    """로컬 오디오/비디오 캡처를 획득/해제하고 트랙별 활성화를 제어합니다.

    Events:
        acquired (MediaTrackSet): 캡처 트랙 획득
        released (): 캡처 트랙 해제

    Note:
        - set_track_enabled()로 지정한 상태는 다음 acquire()에도 적용됨
        - 음소거/카메라 끄기는 로컬 동작이며 시그널링 메시지를 보내지 않음
    """

    def __init__(
        self,
        source_factory: Optional[SourceFactory] = None,
        constraints: CaptureConstraints = CaptureConstraints(),
    ):
        super().__init__()
        self._source_factory = source_factory or open_device_sources
        self.constraints = constraints
        self._tracks = MediaTrackSet()
        self._enabled: Dict[str, bool] = {kind: True for kind in TRACK_KINDS}
        self._acquire_lock = asyncio.Lock()

    @property
    def tracks(self) -> MediaTrackSet:
        """현재 로컬 트랙 (획득 전이면 비어 있음)."""
        return self._tracks

    @property
    def is_acquired(self) -> bool:
        return len(self._tracks) > 0

    async def acquire(self, constraints: Optional[CaptureConstraints] = None) -> MediaTrackSet:
        """캡처 장치를 열고 로컬 트랙을 반환합니다. 이미 획득했으면 그대로 반환합니다.

        Args:
            constraints (Optional[CaptureConstraints]): 캡처 조건 (없으면 생성 시 값)

        Returns:
            MediaTrackSet: SwitchableTrack으로 감싼 로컬 트랙

        Raises:
            PermissionDenied: 장치 접근 권한 거부
            DeviceUnavailable: 장치 없음/열기 실패
        """
        async with self._acquire_lock:
            if self.is_acquired:
                return self._tracks

            constraints = constraints or self.constraints
            logger.info(f"[Capture] 캡처 요청: video={constraints.video_enabled}, "
                        f"audio={constraints.audio_enabled}, device={constraints.preferred_device_id}")

            try:
                sources = self._source_factory(constraints)
            except CaptureUnavailable:
                raise
            except PermissionError as e:
                logger.error(f"[Capture] 장치 접근 권한 거부: {e}")
                raise PermissionDenied(f"카메라/마이크 접근 권한이 없습니다: {e}") from e
            except (OSError, FFmpegError) as e:
                logger.error(f"[Capture] 캡처 장치 열기 실패: {e}")
                raise DeviceUnavailable(f"카메라/마이크를 사용할 수 없습니다: {e}") from e

            if not sources:
                raise DeviceUnavailable("요청한 캡처 장치가 없습니다")

            for source in sources:
                track = SwitchableTrack(source, enabled=self._enabled.get(source.kind, True))
                replaced = self._tracks.put(track)
                if replaced is not None:
                    replaced.stop()
                logger.info(f"[Capture] 로컬 {track.kind} 트랙 시작 (enabled={track.enabled})")

        self.emit("acquired", self._tracks)
        return self._tracks

    def release(self) -> None:
        """모든 로컬 트랙을 정지합니다. 여러 번 호출해도 안전합니다."""
        if not self.is_acquired:
            return
        self._tracks.stop_all()
        logger.info("[Capture] 로컬 트랙 정지")
        self.emit("released")

    def set_track_enabled(self, kind: str, enabled: bool) -> bool:
        """특정 종류의 로컬 트랙을 켜거나 끕니다.

        Args:
            kind (str): "audio" 또는 "video"
            enabled (bool): 활성화 여부

        Returns:
            bool: 현재 살아있는 트랙에 적용되었는지 여부

        Raises:
            ValueError: 지원하지 않는 트랙 종류
        """
        if kind not in TRACK_KINDS:
            raise ValueError(f"지원하지 않는 트랙 종류: {kind}")

        self._enabled[kind] = enabled
        track = self._tracks.get(kind)
        if track is None:
            return False
        track.enabled = enabled
        logger.info(f"[Capture] {kind} 트랙 enabled={enabled}")
        return True

    def is_track_enabled(self, kind: str) -> bool:
        return self._enabled.get(kind, True)
