"""미디어 트랙 모듈.

종류(audio/video)별로 트랙을 하나씩 보관하는 MediaTrackSet과,
로컬에서 켜고 끌 수 있는 SwitchableTrack을 제공합니다.
"""

import logging
from typing import Dict, Iterator, List, Optional

import numpy as np
from aiortc import MediaStreamTrack
from av import AudioFrame, VideoFrame

logger = logging.getLogger(__name__)

TRACK_KINDS = ("audio", "video")


class MediaTrackSet:
    """종류별로 최대 하나의 활성 트랙을 보관하는 컨테이너.

    같은 종류의 트랙이 새로 들어오면 추가되지 않고 기존 트랙을 대체합니다.
    재협상 과정에서 중복/유령 트랙이 쌓이는 것을 막기 위함입니다.

    Examples:
        >>> tracks = MediaTrackSet()
        >>> tracks.put(audio_track)
        >>> replaced = tracks.put(new_audio_track)  # 이전 audio_track 반환
        >>> tracks.kinds()
        ['audio']
    """

    def __init__(self, tracks: Optional[List[MediaStreamTrack]] = None):
        # kind -> track
        self._tracks: Dict[str, MediaStreamTrack] = {}
        for track in tracks or []:
            self.put(track)

    def put(self, track: MediaStreamTrack) -> Optional[MediaStreamTrack]:
        """트랙을 추가하고, 대체된 같은 종류의 기존 트랙을 반환합니다.

        Args:
            track (MediaStreamTrack): 추가할 트랙 (kind는 audio 또는 video)

        Returns:
            Optional[MediaStreamTrack]: 대체된 기존 트랙. 없거나 같은 트랙이면 None

        Raises:
            ValueError: 지원하지 않는 트랙 종류
        """
        if track.kind not in TRACK_KINDS:
            raise ValueError(f"지원하지 않는 트랙 종류: {track.kind}")

        previous = self._tracks.get(track.kind)
        self._tracks[track.kind] = track
        if previous is track:
            return None
        return previous

    def get(self, kind: str) -> Optional[MediaStreamTrack]:
        return self._tracks.get(kind)

    def remove(self, track: MediaStreamTrack) -> bool:
        """트랙이 현재 활성 트랙이면 제거합니다."""
        if self._tracks.get(track.kind) is track:
            del self._tracks[track.kind]
            return True
        return False

    @property
    def audio(self) -> Optional[MediaStreamTrack]:
        return self._tracks.get("audio")

    @property
    def video(self) -> Optional[MediaStreamTrack]:
        return self._tracks.get("video")

    def kinds(self) -> List[str]:
        return [kind for kind in TRACK_KINDS if kind in self._tracks]

    def stop_all(self) -> None:
        """모든 트랙을 정지하고 비웁니다."""
        for track in list(self._tracks.values()):
            track.stop()
        self._tracks.clear()

    def clear(self) -> None:
        self._tracks.clear()

    def __iter__(self) -> Iterator[MediaStreamTrack]:
        return iter([self._tracks[kind] for kind in self.kinds()])

    def __len__(self) -> int:
        return len(self._tracks)

    def __contains__(self, kind: object) -> bool:
        return kind in self._tracks

    def __repr__(self) -> str:
        return f"MediaTrackSet({self.kinds()})"


class SwitchableTrack(MediaStreamTrack):
    """로컬에서 켜고 끌 수 있는 캡처 트랙.

    원본 트랙의 프레임을 그대로 릴레이하다가, 비활성화되면 같은 형식의
    무음(오디오) 또는 검은 화면(비디오) 프레임을 대신 내보냅니다.
    트랙 자체는 유지되므로 재협상이나 시그널링 메시지가 필요 없습니다.

    Attributes:
        kind (str): 원본 트랙 종류 ("audio" 또는 "video")
        track (MediaStreamTrack): 원본 캡처 트랙
        enabled (bool): 활성화 여부
    """

    def __init__(self, track: MediaStreamTrack, enabled: bool = True):
        super().__init__()
        self.kind = track.kind
        self.track = track
        self.enabled = enabled

    async def recv(self):
        """원본 프레임을 수신하고, 비활성 상태면 빈 프레임으로 바꿔 반환합니다."""
        frame = await self.track.recv()
        if self.enabled:
            return frame

        if isinstance(frame, AudioFrame):
            return _silent_like(frame)
        if isinstance(frame, VideoFrame):
            return _black_like(frame)
        return frame

    def stop(self) -> None:
        super().stop()
        self.track.stop()


def _silent_like(frame: AudioFrame) -> AudioFrame:
    silent = AudioFrame(format=frame.format.name, layout=frame.layout.name, samples=frame.samples)
    for plane in silent.planes:
        plane.update(bytes(plane.buffer_size))
    silent.pts = frame.pts
    silent.sample_rate = frame.sample_rate
    silent.time_base = frame.time_base
    return silent


def _black_like(frame: VideoFrame) -> VideoFrame:
    black = VideoFrame.from_ndarray(
        np.zeros((frame.height, frame.width, 3), dtype=np.uint8), format="rgb24"
    )
    black.pts = frame.pts
    black.time_base = frame.time_base
    return black
