"""관찰자용 제어 인터페이스.

UI나 CLI가 읽는 상태(local/remote 트랙, 연결 상태, 큐 상태)와
사용자 명령(join/leave/next/end, 음소거, 카메라)을 한 곳에 모읍니다.
음소거/카메라 상태는 세션과 무관하게 유지되며, 어떤 시그널링 메시지도
보내지 않습니다.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Optional

from pyee.asyncio import AsyncIOEventEmitter

from ..shared.types import ConnectionState, QueueStatus
from ..webrtc.tracks import MediaTrackSet
from .controller import SessionLifecycleController

logger = logging.getLogger(__name__)


@dataclass
class ControlState:
    """로컬 미디어 제어 상태."""

    is_muted: bool = False
    is_camera_on: bool = True


class ControlSurface(AsyncIOEventEmitter):
    """상태 조회와 명령을 제공하는 파사드.

    Events:
        local_tracks (MediaTrackSet): 로컬 트랙 획득
        remote_tracks (MediaTrackSet): 원격 트랙 변경
        remote_stream_ready (MediaTrackSet): 원격 스트림 준비
        connection_state (ConnectionState): 연결 상태 변경
        queue_status (QueueStatus): 큐 상태 변경
        control_state (ControlState): 음소거/카메라 상태 변경
    """

    def __init__(self, controller: SessionLifecycleController):
        super().__init__()
        self.controller = controller
        self.engine = controller.engine
        self.capture = controller.capture
        self.state = ControlState()

        self.capture.on("acquired", self._on_local_tracks)
        self.engine.on("remote_tracks", self._forward("remote_tracks"))
        self.engine.on("remote_stream_ready", self._forward("remote_stream_ready"))
        self.engine.on("connection_state", self._on_connection_state)
        self.controller.on("queue_status", self._forward("queue_status"))

    def _forward(self, event: str):
        def forward(*args):
            self.emit(event, *args)
        return forward

    def _on_local_tracks(self, tracks: MediaTrackSet) -> None:
        self._apply_state()
        self.emit("local_tracks", tracks)

    def _on_connection_state(self, session, state: ConnectionState) -> None:
        self.emit("connection_state", state)

    # ============================================================
    # 읽기 전용 상태
    # ============================================================

    @property
    def local_tracks(self) -> MediaTrackSet:
        return self.capture.tracks

    @property
    def remote_tracks(self) -> MediaTrackSet:
        return self.engine.remote_tracks

    @property
    def connection_state(self) -> Optional[ConnectionState]:
        return self.engine.connection_state

    @property
    def queue_status(self) -> QueueStatus:
        return self.controller.queue_status

    @property
    def is_muted(self) -> bool:
        return self.state.is_muted

    @property
    def is_camera_on(self) -> bool:
        return self.state.is_camera_on

    # ============================================================
    # 미디어 제어
    # ============================================================

    def toggle_mute(self) -> bool:
        """마이크 음소거를 토글하고 새 음소거 상태를 반환합니다."""
        self.state.is_muted = not self.state.is_muted
        self.capture.set_track_enabled("audio", not self.state.is_muted)
        logger.info(f"[Lifecycle] 음소거: {self.state.is_muted}")
        self.emit("control_state", ControlState(**asdict(self.state)))
        return self.state.is_muted

    def toggle_camera(self) -> bool:
        """카메라를 토글하고 새 카메라 상태를 반환합니다."""
        self.state.is_camera_on = not self.state.is_camera_on
        self.capture.set_track_enabled("video", self.state.is_camera_on)
        logger.info(f"[Lifecycle] 카메라: {self.state.is_camera_on}")
        self.emit("control_state", ControlState(**asdict(self.state)))
        return self.state.is_camera_on

    def _apply_state(self) -> None:
        self.capture.set_track_enabled("audio", not self.state.is_muted)
        self.capture.set_track_enabled("video", self.state.is_camera_on)

    # ============================================================
    # 큐 명령
    # ============================================================

    async def join_queue(self) -> bool:
        return await self.controller.join_queue()

    async def leave_queue(self) -> bool:
        return await self.controller.leave_queue()

    async def next_match(self) -> bool:
        return await self.controller.next_match()

    async def end_chat(self) -> bool:
        return await self.controller.end_chat()
