"""미디어 캡처 모듈.

Classes:
    MediaCaptureAdapter: 로컬 카메라/마이크 캡처 관리
    CaptureConstraints: 캡처 요청 조건
"""

from .capture import (
    MediaCaptureAdapter,
    CaptureConstraints,
    open_device_sources,
    synthetic_sources,
)

__all__ = [
    "MediaCaptureAdapter",
    "CaptureConstraints",
    "open_device_sources",
    "synthetic_sources",
]
