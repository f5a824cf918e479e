"""pytest 공통 설정.

backend/를 import 경로에 추가하고 테스트용 환경변수를 정리합니다.
"""

import sys
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture(autouse=True)
def _no_access_password(monkeypatch):
    monkeypatch.delenv("ACCESS_PASSWORD", raising=False)
