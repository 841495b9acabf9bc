"""
測試配置與共用工具
conftest.py - pytest 自動載入
"""

import pytest
import sys
import os
from unittest.mock import MagicMock
from typing import List, Tuple

# 確保可以 import 專案模組
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conversation import (
    ConversationController,
    InMemoryEventSink,
    InMemorySessionStore,
    Session,
    build_default_registry
)
from linebot_handler import MessageSender, TransportError

RETRIES_MAX = 3
PASSWORD_MIN = 4
PASSWORD_MAX = 20


# ==========================================
# 🛠️ Test Doubles
# ==========================================

class RecordingSender(MessageSender):
    """記錄所有送出的訊息"""

    def __init__(self, fail: bool = False):
        self.sent: List[Tuple[str, str]] = []
        self.fail = fail

    def send(self, recipient: str, text: str) -> None:
        if self.fail:
            raise TransportError("network down")
        self.sent.append((recipient, text))

    def texts_for(self, recipient: str) -> List[str]:
        return [text for to, text in self.sent if to == recipient]


# ==========================================
# 📦 Fixtures
# ==========================================

@pytest.fixture
def registry():
    """內建 email / password 驗證器"""
    return build_default_registry(PASSWORD_MIN, PASSWORD_MAX)


@pytest.fixture
def controller(registry):
    """標準 register 流程的 controller"""
    return ConversationController(
        registry=registry,
        flows={"register": ["email", "password"]},
        retries_max=RETRIES_MAX
    )


@pytest.fixture
def idle_session():
    return Session.idle(RETRIES_MAX)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def event_sink():
    return InMemoryEventSink()


@pytest.fixture
def system(controller, sender, event_sink):
    """使用記憶體 store 的 RegistrationSystem"""
    from main import RegistrationSystem

    return RegistrationSystem(
        sender=sender,
        store=InMemorySessionStore(),
        event_sink=event_sink,
        controller=controller
    )


@pytest.fixture
def mock_redis():
    """Mock Redis Client"""
    mock = MagicMock()
    mock.get.return_value = None
    mock.set.return_value = True
    mock.ping.return_value = True
    mock.pipeline.return_value = MagicMock()
    return mock


@pytest.fixture
def failing_sender():
    return RecordingSender(fail=True)
