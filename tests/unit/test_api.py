"""
API 和 LINE Bot Webhook 測試
"""

import pytest
import sys
import os
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from fastapi.testclient import TestClient
from linebot.v3.exceptions import InvalidSignatureError
from redis.exceptions import LockError


@pytest.fixture
def client(system):
    """建立測試 client (不跑 lifespan)"""
    with patch('api.registration_system', system):
        from api import app
        yield TestClient(app)


class TestAPIEndpoints:
    """API 端點測試"""

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["name"] == "Registration Bot API"

    def test_health_check(self, client):
        with patch('api.check_redis_connection', return_value=False):
            response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["services"]["registration_system"] is True
        assert data["services"]["redis"] is False

    def test_chat_starts_registration(self, client, sender):
        response = client.post("/api/v1/chat", json={"user_id": "U1", "message": "/register"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "COLLECTING"
        assert data["reply"].endswith("please input your email")
        assert data["session"]["awaiting"] == "email"
        assert data["session"]["command_mode"] is False
        # 回覆放在 response 裡,不另外推播
        assert sender.sent == []

    def test_chat_does_not_echo_password(self, client):
        client.post("/api/v1/chat", json={"user_id": "U1", "message": "/register"})
        client.post("/api/v1/chat", json={"user_id": "U1", "message": "a@b.com"})
        response = client.post("/api/v1/chat", json={"user_id": "U1", "message": "Abc123"})

        data = response.json()
        assert data["status"] == "COMPLETED"
        assert data["emitted_field"] == "password"
        assert "Abc123" not in response.text
        assert data["session"]["command_mode"] is True

    def test_chat_missing_user_id(self, client):
        response = client.post("/api/v1/chat", json={"message": "/register"})

        assert response.status_code == 422

    def test_chat_empty_message(self, client):
        response = client.post("/api/v1/chat", json={"user_id": "U1", "message": ""})

        assert response.status_code == 422

    def test_chat_without_system(self):
        with patch('api.registration_system', None):
            from api import app
            response = TestClient(app).post("/api/v1/chat", json={"user_id": "U1", "message": "hi"})

        assert response.status_code == 503
        assert response.json()["success"] is False

    def test_get_and_reset_session(self, client):
        client.post("/api/v1/chat", json={"user_id": "U1", "message": "/register"})

        info = client.get("/api/v1/session/U1").json()
        assert info["pipeline"] == ["email", "password"]
        assert info["retries_max"] == 3

        response = client.delete("/api/v1/session/U1")
        assert response.json()["success"] is True

        info = client.get("/api/v1/session/U1").json()
        assert info["command_mode"] is True
        assert info["awaiting"] is None

    def test_chat_session_is_state_after_this_message(self, client, system):
        """回傳的 session 是這則訊息處理完的狀態,不受之後的訊息影響"""
        process = system.process_message

        def process_then_interleave(user_id, message, deliver=True):
            result = process(user_id, message, deliver=deliver)
            # 同一使用者的另一則訊息在回應組出來之前處理完
            process(user_id, "bad", deliver=False)
            return result

        with patch.object(system, "process_message", side_effect=process_then_interleave):
            data = client.post("/api/v1/chat", json={"user_id": "U1", "message": "/register"}).json()

        assert data["session"]["awaiting"] == "email"
        assert data["session"]["retries"] == 0
        assert system.get_session("U1").retries == 1

    def test_chat_store_error(self, client, system):
        """Store 失敗時回傳 STORE_ERROR,沒有 session 資訊"""
        with patch.object(system.store, "lock", side_effect=LockError("could not acquire")):
            response = client.post("/api/v1/chat", json={"user_id": "U1", "message": "/register"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["status"] == "STORE_ERROR"
        assert data["reply"] == "registration is not available right now"
        assert data["session"] is None


class TestLINEBotWebhook:
    """LINE Bot Webhook 測試"""

    def test_webhook_not_configured(self, client):
        with patch('api.line_handler', None):
            response = client.post("/api/v1/webhook/line", json={"events": []})

        assert response.status_code == 503

    def test_webhook_missing_signature(self, client):
        with patch('api.line_handler', MagicMock()):
            response = client.post("/api/v1/webhook/line", json={"events": []})

        assert response.status_code == 400

    def test_webhook_invalid_signature(self, client):
        handler = MagicMock()
        handler.handle.side_effect = InvalidSignatureError("bad")

        with patch('api.line_handler', handler):
            response = client.post(
                "/api/v1/webhook/line",
                json={"events": []},
                headers={"X-Line-Signature": "bad"}
            )

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid signature"

    def test_webhook_dispatches_body(self, client):
        handler = MagicMock()

        with patch('api.line_handler', handler):
            response = client.post(
                "/api/v1/webhook/line",
                content='{"events": []}',
                headers={"X-Line-Signature": "sig", "Content-Type": "application/json"}
            )

        assert response.status_code == 200
        handler.handle.assert_called_once_with('{"events": []}', "sig")


class TestBuildSystem:
    """啟動組裝測試"""

    def test_memory_backend_without_line(self):
        import api
        from conversation import InMemorySessionStore
        from linebot_handler import ConsoleMessageSender

        with patch('api.config.SESSION_BACKEND', "memory"), \
                patch('api.config.LINE_CHANNEL_SECRET', None), \
                patch('api.config.LINE_CHANNEL_ACCESS_TOKEN', None):
            system = api.build_system()

        assert isinstance(system.store, InMemorySessionStore)
        assert isinstance(system.sender, ConsoleMessageSender)

    def test_redis_backend_falls_back_to_memory(self):
        import api
        from conversation import InMemorySessionStore

        with patch('api.config.SESSION_BACKEND', "redis"), \
                patch('api.create_redis_client', return_value=None), \
                patch('api.config.LINE_CHANNEL_SECRET', None):
            system = api.build_system()

        assert isinstance(system.store, InMemorySessionStore)

    def test_redis_backend(self, mock_redis):
        import api
        from conversation import RedisEventSink, RedisSessionStore

        with patch('api.config.SESSION_BACKEND', "redis"), \
                patch('api.create_redis_client', return_value=mock_redis), \
                patch('api.config.LINE_CHANNEL_SECRET', None), \
                patch('api.redis_client', None):
            system = api.build_system()

        assert isinstance(system.store, RedisSessionStore)
        assert isinstance(system.event_sink, RedisEventSink)
