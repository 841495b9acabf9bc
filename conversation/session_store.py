import json
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional

import redis

import config
from .session import Session

logger = logging.getLogger(__name__)

KEY_PREFIX = "registration"


# ==========================================
# 🔌 Redis Connection Pool
# ==========================================
def create_redis_client() -> Optional[redis.Redis]:
    """建立 Redis 連線,連不上時回傳 None"""
    try:
        pool = redis.ConnectionPool(
            host=config.REDIS_HOST,
            port=config.REDIS_PORT,
            db=config.REDIS_DB,
            password=config.REDIS_PASSWORD,
            decode_responses=True,
            socket_timeout=5,
            socket_connect_timeout=5,
            max_connections=50
        )
        client = redis.Redis(connection_pool=pool)

        # 啟動時測試連線
        client.ping()
        logger.info(f"✅ Redis connected: {config.REDIS_HOST}:{config.REDIS_PORT} (DB: {config.REDIS_DB})")
        return client

    except redis.exceptions.ConnectionError as e:
        logger.error(f"❌ Redis connection failed: {e}")
        return None


# ==========================================
# 🧠 In-Memory Store
# ==========================================
class InMemorySessionStore:
    """
    單一 process 用的 session store

    每個 chat_id 一把 Lock,確保同一使用者的訊息依序處理
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._waiters: Dict[str, int] = {}
        self._guard = threading.Lock()

    @contextmanager
    def lock(self, chat_id: str) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(chat_id, threading.Lock())
            self._waiters[chat_id] = self._waiters.get(chat_id, 0) + 1
        try:
            with key_lock:
                yield
        finally:
            # 沒有人持有或等待時移除,避免 lock 表無限成長
            with self._guard:
                self._waiters[chat_id] -= 1
                if self._waiters[chat_id] == 0:
                    del self._waiters[chat_id]
                    del self._locks[chat_id]

    def lock_count(self) -> int:
        with self._guard:
            return len(self._locks)

    def get(self, chat_id: str) -> Optional[Session]:
        return self._sessions.get(chat_id)

    def save(self, chat_id: str, session: Session) -> None:
        # idle session 不需要保存
        if session.is_idle:
            self._sessions.pop(chat_id, None)
            return
        self._sessions[chat_id] = session

    def delete(self, chat_id: str) -> None:
        self._sessions.pop(chat_id, None)

    def active_count(self) -> int:
        return len(self._sessions)


# ==========================================
# 📊 Redis Store
# ==========================================
class RedisSessionStore:
    """
    多個 worker 共用的 session store

    - Session: registration:session:{chat_id} (JSON String, 有 TTL)
    - Lock: registration:lock:{chat_id}
    """

    def __init__(self, redis_client: redis.Redis, ttl: int = None, lock_timeout: int = None):
        if redis_client is None:
            raise ValueError("Redis client is required")

        self.redis = redis_client
        self.ttl = ttl or config.SESSION_TTL
        self.lock_timeout = lock_timeout or config.LOCK_TIMEOUT

    @staticmethod
    def session_key(chat_id: str) -> str:
        return f"{KEY_PREFIX}:session:{chat_id}"

    @staticmethod
    def lock_key(chat_id: str) -> str:
        return f"{KEY_PREFIX}:lock:{chat_id}"

    @contextmanager
    def lock(self, chat_id: str) -> Iterator[None]:
        with self.redis.lock(
            self.lock_key(chat_id),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout
        ):
            yield

    def get(self, chat_id: str) -> Optional[Session]:
        data = self.redis.get(self.session_key(chat_id))
        if not data:
            return None

        try:
            return Session.from_dict(json.loads(data))
        except (ValueError, KeyError, TypeError) as e:
            # 壞掉的資料視同 idle
            logger.warning(f"Skipping malformed session for {chat_id}: {e}")
            return None

    def save(self, chat_id: str, session: Session) -> None:
        if session.is_idle:
            self.delete(chat_id)
            return

        try:
            pipe = self.redis.pipeline()
            pipe.set(self.session_key(chat_id), json.dumps(session.to_dict(), ensure_ascii=False))
            pipe.expire(self.session_key(chat_id), self.ttl)
            pipe.execute()

        except redis.exceptions.RedisError as e:
            logger.error(f"Redis write failed for {chat_id}: {e}")
            raise

    def delete(self, chat_id: str) -> None:
        self.redis.delete(self.session_key(chat_id))

    def active_count(self) -> int:
        return sum(1 for _ in self.redis.scan_iter(match=f"{KEY_PREFIX}:session:*"))
