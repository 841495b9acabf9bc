"""
Event Output
驗證通過的欄位會發布到這裡,由下游的註冊流程取用
"""

import json
import logging
import queue
from typing import List, Optional

import redis

from .session import FieldEvent

logger = logging.getLogger(__name__)

EVENTS_KEY = "registration:events"


class EventSink:
    """事件輸出基底類別"""

    def publish(self, event: FieldEvent) -> None:
        raise NotImplementedError


class InMemoryEventSink(EventSink):
    """保存在記憶體,下游可用 get() 逐筆取出"""

    def __init__(self):
        self.events: List[FieldEvent] = []
        self._queue: "queue.Queue[FieldEvent]" = queue.Queue()

    def publish(self, event: FieldEvent) -> None:
        self.events.append(event)
        self._queue.put(event)
        logger.debug(f"[Event] {event.chat_id}: {event.field}")

    def get(self, timeout: Optional[float] = None) -> FieldEvent:
        """取出下一筆事件,逾時拋出 queue.Empty"""
        return self._queue.get(timeout=timeout)


class RedisEventSink(EventSink):
    """RPUSH 到 registration:events,值為 JSON"""

    def __init__(self, redis_client: redis.Redis, key: str = EVENTS_KEY):
        if redis_client is None:
            raise ValueError("Redis client is required")
        self.redis = redis_client
        self.key = key

    def publish(self, event: FieldEvent) -> None:
        payload = json.dumps(event.to_dict(), ensure_ascii=False)
        self.redis.rpush(self.key, payload)
        # 不記錄欄位值 (可能是密碼)
        logger.info(f"[Event Published] {event.chat_id}: {event.field}")
