"""
Registration Bot - 主入口檔案
透過聊天引導使用者完成註冊 (email -> password)

流程:
1. 收到訊息 -> 取得該使用者的 Session (加鎖)
2. ConversationController 判斷指令 / 驗證答案
3. 儲存新狀態、發布驗證通過的欄位、送出回覆
"""

import logging
from dataclasses import replace
from typing import Optional

import redis

import config
from conversation.conversation_manager import STATUS_STORE_ERROR, UNAVAILABLE_MESSAGE
from conversation import (
    ConversationController,
    EventSink,
    HandleResult,
    InboundMessage,
    InMemoryEventSink,
    InMemorySessionStore,
    Session,
    build_default_registry
)
from linebot_handler import ConsoleMessageSender, MessageSender, TransportError

# 設定日誌
logging.basicConfig(
    level=config.LOG_LEVEL,
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)


def build_controller() -> ConversationController:
    """依照 config 建立 controller"""
    registry = build_default_registry(config.PASSWORD_MIN_LENGTH, config.PASSWORD_MAX_LENGTH)
    return ConversationController(
        registry=registry,
        flows=config.REGISTRATION_FLOWS,
        retries_max=config.RETRIES_MAX
    )


class RegistrationSystem:
    """
    註冊系統主類別

    整合:
    - ConversationController (狀態機)
    - Session Store (每個 chat_id 一個 Session + 鎖)
    - EventSink (驗證通過的欄位)
    - MessageSender (回覆使用者)
    """

    def __init__(
        self,
        sender: MessageSender,
        store=None,
        event_sink: Optional[EventSink] = None,
        controller: Optional[ConversationController] = None
    ):
        logger.info("🚀 初始化 Registration System...")

        self.sender = sender
        self.store = store if store is not None else InMemorySessionStore()
        self.event_sink = event_sink if event_sink is not None else InMemoryEventSink()
        self.controller = controller or build_controller()

        logger.info("✅ Registration System 初始化完成")

    def get_session(self, chat_id: str) -> Session:
        return self.store.get(chat_id) or self.controller.new_session()

    def process_message(self, chat_id: str, text: str, deliver: bool = True) -> HandleResult:
        """
        處理使用者訊息 - 主要入口

        同一個 chat_id 的訊息在鎖內依序處理;
        回覆發送失敗只記錄,不會回復狀態;
        Store 無法取得鎖或寫入失敗時狀態不變,回傳 STORE_ERROR

        Args:
            deliver: False 時不經由 sender 送出回覆 (由呼叫方自行回傳)

        Returns:
            HandleResult,其中 session 為鎖內儲存的新狀態
        """
        logger.info(f"📨 收到訊息 [Chat: {chat_id}]")

        result = None
        try:
            with self.store.lock(chat_id):
                session = self.get_session(chat_id)
                new_session, outcome = self.controller.handle(
                    session, InboundMessage(text=text, chat_id=chat_id)
                )
                self.store.save(chat_id, new_session)
                result = replace(outcome, session=new_session)

                if result.emitted is not None:
                    self._publish(result)

                if deliver and result.reply:
                    self._send(chat_id, result.reply)

        except redis.exceptions.RedisError as e:
            # LockError 也屬於 RedisError
            if result is not None:
                # 狀態已寫入,只有釋放鎖失敗
                logger.warning(f"⚠️ Lock release failed [Chat: {chat_id}]: {e}")
                return result

            logger.error(f"❌ Session store error [Chat: {chat_id}]: {e}")
            result = HandleResult(STATUS_STORE_ERROR, UNAVAILABLE_MESSAGE)
            if deliver:
                self._send(chat_id, result.reply)

        return result

    def reset_user_session(self, chat_id: str):
        """重置使用者 session"""
        with self.store.lock(chat_id):
            self.store.delete(chat_id)
        logger.info(f"🗑️ 已重置 Chat: {chat_id} 的 session")

    def _publish(self, result: HandleResult):
        try:
            self.event_sink.publish(result.emitted)
        except Exception as e:
            logger.error(f"❌ Failed to publish {result.emitted.field} event: {e}", exc_info=True)

    def _send(self, chat_id: str, text: str):
        try:
            self.sender.send(chat_id, text)
        except TransportError as e:
            logger.error(f"❌ Failed to send message to {chat_id}: {e}")


def main():
    """互動測試用主函數"""
    print("=" * 60)
    print("📋 Registration Bot - Interactive Demo")
    print("=" * 60)
    print("輸入 'quit' 退出, 'reset' 重置對話, '/register' 開始註冊")
    print("-" * 60)

    system = RegistrationSystem(sender=ConsoleMessageSender())
    chat_id = "demo_user_001"

    while True:
        try:
            user_input = input("\n👤 您: ").strip()

            if not user_input:
                continue

            if user_input.lower() == 'quit':
                print("👋 感謝使用，再見！")
                break

            if user_input.lower() == 'reset':
                system.reset_user_session(chat_id)
                print("🔄 對話已重置")
                continue

            result = system.process_message(chat_id, user_input)

            if result.emitted is not None:
                print(f"\n📋 已收到欄位: {result.emitted.field}")

        except KeyboardInterrupt:
            print("\n\n👋 感謝使用，再見！")
            break


if __name__ == "__main__":
    main()
