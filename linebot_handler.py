"""
LINE Bot 模組
負責把回覆送到使用者 (Outbound transport)

Features:
- Push Message 發送
- 指令快速回覆按鈕
- Console 發送器 (本機測試用)
"""

import logging
from typing import Dict, List, Optional

from linebot.v3.messaging import (
    ApiException,
    MessagingApi,
    PushMessageRequest,
    QuickReply,
    TextMessage
)

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """訊息發送失敗"""


# ==========================================
# Quick Reply Templates
# ==========================================
class QuickReplyTemplates:
    """快速回覆模板"""

    @staticmethod
    def command_options(flows: Optional[List[str]] = None) -> List[dict]:
        """idle 狀態可用的指令"""
        commands = [("開始", "/start"), ("說明", "/help")]
        commands += [(name, f"/{name}") for name in (flows or ["register"])]

        return [
            {
                "type": "action",
                "action": {
                    "type": "message",
                    "label": label,
                    "text": text
                }
            }
            for label, text in commands
        ]


# ==========================================
# LINE Message Builder
# ==========================================
class LineMessageBuilder:
    """LINE 訊息建構器"""

    @staticmethod
    def build_text(text: str) -> Dict:
        return {
            "type": "text",
            "text": text
        }

    @staticmethod
    def build_text_with_quick_reply(text: str, quick_reply_items: List[dict]) -> dict:
        """建構帶有快速回覆的文字訊息"""
        return {
            "type": "text",
            "text": text,
            "quickReply": {
                "items": quick_reply_items
            }
        }


# ==========================================
# Message Senders
# ==========================================
class MessageSender:
    """發送器基底類別,send 失敗時拋出 TransportError"""

    def send(self, recipient: str, text: str) -> None:
        raise NotImplementedError


class LineMessageSender(MessageSender):
    """LINE 推播發送"""

    def __init__(self, line_api: MessagingApi, quick_reply_items: Optional[List[dict]] = None):
        self.line_api = line_api
        self.quick_reply_items = quick_reply_items

    def build_message(self, text: str) -> TextMessage:
        if self.quick_reply_items:
            payload = LineMessageBuilder.build_text_with_quick_reply(text, self.quick_reply_items)
            return TextMessage(text=text, quick_reply=QuickReply.from_dict(payload["quickReply"]))
        return TextMessage(text=text)

    def send(self, recipient: str, text: str) -> None:
        try:
            self.line_api.push_message(
                PushMessageRequest(
                    to=recipient,
                    messages=[self.build_message(text)]
                )
            )
            logger.debug(f"Push message sent to {recipient}")
        except ApiException as e:
            raise TransportError(f"LINE push failed ({e.status}): {e.reason}") from e


class ConsoleMessageSender(MessageSender):
    """印在終端機 (互動 demo / 未設定 LINE 時使用)"""

    def __init__(self, prefix: str = "🤖 Bot"):
        self.prefix = prefix

    def send(self, recipient: str, text: str) -> None:
        print(f"\n{self.prefix} -> {recipient}: {text}")
