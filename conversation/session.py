"""
Session 資料模型
一個聊天對象 (chat_id) 一個 Session,狀態轉換一律回傳新的 Session
"""

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional

from .validators import PipelineConfigurationError


@dataclass(frozen=True)
class InboundMessage:
    """收到的聊天訊息 (唯讀)"""

    text: str
    chat_id: str


@dataclass(frozen=True)
class FieldEvent:
    """驗證通過的欄位,交給下游註冊流程"""

    chat_id: str
    field: str
    value: Any

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Session:
    """
    對話狀態

    - command_mode: True = 等待指令; False = 等待 pipeline[0] 的答案
    - pipeline: 尚未完成的欄位,第一個是目前詢問中的欄位
    - retries: 目前欄位已答錯的次數 (0 ~ retries_max)
    - chat_id: 回覆對象,流程開始時設定、結束時清除
    """

    retries_max: int
    command_mode: bool = True
    pipeline: List[str] = field(default_factory=list)
    retries: int = 0
    chat_id: Optional[str] = None
    flow: Optional[str] = None

    def __post_init__(self):
        if self.retries_max < 1:
            raise PipelineConfigurationError("retries_max must be at least 1")
        if not self.command_mode and not self.pipeline:
            raise PipelineConfigurationError("collecting session with empty pipeline")
        if not 0 <= self.retries <= self.retries_max:
            raise PipelineConfigurationError(
                f"retries out of range: {self.retries}/{self.retries_max}"
            )

    @classmethod
    def idle(cls, retries_max: int) -> "Session":
        return cls(retries_max=retries_max)

    @property
    def is_idle(self) -> bool:
        return self.command_mode

    @property
    def head(self) -> Optional[str]:
        return self.pipeline[0] if self.pipeline else None

    # -------------------------
    # Transitions
    # -------------------------
    def start(self, flow: str, fields: List[str], chat_id: str) -> "Session":
        if not fields:
            raise PipelineConfigurationError(f"flow '{flow}' has no fields")

        return replace(
            self,
            command_mode=False,
            pipeline=list(fields),
            retries=0,
            chat_id=chat_id,
            flow=flow,
        )

    def advance(self) -> "Session":
        """目前欄位完成,換下一個;沒有下一個就回到 idle"""
        remaining = self.pipeline[1:]
        if not remaining:
            return self.reset()

        return replace(self, pipeline=remaining, retries=0)

    def fail(self) -> "Session":
        return replace(self, retries=min(self.retries + 1, self.retries_max))

    def reset(self) -> "Session":
        return Session.idle(self.retries_max)

    @property
    def retries_exhausted(self) -> bool:
        return self.retries >= self.retries_max

    # -------------------------
    # Serialization
    # -------------------------
    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        return cls(
            retries_max=int(data["retries_max"]),
            command_mode=bool(data.get("command_mode", True)),
            pipeline=list(data.get("pipeline") or []),
            retries=int(data.get("retries", 0)),
            chat_id=data.get("chat_id"),
            flow=data.get("flow"),
        )
