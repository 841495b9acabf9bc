import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .session import FieldEvent, InboundMessage, Session
from .validators import PipelineConfigurationError, ValidationError, ValidatorRegistry

logger = logging.getLogger(__name__)

# 處理結果狀態
STATUS_IDLE = "IDLE"
STATUS_UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
STATUS_COLLECTING = "COLLECTING"
STATUS_RETRY = "RETRY"
STATUS_COMPLETED = "COMPLETED"
STATUS_TOO_MANY_ATTEMPTS = "TOO_MANY_ATTEMPTS"
STATUS_CONFIG_ERROR = "CONFIG_ERROR"
STATUS_STORE_ERROR = "STORE_ERROR"

# 回覆文字
GREETING_MESSAGE = "I am bot for meetings"
UNKNOWN_COMMAND_MESSAGE = "such command does not exist"
TOO_MANY_ATTEMPTS_MESSAGE = "too many wrong attempts"
COMPLETED_MESSAGE = "registration completed"
UNAVAILABLE_MESSAGE = "registration is not available right now"

START_COMMAND = "start"
HELP_COMMAND = "help"


@dataclass(frozen=True)
class HandleResult:
    """一輪對話的輸出: 回覆文字 + 驗證通過的欄位 (+ 鎖內儲存的 Session)"""

    status: str
    reply: Optional[str] = None
    emitted: Optional[FieldEvent] = None
    session: Optional[Session] = None


def normalize_command(text: str) -> str:
    """`/Register ` -> `register`"""
    command = (text or "").strip()
    if command.startswith("/"):
        command = command[1:]
    return command.casefold()


def ask_question(field_name: str) -> str:
    return f"please input your {field_name}"


def retry_message(error: ValidationError) -> str:
    return f"error occurred: {error}, try again"


class ConversationController:
    """
    對話控制器

    兩種狀態:
    - IDLE (command_mode=True): 只接受指令
    - COLLECTING (command_mode=False): 只接受 pipeline[0] 的答案

    handle() 不做任何 I/O,只回傳新的 Session 與輸出,
    呼叫方負責寄送回覆、發布事件與同一使用者的序列化
    """

    def __init__(
        self,
        registry: ValidatorRegistry,
        flows: Dict[str, List[str]],
        retries_max: int,
    ):
        if retries_max < 1:
            raise PipelineConfigurationError("retries_max must be at least 1")

        self.registry = registry
        self.flows = {normalize_command(name): list(fields) for name, fields in flows.items()}
        self.retries_max = retries_max

        for name, fields in self.flows.items():
            if not fields:
                raise PipelineConfigurationError(f"flow '{name}' has no fields")
            missing = [f for f in fields if f not in registry]
            if missing:
                # 等流程真的走到該欄位時再重置 session
                logger.warning(f"⚠️ Flow '{name}' has fields without validator: {missing}")

    def new_session(self) -> Session:
        return Session.idle(self.retries_max)

    def handle(self, session: Session, message: InboundMessage) -> Tuple[Session, HandleResult]:
        if session.is_idle:
            return self._handle_command(session, message)
        return self._handle_answer(session, message)

    # -------------------------
    # IDLE
    # -------------------------
    def _handle_command(self, session: Session, message: InboundMessage) -> Tuple[Session, HandleResult]:
        command = normalize_command(message.text)

        if command == START_COMMAND:
            return session, HandleResult(STATUS_IDLE, GREETING_MESSAGE)

        if command == HELP_COMMAND:
            return session, HandleResult(STATUS_IDLE, self.help_message())

        fields = self.flows.get(command)
        if fields is None:
            logger.info(f"[{message.chat_id}] Unknown command: {(message.text or '')[:30]!r}")
            return session, HandleResult(STATUS_UNKNOWN_COMMAND, UNKNOWN_COMMAND_MESSAGE)

        new_session = session.start(command, fields, message.chat_id)
        logger.info(f"📝 [{message.chat_id}] Flow '{command}' started: {fields}")

        reply = f"starting {command} procedure\n{ask_question(new_session.head)}"
        return new_session, HandleResult(STATUS_COLLECTING, reply)

    def help_message(self) -> str:
        commands = [f"/{START_COMMAND}", f"/{HELP_COMMAND}"] + [f"/{name}" for name in self.flows]
        return "available commands: " + ", ".join(commands)

    # -------------------------
    # COLLECTING
    # -------------------------
    def _handle_answer(self, session: Session, message: InboundMessage) -> Tuple[Session, HandleResult]:
        field_name = session.head
        validator = self.registry.get(field_name)

        if validator is None:
            logger.error(
                f"❌ [{message.chat_id}] No validator for field '{field_name}' "
                f"(flow: {session.flow}), session reset"
            )
            return session.reset(), HandleResult(STATUS_CONFIG_ERROR, UNAVAILABLE_MESSAGE)

        try:
            value = validator.validate(message.text)
        except ValidationError as e:
            failed = session.fail()
            logger.warning(
                f"[{message.chat_id}] Invalid {field_name} ({e.kind}), "
                f"attempt {failed.retries}/{failed.retries_max}"
            )

            if not failed.retries_exhausted:
                return failed, HandleResult(STATUS_RETRY, retry_message(e))

            logger.warning(f"[{message.chat_id}] Too many wrong attempts for {field_name}")
            return failed.reset(), HandleResult(STATUS_TOO_MANY_ATTEMPTS, TOO_MANY_ATTEMPTS_MESSAGE)

        event = FieldEvent(chat_id=session.chat_id or message.chat_id, field=field_name, value=value)
        next_session = session.advance()
        logger.info(f"[{message.chat_id}] Field accepted: {field_name}")

        if next_session.is_idle:
            logger.info(f"✅ [{message.chat_id}] Flow '{session.flow}' completed")
            return next_session, HandleResult(STATUS_COMPLETED, COMPLETED_MESSAGE, event)

        return next_session, HandleResult(STATUS_COLLECTING, ask_question(next_session.head), event)
