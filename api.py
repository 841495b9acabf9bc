"""
Registration Bot - FastAPI 應用程式
提供 REST API 和 LINE Bot Webhook

API 端點:
- POST /api/v1/chat - 對話 API
- POST /api/v1/webhook/line - LINE Bot Webhook
- GET /api/v1/health - 健康檢查
- GET /api/v1/session/{user_id} - 取得 session 資訊
- DELETE /api/v1/session/{user_id} - 重置 session
"""

import logging
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, HTTPException, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from linebot.v3 import WebhookHandler
from linebot.v3.messaging import (
    Configuration,
    ApiClient,
    MessagingApi,
    ReplyMessageRequest,
    TextMessage
)
from linebot.v3.webhooks import MessageEvent, TextMessageContent, FollowEvent, UnfollowEvent
from linebot.v3.exceptions import InvalidSignatureError

import config
from conversation import (
    InMemoryEventSink,
    InMemorySessionStore,
    RedisEventSink,
    RedisSessionStore,
    Session,
    create_redis_client
)
from conversation.conversation_manager import GREETING_MESSAGE
from linebot_handler import ConsoleMessageSender, LineMessageSender, QuickReplyTemplates
from main import RegistrationSystem

# ==========================================
# Logging Setup
# ==========================================
logging.basicConfig(
    level=config.LOG_LEVEL,
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

# ==========================================
# Global Instances
# ==========================================
registration_system: Optional[RegistrationSystem] = None
redis_client = None
line_handler: Optional[WebhookHandler] = None
line_api: Optional[MessagingApi] = None


def build_system() -> RegistrationSystem:
    """依照設定組合 store / event sink / sender"""
    global redis_client, line_handler, line_api

    store = InMemorySessionStore()
    event_sink = InMemoryEventSink()

    if config.SESSION_BACKEND == "redis":
        redis_client = create_redis_client()
        if redis_client is not None:
            store = RedisSessionStore(redis_client)
            event_sink = RedisEventSink(redis_client)
        else:
            logger.warning("⚠️ Redis 無法連線，改用記憶體 session")

    sender = ConsoleMessageSender()

    if config.LINE_CHANNEL_SECRET and config.LINE_CHANNEL_ACCESS_TOKEN:
        line_handler = WebhookHandler(config.LINE_CHANNEL_SECRET)

        configuration = Configuration(access_token=config.LINE_CHANNEL_ACCESS_TOKEN)
        line_api = MessagingApi(ApiClient(configuration))
        sender = LineMessageSender(
            line_api,
            quick_reply_items=QuickReplyTemplates.command_options(list(config.REGISTRATION_FLOWS))
        )

        register_line_handlers()
        logger.info("✅ LINE Bot 初始化完成")
    else:
        logger.warning("⚠️ LINE Bot 未設定，回覆只會印在 console")

    return RegistrationSystem(sender=sender, store=store, event_sink=event_sink)


# ==========================================
# Lifespan Management
# ==========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """應用程式生命週期管理"""
    global registration_system

    logger.info("🚀 啟動 Registration API Server...")
    registration_system = build_system()

    yield

    logger.info("👋 關閉 Registration API Server...")


# ==========================================
# FastAPI App
# ==========================================
app = FastAPI(
    title="Registration Bot API",
    description="聊天註冊機器人 API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if config.DEBUG_MODE else None,
    redoc_url="/redoc" if config.DEBUG_MODE else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==========================================
# Pydantic Models
# ==========================================
class ChatRequest(BaseModel):
    """對話請求"""
    user_id: str = Field(..., description="使用者 ID", min_length=1)
    message: str = Field(..., description="使用者訊息", min_length=1)


class SessionInfo(BaseModel):
    """Session 資訊"""
    user_id: str
    command_mode: bool
    awaiting: Optional[str] = None
    pipeline: List[str] = []
    retries: int
    retries_max: int
    flow: Optional[str] = None


class ChatResponse(BaseModel):
    """對話回應"""
    success: bool
    status: str
    reply: Optional[str] = None
    emitted_field: Optional[str] = None
    session: Optional[SessionInfo] = None


class HealthResponse(BaseModel):
    """健康檢查回應"""
    status: str
    version: str
    services: dict


def _session_info(user_id: str, session: Optional[Session] = None) -> SessionInfo:
    if session is None:
        session = registration_system.get_session(user_id)
    return SessionInfo(
        user_id=user_id,
        command_mode=session.command_mode,
        awaiting=session.head,
        pipeline=list(session.pipeline),
        retries=session.retries,
        retries_max=session.retries_max,
        flow=session.flow
    )


def _require_system():
    if not registration_system:
        raise HTTPException(status_code=503, detail="System not initialized")


# ==========================================
# API Endpoints
# ==========================================
@app.get("/", tags=["Root"])
async def root():
    """根路徑"""
    return {
        "name": "Registration Bot API",
        "version": "1.0.0",
        "docs": "/docs" if config.DEBUG_MODE else "disabled"
    }


@app.get("/api/v1/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """健康檢查"""
    return HealthResponse(
        status="healthy",
        version="1.0.0",
        services={
            "registration_system": registration_system is not None,
            "line_bot": line_handler is not None,
            "redis": check_redis_connection()
        }
    )


@app.post("/api/v1/chat", response_model=ChatResponse, tags=["Chat"])
async def chat(request: ChatRequest):
    """
    對話 API - 處理使用者訊息

    回覆直接放在 response 中,不會另外推播
    (驗證通過的值不會回傳,只回傳欄位名稱)
    Session 資訊取自處理該訊息時鎖內儲存的狀態;Store 失敗時為 None
    """
    _require_system()

    result = registration_system.process_message(request.user_id, request.message, deliver=False)

    return ChatResponse(
        success=result.session is not None,
        status=result.status,
        reply=result.reply,
        emitted_field=result.emitted.field if result.emitted else None,
        session=_session_info(request.user_id, result.session) if result.session else None
    )


@app.get("/api/v1/session/{user_id}", response_model=SessionInfo, tags=["Session"])
async def get_session(user_id: str):
    """取得使用者 Session 資訊"""
    _require_system()
    return _session_info(user_id)


@app.delete("/api/v1/session/{user_id}", tags=["Session"])
async def reset_session(user_id: str):
    """重置使用者 Session"""
    _require_system()
    registration_system.reset_user_session(user_id)
    return {"success": True, "message": f"Session for {user_id} has been reset"}


# ==========================================
# LINE Bot Webhook
# ==========================================
@app.post("/api/v1/webhook/line", tags=["LINE Bot"])
async def line_webhook(
    request: Request,
    x_line_signature: str = Header(None)
):
    """
    LINE Bot Webhook 端點

    接收 LINE Platform 的事件並處理
    """
    if not line_handler:
        raise HTTPException(status_code=503, detail="LINE Bot not configured")

    body = await request.body()
    body_str = body.decode('utf-8')

    logger.debug(f"LINE Webhook received: {body_str[:200]}...")

    if not x_line_signature:
        raise HTTPException(status_code=400, detail="Missing X-Line-Signature header")

    try:
        line_handler.handle(body_str, x_line_signature)
    except InvalidSignatureError:
        logger.error("Invalid LINE signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    return {"status": "ok"}


def register_line_handlers():
    """註冊 LINE 事件處理器"""
    if not line_handler:
        return

    @line_handler.add(MessageEvent, message=TextMessageContent)
    def handle_text_message(event: MessageEvent):
        """處理文字訊息"""
        user_id = event.source.user_id
        logger.info(f"LINE Message from {user_id}")

        registration_system.process_message(user_id, event.message.text)

    @line_handler.add(FollowEvent)
    def handle_follow(event: FollowEvent):
        """處理加好友事件"""
        logger.info(f"New follower: {event.source.user_id}")

        line_api.reply_message(
            ReplyMessageRequest(
                reply_token=event.reply_token,
                messages=[TextMessage(text=f"{GREETING_MESSAGE}\nsend /register to sign up")]
            )
        )

    @line_handler.add(UnfollowEvent)
    def handle_unfollow(event: UnfollowEvent):
        """處理取消好友事件"""
        user_id = event.source.user_id
        logger.info(f"User unfollowed: {user_id}")
        registration_system.reset_user_session(user_id)


# ==========================================
# Helper Functions
# ==========================================
def check_redis_connection() -> bool:
    """檢查 Redis 連線"""
    if redis_client is None:
        return False
    try:
        return bool(redis_client.ping())
    except Exception as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


# ==========================================
# Error Handlers
# ==========================================
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """HTTP 例外處理"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": exc.detail,
            "status_code": exc.status_code
        }
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """一般例外處理"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal server error",
            "status_code": 500
        }
    )


# ==========================================
# Run Server
# ==========================================
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG_MODE,
        log_level="debug" if config.DEBUG_MODE else "info"
    )
