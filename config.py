"""
主配置檔 - 註冊機器人的所有設定
"""

import os
from dotenv import load_dotenv

# 載入 .env 環境變數
load_dotenv()


def _get_int(name: str, default: int) -> int:
    """讀取整數環境變數,格式錯誤時直接拋出"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"❌ 錯誤: {name} 必須是整數,目前為 {raw!r}")


# ==========================================
# 📁 路徑設定
# ==========================================

BASE_DIR = os.path.dirname(os.path.abspath(__file__))

# ==========================================
# 🔁 對話流程設定
# ==========================================

# 每個欄位最多可答錯幾次
RETRIES_MAX = _get_int("RETRIES_MAX", 3)
if RETRIES_MAX < 1:
    raise ValueError("❌ 錯誤: RETRIES_MAX 至少為 1")

# 密碼長度限制 (以字元計)
PASSWORD_MIN_LENGTH = _get_int("PASSWORD_MIN_LENGTH", 4)
PASSWORD_MAX_LENGTH = _get_int("PASSWORD_MAX_LENGTH", 20)
if PASSWORD_MIN_LENGTH < 1 or PASSWORD_MIN_LENGTH > PASSWORD_MAX_LENGTH:
    raise ValueError(
        f"❌ 錯誤: 密碼長度設定不合理 ({PASSWORD_MIN_LENGTH} ~ {PASSWORD_MAX_LENGTH})"
    )

# register 指令要依序詢問的欄位
REGISTER_FIELDS = [
    f.strip()
    for f in os.getenv("REGISTER_FIELDS", "email,password").split(",")
    if f.strip()
]
if not REGISTER_FIELDS:
    raise ValueError("❌ 錯誤: REGISTER_FIELDS 不可為空")

# 指令 -> 欄位順序
REGISTRATION_FLOWS = {
    "register": REGISTER_FIELDS,
}

# ==========================================
# 📊 Session 儲存設定
# ==========================================

# memory | redis
SESSION_BACKEND = os.getenv("SESSION_BACKEND", "memory").lower()
if SESSION_BACKEND not in ("memory", "redis"):
    raise ValueError(f"❌ 錯誤: 未知的 SESSION_BACKEND: {SESSION_BACKEND}")

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = _get_int("REDIS_PORT", 6379)
REDIS_DB = _get_int("REDIS_DB", 0)
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
SESSION_TTL = _get_int("SESSION_TTL", 3600)

# 同一使用者訊息的序列化鎖 (秒)
LOCK_TIMEOUT = _get_int("LOCK_TIMEOUT", 10)

# ==========================================
# 💬 LINE Bot 設定
# ==========================================

LINE_CHANNEL_ACCESS_TOKEN = os.getenv("LINE_CHANNEL_ACCESS_TOKEN")
LINE_CHANNEL_SECRET = os.getenv("LINE_CHANNEL_SECRET")

# ==========================================
# 🌐 API 設定
# ==========================================

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = _get_int("API_PORT", 8000)
DEBUG_MODE = os.getenv("DEBUG_MODE", "False").lower() == "true"

# ==========================================
# 📝 日誌配置
# ==========================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG_MODE else "INFO").upper()
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
