"""
欄位驗證器
每個欄位名稱對應一個驗證器,由 ConversationController 查詢使用
"""

import logging
import string
from email import errors as email_errors
from email.headerregistry import HeaderRegistry
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_PASSWORD_ALPHABET = frozenset(string.ascii_letters + string.digits)
_header_factory = HeaderRegistry()


# ==========================================
# ❌ 錯誤類型
# ==========================================
class ValidationError(Exception):
    """使用者輸入不合格 (可重試)"""

    kind = "validation_error"


class InvalidEmail(ValidationError):
    kind = "invalid_email"

    def __init__(self, raw: str = ""):
        self.raw = raw
        super().__init__("incorrect email")


class LengthError(ValidationError):
    kind = "length_error"

    def __init__(self, length: int, minimum: int, maximum: int):
        self.length = length
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(
            f"incorrect length, must be between {minimum} and {maximum} characters"
        )


class SymbolError(ValidationError):
    kind = "symbol_error"

    def __init__(self, position: int, symbol: str):
        self.position = position
        self.symbol = symbol
        super().__init__(
            f"incorrect symbol {symbol!r} at position {position + 1}, "
            f"only latin letters and digits are allowed"
        )


class PipelineConfigurationError(Exception):
    """流程設定錯誤 (程式或部署問題,非使用者可修正)"""


# ==========================================
# ✅ 驗證器
# ==========================================
class Validator:
    """
    驗證器基底類別

    子類別實作 validate(raw),成功回傳驗證後的值,
    失敗拋出 ValidationError 的子類別
    """

    name: str = ""

    def validate(self, raw: str) -> Any:
        raise NotImplementedError


class EmailValidator(Validator):
    """
    Email 驗證 (RFC 5322 address 語法)

    - 接受 `a@b.com` 及 `Alice <a@b.com>` 兩種寫法
    - 網域不一定要有點 (`a@b` 合法)
    - 只能有一個地址,不能含換行
    - local part 可含非 ASCII 字元
    - 回傳純地址 local@domain
    """

    name = "email"

    def validate(self, raw: str) -> str:
        raw = raw or ""
        if "\r" in raw or "\n" in raw:
            raise InvalidEmail(raw)

        text = raw.strip()
        # 前後多出的逗號代表地址清單,不是單一地址
        if not text or text.startswith(",") or text.endswith(","):
            raise InvalidEmail(raw)

        try:
            header = _header_factory("To", text)
        except (email_errors.MessageError, ValueError, IndexError) as e:
            logger.debug(f"Email parse failed: {e}")
            raise InvalidEmail(raw)

        # 非 ASCII 的 local part (RFC 6532) 視為合法
        defects = [d for d in header.defects if not isinstance(d, email_errors.NonASCIILocalPartDefect)]
        if defects or len(header.addresses) != 1:
            raise InvalidEmail(raw)

        # 群組語法 (team: a@b.com;) 不算單一地址
        if any(group.display_name is not None for group in header.groups):
            raise InvalidEmail(raw)

        address = header.addresses[0]
        if not address.username or not address.domain:
            raise InvalidEmail(raw)

        return address.addr_spec


class PasswordValidator(Validator):
    """
    密碼驗證

    1. 長度 (字元數) 必須介於 minimum_length ~ maximum_length
    2. 只能包含 ASCII 英文字母與數字
    長度先檢查,字元檢查在後
    """

    name = "password"

    def __init__(self, minimum_length: int, maximum_length: int):
        if minimum_length < 1 or minimum_length > maximum_length:
            raise PipelineConfigurationError(
                f"invalid password bounds: {minimum_length} ~ {maximum_length}"
            )
        self.minimum_length = minimum_length
        self.maximum_length = maximum_length

    def validate(self, raw: str) -> str:
        text = raw or ""
        length = len(text)

        if length < self.minimum_length or length > self.maximum_length:
            raise LengthError(length, self.minimum_length, self.maximum_length)

        for position, symbol in enumerate(text):
            if symbol not in _PASSWORD_ALPHABET:
                raise SymbolError(position, symbol)

        return text


# ==========================================
# 📚 Registry
# ==========================================
class ValidatorRegistry:
    """欄位名稱 -> 驗證器"""

    def __init__(self, validators: Optional[List[Validator]] = None):
        self._validators: Dict[str, Validator] = {}
        for validator in validators or []:
            self.register(validator)

    def register(self, validator: Validator, name: Optional[str] = None) -> None:
        field_name = name or validator.name
        if not field_name:
            raise PipelineConfigurationError("validator has no field name")

        if field_name in self._validators:
            logger.warning(f"Validator for '{field_name}' replaced")

        self._validators[field_name] = validator

    def get(self, field_name: str) -> Optional[Validator]:
        return self._validators.get(field_name)

    def names(self) -> List[str]:
        return list(self._validators)

    def __contains__(self, field_name: str) -> bool:
        return field_name in self._validators


def build_default_registry(password_min: int, password_max: int) -> ValidatorRegistry:
    """建立內建的 email / password 驗證器"""
    return ValidatorRegistry([
        EmailValidator(),
        PasswordValidator(password_min, password_max),
    ])
