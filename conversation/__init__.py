"""
Conversation Package
對話管理模組
"""

from .conversation_manager import ConversationController, HandleResult
from .session import Session, InboundMessage, FieldEvent
from .session_store import InMemorySessionStore, RedisSessionStore, create_redis_client
from .events import EventSink, InMemoryEventSink, RedisEventSink
from .validators import (
    Validator,
    EmailValidator,
    PasswordValidator,
    ValidatorRegistry,
    ValidationError,
    InvalidEmail,
    LengthError,
    SymbolError,
    PipelineConfigurationError,
    build_default_registry
)

__all__ = [
    'ConversationController',
    'HandleResult',
    'Session',
    'InboundMessage',
    'FieldEvent',
    'InMemorySessionStore',
    'RedisSessionStore',
    'create_redis_client',
    'EventSink',
    'InMemoryEventSink',
    'RedisEventSink',
    'Validator',
    'EmailValidator',
    'PasswordValidator',
    'ValidatorRegistry',
    'ValidationError',
    'InvalidEmail',
    'LengthError',
    'SymbolError',
    'PipelineConfigurationError',
    'build_default_registry'
]
