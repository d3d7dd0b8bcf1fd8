from .cache import CacheStats, ResponseCache
from .config import AiWireConfig, Credential
from .contracts import ChatTurn, CompletionRequest, CompletionResult, SideEffect, TokenUsage
from .dispatcher import Dispatcher
from .options import AskOptions
from .records import GenerationBlock, RecordStore, RecordWriter
from .ttl import parse_ttl

__all__ = [
    "AiWireConfig",
    "AskOptions",
    "CacheStats",
    "ChatTurn",
    "CompletionRequest",
    "CompletionResult",
    "Credential",
    "Dispatcher",
    "GenerationBlock",
    "RecordStore",
    "RecordWriter",
    "ResponseCache",
    "SideEffect",
    "TokenUsage",
    "parse_ttl",
]
