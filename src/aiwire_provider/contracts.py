from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant"]
ResultSource = Literal["field", "ai", "error"]


@dataclass(frozen=True)
class ChatTurn:
    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass(frozen=True)
class CompletionRequest:
    message: str
    vendor: str
    model: str
    history: tuple[ChatTurn, ...] = ()
    system_prompt: str = ""
    temperature: float = 0.7
    max_tokens: int = 1024
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict[str, int]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "TokenUsage":
        if not data:
            return cls()
        return cls(
            input_tokens=int(data.get("input_tokens", 0) or 0),
            output_tokens=int(data.get("output_tokens", 0) or 0),
            total_tokens=int(data.get("total_tokens", 0) or 0),
        )


@dataclass(frozen=True)
class SideEffect:
    """Outcome of a best-effort side effect (cache write, field write)."""

    name: str
    ok: bool
    error: str | None = None


@dataclass(frozen=True)
class CompletionResult:
    """
    Normalized outcome of a dispatch.

    A failed result never carries content or token usage. Annotations
    (cache flag, fallback info, source, side effects) produce new instances.
    """

    success: bool
    content: str = ""
    message: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    raw: Any = None
    cached: bool = False
    used_provider: str | None = None
    used_key_index: int | None = None
    used_key_label: str | None = None
    source: ResultSource | None = None
    side_effects: tuple[SideEffect, ...] = ()

    def __post_init__(self) -> None:
        if not self.success:
            object.__setattr__(self, "content", "")
            object.__setattr__(self, "usage", TokenUsage())

    @classmethod
    def ok(cls, content: str, *, usage: TokenUsage | None = None, raw: Any = None, message: str = "OK") -> "CompletionResult":
        return cls(success=True, content=content, message=message, usage=usage or TokenUsage(), raw=raw)

    @classmethod
    def failure(cls, message: str, *, raw: Any = None) -> "CompletionResult":
        return cls(success=False, message=message, raw=raw)

    def annotate(self, **changes: Any) -> "CompletionResult":
        return dataclasses.replace(self, **changes)

    def with_side_effect(self, effect: SideEffect) -> "CompletionResult":
        return dataclasses.replace(self, side_effects=self.side_effects + (effect,))

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "content": self.content,
            "message": self.message,
            "usage": self.usage.to_dict(),
            "raw": self.raw,
            "cached": self.cached,
            "used_provider": self.used_provider,
            "used_key_index": self.used_key_index,
            "used_key_label": self.used_key_label,
            "source": self.source,
            "side_effects": [dataclasses.asdict(s) for s in self.side_effects],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompletionResult":
        if not isinstance(data, dict) or not isinstance(data.get("success"), bool):
            raise ValueError("Result payload must be an object with a boolean 'success'.")
        return cls(
            success=data["success"],
            content=str(data.get("content") or ""),
            message=str(data.get("message") or ""),
            usage=TokenUsage.from_dict(data.get("usage")),
            raw=data.get("raw"),
            cached=bool(data.get("cached", False)),
            used_provider=data.get("used_provider"),
            used_key_index=data.get("used_key_index"),
            used_key_label=data.get("used_key_label"),
            source=data.get("source"),
            side_effects=tuple(SideEffect(**s) for s in data.get("side_effects") or ()),
        )
