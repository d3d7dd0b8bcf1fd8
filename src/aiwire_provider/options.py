from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .contracts import ChatTurn


class HistoryMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class AskOptions(BaseModel):
    """
    Per-call overrides for a dispatch.

    Only fields that were explicitly set take part in merging, so "not
    given" and "given as None" stay distinguishable. That matters for
    `cache`: an explicit None or False turns caching off even when it is
    enabled globally.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: str | None = None
    model: str | None = None
    system_prompt: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    history: list[HistoryMessage] = Field(default_factory=list)
    key: str | None = None
    key_index: int | None = None
    timeout: float | None = None
    cache: bool | int | str | None = None
    context_id: int | None = None
    fallback_providers: list[str] = Field(default_factory=list)

    @field_validator("temperature")
    @classmethod
    def _validate_temperature(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not (0.0 <= v <= 2.0):
            raise ValueError("temperature must be between 0 and 2.")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _validate_max_tokens(cls, v: int | None) -> int | None:
        if v is None:
            return None
        if v <= 0:
            raise ValueError("max_tokens must be > 0.")
        return v

    @field_validator("key_index")
    @classmethod
    def _validate_key_index(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError("key_index must be >= 0.")
        return v

    @field_validator("timeout")
    @classmethod
    def _validate_timeout(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("timeout must be > 0.")
        return v

    @field_validator("context_id", mode="before")
    @classmethod
    def _coerce_context(cls, v: Any) -> Any:
        # Records (pages, rows, ...) may be passed directly; their id is the context.
        if v is None or isinstance(v, (int, str)):
            return v
        record_id = getattr(v, "id", None)
        if record_id is None:
            raise ValueError("context_id must be an int or an object with an 'id' attribute.")
        return record_id

    @classmethod
    def coerce(cls, value: "AskOptions | Mapping[str, Any] | None") -> "AskOptions":
        if isinstance(value, AskOptions):
            return value
        return cls.model_validate(dict(value or {}))

    @property
    def cache_explicit(self) -> bool:
        return "cache" in self.model_fields_set

    def explicit(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def merged(self, override: "AskOptions | Mapping[str, Any] | None") -> "AskOptions":
        """Return a copy with every field explicitly set on `override` applied on top."""
        if override is None:
            return self
        return self.model_copy(update=AskOptions.coerce(override).explicit())

    def without(self, *names: str) -> "AskOptions":
        data = {k: v for k, v in self.explicit().items() if k not in names}
        return AskOptions.model_validate(data)

    def history_turns(self) -> tuple[ChatTurn, ...]:
        return tuple(ChatTurn(role=m.role, content=m.content) for m in self.history)

    def history_dicts(self) -> list[dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.history]
