from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from .contracts import CompletionResult, SideEffect
from .logging import LogChannels
from .options import AskOptions

if TYPE_CHECKING:
    from .dispatcher import Dispatcher, Options


@runtime_checkable
class RecordStore(Protocol):
    """
    Host-side storage for generated text.

    Records are opaque to this package apart from their `id` attribute,
    which scopes the response cache.
    """

    def read_field(self, record: Any, field: str) -> str | None: ...

    def write_field(self, record: Any, field: str, text: str, *, quiet: bool = True) -> bool: ...


@dataclass(frozen=True)
class GenerationBlock:
    field: str
    prompt: str
    options: Mapping[str, Any] | AskOptions | None = None
    system_prompt: str | None = None
    overwrite: bool | None = None

    @classmethod
    def coerce(cls, value: "GenerationBlock | Mapping[str, Any]") -> "GenerationBlock":
        if isinstance(value, GenerationBlock):
            return value
        return cls(
            field=str(value.get("field") or ""),
            prompt=str(value.get("prompt") or ""),
            options=value.get("options"),
            system_prompt=value.get("system_prompt"),
            overwrite=value.get("overwrite"),
        )


@dataclass
class _SharedAnswer:
    result: CompletionResult | None = None


def _record_id(record: Any) -> int:
    return int(getattr(record, "id", 0) or 0)


class RecordWriter:
    """Ask-and-persist flows on top of a Dispatcher and a RecordStore."""

    def __init__(self, dispatcher: "Dispatcher", store: RecordStore, *, log: LogChannels | None = None):
        self.dispatcher = dispatcher
        self.store = store
        self.log = log or dispatcher.log

    def load_from(self, record: Any, field: str) -> str | None:
        if not _record_id(record):
            return None
        value = self.store.read_field(record, field)
        return str(value) if value not in (None, "") else None

    def save_to(self, record: Any, field: str, content: str | CompletionResult, *, quiet: bool = True) -> bool:
        if not _record_id(record):
            self.log.error("save_to_failed", field=field, error="record has no id")
            return False

        text = content.content if isinstance(content, CompletionResult) else content
        if not text:
            self.log.debug("save_to_skipped", record_id=_record_id(record), field=field)
            return False

        try:
            saved = bool(self.store.write_field(record, field, text, quiet=quiet))
        except Exception as e:
            self.log.error("save_to_failed", record_id=_record_id(record), field=field, error=str(e))
            return False

        if saved:
            self.log.debug("save_to_ok", record_id=_record_id(record), field=field, chars=len(text))
        else:
            self.log.error("save_to_failed", record_id=_record_id(record), field=field, error="store refused write")
        return saved

    def _with_context(self, record: Any, options: "Options") -> AskOptions:
        opts = AskOptions.coerce(options)
        if "context_id" not in opts.model_fields_set:
            opts = opts.merged({"context_id": _record_id(record)})
        return opts

    def _from_field(self, record: Any, field: str, overwrite: bool) -> CompletionResult | None:
        if overwrite:
            return None
        existing = self.load_from(record, field)
        if existing is None:
            return None
        self.log.debug("field_has_content", record_id=_record_id(record), field=field)
        return CompletionResult.ok(existing, message="Loaded from field").annotate(source="field")

    def _persist(self, record: Any, field: str, result: CompletionResult, quiet: bool) -> CompletionResult:
        if not result.success:
            return result.annotate(source="error")
        saved = self.save_to(record, field, result, quiet=quiet)
        return result.annotate(source="ai").with_side_effect(
            SideEffect("field_write", ok=saved, error=None if saved else f"could not write field '{field}'")
        )

    async def _ask_and_save_one(
        self,
        record: Any,
        field: str,
        message: str,
        opts: AskOptions,
        *,
        overwrite: bool,
        quiet: bool,
        shared: _SharedAnswer | None = None,
    ) -> CompletionResult:
        existing = self._from_field(record, field, overwrite)
        if existing is not None:
            return existing

        if shared is None:
            result = await self.dispatcher.ask(message, opts)
        else:
            if shared.result is None:
                shared.result = await self.dispatcher.ask(message, opts)
            result = shared.result
        return self._persist(record, field, result, quiet)

    async def ask_and_save(
        self,
        record: Any,
        field: str,
        message: str,
        options: "Options" = None,
        *,
        overwrite: bool = False,
        quiet: bool = True,
    ) -> CompletionResult:
        """
        Return the field's content when it already has some; otherwise ask
        and write the answer into the field. The result's `source` tells
        which path was taken ("field", "ai" or "error").
        """
        opts = self._with_context(record, options)
        return await self._ask_and_save_one(record, field, message, opts, overwrite=overwrite, quiet=quiet)

    async def ask_and_save_many(
        self,
        record: Any,
        fields: Sequence[str],
        message: str,
        options: "Options" = None,
        *,
        overwrite: bool = False,
        quiet: bool = True,
    ) -> dict[str, CompletionResult]:
        # One prompt, one dispatch at most, reused for every empty field.
        opts = self._with_context(record, options)
        shared = _SharedAnswer()
        return {
            name: await self._ask_and_save_one(
                record, name, message, opts, overwrite=overwrite, quiet=quiet, shared=shared
            )
            for name in fields
        }

    async def ask_and_save_batch(
        self,
        record: Any,
        prompts: Mapping[str, str],
        options: "Options" = None,
        *,
        overwrite: bool = False,
        quiet: bool = True,
    ) -> dict[str, CompletionResult]:
        opts = self._with_context(record, options)
        return {
            name: await self._ask_and_save_one(record, name, prompt, opts, overwrite=overwrite, quiet=quiet)
            for name, prompt in prompts.items()
        }

    async def generate(
        self,
        record: Any,
        blocks: Sequence[GenerationBlock | Mapping[str, Any]],
        global_options: "Options" = None,
        *,
        overwrite: bool = False,
        quiet: bool = True,
    ) -> dict[str, CompletionResult]:
        """
        Fill several fields, each from its own prompt and options.

        Options merge as global, then block options, then the block's
        `system_prompt` shortcut. Blocks without a field or prompt are
        logged and skipped.
        """
        base = AskOptions.coerce(global_options)
        results: dict[str, CompletionResult] = {}

        for raw_block in blocks:
            block = GenerationBlock.coerce(raw_block)
            if not block.field or not block.prompt:
                self.log.error("generate_invalid_block", field=block.field or None)
                continue

            opts = base.merged(block.options)
            if block.system_prompt is not None:
                opts = opts.merged({"system_prompt": block.system_prompt})
            opts = self._with_context(record, opts)

            block_overwrite = overwrite if block.overwrite is None else block.overwrite
            results[block.field] = await self._ask_and_save_one(
                record, block.field, block.prompt, opts, overwrite=block_overwrite, quiet=quiet
            )

        return results
