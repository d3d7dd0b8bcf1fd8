import pytest

from aiwire_provider.contracts import CompletionResult, SideEffect, TokenUsage


def test_failed_result_never_carries_content_or_usage():
    result = CompletionResult(success=False, content="partial", usage=TokenUsage(1, 1, 2), message="boom")
    assert result.content == ""
    assert result.usage == TokenUsage()
    assert result.annotate(content="x").content == ""


def test_annotations_return_new_instances():
    base = CompletionResult.ok("hi", usage=TokenUsage(1, 2, 3))
    tagged = base.annotate(cached=True, used_provider="openai").with_side_effect(SideEffect("cache_write", ok=True))
    assert base.cached is False
    assert base.side_effects == ()
    assert tagged.cached is True
    assert tagged.used_provider == "openai"
    assert tagged.side_effects == (SideEffect("cache_write", ok=True),)


def test_dict_round_trip_preserves_fields():
    result = CompletionResult.ok("hi", usage=TokenUsage(1, 2, 3), raw={"id": "r"}).annotate(
        used_key_index=1, used_key_label="backup", source="ai"
    )
    assert CompletionResult.from_dict(result.to_dict()) == result


def test_from_dict_requires_boolean_success():
    with pytest.raises(ValueError):
        CompletionResult.from_dict({"success": "yes"})
    with pytest.raises(ValueError):
        CompletionResult.from_dict(["not", "a", "dict"])
