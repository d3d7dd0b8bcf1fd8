from aiwire_provider.config import Credential
from aiwire_provider.credentials import CredentialSelector


def _selector(**kw) -> CredentialSelector:
    creds = {
        "anthropic": [
            Credential(key="ant-0", label="primary", enabled=False),
            Credential(key="ant-1", label="backup", model="claude-opus-4-6"),
            Credential(key="ant-2", label="spare"),
        ],
        "openai": [Credential(key="", label="empty"), Credential(key="oai-1", label="main")],
        "xai": [Credential(key="xai-0", enabled=False)],
    }
    return CredentialSelector(creds, **kw)


def test_first_enabled_key_wins_by_default():
    resolved = _selector().resolve("anthropic")
    assert resolved.api_key == "ant-1"
    assert resolved.index == 1
    assert resolved.label == "backup"
    assert resolved.model == "claude-opus-4-6"


def test_empty_keys_are_skipped():
    resolved = _selector().resolve("openai")
    assert (resolved.api_key, resolved.index) == ("oai-1", 1)
    assert resolved.model == "gpt-4.1"


def test_explicit_key_wins_with_vendor_default_model():
    resolved = _selector().resolve("anthropic", explicit_key="sk-inline", explicit_index=2)
    assert resolved.api_key == "sk-inline"
    assert resolved.index is None
    assert resolved.model == "claude-sonnet-4-5-20250929"


def test_explicit_index_ignores_enabled_flag_but_not_range():
    sel = _selector()
    assert sel.resolve("anthropic", explicit_index=0).api_key == "ant-0"
    assert sel.resolve("anthropic", explicit_index=9) is None
    assert sel.resolve("openai", explicit_index=0) is None


def test_default_index_only_for_default_vendor():
    sel = _selector(default_vendor="anthropic", default_key_index=2)
    assert sel.resolve("anthropic").api_key == "ant-2"

    sel = _selector(default_vendor="openai", default_key_index=2)
    assert sel.resolve("anthropic").api_key == "ant-1"


def test_default_index_pointing_at_disabled_key_falls_through():
    sel = _selector(default_vendor="anthropic", default_key_index=0)
    assert sel.resolve("anthropic").api_key == "ant-1"


def test_no_usable_key_or_unknown_vendor():
    sel = _selector()
    assert sel.resolve("xai") is None
    assert sel.resolve("google") is None
    assert sel.resolve("mistral") is None
    assert sel.resolve("mistral", explicit_key="k") is None


def test_enabled_credentials_keeps_list_positions():
    assert [i for i, _ in _selector().enabled_credentials("anthropic")] == [1, 2]


def test_status():
    status = _selector().status()
    assert set(status) == {"anthropic", "openai", "google", "xai", "openrouter"}
    assert status["anthropic"].active is True
    assert status["anthropic"].key_count == 3
    assert status["xai"].active is False
    assert status["google"].key_count == 0
    assert status["openai"].label == "OpenAI (GPT)"
