"""Tests for the machine backends with the SDK clients mocked out."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.config_loader import MachineSpec
from multilogue.machines import anthropic as anthropic_machine
from multilogue.machines import gemini as gemini_machine
from multilogue.machines import openai_machine
from multilogue.machines.base import MachineError, fold_speakers, sampling_settings, thinking_budget

MESSAGES = [
    {"role": "system", "name": "system", "content": "Be brief."},
    {"role": "user", "name": "Meno", "content": "What is virtue?"},
    {"role": "assistant", "name": "Claude", "content": "Let us inquire."},
    {"role": "user", "name": "user", "content": "Go on."},
]


def _spec(key: str, sdk: str, env: str, base_url: str | None = None) -> MachineSpec:
    return MachineSpec(
        key=key, name=key.title(), sdk=sdk, model=f"{key}-model",
        api_key_env=env, max_tokens=512, base_url=base_url,
    )


# ── sampling_settings ────────────────────────────────────────────────────────

def test_sampling_settings_picks_numeric_keys():
    picked = sampling_settings("m", {"temperature": 0.7, "max_completion_tokens": 12, "model": "x"})
    assert picked == {"temperature": 0.7, "max_completion_tokens": 12}


def test_sampling_settings_drops_unparsed_strings(caplog):
    assert sampling_settings("m", {"top_p": "abc"}) == {}
    assert "ignoring non-numeric top_p" in caplog.text


def test_thinking_budget():
    assert thinking_budget("m", {}) is None
    assert thinking_budget("m", {"thinking_budget": 1024}) == 1024


def test_thinking_budget_ignores_bad_values(caplog):
    assert thinking_budget("m", {"thinking_budget": "lots"}) is None
    assert thinking_budget("m", {"thinking_budget": 0}) is None
    assert "ignoring thinking_budget" in caplog.text


def test_machine_error_message():
    err = MachineError("claude", "boom")
    assert str(err) == "[claude] boom"
    assert err.machine_name == "claude"


# ── OpenAI-compatible ────────────────────────────────────────────────────────

@pytest.fixture
def openai_client(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    client = MagicMock()
    message = SimpleNamespace(role="assistant", content="Virtue is knowledge.", reasoning_content="thinking...")
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(total_tokens=42),
    ))
    client.close = AsyncMock()
    factory = MagicMock(return_value=client)
    monkeypatch.setattr(openai_machine, "AsyncOpenAI", factory)
    client.factory = factory
    return client


async def test_openai_complete(openai_client):
    machine = openai_machine.OpenAIMachine(_spec("openai", "openai", "OPENAI_API_KEY"))
    data = await machine.complete(MESSAGES, {"temperature": 0.2})

    assert data == {"role": "assistant", "content": "Virtue is knowledge.", "reasoning_content": "thinking..."}
    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "openai-model"
    assert kwargs["temperature"] == 0.2
    assert kwargs["max_completion_tokens"] == 512
    assert kwargs["messages"][1] == {"role": "user", "name": "Meno", "content": "What is virtue?"}


async def test_openai_settings_override_model_and_tokens(openai_client):
    machine = openai_machine.OpenAIMachine(_spec("openai", "openai", "OPENAI_API_KEY"))
    await machine.complete(MESSAGES, {"model": "gpt-other", "max_completion_tokens": 12})
    kwargs = openai_client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-other"
    assert kwargs["max_completion_tokens"] == 12


async def test_openai_base_url_passed(openai_client):
    openai_machine.OpenAIMachine(_spec("grok", "openai", "OPENAI_API_KEY", base_url="https://api.x.ai/v1"))
    openai_client.factory.assert_called_once_with(api_key="sk-test", base_url="https://api.x.ai/v1")


def test_openai_api_name_sanitized():
    assert openai_machine._api_name("Dr. O'Brien") == "Dr__O_Brien"


async def test_openai_api_failure(openai_client):
    openai_client.chat.completions.create.side_effect = RuntimeError("503")
    machine = openai_machine.OpenAIMachine(_spec("openai", "openai", "OPENAI_API_KEY"))
    with pytest.raises(MachineError, match="API call failed: 503"):
        await machine.complete(MESSAGES, {})


async def test_openai_no_choices(openai_client):
    openai_client.chat.completions.create.return_value = SimpleNamespace(choices=[], usage=None)
    machine = openai_machine.OpenAIMachine(_spec("openai", "openai", "OPENAI_API_KEY"))
    with pytest.raises(MachineError, match="no choices"):
        await machine.complete(MESSAGES, {})


async def test_openai_close(openai_client):
    machine = openai_machine.OpenAIMachine(_spec("openai", "openai", "OPENAI_API_KEY"))
    await machine.close()
    openai_client.close.assert_awaited_once()


def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(MachineError, match="Missing API key: OPENAI_API_KEY"):
        openai_machine.OpenAIMachine(_spec("openai", "openai", "OPENAI_API_KEY"))


# ── Anthropic ────────────────────────────────────────────────────────────────

def _block(**fields):
    return SimpleNamespace(model_dump=lambda: dict(fields))


@pytest.fixture
def anthropic_client(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=SimpleNamespace(
        role="assistant",
        content=[
            _block(type="thinking", thinking="Consider Meno.", signature="sig"),
            _block(type="text", text="Virtue may be taught."),
        ],
        usage=SimpleNamespace(input_tokens=10, output_tokens=5),
    ))
    client.close = AsyncMock()
    sdk = MagicMock()
    sdk.AsyncAnthropic.return_value = client
    monkeypatch.setattr(anthropic_machine, "anthropic_sdk", sdk)
    return client


def test_fold_speakers_splits_system_and_names_speakers():
    system, converted = fold_speakers(MESSAGES, "Claude")
    assert system == "Be brief."
    assert converted == [
        {"role": "user", "content": "Meno: What is virtue?"},
        {"role": "assistant", "content": "Let us inquire."},
        {"role": "user", "content": "Go on."},
    ]


def test_fold_speakers_other_assistant_becomes_user_text():
    messages = [
        {"role": "user", "name": "user", "content": "Hi"},
        {"role": "assistant", "name": "assistant", "content": "Hello"},
    ]
    system, converted = fold_speakers(messages, "Claude")
    assert system == ""
    assert converted == [{"role": "user", "content": "Hi\n\nassistant: Hello"}]


def test_fold_speakers_own_last_turn_is_not_continued():
    messages = [
        {"role": "user", "name": "Meno", "content": "What is virtue?"},
        {"role": "assistant", "name": "Claude", "content": "Let us inquire."},
    ]
    _, converted = fold_speakers(messages, "claude")
    assert converted == [{"role": "user", "content": "Meno: What is virtue?\n\nClaude: Let us inquire."}]


def test_fold_speakers_merges_consecutive_roles():
    messages = [
        {"role": "user", "name": "Meno", "content": "One."},
        {"role": "assistant", "name": "GPT", "content": "Two."},
        {"role": "assistant", "name": "Claude", "content": "Three."},
        {"role": "user", "name": "user", "content": "Four."},
    ]
    _, converted = fold_speakers(messages, "Claude")
    assert [m["role"] for m in converted] == ["user", "assistant", "user"]
    assert converted[0]["content"] == "Meno: One.\n\nGPT: Two."


async def test_anthropic_two_turn_dialogue_ends_with_user(anthropic_client):
    machine = anthropic_machine.AnthropicMachine(_spec("claude", "anthropic", "ANTHROPIC_API_KEY"))
    await machine.complete(
        [{"role": "user", "name": "user", "content": "Hi"}, {"role": "assistant", "name": "assistant", "content": "Hello"}],
        {},
    )
    kwargs = anthropic_client.messages.create.await_args.kwargs
    assert kwargs["messages"][-1]["role"] == "user"
    assert "assistant: Hello" in kwargs["messages"][-1]["content"]
    assert "system" not in kwargs


async def test_anthropic_thinking_budget(anthropic_client):
    machine = anthropic_machine.AnthropicMachine(_spec("claude", "anthropic", "ANTHROPIC_API_KEY"))
    await machine.complete(MESSAGES, {"thinking_budget": 2048, "temperature": 0.5})
    kwargs = anthropic_client.messages.create.await_args.kwargs
    assert kwargs["thinking"] == {"type": "enabled", "budget_tokens": 2048}
    assert kwargs["max_tokens"] == 2048 + 512
    assert "temperature" not in kwargs


async def test_anthropic_no_thinking_by_default(anthropic_client):
    machine = anthropic_machine.AnthropicMachine(_spec("claude", "anthropic", "ANTHROPIC_API_KEY"))
    await machine.complete(MESSAGES, {"thinking_budget": "lots"})
    assert "thinking" not in anthropic_client.messages.create.await_args.kwargs


async def test_anthropic_complete(anthropic_client):
    machine = anthropic_machine.AnthropicMachine(_spec("claude", "anthropic", "ANTHROPIC_API_KEY"))
    data = await machine.complete(MESSAGES, {"temperature": 0.5})

    assert data["role"] == "assistant"
    assert data["content"] == [{"type": "text", "text": "Virtue may be taught."}]
    assert data["reasoning_content"] == [{"type": "thinking", "thinking": "Consider Meno.", "signature": "sig"}]
    kwargs = anthropic_client.messages.create.await_args.kwargs
    assert kwargs["system"] == "Be brief."
    assert kwargs["max_tokens"] == 512
    assert kwargs["temperature"] == 0.5


async def test_anthropic_only_system_turns(anthropic_client):
    machine = anthropic_machine.AnthropicMachine(_spec("claude", "anthropic", "ANTHROPIC_API_KEY"))
    with pytest.raises(MachineError, match="no user or assistant turns"):
        await machine.complete(MESSAGES[:1], {})
    anthropic_client.messages.create.assert_not_awaited()


async def test_anthropic_api_failure(anthropic_client):
    anthropic_client.messages.create.side_effect = RuntimeError("overloaded")
    machine = anthropic_machine.AnthropicMachine(_spec("claude", "anthropic", "ANTHROPIC_API_KEY"))
    with pytest.raises(MachineError, match="overloaded"):
        await machine.complete(MESSAGES, {})


# ── Gemini ───────────────────────────────────────────────────────────────────

@pytest.fixture
def gemini_client(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g-test")
    client = MagicMock()
    parts = [
        SimpleNamespace(text="Meno wants a definition.", thought=True),
        SimpleNamespace(text="Virtue is a kind of wisdom.", thought=None),
    ]
    client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(role="model", parts=parts))],
        usage_metadata=SimpleNamespace(total_token_count=30),
    ))
    sdk = MagicMock()
    sdk.Client.return_value = client
    monkeypatch.setattr(gemini_machine, "genai", sdk)
    return client


async def test_gemini_complete(gemini_client):
    machine = gemini_machine.GeminiMachine(_spec("gemini", "gemini", "GEMINI_API_KEY"))
    messages = [dict(m, name="Gemini") if m["role"] == "assistant" else m for m in MESSAGES]
    data = await machine.complete(messages, {"top_p": 0.9})

    assert data == {
        "role": "model",
        "content": [{"text": "Virtue is a kind of wisdom."}],
        "reasoning_content": [{"text": "Meno wants a definition."}],
    }
    kwargs = gemini_client.aio.models.generate_content.await_args.kwargs
    assert [c.role for c in kwargs["contents"]] == ["user", "model", "user"]
    assert kwargs["contents"][0].parts[0].text == "Meno: What is virtue?"
    assert kwargs["contents"][2].parts[0].text == "Go on."
    assert kwargs["config"].system_instruction == "Be brief."
    assert kwargs["config"].top_p == 0.9


async def test_gemini_two_turn_dialogue_ends_with_user(gemini_client):
    machine = gemini_machine.GeminiMachine(_spec("gemini", "gemini", "GEMINI_API_KEY"))
    await machine.complete(
        [{"role": "user", "name": "user", "content": "Hi"}, {"role": "assistant", "name": "assistant", "content": "Hello"}],
        {"thinking_budget": 1024},
    )
    kwargs = gemini_client.aio.models.generate_content.await_args.kwargs
    assert [c.role for c in kwargs["contents"]] == ["user"]
    assert kwargs["contents"][0].parts[0].text == "Hi\n\nassistant: Hello"
    assert kwargs["config"].thinking_config.thinking_budget == 1024


async def test_gemini_no_candidates(gemini_client):
    gemini_client.aio.models.generate_content.return_value = SimpleNamespace(candidates=[], usage_metadata=None)
    machine = gemini_machine.GeminiMachine(_spec("gemini", "gemini", "GEMINI_API_KEY"))
    with pytest.raises(MachineError, match="no candidates"):
        await machine.complete(MESSAGES, {})
