"""Unit tests for LLM providers."""

import sys
from pathlib import Path
from types import ModuleType, SimpleNamespace
from unittest.mock import Mock

import pytest

from workflow_dsl.core.config import LLMConfig
from workflow_dsl.llm.factory import LLMFactory
from workflow_dsl.llm.llama_provider import LLaMAProvider
from workflow_dsl.llm.openai_provider import OpenAIProvider
from workflow_dsl.llm.provider import ChatReply, ToolCall, parse_tool_arguments


def _completion(content: str | None, tool_calls: list[SimpleNamespace] | None = None) -> SimpleNamespace:
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def test_factory_creates_openai_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test factory creates OpenAI provider."""
    client_cls = Mock()
    monkeypatch.setattr("workflow_dsl.llm.openai_provider.OpenAI", client_cls)
    config = LLMConfig(provider="openai", openai_api_key="test-key")

    provider = LLMFactory.create(config)

    assert isinstance(provider, OpenAIProvider)
    client_cls.assert_called_once_with(api_key="test-key", base_url=None)


def test_openai_provider_requires_api_key() -> None:
    """Test OpenAI provider requires API key."""
    config = LLMConfig(provider="openai", openai_api_key=None)

    with pytest.raises(ValueError, match="API key is required"):
        OpenAIProvider(config)


def test_llama_provider_requires_model_path() -> None:
    config = LLMConfig(provider="llama", llama_model_path=None)

    with pytest.raises(ValueError, match="model path is required"):
        LLMFactory.create(config)


def test_openai_chat_parses_tool_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    client = Mock()
    client.chat.completions.create.return_value = _completion(
        None,
        [
            SimpleNamespace(
                id="call_1",
                function=SimpleNamespace(name="getCurrentTime", arguments='{"timezone": "UTC"}'),
            )
        ],
    )
    monkeypatch.setattr("workflow_dsl.llm.openai_provider.OpenAI", Mock(return_value=client))
    provider = OpenAIProvider(LLMConfig(openai_api_key="test-key", openai_temperature=0.3))
    tools = [{"type": "function", "function": {"name": "getCurrentTime"}}]

    reply = provider.chat([{"role": "user", "content": "time?"}], tools)

    assert reply == ChatReply(
        content="",
        tool_calls=[ToolCall(id="call_1", name="getCurrentTime", arguments={"timezone": "UTC"})],
    )
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["tools"] == tools
    assert kwargs["temperature"] == 0.3
    assert kwargs["model"] == "gpt-4o-mini"


def test_openai_chat_plain_reply(monkeypatch: pytest.MonkeyPatch) -> None:
    client = Mock()
    client.chat.completions.create.return_value = _completion("hello")
    monkeypatch.setattr("workflow_dsl.llm.openai_provider.OpenAI", Mock(return_value=client))
    provider = OpenAIProvider(LLMConfig(openai_api_key="test-key"))

    reply = provider.chat([{"role": "user", "content": "hi"}], temperature=0.0)

    assert reply == ChatReply(content="hello")
    kwargs = client.chat.completions.create.call_args.kwargs
    assert "tools" not in kwargs
    assert kwargs["temperature"] == 0.0


def test_parse_tool_arguments() -> None:
    assert parse_tool_arguments(None) == {}
    assert parse_tool_arguments("") == {}
    assert parse_tool_arguments({"a": 1}) == {"a": 1}
    assert parse_tool_arguments('{"a": 1}') == {"a": 1}
    with pytest.raises(ValueError):
        parse_tool_arguments("[1, 2]")


def test_chat_reply_to_message() -> None:
    reply = ChatReply(content="", tool_calls=[ToolCall(id="c1", name="shout", arguments={"text": "hi"})])

    message = reply.to_message()

    assert message["role"] == "assistant"
    assert message["tool_calls"] == [
        {"id": "c1", "type": "function", "function": {"name": "shout", "arguments": '{"text": "hi"}'}}
    ]
    assert "tool_calls" not in ChatReply(content="done").to_message()


def test_factory_uses_registered_builder(monkeypatch: pytest.MonkeyPatch) -> None:
    built = Mock()
    builder = Mock(return_value=built)
    monkeypatch.setitem(LLMFactory._builders, "llama", builder)
    config = LLMConfig(provider="llama")

    assert LLMFactory.create(config) is built
    builder.assert_called_once_with(config)


def test_factory_rejects_unknown_provider() -> None:
    config = LLMConfig.model_construct(provider="anthropic")

    with pytest.raises(ValueError, match="available: llama, openai"):
        LLMFactory.create(config)


@pytest.fixture
def llama_model(monkeypatch: pytest.MonkeyPatch) -> Mock:
    model = Mock()
    model.create_chat_completion.return_value = {
        "choices": [{"message": {"content": "ok", "tool_calls": None}}]
    }
    module = ModuleType("llama_cpp")
    module.Llama = Mock(return_value=model)  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "llama_cpp", module)
    return model


def test_llama_chat_keeps_zero_temperature(llama_model: Mock) -> None:
    provider = LLaMAProvider(LLMConfig(provider="llama", llama_model_path=Path("model.gguf")))

    reply = provider.chat([{"role": "user", "content": "hi"}], max_tokens=0, temperature=0.0)

    assert reply == ChatReply(content="ok")
    kwargs = llama_model.create_chat_completion.call_args.kwargs
    assert kwargs["temperature"] == 0.0
    assert kwargs["max_tokens"] == 0


def test_llama_chat_defaults(llama_model: Mock) -> None:
    provider = LLaMAProvider(LLMConfig(provider="llama", llama_model_path=Path("model.gguf")))

    provider.chat([{"role": "user", "content": "hi"}])

    kwargs = llama_model.create_chat_completion.call_args.kwargs
    assert kwargs["temperature"] == 0.7
    assert kwargs["max_tokens"] == 512
