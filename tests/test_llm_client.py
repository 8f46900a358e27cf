"""Tests for the OpenRouter client factory and JSON completion helper."""
import json
import sys
import types
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from entityscope import llm_client
from entityscope.llm_client import complete_json, extract_json_object, get_client, get_model


class TestGetModel:
    """Test model selection logic."""

    def test_get_model_returns_default_when_no_override(self):
        with patch("entityscope.llm_client.settings") as mock_settings:
            mock_settings.openrouter_model = ""
            mock_settings.default_model = "openai/gpt-4o-mini"

            assert get_model() == "openai/gpt-4o-mini"

    def test_get_model_returns_openrouter_override(self):
        with patch("entityscope.llm_client.settings") as mock_settings:
            mock_settings.openrouter_model = "openai/gpt-4.1"
            mock_settings.default_model = "openai/gpt-4o-mini"

            assert get_model() == "openai/gpt-4.1"


class TestGetClient:
    """Test OpenRouter client initialization."""

    def test_get_client_uses_openrouter(self):
        with patch("entityscope.llm_client.settings") as mock_settings:
            mock_settings.openrouter_api_key = "sk-or-valid-key"
            mock_settings.openrouter_base_url = "https://openrouter.ai/api/v1"

            openai_module = types.ModuleType("openai")
            mock_openai = MagicMock()
            openai_module.AsyncOpenAI = mock_openai

            with patch.dict(sys.modules, {"openai": openai_module}):
                get_client()

            mock_openai.assert_called_once_with(
                api_key="sk-or-valid-key",
                base_url="https://openrouter.ai/api/v1",
            )

    def test_get_client_falls_back_to_default_base_url(self):
        with patch("entityscope.llm_client.settings") as mock_settings:
            mock_settings.openrouter_api_key = "sk-or-valid-key"
            mock_settings.openrouter_base_url = "  "

            openai_module = types.ModuleType("openai")
            mock_openai = MagicMock()
            openai_module.AsyncOpenAI = mock_openai

            with patch.dict(sys.modules, {"openai": openai_module}):
                get_client()

            assert mock_openai.call_args.kwargs["base_url"] == "https://openrouter.ai/api/v1"


class TestExtractJsonObject:
    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == {"a": 1}

    def test_fenced_object_with_prose(self):
        raw = '```json\nHere you go: {"queries": ["x"]}\n```'
        assert extract_json_object(raw) == {"queries": ["x"]}

    def test_missing_object_raises(self):
        with pytest.raises(json.JSONDecodeError):
            extract_json_object("no json here")


@pytest.mark.asyncio
async def test_complete_json_sends_messages_and_parses_reply():
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content='{"subject_name": "Jane Doe"}'))],
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=12),
    )
    create = AsyncMock(return_value=response)
    fake_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    with patch.object(llm_client, "client", return_value=fake_client):
        parsed = await complete_json(system="sys", prompt="user", caller="test", model="test/model")

    assert parsed == {"subject_name": "Jane Doe"}
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "test/model"
    assert kwargs["temperature"] == 0
    assert kwargs["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "user"},
    ]
