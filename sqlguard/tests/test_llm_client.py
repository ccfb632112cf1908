"""Tests for LLMClient provider abstraction."""

import pytest
from unittest.mock import AsyncMock, Mock

from sqlguard.common.llm_client import LLMClient


class TestLLMClientInit:
    def test_missing_anthropic_key_logs_info(self, caplog):
        import logging
        with caplog.at_level(logging.INFO, logger="sqlguard.common.llm_client"):
            client = LLMClient(provider="anthropic")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_openai_key_logs_info(self, caplog):
        import logging
        with caplog.at_level(logging.INFO, logger="sqlguard.common.llm_client"):
            client = LLMClient(provider="openai")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_missing_google_key_logs_info(self, caplog):
        import logging
        with caplog.at_level(logging.INFO, logger="sqlguard.common.llm_client"):
            client = LLMClient(provider="google")
        assert not client.is_available
        assert "API key not provided" in caplog.text

    def test_auto_provider_raises(self):
        with pytest.raises(ValueError, match="auto"):
            LLMClient(provider="auto")

    def test_unsupported_provider_logs_warning(self, caplog):
        import logging
        with caplog.at_level(logging.WARNING, logger="sqlguard.common.llm_client"):
            client = LLMClient(provider="unsupported_xyz")
        assert not client.is_available
        assert "Unsupported" in caplog.text


class TestLLMClientGenerate:
    @pytest.mark.asyncio
    async def test_generate_raises_when_unavailable(self):
        from sqlguard.common.errors import ProviderUnavailable

        client = LLMClient(provider="anthropic")
        with pytest.raises(ProviderUnavailable, match="not available"):
            await client.generate("test")

    @pytest.mark.asyncio
    async def test_anthropic_generate(self):
        client = LLMClient(provider="anthropic", model="claude-test")
        response = Mock()
        response.content = [Mock(text="  {\"vulnerable\": true}  ")]
        client._client = Mock()
        client._client.messages.create = AsyncMock(return_value=response)

        text = await client.generate("prompt", system="be terse", temperature=3.0, max_tokens=0)

        assert text == '{"vulnerable": true}'
        kwargs = client._client.messages.create.call_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["system"] == "be terse"
        assert kwargs["temperature"] == 1.0
        assert kwargs["max_tokens"] == 1
        assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]

    @pytest.mark.asyncio
    async def test_openai_generate_includes_system_message(self):
        client = LLMClient(provider="openai", model="gpt-test")
        response = Mock()
        response.choices = [Mock(message=Mock(content=" answer "))]
        client._client = Mock()
        client._client.chat.completions.create = AsyncMock(return_value=response)

        text = await client.generate("prompt", system="sys")

        assert text == "answer"
        messages = client._client.chat.completions.create.call_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[1] == {"role": "user", "content": "prompt"}

    @pytest.mark.asyncio
    async def test_openai_empty_content(self):
        client = LLMClient(provider="openai", model="gpt-test")
        response = Mock()
        response.choices = [Mock(message=Mock(content=None))]
        client._client = Mock()
        client._client.chat.completions.create = AsyncMock(return_value=response)

        assert await client.generate("prompt") == ""
