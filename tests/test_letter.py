"""Tests for nexus.generation.letter."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from nexus.errors import TransientGenerationError
from nexus.generation.letter import generate_letter, letter_enabled
from nexus.generation.request import GenerationOptions, build_request


@pytest.fixture
def letter_request(small_catalog, basic_state, profile):
    basic_state.complete(1)
    return build_request(small_catalog, basic_state, profile, GenerationOptions(include_letter=True))


class TestLetterEnabled:
    def test_follows_option(self, mock_config, small_catalog, basic_state, profile):
        basic_state.complete(1)
        assert not letter_enabled(build_request(small_catalog, basic_state, profile))

    def test_config_switch(self, mock_config, letter_request):
        assert letter_enabled(letter_request)
        mock_config["letter"]["enabled"] = False
        assert not letter_enabled(letter_request)


class TestGenerateLetter:
    def test_returns_stripped_text(self, mock_config, letter_request):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=SimpleNamespace(content="  Dear partner,\n\nRegards.\n"))

        letter = asyncio.run(generate_letter(letter_request, llm=llm))

        assert letter == "Dear partner,\n\nRegards."
        messages = llm.ainvoke.call_args[0][0]
        assert messages[0]["role"] == "system"
        assert "Ada Osei" in messages[1]["content"]

    def test_uses_letter_token_limit(self, mock_config, letter_request):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(return_value=SimpleNamespace(content="Dear partner"))
        with patch("nexus.generation.letter.build_chat_model", return_value=llm) as mock_build:
            asyncio.run(generate_letter(letter_request))
        mock_build.assert_called_once_with(max_tokens=800)

    def test_exhausted_retries_are_classified(self, mock_config, letter_request):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(TransientGenerationError):
            asyncio.run(generate_letter(letter_request, llm=llm))

        assert llm.ainvoke.await_count == 3  # llm_max_retries=2 in test config
