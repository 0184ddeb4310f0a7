"""Tests for nexus.utils.parsing: strip_fences, is_transient, ainvoke_with_retry."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from nexus.utils.parsing import ainvoke_with_retry, is_transient, status_code_of, strip_fences

_FAST = {"llm_retry_wait_min": 0, "llm_retry_wait_max": 0}


def _status_error(code: int) -> httpx.HTTPStatusError:
    response = httpx.Response(code, request=httpx.Request("POST", "https://api.example.com"))
    return httpx.HTTPStatusError(f"HTTP {code}", request=response.request, response=response)


# --- strip_fences ---

class TestStripFences:
    def test_strip_json_fences(self):
        text = '```json\n{"key": "value"}\n```'
        assert strip_fences(text) == '{"key": "value"}'

    def test_strip_plain_fences(self):
        text = '```\n[1, 2]\n```'
        assert strip_fences(text) == '[1, 2]'

    def test_no_fences_returns_stripped(self):
        assert strip_fences('  [{"a": 1}]  ') == '[{"a": 1}]'


# --- is_transient ---

class TestIsTransient:
    @pytest.mark.parametrize("exc", [
        httpx.ConnectError("refused"),
        httpx.ReadTimeout("slow"),
        httpx.RemoteProtocolError("eof"),
        ConnectionResetError(),
        TimeoutError(),
    ])
    def test_network_errors(self, exc):
        assert is_transient(exc)

    @pytest.mark.parametrize("code,expected", [
        (408, True), (429, True), (500, True), (503, True),
        (400, False), (401, False), (422, False),
    ])
    def test_status_codes(self, code, expected):
        assert is_transient(_status_error(code)) is expected

    def test_status_code_attribute(self):
        exc = Exception("overloaded")
        exc.status_code = 529
        assert status_code_of(exc) == 529
        assert not is_transient(exc)

    def test_plain_error(self):
        assert not is_transient(ValueError("bad"))


# --- ainvoke_with_retry ---

class TestAinvokeWithRetry:
    def _mock_llm(self, side_effect):
        llm = MagicMock()
        llm.ainvoke = AsyncMock(side_effect=side_effect)
        return llm

    @patch("nexus.config._config", {"llm_max_retries": 3, **_FAST})
    def test_succeeds_on_first_try(self):
        response = MagicMock(content="ok")
        llm = self._mock_llm([response])

        result = asyncio.run(ainvoke_with_retry(llm, [{"role": "user", "content": "hi"}]))

        assert result.content == "ok"
        assert llm.ainvoke.await_count == 1

    @patch("nexus.config._config", {"llm_max_retries": 3, **_FAST})
    def test_retries_on_connect_error(self):
        response = MagicMock(content="ok")
        llm = self._mock_llm([httpx.ConnectError("connection refused"), response])

        result = asyncio.run(ainvoke_with_retry(llm, []))

        assert result is response
        assert llm.ainvoke.await_count == 2

    @patch("nexus.config._config", {"llm_max_retries": 3, **_FAST})
    def test_retries_on_429(self):
        response = MagicMock(content="ok")
        llm = self._mock_llm([_status_error(429), response])

        asyncio.run(ainvoke_with_retry(llm, []))

        assert llm.ainvoke.await_count == 2

    @patch("nexus.config._config", {"llm_max_retries": 2, **_FAST})
    def test_raises_after_max_retries(self):
        llm = self._mock_llm([
            httpx.ConnectError("fail 1"),
            httpx.ConnectError("fail 2"),
            httpx.ConnectError("fail 3"),
        ])

        with pytest.raises(httpx.ConnectError):
            asyncio.run(ainvoke_with_retry(llm, []))

        assert llm.ainvoke.await_count == 3  # 1 initial + 2 retries

    @patch("nexus.config._config", {"llm_max_retries": 3, **_FAST})
    def test_does_not_retry_on_auth_error(self):
        llm = self._mock_llm([_status_error(401)])

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(ainvoke_with_retry(llm, []))

        assert llm.ainvoke.await_count == 1
