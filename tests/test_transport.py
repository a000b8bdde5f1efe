"""Tests for RequestExecutor retry, backoff and proxy bypass."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from newapi_chat.errors import CancellationError, ClientError, ServerError, TransportError
from newapi_chat.llm.transport import (
    _BACKOFF_BASE,
    _MAX_RETRIES,
    RequestExecutor,
    _proxy_configured,
)
from newapi_chat.types import CancelToken

URL = "http://api.test/v1/chat/completions"

_PROXY_VARS = (
    "HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY",
    "http_proxy", "https_proxy", "all_proxy",
)


class Recorder:
    """MockTransport handler replaying a list of responses or exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("boom", request=request)
        if isinstance(outcome, int):
            return httpx.Response(outcome, text=f"status {outcome}")
        return outcome


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def no_proxy(monkeypatch):
    for name in _PROXY_VARS:
        monkeypatch.delenv(name, raising=False)


class TestRetries:
    @pytest.mark.asyncio
    async def test_retry_bound_on_5xx(self):
        handler = Recorder(503)
        executor = RequestExecutor(_client(handler), max_retries=2, backoff_base=0)

        with pytest.raises(ServerError) as exc_info:
            await executor.send("POST", URL, json={})

        assert handler.calls == 3
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_no_retry_on_4xx(self):
        handler = Recorder(httpx.Response(401, text="bad key"))
        executor = RequestExecutor(_client(handler), max_retries=3, backoff_base=0)

        with pytest.raises(ClientError) as exc_info:
            await executor.send("POST", URL, json={})

        assert handler.calls == 1
        assert exc_info.value.status_code == 401
        assert exc_info.value.body == "bad key"
        assert exc_info.value.url == URL
        assert "API Error (401)" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_429_is_not_retried(self):
        handler = Recorder(429)
        executor = RequestExecutor(_client(handler), backoff_base=0)

        with pytest.raises(ClientError):
            await executor.send("POST", URL)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_recovers_after_server_error(self):
        handler = Recorder(500, httpx.Response(200, text="ok"))
        executor = RequestExecutor(_client(handler), backoff_base=0)

        response = await executor.send("POST", URL, json={})
        await response.aread()
        await response.aclose()

        assert response.status_code == 200
        assert response.text == "ok"
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_max_retries_override(self):
        handler = Recorder(502)
        executor = RequestExecutor(_client(handler), max_retries=3, backoff_base=0)

        with pytest.raises(ServerError):
            await executor.send("POST", URL, max_retries=0)
        assert handler.calls == 1

    @pytest.mark.asyncio
    async def test_transport_error_exhausts_retries(self):
        handler = Recorder(httpx.ConnectError)
        executor = RequestExecutor(_client(handler), max_retries=1, backoff_base=0)

        with pytest.raises(TransportError):
            await executor.send("POST", URL)
        assert handler.calls == 2

    @pytest.mark.asyncio
    async def test_exponential_backoff(self):
        handler = Recorder(503)
        executor = RequestExecutor(_client(handler), max_retries=3)

        with patch.object(RequestExecutor, "_wait", new_callable=AsyncMock) as wait:
            with pytest.raises(ServerError):
                await executor.send("POST", URL)

        delays = [c.args[0] for c in wait.await_args_list]
        assert delays == [1.0, 2.0, 4.0]


class TestProxyBypass:
    @pytest.mark.asyncio
    async def test_direct_retry_when_proxy_configured(self, monkeypatch):
        monkeypatch.setenv("HTTPS_PROXY", "http://proxy.local:3128")
        proxied = Recorder(httpx.ConnectError)
        direct = Recorder(httpx.Response(200, text="direct"))
        executor = RequestExecutor(
            _client(proxied), max_retries=0, backoff_base=0,
            direct_client=_client(direct),
        )

        response = await executor.send("POST", URL)
        await response.aclose()

        assert response.status_code == 200
        assert proxied.calls == 1
        assert direct.calls == 1

    @pytest.mark.asyncio
    async def test_bypass_fires_once(self, monkeypatch):
        monkeypatch.setenv("all_proxy", "socks5://proxy.local:1080")
        proxied = Recorder(httpx.ConnectError)
        direct = Recorder(httpx.ConnectError)
        executor = RequestExecutor(
            _client(proxied), max_retries=1, backoff_base=0,
            direct_client=_client(direct),
        )

        with pytest.raises(TransportError):
            await executor.send("POST", URL)

        assert proxied.calls == 1
        assert direct.calls == 2

    @pytest.mark.asyncio
    async def test_no_bypass_without_proxy(self):
        proxied = Recorder(httpx.ConnectError)
        direct = Recorder(httpx.Response(200))
        executor = RequestExecutor(
            _client(proxied), max_retries=0, backoff_base=0,
            direct_client=_client(direct),
        )

        with pytest.raises(TransportError):
            await executor.send("POST", URL)
        assert direct.calls == 0

    def test_proxy_detection_any_case(self, monkeypatch):
        assert not _proxy_configured()
        monkeypatch.setenv("http_proxy", "http://p:8080")
        assert _proxy_configured()


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_first_attempt(self):
        handler = Recorder(200)
        executor = RequestExecutor(_client(handler))
        token = CancelToken()
        token.set()

        with pytest.raises(CancellationError):
            await executor.send("POST", URL, cancel=token)
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_cancelled_during_backoff(self):
        token = CancelToken()

        def handler(request):
            token.set()
            return httpx.Response(503)

        executor = RequestExecutor(_client(handler), max_retries=3, backoff_base=5.0)

        with pytest.raises(CancellationError):
            await executor.send("POST", URL, cancel=token)


class TestConstants:
    def test_retry_count(self):
        assert _MAX_RETRIES == 3

    def test_backoff_base(self):
        assert _BACKOFF_BASE == 1.0
