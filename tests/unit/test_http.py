from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.http import fetch_with_retry

URL = "https://assets.test/scene.tif"


def counting_transport(responses):
    """Replay ``responses`` in order; exceptions are raised, ints become statuses."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        outcome = responses[min(len(calls), len(responses) - 1)]
        calls.append(request)
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, content=b"body")

    return httpx.MockTransport(handler), calls


@pytest.mark.asyncio
class TestFetchWithRetry:
    """Test cases for the retrying fetch helper."""

    async def test_success_first_try(self):
        transport, calls = counting_transport([200])
        async with httpx.AsyncClient(transport=transport) as client:
            response = await fetch_with_retry(client, "GET", URL)

        assert response.status_code == 200
        assert len(calls) == 1

    async def test_retries_server_errors_with_backoff(self):
        transport, calls = counting_transport([503, 502, 200])
        with patch("app.core.http.asyncio.sleep", new_callable=AsyncMock) as sleep:
            async with httpx.AsyncClient(transport=transport) as client:
                response = await fetch_with_retry(
                    client, "GET", URL, retries=2, backoff=1.0
                )

        assert response.status_code == 200
        assert len(calls) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    async def test_returns_last_server_error(self):
        transport, calls = counting_transport([500])
        with patch("app.core.http.asyncio.sleep", new_callable=AsyncMock):
            async with httpx.AsyncClient(transport=transport) as client:
                response = await fetch_with_retry(client, "GET", URL, retries=2)

        assert response.status_code == 500
        assert len(calls) == 3

    async def test_client_errors_not_retried(self):
        transport, calls = counting_transport([404])
        async with httpx.AsyncClient(transport=transport) as client:
            response = await fetch_with_retry(client, "GET", URL, retries=2)

        assert response.status_code == 404
        assert len(calls) == 1

    async def test_timeout_not_retried(self):
        transport, calls = counting_transport([httpx.ReadTimeout("slow")])
        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(httpx.TimeoutException):
                await fetch_with_retry(client, "GET", URL, retries=2)

        assert len(calls) == 1

    async def test_network_errors_retried(self):
        transport, calls = counting_transport([httpx.ConnectError("down"), 200])
        with patch("app.core.http.asyncio.sleep", new_callable=AsyncMock):
            async with httpx.AsyncClient(transport=transport) as client:
                response = await fetch_with_retry(client, "GET", URL, retries=2)

        assert response.status_code == 200
        assert len(calls) == 2

    async def test_network_errors_exhaust_retries(self):
        transport, calls = counting_transport([httpx.ConnectError("down")])
        with patch("app.core.http.asyncio.sleep", new_callable=AsyncMock):
            async with httpx.AsyncClient(transport=transport) as client:
                with pytest.raises(httpx.ConnectError):
                    await fetch_with_retry(client, "GET", URL, retries=1)

        assert len(calls) == 2
