import httpx
import pytest

from fleet_console.clients.http import RequestFailure, RetryPolicy, request_with_retry


@pytest.mark.asyncio
async def test_request_with_retry_raises_after_attempts():
    calls = []

    def handler(request):
        calls.append(request.url)
        return httpx.Response(status_code=500, text="boom", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    with pytest.raises(RequestFailure) as excinfo:
        await request_with_retry(
            client, "GET", "http://example.test", RetryPolicy(attempts=2, sleep_sec=0)
        )
    assert len(calls) == 2
    assert excinfo.value.status_code == 500
    assert excinfo.value.response_text == "boom"
    assert not excinfo.value.is_network_error


@pytest.mark.asyncio
async def test_request_with_retry_reports_network_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    with pytest.raises(RequestFailure) as excinfo:
        await request_with_retry(
            client, "GET", "http://example.test", RetryPolicy(attempts=1, sleep_sec=0)
        )
    assert excinfo.value.is_network_error
    assert excinfo.value.error_type == "ConnectError"


@pytest.mark.asyncio
async def test_request_with_retry_succeeds():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(
            status_code=200, json={"ok": True}, request=request
        )
    )
    client = httpx.AsyncClient(transport=transport)
    response = await request_with_retry(
        client, "GET", "http://example.test", RetryPolicy(attempts=2, sleep_sec=0)
    )
    assert response.json() == {"ok": True}
