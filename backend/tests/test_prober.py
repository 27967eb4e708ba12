import asyncio
import time

import httpx
import pytest
from unittest.mock import patch

from monitorhub.models import MonitorState
from monitorhub.services.prober import ProberService, USER_AGENT


def _prober(handler, **kwargs) -> ProberService:
    return ProberService(transport=httpx.MockTransport(handler), **kwargs)


def test_classify_thresholds():
    prober = ProberService(slow_threshold_ms=3000)
    assert prober.classify(True, 2999) == MonitorState.UP
    assert prober.classify(True, 3000) == MonitorState.SLOW
    assert prober.classify(True, 3500) == MonitorState.SLOW
    assert prober.classify(False, 10) == MonitorState.DOWN


@pytest.mark.asyncio
async def test_probe_2xx_is_up():
    prober = _prober(lambda request: httpx.Response(200, text="ok"))
    result = await prober.probe("https://example.test/health")

    assert result.is_up is True
    assert result.status == MonitorState.UP
    assert result.status_code == 200
    assert result.error_message is None
    assert result.response_time_ms >= 0


@pytest.mark.asyncio
async def test_probe_sends_user_agent():
    seen = {}

    def handler(request):
        seen["ua"] = request.headers.get("user-agent")
        return httpx.Response(204)

    await _prober(handler).probe("http://example.test")
    assert seen["ua"] == USER_AGENT


@pytest.mark.asyncio
async def test_probe_slow_response_is_up_but_slow():
    prober = _prober(lambda request: httpx.Response(200), slow_threshold_ms=3000)

    with patch.object(prober, "_elapsed_ms", return_value=3500):
        result = await prober.probe("http://slow.test")

    assert result.is_up is True
    assert result.status == MonitorState.SLOW
    assert result.response_time_ms == 3500


@pytest.mark.asyncio
async def test_probe_5xx_is_down():
    prober = _prober(lambda request: httpx.Response(503))
    result = await prober.probe("http://example.test")

    assert result.is_up is False
    assert result.status == MonitorState.DOWN
    assert result.status_code == 503
    assert result.error_message == "HTTP 503"


@pytest.mark.asyncio
async def test_probe_3xx_without_location_is_down():
    prober = _prober(lambda request: httpx.Response(304))
    result = await prober.probe("http://example.test")
    assert result.status == MonitorState.DOWN
    assert result.status_code == 304


@pytest.mark.asyncio
async def test_probe_follows_redirects():
    def handler(request):
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "http://example.test/new"})
        return httpx.Response(200)

    result = await _prober(handler).probe("http://example.test/old")
    assert result.status == MonitorState.UP
    assert result.status_code == 200


@pytest.mark.asyncio
async def test_probe_timeout_is_bounded():
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    prober = _prober(handler, timeout=0.05)
    start = time.monotonic()
    result = await prober.probe("http://hang.test")

    assert time.monotonic() - start < 2
    assert result.status == MonitorState.DOWN
    assert result.status_code is None
    assert result.error_message == "Timeout after 50ms"


@pytest.mark.asyncio
async def test_probe_connection_error():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    result = await _prober(handler).probe("http://refused.test")
    assert result.status == MonitorState.DOWN
    assert result.error_message.startswith("Connection error")


@pytest.mark.asyncio
async def test_probe_rejects_non_http_scheme():
    called = []
    prober = _prober(lambda request: called.append(request) or httpx.Response(200))
    result = await prober.probe("ftp://example.test/file")

    assert result.status == MonitorState.DOWN
    assert result.error_message == "Invalid protocol. Must be http or https."
    assert called == []


@pytest.mark.asyncio
async def test_probe_batch_isolates_crashes():
    prober = _prober(lambda request: httpx.Response(200))
    original_probe = prober.probe

    async def flaky_probe(url):
        if "boom" in url:
            raise RuntimeError("unexpected")
        return await original_probe(url)

    prober.probe = flaky_probe
    results = await prober.probe_batch(
        [(1, "http://a.test"), (2, "http://boom.test"), (3, "http://c.test")],
        batch_size=2,
    )

    assert set(results) == {1, 3}
    assert all(r.status == MonitorState.UP for r in results.values())


@pytest.mark.asyncio
async def test_probe_batch_rejects_bad_batch_size():
    with pytest.raises(ValueError):
        await ProberService().probe_batch([(1, "http://a.test")], batch_size=0)
