# SPDX-License-Identifier: Apache-2.0
import httpx
import pytest

from utils.http_client import AsyncRetryableHttpClient


class ScriptedServer:
    """Replays a fixed list of responses or exceptions, one per request."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(server, sleeps, **kwargs):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return AsyncRetryableHttpClient(
        transport=httpx.MockTransport(server), sleep=fake_sleep, **kwargs
    )


@pytest.mark.asyncio
async def test_retries_server_errors_with_backoff():
    sleeps = []
    server = ScriptedServer(
        httpx.Response(503),
        httpx.ConnectError("refused"),
        httpx.Response(200, json={"ok": True}),
    )
    async with make_client(server, sleeps, base_delay=0.5) as client:
        body = await client.post_json("https://rpc.example", {"id": 1})

    assert body == {"ok": True}
    assert sleeps == [0.5, 1.0]
    assert client.retry_count == 2


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    sleeps = []
    server = ScriptedServer(httpx.Response(400))
    client = make_client(server, sleeps)

    with pytest.raises(httpx.HTTPStatusError):
        await client.post("https://rpc.example")

    assert server.requests == 1
    assert sleeps == []
    await client.close()


@pytest.mark.asyncio
async def test_gives_up_after_max_retries():
    sleeps = []
    server = ScriptedServer(*(httpx.ReadTimeout("slow") for _ in range(3)))
    client = make_client(server, sleeps, max_retries=2, base_delay=1.0)

    with pytest.raises(httpx.ReadTimeout):
        await client.get("https://rpc.example")

    assert server.requests == 3
    assert sleeps == [1.0, 2.0]
    await client.close()


@pytest.mark.asyncio
async def test_rate_limit_honours_retry_after():
    sleeps = []
    server = ScriptedServer(
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.Response(200, json=[]),
    )
    client = make_client(server, sleeps)

    assert await client.post_json("https://rpc.example", {}) == []
    assert sleeps == [3.0]
    await client.close()


@pytest.mark.asyncio
async def test_rate_limit_beyond_limit_is_raised():
    sleeps = []
    server = ScriptedServer(httpx.Response(429, headers={"Retry-After": "600"}))
    client = make_client(server, sleeps, max_retry_after=60.0)

    with pytest.raises(httpx.HTTPStatusError):
        await client.post("https://rpc.example")
    assert sleeps == []
    await client.close()


@pytest.mark.asyncio
async def test_invalid_json_body():
    server = ScriptedServer(httpx.Response(200, text="<html>"))
    client = make_client(server, [])

    with pytest.raises(ValueError):
        await client.post_json("https://rpc.example", {})
    await client.close()
