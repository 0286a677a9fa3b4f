from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any

import httpx
import orjson
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from fingerscan.mantra.models.device import DeviceDescriptor  # noqa: E402
from fingerscan.mantra.registry import DeviceRegistry  # noqa: E402

INFO_RESPONSE = {
    "ErrorCode": "0",
    "ErrorDescription": "Success",
    "DeviceInfo": {"Make": "MANTRA", "Model": "MFS100", "SerialNo": "2045981"},
}


class FakeDevice:
    """In-process stand-in for the Mantra driver service.

    ``responses`` maps the endpoint name (info, capture, match) to a JSON
    body, an ``httpx.Response`` or an exception to raise. ``gates`` holds
    events a request waits on before answering.
    """

    def __init__(self) -> None:
        self.responses: dict[str, Any] = {
            "info": INFO_RESPONSE,
            "capture": {"ErrorCode": "0", "IsoTemplate": "abc", "Quality": 72},
            "match": {"ErrorCode": "0", "Status": True},
        }
        self.calls: list[tuple[str, str, Any]] = []
        self.gates: dict[str, asyncio.Event] = {}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        endpoint = request.url.path.rsplit("/", 1)[-1]
        body = orjson.loads(request.content) if request.content else None
        self.calls.append((endpoint, str(request.url), body))

        gate = self.gates.get(endpoint)
        if gate is not None:
            await gate.wait()

        response = self.responses.get(endpoint)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, endpoint: str) -> int:
        return sum(1 for name, _, _ in self.calls if name == endpoint)

    def bodies(self, endpoint: str) -> list[Any]:
        return [body for name, _, body in self.calls if name == endpoint]


async def _wait_for_calls(device: FakeDevice, endpoint: str, count: int = 1) -> None:
    for _ in range(200):
        if device.count(endpoint) >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"{endpoint} was never called")


@pytest.fixture
def wait_for_calls():
    """Awaitable that yields to the loop until the device saw a request"""
    return _wait_for_calls


@pytest.fixture
def device() -> FakeDevice:
    return FakeDevice()


@pytest.fixture
def registry() -> DeviceRegistry:
    return DeviceRegistry(
        base_urls={
            "MS100": "https://localhost:8003/mfs100/",
            "MS500": "http://localhost:8030/morfinauth/",
        }
    )


@pytest.fixture
def descriptor(registry: DeviceRegistry) -> DeviceDescriptor:
    return registry.resolve("MS100")
