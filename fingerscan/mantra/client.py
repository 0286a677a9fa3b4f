from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from fingerscan.config import settings

from .exceptions import DeviceUnreachable
from .models.capture import CaptureResult, MatchResult
from .models.device import (
    ConnectivityState,
    DeviceDescriptor,
    DeviceInfo,
    DeviceStatus,
    InfoResponse,
)
from .utils import deserialize_json, serialize_json

BIO_TYPE = "FMR"


class MantraClient:
    """
    Async client for the Mantra fingerprint driver service.

    Transport failures on capture and match are returned as results with a
    synthetic error code, so callers only ever inspect the error code.
    """

    def __init__(
        self,
        probe_timeout: float = settings.MANTRA.PROBE_TIMEOUT,
        verify_ssl: bool = settings.MANTRA.VERIFY_SSL,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.probe_timeout = probe_timeout
        self.verify_ssl = verify_ssl
        self._transport = transport

        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "MantraClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._client is not None:
            logger.warning("Client already opened")
            return

        self._client = httpx.AsyncClient(
            verify=self.verify_ssl,
            transport=self._transport,
            limits=httpx.Limits(max_connections=10, max_keepalive_connections=2),
        )
        logger.info("MantraClient session opened")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("MantraClient session closed")

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def _request(
        self,
        method: str,
        url: str,
        timeout: float,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self._client is None:
            raise RuntimeError("Client not opened. Use 'async with' or call open()")

        content = serialize_json(data) if data is not None else None
        headers = {"Content-Type": "application/json; charset=utf-8"}

        logger.debug(f"{method} {url} (timeout: {timeout}s)")

        try:
            response = await self._client.request(
                method=method,
                url=url,
                content=content,
                headers=headers,
                params=params,
                timeout=httpx.Timeout(timeout),
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise DeviceUnreachable(f"Request to {url} timed out: {e!r}")
        except httpx.HTTPStatusError as e:
            raise DeviceUnreachable(
                f"HTTP {e.response.status_code} from {url}",
                error_code=e.response.status_code,
            )
        except httpx.RequestError as e:
            raise DeviceUnreachable(f"Network error calling {url}: {e!r}")

        result = deserialize_json(response.content)
        if not isinstance(result, dict):
            raise ValueError(f"Expected JSON object from {url}, got {type(result)}")
        return result

    async def probe(self, descriptor: DeviceDescriptor) -> DeviceStatus:
        """
        Query device status

        Args:
            descriptor: Device backend to query

        Returns:
            DeviceStatus with CONNECTED and device metadata, or DISCONNECTED
        """
        try:
            result = await self._request(
                "GET",
                descriptor.endpoint("info"),
                timeout=self.probe_timeout,
                params={"Key": "info"},
            )
        except DeviceUnreachable as e:
            logger.warning(f"{descriptor.display_name} not detected: {e.message}")
            return DeviceStatus(
                device_id=descriptor.id, state=ConnectivityState.DISCONNECTED
            )
        except ValueError as e:
            logger.warning(f"{descriptor.display_name} sent a malformed status: {e}")
            return DeviceStatus(
                device_id=descriptor.id, state=ConnectivityState.DISCONNECTED
            )

        info: DeviceInfo | None = None
        try:
            info = InfoResponse(**result).device_info
        except PydanticValidationError as e:
            logger.warning(f"Unreadable device info from {descriptor.id}: {e}")

        if info is not None:
            logger.info(
                f"{descriptor.display_name} connected "
                f"(model: {info.model}, serial: {info.serial_no})"
            )
        else:
            logger.info(f"{descriptor.display_name} connected")

        return DeviceStatus(
            device_id=descriptor.id,
            state=ConnectivityState.CONNECTED,
            info=info,
        )

    async def capture(
        self,
        descriptor: DeviceDescriptor,
        quality: int,
        timeout_seconds: int,
    ) -> CaptureResult:
        """
        Capture a fingerprint

        Args:
            descriptor: Device backend to capture on
            quality: Minimum capture quality (0-100)
            timeout_seconds: Device capture timeout, also used as transport timeout

        Returns:
            CaptureResult, error_code 0 on success
        """
        try:
            result = await self._request(
                "POST",
                descriptor.endpoint("capture"),
                timeout=float(timeout_seconds),
                data={"Quality": quality, "TimeOut": timeout_seconds},
            )
        except DeviceUnreachable as e:
            logger.warning(f"Capture on {descriptor.id} failed: {e.message}")
            return CaptureResult.unreachable(
                f"{descriptor.display_name} device unreachable"
            )
        except ValueError as e:
            logger.warning(f"Malformed capture response from {descriptor.id}: {e}")
            return CaptureResult.invalid("Invalid response from device")

        try:
            capture = CaptureResult(**result)
        except PydanticValidationError as e:
            logger.warning(f"Malformed capture response from {descriptor.id}: {e}")
            return CaptureResult.invalid("Invalid response from device")

        logger.debug(
            f"Capture on {descriptor.id} returned {capture.error_code} "
            f"(quality: {capture.quality})"
        )
        return capture

    async def match(
        self,
        descriptor: DeviceDescriptor,
        probe_template: str,
        gallery_template: str,
    ) -> MatchResult:
        """
        Compare a freshly captured template with a stored one

        Args:
            descriptor: Device backend performing the comparison
            probe_template: Captured ISO template (base64)
            gallery_template: Stored ISO template (base64)

        Returns:
            MatchResult
        """
        try:
            result = await self._request(
                "POST",
                descriptor.endpoint("match"),
                timeout=float(descriptor.timeout_seconds),
                data={
                    "ProbTemplate": probe_template,
                    "GalleryTemplate": gallery_template,
                    "BioType": BIO_TYPE,
                },
            )
        except DeviceUnreachable as e:
            logger.warning(f"Match on {descriptor.id} failed: {e.message}")
            return MatchResult.unreachable(
                f"{descriptor.display_name} device unreachable"
            )
        except ValueError as e:
            logger.warning(f"Malformed match response from {descriptor.id}: {e}")
            return MatchResult.from_response({})

        match = MatchResult.from_response(result)
        logger.debug(
            f"Match on {descriptor.id} returned {match.error_code} "
            f"(matched: {match.matched})"
        )
        return match
