"""
Fingerprint scanner component for host applications.

Ties together the device registry, the Mantra client, the capture session and
the status monitor behind the surface a UI layer needs:

- Select a device backend and keep its connectivity status current
- Capture a fingerprint (verify) or capture and match it (login)
- Report every outcome to the host's callback
"""

from typing import Any, Awaitable, Callable, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from fingerscan.config import settings
from fingerscan.mantra.client import MantraClient
from fingerscan.mantra.exceptions import DeviceUnreachable, ValidationError
from fingerscan.mantra.models.capture import CaptureAction, CaptureRequest, FingerCode
from fingerscan.mantra.models.device import (
    ConnectivityState,
    DeviceDescriptor,
    DeviceInfo,
)
from fingerscan.mantra.registry import DeviceRegistry
from fingerscan.mantra.utils import invoke_callback

from .login import LoginCallback, LoginOrchestrator, TemplateSource
from .monitor import StatusListener, StatusMonitor, StatusSubscription
from .session import CaptureOutcome, CaptureSession, OutcomeCallback

CaptureCallback = Callable[[dict[str, Any]], Union[Any, Awaitable[Any]]]


class FingerprintScanner:
    """
    Host-facing fingerprint component.

    Usage:
        async with FingerprintScanner(action="verify", on_capture=handle) as scanner:
            outcome = await scanner.capture(finger="L2")
    """

    def __init__(
        self,
        action: CaptureAction = "verify",
        device_id: str = settings.MANTRA.DEFAULT_DEVICE,
        base_urls: dict[str, str] | None = None,
        on_capture: CaptureCallback | None = None,
        on_outcome: OutcomeCallback | None = None,
        on_login_success: LoginCallback | None = None,
        fetch_user_biometric_data: TemplateSource | None = None,
        on_status: StatusListener | None = None,
        client: MantraClient | None = None,
        registry: DeviceRegistry | None = None,
    ):
        self.action = action
        self.on_capture = on_capture
        self.on_outcome = on_outcome
        self.on_status = on_status

        self.registry = registry or DeviceRegistry(base_urls=base_urls)
        self.client = client or MantraClient()
        self.login = LoginOrchestrator(fetch_user_biometric_data, on_login_success)
        self.monitor = StatusMonitor(self.client)

        self._descriptor = self.registry.resolve(device_id)
        self._session = self._new_session(self._descriptor)
        self._subscription: StatusSubscription | None = None
        self._last_capture: CaptureOutcome | None = None
        self._opened_client = False

    async def __aenter__(self) -> "FingerprintScanner":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def open(self) -> None:
        """Open the device client and probe the selected device"""
        if not self.client.is_open:
            await self.client.open()
            self._opened_client = True

        self._subscription = await self.monitor.start_monitoring(
            self._descriptor, self.on_status
        )
        logger.info(
            f"Fingerprint scanner ready ({self.action}, {self._descriptor.display_name}: "
            f"{self.monitor.state.value})"
        )

    async def close(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

        if self._opened_client:
            await self.client.close()
            self._opened_client = False

    def _new_session(self, descriptor: DeviceDescriptor) -> CaptureSession:
        return CaptureSession(
            client=self.client,
            descriptor=descriptor,
            login=self.login,
            on_outcome=self._handle_outcome,
            on_start=self._handle_start,
        )

    @property
    def device(self) -> DeviceDescriptor:
        return self._descriptor

    @property
    def device_status(self) -> ConnectivityState:
        return self.monitor.state

    @property
    def device_info(self) -> DeviceInfo | None:
        return self.monitor.info

    @property
    def last_capture(self) -> CaptureOutcome | None:
        return self._last_capture

    @property
    def busy(self) -> bool:
        return self._session.busy

    async def capture(
        self,
        finger: FingerCode | str | None = None,
        username: str | None = None,
    ) -> CaptureOutcome:
        """
        Capture a fingerprint in the configured action mode

        Args:
            finger: Selected finger code (verify mode)
            username: User logging in (login mode)

        Returns:
            CaptureOutcome

        Raises:
            BusyError: If a capture is already running
            ValidationError: If the finger code is not recognised
        """
        try:
            request = CaptureRequest(
                action=self.action,
                selected_finger=finger,
                username=username,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid capture input: {e}")

        if self._session.descriptor != self._descriptor and not self._session.busy:
            self._session = self._new_session(self._descriptor)

        return await self._session.request_capture(request)

    async def switch_device(self, device_id: str) -> ConnectivityState:
        """
        Select another device backend

        Drops the last captured result and re-probes the new device.

        Raises:
            ConfigurationError: If the device id is unknown
        """
        descriptor = self.registry.resolve(device_id)

        logger.info(f"Switching device to {descriptor.display_name}")
        self._descriptor = descriptor
        self._last_capture = None

        return await self.monitor.switch(descriptor)

    async def check_connection(self) -> ConnectivityState:
        """Re-probe the selected device on user request"""
        return await self.monitor.retry()

    async def clear_capture(self) -> None:
        """Forget the last captured result and tell the host"""
        self._last_capture = None
        await invoke_callback(self.on_capture, {})

    async def _handle_start(self, request: CaptureRequest) -> None:
        await self.clear_capture()

    async def _handle_outcome(self, outcome: CaptureOutcome) -> None:
        current = outcome.device_id == self._descriptor.id

        if isinstance(outcome.error, DeviceUnreachable) and current:
            self.monitor.mark_disconnected()

        # Captured data: a verify capture, or a login capture that reached match
        has_capture_data = outcome.succeeded or outcome.matched is not None

        if not current:
            logger.info(
                f"Device switched during capture; not keeping result from {outcome.device_id}"
            )
        elif has_capture_data:
            self._last_capture = outcome

        if has_capture_data and current:
            await invoke_callback(self.on_capture, outcome.to_payload())

        await invoke_callback(self.on_outcome, outcome)
