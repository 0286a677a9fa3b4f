from typing import Callable

from loguru import logger

from fingerscan.mantra.client import MantraClient
from fingerscan.mantra.models.device import (
    ConnectivityState,
    DeviceDescriptor,
    DeviceInfo,
    DeviceStatus,
)

StatusListener = Callable[[ConnectivityState, DeviceInfo | None], None]


class StatusSubscription:
    """Handle returned by StatusMonitor.start_monitoring"""

    def __init__(self, monitor: "StatusMonitor", listener: StatusListener | None):
        self._monitor = monitor
        self._listener = listener

    @property
    def state(self) -> ConnectivityState:
        return self._monitor.state

    @property
    def descriptor(self) -> DeviceDescriptor | None:
        return self._monitor.descriptor

    async def retry(self) -> ConnectivityState:
        return await self._monitor.retry()

    def cancel(self) -> None:
        if self._listener is not None:
            self._monitor.remove_listener(self._listener)
            self._listener = None


class StatusMonitor:
    """
    Tracks connectivity of the selected device.

    Probes only when monitoring starts, when the device is switched and on
    explicit retry. There is no background polling.
    """

    def __init__(self, client: MantraClient):
        self.client = client

        self.descriptor: DeviceDescriptor | None = None
        self.state = ConnectivityState.UNKNOWN
        self.info: DeviceInfo | None = None

        self._listeners: list[StatusListener] = []
        # Bumped on every device switch; stale probes are dropped
        self._generation = 0

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start_monitoring(
        self,
        descriptor: DeviceDescriptor,
        listener: StatusListener | None = None,
    ) -> StatusSubscription:
        """
        Begin tracking a device and probe it immediately

        Args:
            descriptor: Device to track
            listener: Called with (state, info) on every change

        Returns:
            StatusSubscription
        """
        if listener is not None:
            self.add_listener(listener)

        await self.switch(descriptor)
        return StatusSubscription(self, listener)

    async def switch(self, descriptor: DeviceDescriptor) -> ConnectivityState:
        """Reset to UNKNOWN for the new device, then probe it"""
        self.descriptor = descriptor
        self._generation += 1
        self._set(ConnectivityState.UNKNOWN, None)
        return await self._probe()

    async def retry(self) -> ConnectivityState:
        """Re-probe the current device"""
        if self.descriptor is None:
            raise RuntimeError("Monitoring not started. Call start_monitoring()")

        logger.info(f"Re-checking {self.descriptor.display_name} connection")
        return await self._probe()

    def mark_disconnected(self) -> None:
        """Downgrade after a capture could not reach the device"""
        self._set(ConnectivityState.DISCONNECTED, None)

    async def _probe(self) -> ConnectivityState:
        if self.descriptor is None:
            raise RuntimeError("Monitoring not started. Call start_monitoring()")

        generation = self._generation
        status: DeviceStatus = await self.client.probe(self.descriptor)

        if generation != self._generation:
            logger.debug(f"Discarding stale status for {status.device_id}")
            return self.state

        self._set(status.state, status.info)
        return self.state

    def _set(self, state: ConnectivityState, info: DeviceInfo | None) -> None:
        changed = state is not self.state or info != self.info
        self.state = state
        self.info = info

        if not changed:
            return

        for listener in list(self._listeners):
            try:
                listener(state, info)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")
