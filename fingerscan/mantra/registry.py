from typing import Final

from fingerscan.config import settings

from .exceptions import ConfigurationError
from .models.device import DeviceDescriptor

# device id -> display name
KNOWN_DEVICES: Final[dict[str, str]] = {
    "MS100": "Mantra MS100",
    "MS500": "Mantra MS500",
}


def default_base_urls() -> dict[str, str]:
    return {
        "MS100": settings.MANTRA.MS100_URL,
        "MS500": settings.MANTRA.MS500_URL,
    }


class DeviceRegistry:
    """
    Table of supported device backends.

    Resolving an id never performs I/O; base URLs come from settings unless
    overridden per registry.
    """

    def __init__(
        self,
        base_urls: dict[str, str] | None = None,
        quality: int = settings.MANTRA.DEFAULT_QUALITY,
        timeout: int = settings.MANTRA.DEFAULT_TIMEOUT,
    ):
        urls = default_base_urls()
        urls.update(base_urls or {})

        self._descriptors: dict[str, DeviceDescriptor] = {}
        for device_id, display_name in KNOWN_DEVICES.items():
            self.register(
                DeviceDescriptor(
                    id=device_id,
                    base_url=urls[device_id],
                    display_name=display_name,
                    quality_threshold=quality,
                    timeout_seconds=timeout,
                )
            )

    def register(self, descriptor: DeviceDescriptor) -> None:
        """Add or replace a device backend"""
        self._descriptors[descriptor.id] = descriptor

    def resolve(self, device_id: str) -> DeviceDescriptor:
        """
        Look up a device backend

        Args:
            device_id: Device id, e.g. "MS100"

        Returns:
            DeviceDescriptor for the id

        Raises:
            ConfigurationError: If the id is unknown
        """
        try:
            return self._descriptors[device_id]
        except KeyError:
            raise ConfigurationError(
                f"Unknown device '{device_id}'. Known devices: {', '.join(self.ids)}"
            )

    @property
    def ids(self) -> list[str]:
        return list(self._descriptors)
