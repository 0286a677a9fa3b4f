from enum import Enum

from pydantic import Field

from .common import BaseModel, FrozenModel


class ConnectivityState(str, Enum):
    """Tri-state device availability"""

    UNKNOWN = "unknown"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class DeviceDescriptor(FrozenModel):
    """Device backend configuration"""

    id: str = Field(..., min_length=1, max_length=32)
    base_url: str = Field(..., min_length=1)
    display_name: str = Field(..., max_length=64)
    quality_threshold: int = Field(60, ge=0, le=100)
    timeout_seconds: int = Field(10, gt=0)

    def endpoint(self, method: str) -> str:
        return f"{self.base_url}{method}"


class DeviceInfo(BaseModel):
    """Device metadata reported by the driver"""

    model: str | None = Field(None, alias="Model")
    serial_no: str | None = Field(None, alias="SerialNo")
    make: str | None = Field(None, alias="Make")
    width: int | None = Field(None, alias="Width")
    height: int | None = Field(None, alias="Height")


class InfoResponse(BaseModel):
    """Response model for the info query"""

    error_code: str | int | None = Field(None, alias="ErrorCode")
    error_description: str | None = Field(None, alias="ErrorDescription")
    device_info: DeviceInfo | None = Field(None, alias="DeviceInfo")


class DeviceStatus(BaseModel):
    """Result of a status probe"""

    device_id: str
    state: ConnectivityState
    info: DeviceInfo | None = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectivityState.CONNECTED
