import base64
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import Field, field_validator

from ..utils import (
    INVALID_RESPONSE_ERROR_CODE,
    UNREACHABLE_ERROR_CODE,
    is_finger_match,
    normalize_error_code,
)
from .common import BaseModel, FrozenModel

CaptureAction = Literal["verify", "login"]


class FingerCode(str, Enum):
    """Finger position codes"""

    L1 = "L1"
    L2 = "L2"
    L3 = "L3"
    L4 = "L4"
    L5 = "L5"
    R1 = "R1"
    R2 = "R2"
    R3 = "R3"
    R4 = "R4"
    R5 = "R5"

    @property
    def label(self) -> str:
        return FINGER_LABELS[self]


FINGER_LABELS: dict[FingerCode, str] = {
    FingerCode.L1: "Left Thumb",
    FingerCode.L2: "Left Index",
    FingerCode.L3: "Left Middle",
    FingerCode.L4: "Left Ring",
    FingerCode.L5: "Left Pinky",
    FingerCode.R1: "Right Thumb",
    FingerCode.R2: "Right Index",
    FingerCode.R3: "Right Middle",
    FingerCode.R4: "Right Ring",
    FingerCode.R5: "Right Pinky",
}


class CaptureRequest(FrozenModel):
    """Capture request built by the host"""

    action: CaptureAction = "verify"
    selected_finger: FingerCode | None = None
    username: str | None = None

    @field_validator("selected_finger", mode="before")
    @classmethod
    def _blank_finger(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class CaptureResult(BaseModel):
    """Capture response from the device"""

    error_code: int = Field(..., alias="ErrorCode")
    error_description: str | None = Field(None, alias="ErrorDescription")
    iso_template: str | None = Field(None, alias="IsoTemplate")
    bitmap_data: str | None = Field(None, alias="BitmapData")
    quality: int | None = Field(None, alias="Quality")
    captured_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="capturedAt",
    )

    @field_validator("error_code", mode="before")
    @classmethod
    def _normalize_error_code(cls, value: Any) -> int:
        code = normalize_error_code(value)
        return INVALID_RESPONSE_ERROR_CODE if code is None else code

    @classmethod
    def unreachable(cls, description: str) -> "CaptureResult":
        return cls(ErrorCode=UNREACHABLE_ERROR_CODE, ErrorDescription=description)

    @classmethod
    def invalid(cls, description: str) -> "CaptureResult":
        return cls(
            ErrorCode=INVALID_RESPONSE_ERROR_CODE, ErrorDescription=description
        )

    @property
    def succeeded(self) -> bool:
        return self.error_code == 0

    @property
    def template_bytes(self) -> bytes | None:
        if not self.iso_template:
            return None
        return base64.b64decode(self.iso_template)

    @property
    def bitmap_bytes(self) -> bytes | None:
        if not self.bitmap_data:
            return None
        return base64.b64decode(self.bitmap_data)

    @property
    def bitmap_data_uri(self) -> str | None:
        if not self.bitmap_data:
            return None
        return f"data:image/bmp;base64,{self.bitmap_data}"

    def to_payload(self) -> dict[str, Any]:
        """Vendor-shaped dict, including any pass-through fields"""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class MatchResult(BaseModel):
    """Interpreted match response"""

    error_code: int = Field(..., alias="ErrorCode")
    matched: bool = False
    error_description: str | None = Field(None, alias="ErrorDescription")

    @classmethod
    def from_response(cls, payload: dict[str, Any]) -> "MatchResult":
        code = normalize_error_code(payload.get("ErrorCode"))
        description = payload.get("ErrorDescription")
        return cls(
            ErrorCode=INVALID_RESPONSE_ERROR_CODE if code is None else code,
            matched=is_finger_match(payload),
            ErrorDescription=description if isinstance(description, str) else None,
        )

    @classmethod
    def unreachable(cls, description: str) -> "MatchResult":
        return cls(ErrorCode=UNREACHABLE_ERROR_CODE, ErrorDescription=description)
