from fingerscan.biometric.scanner import FingerprintScanner
from fingerscan.biometric.session import CaptureOutcome, CaptureSession, SessionState
from fingerscan.mantra.client import MantraClient
from fingerscan.mantra.models.capture import CaptureRequest, CaptureResult, FingerCode
from fingerscan.mantra.models.device import ConnectivityState, DeviceDescriptor
from fingerscan.mantra.registry import DeviceRegistry

__all__ = [
    "CaptureOutcome",
    "CaptureRequest",
    "CaptureResult",
    "CaptureSession",
    "ConnectivityState",
    "DeviceDescriptor",
    "DeviceRegistry",
    "FingerCode",
    "FingerprintScanner",
    "MantraClient",
    "SessionState",
]
