class FingerprintError(Exception):
    """Base exception for all fingerprint scanner errors"""

    def __init__(self, message: str, error_code: int | None = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ValidationError(FingerprintError):
    """Raised when required capture input is missing"""

    pass


class ConfigurationError(FingerprintError):
    """Raised when a device id or a required callback is not configured"""

    pass


class BusyError(FingerprintError):
    """Raised when a capture is requested while another one is in flight"""

    pass


class DeviceUnreachable(FingerprintError):
    """Raised when the device service does not answer"""

    def __init__(
        self,
        message: str,
        error_code: int | None = None,
        device_id: str | None = None,
    ):
        super().__init__(message, error_code)
        self.device_id = device_id


class VendorError(FingerprintError):
    """Raised when the device reports a non-zero error code"""

    def __init__(
        self,
        message: str,
        error_code: int | None = None,
        description: str | None = None,
    ):
        super().__init__(message, error_code)
        self.description = description


class TemplateNotFoundError(FingerprintError):
    """Raised when no usable gallery template exists for the user"""

    pass


class TemplateFetchError(FingerprintError):
    """Raised when the gallery template source itself fails"""

    pass


class MatchFailure(FingerprintError):
    """Raised when the device compared both templates and they differ"""

    pass
