"""
Gallery template lookup for fingerprint login.

The host application owns user records; it supplies an async (or sync)
function that returns the stored template for the user being logged in.
"""

import asyncio
import base64
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from fingerscan.mantra.exceptions import (
    ConfigurationError,
    TemplateFetchError,
    TemplateNotFoundError,
)
from fingerscan.mantra.models.capture import CaptureRequest
from fingerscan.mantra.utils import invoke_callback

TemplateSource = Callable[[CaptureRequest], Union[Any, Awaitable[Any]]]
LoginCallback = Callable[[Any], Union[Any, Awaitable[Any]]]


@dataclass(frozen=True)
class GalleryRecord:
    """Stored template together with the host's user data"""

    template: str
    user_data: Any


def extract_template(user_data: Any) -> str | None:
    """
    Pull a usable ISO template out of whatever the host returned

    Accepts the ``{"status": true, "data": {"data": {"iso_template": ...}}}``
    envelope, a mapping with ``iso_template``, or a bare template.

    Args:
        user_data: Value returned by the template source

    Returns:
        Base64 template string, or None if nothing usable was found
    """
    if isinstance(user_data, (bytes, bytearray)):
        return base64.b64encode(bytes(user_data)).decode("utf-8") or None

    if isinstance(user_data, str):
        return user_data.strip() or None

    if not isinstance(user_data, Mapping):
        return None

    if "iso_template" in user_data:
        return extract_template(user_data["iso_template"])

    if not user_data.get("status"):
        return None

    data = user_data.get("data")
    inner = data.get("data") if isinstance(data, Mapping) else None
    if not isinstance(inner, Mapping):
        return None

    template = inner.get("iso_template")
    if isinstance(template, (str, bytes, bytearray)):
        return extract_template(template)
    return None


class LoginOrchestrator:
    """Fetches the comparison template before a login match"""

    def __init__(
        self,
        fetch_user_biometric_data: TemplateSource | None,
        on_login_success: LoginCallback | None = None,
    ):
        self.fetch_user_biometric_data = fetch_user_biometric_data
        self.on_login_success = on_login_success

    def ensure_configured(self) -> None:
        if self.fetch_user_biometric_data is None:
            raise ConfigurationError(
                "fetch_user_biometric_data function is required for login action"
            )

    async def fetch_gallery_template(self, request: CaptureRequest) -> GalleryRecord:
        """
        Look up the stored template for the requesting user

        Args:
            request: Login capture request (carries the username)

        Returns:
            GalleryRecord with the template and the raw user data

        Raises:
            ConfigurationError: If no template source was supplied
            TemplateFetchError: If the template source raised
            TemplateNotFoundError: If the result holds no usable template
        """
        self.ensure_configured()

        try:
            user_data = self.fetch_user_biometric_data(request)
            if asyncio.iscoroutine(user_data):
                user_data = await user_data
        except Exception as e:
            logger.error(f"Template lookup for '{request.username}' failed: {e}")
            raise TemplateFetchError(
                f"Error fetching user biometric data: {e}"
            ) from e

        template = extract_template(user_data)
        if template is None:
            logger.info(f"No biometric template for '{request.username}'")
            raise TemplateNotFoundError("user biometric data not found")

        return GalleryRecord(template=template, user_data=user_data)

    async def notify_success(self, record: GalleryRecord) -> None:
        await invoke_callback(self.on_login_success, record.user_data)
