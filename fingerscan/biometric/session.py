"""
Capture session state machine.

One session drives a single capture request through the device:

    Idle -> AwaitingInput -> Capturing -> Succeeded | Failed
                                       -> FetchingTemplate -> Matching (login)

Each transition produces a new immutable ``SessionContext``; the session only
keeps a reference to the latest one. Every accepted ``request_capture`` call
ends in exactly one ``CaptureOutcome``.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from loguru import logger
from pydantic import ConfigDict, Field

from fingerscan.mantra.client import MantraClient
from fingerscan.mantra.exceptions import (
    BusyError,
    ConfigurationError,
    DeviceUnreachable,
    FingerprintError,
    MatchFailure,
    TemplateFetchError,
    TemplateNotFoundError,
    ValidationError,
    VendorError,
)
from fingerscan.mantra.models.capture import (
    CaptureAction,
    CaptureRequest,
    CaptureResult,
    MatchResult,
)
from fingerscan.mantra.models.common import BaseModel
from fingerscan.mantra.models.device import DeviceDescriptor
from fingerscan.mantra.utils import (
    MATCH_TIMEOUT_ERROR_CODE,
    UNREACHABLE_ERROR_CODE,
    invoke_callback,
)

from .login import GalleryRecord, LoginOrchestrator

OutcomeCallback = Callable[["CaptureOutcome"], Union[Any, Awaitable[Any]]]
StartCallback = Callable[[CaptureRequest], Union[Any, Awaitable[Any]]]


class SessionState(str, Enum):
    IDLE = "idle"
    AWAITING_INPUT = "awaiting_input"
    CAPTURING = "capturing"
    FETCHING_TEMPLATE = "fetching_template"
    MATCHING = "matching"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.SUCCEEDED, SessionState.FAILED)


class SessionContext(BaseModel):
    """Immutable snapshot of a capture session"""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    descriptor: DeviceDescriptor
    request: CaptureRequest
    state: SessionState = SessionState.IDLE
    capture: CaptureResult | None = None
    match: MatchResult | None = None
    error: FingerprintError | None = None
    message: str | None = None
    history: tuple[SessionState, ...] = ()

    def advance(self, state: SessionState, **changes: Any) -> "SessionContext":
        return self.model_copy(
            update={"state": state, "history": self.history + (state,), **changes}
        )

    def fail(
        self, error: FingerprintError, message: str | None = None
    ) -> "SessionContext":
        return self.advance(
            SessionState.FAILED, error=error, message=message or error.message
        )


class CaptureOutcome(BaseModel):
    """Terminal result of one capture request"""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    state: SessionState
    action: CaptureAction
    device_id: str
    matched: bool | None = None
    capture: CaptureResult | None = None
    selected_finger_code: str | None = None
    selected_finger_text: str | None = None
    message: str | None = None
    error: FingerprintError | None = None
    history: tuple[SessionState, ...] = Field(default_factory=tuple)

    @property
    def succeeded(self) -> bool:
        return self.state is SessionState.SUCCEEDED

    @classmethod
    def from_context(cls, context: SessionContext) -> "CaptureOutcome":
        request = context.request
        finger = request.selected_finger

        matched: bool | None = None
        if request.action == "login" and context.match is not None:
            matched = context.match.matched

        return cls(
            state=context.state,
            action=request.action,
            device_id=context.descriptor.id,
            matched=matched,
            capture=context.capture,
            selected_finger_code=finger.value if finger else None,
            selected_finger_text=finger.label if finger else None,
            message=context.message,
            error=context.error,
            history=context.history,
        )

    def to_payload(self) -> dict[str, Any]:
        """
        Host-facing dict in the vendor's field naming

        Verify mode yields the capture plus finger selection metadata, login
        mode yields ``{"matched": ..., **capture}``.
        """
        payload: dict[str, Any] = {"matched": self.matched}
        if self.capture is not None:
            payload.update(self.capture.to_payload())

        if self.action == "verify":
            payload["selectedFingerCode"] = self.selected_finger_code or ""
            payload["selectedFingerText"] = self.selected_finger_text or ""
            payload["deviceType"] = self.device_id

        return payload


class CaptureSession:
    """
    Drives capture (and, for login, template fetch and match) for one device.

    Only one request may be in flight; a second call while busy raises
    ``BusyError`` without touching the device. ``on_start`` runs once a
    request is accepted, before the device is called.
    """

    def __init__(
        self,
        client: MantraClient,
        descriptor: DeviceDescriptor,
        login: LoginOrchestrator | None = None,
        on_outcome: OutcomeCallback | None = None,
        on_start: StartCallback | None = None,
    ):
        self.client = client
        self.descriptor = descriptor
        self.login = login
        self.on_outcome = on_outcome
        self.on_start = on_start

        self._context: SessionContext | None = None

    @property
    def state(self) -> SessionState:
        if self._context is None:
            return SessionState.IDLE
        return self._context.state

    @property
    def context(self) -> SessionContext | None:
        return self._context

    @property
    def busy(self) -> bool:
        return not (self.state is SessionState.IDLE or self.state.is_terminal)

    async def request_capture(self, request: CaptureRequest) -> CaptureOutcome:
        """
        Run one capture request to completion

        Args:
            request: What to capture and for whom

        Returns:
            The terminal CaptureOutcome (also passed to on_outcome)

        Raises:
            BusyError: If a previous request has not finished yet
        """
        if self.busy:
            raise BusyError(
                f"A capture is already in progress on {self.descriptor.display_name}"
            )

        # Claim the session before the first await
        context = SessionContext(
            descriptor=self.descriptor,
            request=request,
            history=(SessionState.IDLE,),
        ).advance(SessionState.AWAITING_INPUT)
        self._context = context

        try:
            # Previous result is dropped once the new request is accepted
            await invoke_callback(self.on_start, request)
            context = await self._run(context)
        except asyncio.CancelledError:
            logger.warning(f"{request.action} on {self.descriptor.id} cancelled")
            self._context = self._context.fail(
                FingerprintError(f"Fingerprint {request.action} cancelled")
            )
            raise
        except Exception as e:
            logger.exception(f"Unexpected error during {request.action} capture")
            context = self._context.fail(
                FingerprintError(f"Error during fingerprint {request.action}: {e}")
            )

        self._context = context
        outcome = CaptureOutcome.from_context(context)

        if outcome.succeeded:
            logger.info(f"{request.action} on {self.descriptor.id}: {outcome.message}")
        else:
            logger.warning(
                f"{request.action} on {self.descriptor.id} failed: {outcome.message}"
            )

        await invoke_callback(self.on_outcome, outcome)
        return outcome

    def _set(self, context: SessionContext) -> SessionContext:
        self._context = context
        return context

    async def _run(self, context: SessionContext) -> SessionContext:
        request = context.request

        error = self._check_preconditions(request)
        if error is not None:
            return context.fail(error)

        context = self._set(context.advance(SessionState.CAPTURING))
        capture = await self.client.capture(
            self.descriptor,
            quality=self.descriptor.quality_threshold,
            timeout_seconds=self.descriptor.timeout_seconds,
        )

        if capture.error_code == UNREACHABLE_ERROR_CODE:
            return context.fail(self._unreachable(), self._capture_unreachable_message())

        if not capture.succeeded:
            message = (
                capture.error_description
                or f"Failed to capture fingerprint (error code: {capture.error_code})"
            )
            return context.fail(
                VendorError(
                    message,
                    error_code=capture.error_code,
                    description=capture.error_description,
                )
            )

        if request.action == "verify":
            return context.advance(
                SessionState.SUCCEEDED,
                capture=capture,
                message="Fingerprint captured successfully",
            )

        context = self._set(
            context.advance(SessionState.FETCHING_TEMPLATE, capture=capture)
        )
        return await self._verify_login(context)

    def _check_preconditions(self, request: CaptureRequest) -> FingerprintError | None:
        if request.action == "verify" and request.selected_finger is None:
            return ValidationError("finger required")

        if request.action == "login":
            if not request.username or not request.username.strip():
                return ValidationError("username required")
            if self.login is None:
                return ConfigurationError(
                    "fetch_user_biometric_data function is required for login action"
                )
            try:
                self.login.ensure_configured()
            except ConfigurationError as e:
                return e

        return None

    async def _verify_login(self, context: SessionContext) -> SessionContext:
        if self.login is None or context.capture is None:
            raise RuntimeError(
                "Login verification needs a login orchestrator and a capture"
            )

        try:
            record: GalleryRecord = await self.login.fetch_gallery_template(
                context.request
            )
        except (TemplateNotFoundError, TemplateFetchError) as e:
            return context.fail(e)

        if not context.capture.iso_template:
            return context.fail(
                VendorError("Device returned no ISO template", error_code=0)
            )

        context = self._set(context.advance(SessionState.MATCHING))
        match = await self.client.match(
            self.descriptor,
            probe_template=context.capture.iso_template,
            gallery_template=record.template,
        )
        context = context.model_copy(update={"match": match})

        if match.matched:
            context = context.advance(
                SessionState.SUCCEEDED, message="Fingerprint matched successfully"
            )
            await self.login.notify_success(record)
            return context

        if match.error_code == MATCH_TIMEOUT_ERROR_CODE:
            return context.fail(
                VendorError(
                    "capture timed out",
                    error_code=match.error_code,
                    description=match.error_description,
                )
            )

        if match.error_code == UNREACHABLE_ERROR_CODE:
            return context.fail(self._unreachable())

        if match.error_code == 0:
            return context.fail(MatchFailure("fingerprint did not match", error_code=0))

        return context.fail(
            VendorError(
                match.error_description or f"Match failed (error code: {match.error_code})",
                error_code=match.error_code,
                description=match.error_description,
            ),
            "fingerprint did not match",
        )

    def _unreachable(self) -> DeviceUnreachable:
        return DeviceUnreachable(
            f"{self.descriptor.display_name} device unreachable",
            error_code=UNREACHABLE_ERROR_CODE,
            device_id=self.descriptor.id,
        )

    def _capture_unreachable_message(self) -> str:
        return (
            f"Failed to capture fingerprint. {self.descriptor.display_name} device "
            "may not be connected. Check the device connection and try again."
        )
