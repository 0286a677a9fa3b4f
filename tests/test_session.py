import asyncio

import httpx
import pytest

from fingerscan.biometric.login import LoginOrchestrator
from fingerscan.biometric.session import CaptureSession, SessionState
from fingerscan.mantra.client import MantraClient
from fingerscan.mantra.exceptions import (
    BusyError,
    ConfigurationError,
    DeviceUnreachable,
    MatchFailure,
    TemplateFetchError,
    TemplateNotFoundError,
    ValidationError,
    VendorError,
)
from fingerscan.mantra.models.capture import CaptureRequest

VERIFY_L2 = CaptureRequest(action="verify", selected_finger="L2")
LOGIN_ALICE = CaptureRequest(action="login", username="alice")


def stored_template(template="tmpl1"):
    async def fetch(request):
        return {"status": True, "data": {"data": {"iso_template": template}}}

    return fetch


def run_session(device, descriptor, request, login=None):
    """Run one request and collect every outcome the session emits"""
    emitted = []

    async def scenario():
        async with MantraClient(transport=device.transport()) as client:
            session = CaptureSession(
                client, descriptor, login=login, on_outcome=emitted.append
            )
            outcome = await session.request_capture(request)
            return outcome, session

    outcome, session = asyncio.run(scenario())
    assert emitted == [outcome]
    return outcome, session


def test_verify_success_emits_capture_with_finger(device, descriptor):
    outcome, session = run_session(device, descriptor, VERIFY_L2)

    assert outcome.state is SessionState.SUCCEEDED
    assert session.state is SessionState.SUCCEEDED
    assert outcome.matched is None
    assert outcome.history == (
        SessionState.IDLE,
        SessionState.AWAITING_INPUT,
        SessionState.CAPTURING,
        SessionState.SUCCEEDED,
    )

    payload = outcome.to_payload()
    assert payload["matched"] is None
    assert payload["IsoTemplate"] == "abc"
    assert payload["Quality"] == 72
    assert payload["selectedFingerCode"] == "L2"
    assert payload["selectedFingerText"] == "Left Index"
    assert payload["deviceType"] == "MS100"
    assert device.count("match") == 0


def test_verify_without_finger_never_touches_device(device, descriptor):
    request = CaptureRequest(action="verify")

    outcome, _ = run_session(device, descriptor, request)

    assert outcome.state is SessionState.FAILED
    assert isinstance(outcome.error, ValidationError)
    assert outcome.message == "finger required"
    assert device.count("capture") == 0


@pytest.mark.parametrize("username", [None, "", "   "])
def test_login_without_username_never_touches_device(device, descriptor, username):
    request = CaptureRequest(action="login", username=username)
    login = LoginOrchestrator(stored_template())

    outcome, _ = run_session(device, descriptor, request, login=login)

    assert isinstance(outcome.error, ValidationError)
    assert outcome.message == "username required"
    assert device.calls == []


def test_login_without_template_source_is_configuration_error(device, descriptor):
    outcome, _ = run_session(
        device, descriptor, LOGIN_ALICE, login=LoginOrchestrator(None)
    )

    assert outcome.state is SessionState.FAILED
    assert isinstance(outcome.error, ConfigurationError)
    assert device.calls == []


def test_capture_vendor_error_uses_description(device, descriptor):
    device.responses["capture"] = {
        "ErrorCode": "-1307",
        "ErrorDescription": "Capture timeout",
    }

    outcome, _ = run_session(device, descriptor, VERIFY_L2)

    assert outcome.state is SessionState.FAILED
    assert isinstance(outcome.error, VendorError)
    assert outcome.error.error_code == -1307
    assert outcome.message == "Capture timeout"


def test_capture_vendor_error_without_description_embeds_code(device, descriptor):
    device.responses["capture"] = {"ErrorCode": -1133}

    outcome, _ = run_session(device, descriptor, VERIFY_L2)

    assert outcome.message == "Failed to capture fingerprint (error code: -1133)"


def test_capture_unreachable_names_device(device, descriptor):
    device.responses["capture"] = httpx.ReadTimeout("timed out")

    outcome, _ = run_session(device, descriptor, VERIFY_L2)

    assert outcome.state is SessionState.FAILED
    assert isinstance(outcome.error, DeviceUnreachable)
    assert outcome.error.device_id == "MS100"
    assert "Mantra MS100" in outcome.message
    assert "connection" in outcome.message


def test_login_match_success_calls_login_callback(device, descriptor):
    logged_in = []
    user_data = {"status": True, "data": {"data": {"iso_template": "tmpl1"}}}

    async def fetch(request):
        assert request.username == "alice"
        return user_data

    login = LoginOrchestrator(fetch, on_login_success=logged_in.append)

    outcome, _ = run_session(device, descriptor, LOGIN_ALICE, login=login)

    assert outcome.state is SessionState.SUCCEEDED
    assert outcome.matched is True
    assert outcome.history[-3:] == (
        SessionState.FETCHING_TEMPLATE,
        SessionState.MATCHING,
        SessionState.SUCCEEDED,
    )
    assert outcome.to_payload()["matched"] is True
    assert outcome.to_payload()["IsoTemplate"] == "abc"
    assert logged_in == [user_data]
    assert device.bodies("match") == [
        {"ProbTemplate": "abc", "GalleryTemplate": "tmpl1", "BioType": "FMR"}
    ]
    assert [name for name, _, _ in device.calls] == ["capture", "match"]


def test_login_sync_template_source(device, descriptor):
    login = LoginOrchestrator(lambda request: {"iso_template": "tmpl9"})

    outcome, _ = run_session(device, descriptor, LOGIN_ALICE, login=login)

    assert outcome.matched is True
    assert device.bodies("match")[0]["GalleryTemplate"] == "tmpl9"


def test_login_template_not_found_skips_match(device, descriptor):
    async def fetch(request):
        return {"status": False}

    outcome, _ = run_session(
        device, descriptor, LOGIN_ALICE, login=LoginOrchestrator(fetch)
    )

    assert outcome.state is SessionState.FAILED
    assert isinstance(outcome.error, TemplateNotFoundError)
    assert outcome.message == "user biometric data not found"
    assert outcome.matched is None
    assert device.count("capture") == 1
    assert device.count("match") == 0


def test_login_template_source_failure_is_reported(device, descriptor):
    async def fetch(request):
        raise LookupError("user service down")

    outcome, _ = run_session(
        device, descriptor, LOGIN_ALICE, login=LoginOrchestrator(fetch)
    )

    assert isinstance(outcome.error, TemplateFetchError)
    assert "user service down" in outcome.message
    assert device.count("match") == 0


def test_login_match_timeout_code(device, descriptor):
    device.responses["match"] = {
        "ErrorCode": "-1140",
        "ErrorDescription": "Timeout",
    }

    outcome, _ = run_session(
        device, descriptor, LOGIN_ALICE, login=LoginOrchestrator(stored_template())
    )

    assert outcome.state is SessionState.FAILED
    assert outcome.message == "capture timed out"
    assert isinstance(outcome.error, VendorError)
    assert outcome.matched is False
    assert outcome.to_payload()["matched"] is False
    assert outcome.to_payload()["IsoTemplate"] == "abc"


@pytest.mark.parametrize(
    "response, error_type",
    [
        ({"ErrorCode": "0", "Status": False}, MatchFailure),
        ({"ErrorCode": "-1141", "Status": False}, VendorError),
        ({"ErrorCode": "-1", "Status": False}, DeviceUnreachable),
        ({"ErrorCode": "1140"}, VendorError),
    ],
)
def test_login_non_match_is_generic_message(device, descriptor, response, error_type):
    device.responses["match"] = response

    outcome, _ = run_session(
        device, descriptor, LOGIN_ALICE, login=LoginOrchestrator(stored_template())
    )

    assert outcome.state is SessionState.FAILED
    assert outcome.matched is False
    assert isinstance(outcome.error, error_type)
    if error_type is not DeviceUnreachable:
        assert outcome.message == "fingerprint did not match"


def test_login_match_unreachable(device, descriptor):
    device.responses["match"] = httpx.ConnectError("connection refused")

    outcome, _ = run_session(
        device, descriptor, LOGIN_ALICE, login=LoginOrchestrator(stored_template())
    )

    assert isinstance(outcome.error, DeviceUnreachable)
    assert outcome.matched is False


def test_second_request_while_capturing_is_busy(device, descriptor, wait_for_calls):
    emitted = []

    async def scenario():
        gate = asyncio.Event()
        device.gates["capture"] = gate

        async with MantraClient(transport=device.transport()) as client:
            session = CaptureSession(client, descriptor, on_outcome=emitted.append)
            first = asyncio.create_task(session.request_capture(VERIFY_L2))
            await wait_for_calls(device, "capture")

            assert session.busy
            assert session.state is SessionState.CAPTURING
            with pytest.raises(BusyError):
                await session.request_capture(VERIFY_L2)

            gate.set()
            outcome = await first

            assert not session.busy
            # A new request is accepted once the first one is terminal
            second = await session.request_capture(VERIFY_L2)
            return outcome, second

    first, second = asyncio.run(scenario())

    assert first.succeeded and second.succeeded
    assert device.count("capture") == 2
    assert emitted == [first, second]


def test_busy_during_template_fetch(device, descriptor):
    async def scenario():
        release = asyncio.Event()
        fetching = asyncio.Event()

        async def fetch(request):
            fetching.set()
            await release.wait()
            return "tmpl1"

        async with MantraClient(transport=device.transport()) as client:
            session = CaptureSession(client, descriptor, login=LoginOrchestrator(fetch))
            task = asyncio.create_task(session.request_capture(LOGIN_ALICE))
            await fetching.wait()

            assert session.state is SessionState.FETCHING_TEMPLATE
            with pytest.raises(BusyError):
                await session.request_capture(LOGIN_ALICE)

            release.set()
            return await task

    outcome = asyncio.run(scenario())

    assert outcome.matched is True
    assert device.count("capture") == 1


def test_cancelled_capture_releases_session(device, descriptor, wait_for_calls):
    async def scenario():
        gate = asyncio.Event()
        device.gates["capture"] = gate

        async with MantraClient(transport=device.transport()) as client:
            session = CaptureSession(client, descriptor)
            task = asyncio.create_task(session.request_capture(VERIFY_L2))
            await wait_for_calls(device, "capture")
            assert session.busy

            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert not session.busy
            assert session.state is SessionState.FAILED
            assert session.context.message == "Fingerprint verify cancelled"

            device.gates.clear()
            return await session.request_capture(VERIFY_L2)

    outcome = asyncio.run(scenario())

    assert outcome.succeeded
    assert device.count("capture") == 2


def test_start_callback_runs_only_for_accepted_requests(
    device, descriptor, wait_for_calls
):
    started = []

    async def scenario():
        gate = asyncio.Event()
        device.gates["capture"] = gate

        async with MantraClient(transport=device.transport()) as client:
            session = CaptureSession(client, descriptor, on_start=started.append)
            task = asyncio.create_task(session.request_capture(VERIFY_L2))
            await wait_for_calls(device, "capture")

            with pytest.raises(BusyError):
                await session.request_capture(VERIFY_L2)

            gate.set()
            return await task

    outcome = asyncio.run(scenario())

    assert outcome.succeeded
    assert started == [VERIFY_L2]
