import argparse
import asyncio
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from fingerscan.biometric.scanner import FingerprintScanner
from fingerscan.biometric.session import CaptureOutcome
from fingerscan.config import settings
from fingerscan.mantra.exceptions import FingerprintError
from fingerscan.mantra.models.capture import CaptureRequest, FingerCode
from fingerscan.mantra.models.device import ConnectivityState
from fingerscan.mantra.registry import KNOWN_DEVICES
from fingerscan.mantra.utils import deserialize_json, serialize_json
from fingerscan.utils.logger import setup_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fingerscan",
        description="Capture or verify fingerprints on a Mantra scanner",
    )
    parser.add_argument(
        "--device",
        choices=sorted(KNOWN_DEVICES),
        default=settings.MANTRA.DEFAULT_DEVICE,
    )
    parser.add_argument("--url", help="Override the device service base URL")
    parser.add_argument("--log-file", type=Path, help="Also append logs to this file")

    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Check whether the device is connected")

    capture = commands.add_parser("capture", help="Capture a fingerprint")
    capture.add_argument(
        "--finger", required=True, choices=[code.value for code in FingerCode]
    )
    capture.add_argument("--output", type=Path, help="Write the capture as JSON")

    login = commands.add_parser("login", help="Capture and match against a stored template")
    login.add_argument("--username", required=True)
    login.add_argument(
        "--templates",
        type=Path,
        required=True,
        help="JSON file mapping usernames to base64 ISO templates",
    )

    return parser


def template_source(path: Path):
    """Build a template lookup backed by a JSON file"""

    async def fetch_user_biometric_data(request: CaptureRequest) -> dict[str, Any]:
        templates = deserialize_json(path.read_bytes())
        template = templates.get(request.username or "")
        if not template:
            return {"status": False}
        return {"status": True, "data": {"data": {"iso_template": template}}}

    return fetch_user_biometric_data


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logger("cli", args.log_file)

    action = "login" if args.command == "login" else "verify"
    base_urls = {args.device: args.url} if args.url else None
    fetch = template_source(args.templates) if args.command == "login" else None

    async with FingerprintScanner(
        action=action,
        device_id=args.device,
        base_urls=base_urls,
        fetch_user_biometric_data=fetch,
    ) as scanner:
        info = scanner.device_info
        logger.info(
            f"{scanner.device.display_name}: {scanner.device_status.value}"
            + (f" (model: {info.model}, serial: {info.serial_no})" if info else "")
        )

        if args.command == "status":
            return 0 if scanner.device_status is ConnectivityState.CONNECTED else 1

        logger.info("Place your finger on the sensor")
        if args.command == "capture":
            outcome = await scanner.capture(finger=args.finger)
        else:
            outcome = await scanner.capture(username=args.username)

    report(outcome, getattr(args, "output", None))
    return 0 if outcome.succeeded else 1


def report(outcome: CaptureOutcome, output: Path | None = None) -> None:
    if outcome.succeeded:
        logger.info(outcome.message)
    else:
        logger.error(outcome.message)

    if output is not None and outcome.capture is not None:
        output.write_bytes(serialize_json(outcome.to_payload()))
        logger.info(f"Capture written to {output}")


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except FingerprintError as e:
        logger.error(e.message)
        sys.exit(2)
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
