import asyncio
from typing import Any, Awaitable, Callable

import orjson
from loguru import logger

# Synthetic error codes, never produced by the device itself
UNREACHABLE_ERROR_CODE = -1
INVALID_RESPONSE_ERROR_CODE = -2

# Vendor code reported when the finger was not placed in time during match
MATCH_TIMEOUT_ERROR_CODE = -1140


def serialize_json(data: Any) -> bytes:
    """
    Serialize data to JSON using orjson

    Args:
        data: Data to serialize

    Returns:
        JSON bytes
    """
    return orjson.dumps(data, option=orjson.OPT_NAIVE_UTC)


def deserialize_json(data: bytes | str) -> dict[str, Any]:
    """
    Deserialize JSON data using orjson

    Args:
        data: JSON bytes or string

    Returns:
        Deserialized Python object
    """
    return orjson.loads(data)


def normalize_error_code(value: Any) -> int | None:
    """
    Normalize a vendor ErrorCode to an integer

    The driver reports ErrorCode as a string on some firmware and as a
    number on others.

    Args:
        value: Raw ErrorCode value

    Returns:
        Integer error code, or None if the value is not an integer
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def is_finger_match(payload: dict[str, Any] | None) -> bool:
    """
    Decide whether a vendor match response means the fingers matched

    Args:
        payload: Raw match response

    Returns:
        True only if ErrorCode is zero and Status is literally True
    """
    if not payload:
        return False
    return (
        normalize_error_code(payload.get("ErrorCode")) == 0
        and payload.get("Status") is True
    )


async def invoke_callback(
    callback: Callable[..., Any] | Callable[..., Awaitable[Any]] | None,
    *args: Any,
) -> Any:
    """
    Call a host callback, sync or async

    Errors raised by the callback are logged and not propagated.

    Args:
        callback: Callback function (sync or async) or None
        *args: Positional arguments for the callback

    Returns:
        Whatever the callback returned, or None
    """
    if callback is None:
        return None

    try:
        if asyncio.iscoroutinefunction(callback):
            return await callback(*args)

        result = callback(*args)
        if asyncio.iscoroutine(result):
            return await result
        return result
    except Exception as e:
        logger.error(f"Callback {getattr(callback, '__name__', callback)} failed: {e}")
        return None
