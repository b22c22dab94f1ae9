from __future__ import annotations

import json
from typing import Any

import httpx
from loguru import logger
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    httpx.ConnectError,
    httpx.TimeoutException,
)


def _on_retry(retry_state):
    attempt = retry_state.attempt_number
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    reason = type(exc).__name__ if exc else "Unknown"
    logger.warning(f"{reason}. Retrying in {wait:.1f}s (attempt {attempt}/3)...")


def default_retry_kwargs(exception_types: tuple[type[Exception], ...] = RETRYABLE_ERRORS) -> dict:
    return {
        "retry": retry_if_exception_type(exception_types),
        "wait": wait_exponential(multiplier=0.5, min=0.5, max=8),
        "stop": stop_after_attempt(3),
        "before_sleep": _on_retry,
        "reraise": True,
    }


def _format_detail_item(item: Any) -> str:
    if isinstance(item, dict) and "msg" in item:
        loc = item.get("loc")
        where = ".".join(str(part) for part in loc) if isinstance(loc, list) and loc else "field"
        return f"{where}: {item['msg']}"
    return json.dumps(item)


def describe_failure(response: httpx.Response, prefix: str) -> str:
    """Human-readable failure text, using the backend's `detail` field when present."""
    message = f"{prefix}: {response.reason_phrase or response.status_code}"
    try:
        data = response.json()
    except ValueError:
        return message
    detail = data.get("detail") if isinstance(data, dict) else None
    if detail is None:
        return message
    if isinstance(detail, list):
        return f"{prefix}: " + ", ".join(_format_detail_item(item) for item in detail)
    if isinstance(detail, str):
        return f"{prefix}: {detail}"
    return f"{prefix}: {json.dumps(detail)}"
