from __future__ import annotations

from openai import APIConnectionError, APIStatusError, APITimeoutError, RateLimitError


def extract_status_code(exc: BaseException) -> int | None:
    val = getattr(exc, "status_code", None)
    if val is None:
        val = getattr(exc, "statusCode", None)
    if val is None:
        val = getattr(exc, "http_status", None)

    if val is None:
        return None

    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def is_model_fallback_exception(exc: BaseException) -> tuple[bool, str | None]:
    """
    Decide whether a failed generative call should move on to the next model.

    Advance on transient, model-specific failures:
    - connection/timeout errors
    - HTTP 408, 429 (rate limited)
    - HTTP 5xx
    Anything else (bad key, bad request) would fail the same way on every model.
    """
    if isinstance(exc, APITimeoutError):
        return True, "timeout"

    if isinstance(exc, APIConnectionError):
        return True, "connection_error"

    if isinstance(exc, RateLimitError):
        return True, "rate_limited"

    if isinstance(exc, APIStatusError):
        code = extract_status_code(exc)
        if code in (408, 429) or (isinstance(code, int) and code >= 500):
            return True, f"http_{code}"
        return False, f"http_{code}" if code is not None else "http_status"

    # Fallback if SDK exceptions change.
    code = extract_status_code(exc)
    if code in (408, 429) or (isinstance(code, int) and code >= 500):
        return True, f"http_{code}"

    return False, None
