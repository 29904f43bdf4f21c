"""Error types and the human-readable failure taxonomy."""

import json
from typing import Any, Dict, Mapping, Optional

RATE_LIMIT_STATUS = 429

NOT_CONFIGURED = "API key not configured"
REQUEST_IN_PROGRESS = "Request already in progress"
NETWORK_ERROR = "Network error - check your internet connection"
TIMEOUT_ERROR = "Request timed out - try again later"
RETRIES_EXHAUSTED = "Rate limited - too many requests. Max retries exceeded."

STATUS_MESSAGES: Dict[int, str] = {
    400: "Bad request - check your message format",
    401: "Invalid API key - please check your API key in settings",
    403: "Access forbidden - your API key may not have permission",
    404: "API endpoint not found",
    429: RETRIES_EXHAUSTED,
    500: "Anthropic server error - try again later",
    529: "Anthropic API overloaded - try again later",
}


class ChatwireError(Exception):
    """Base class for the package's exceptions."""


class TransportError(ChatwireError):
    """A request that failed before or while its response was streamed.

    ``status_code`` is ``None`` when no HTTP response was received at all
    (connection refused, DNS failure, timeout).
    """

    def __init__(
        self,
        message: str = "",
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
    ):
        super().__init__(message or f"HTTP error {status_code}")
        self.message = message
        self.status_code = status_code
        self.headers = {k.lower(): v for k, v in (headers or {}).items()}
        self.body = body

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == RATE_LIMIT_STATUS


def describe_status(status_code: int) -> str:
    """Maps an HTTP status onto its stable human-readable message."""
    return STATUS_MESSAGES.get(status_code, f"HTTP error {status_code}")


def extract_api_error(body: bytes) -> Optional[str]:
    """Returns ``"type: message"`` from a structured error body, if any."""
    if not body:
        return None
    try:
        payload: Any = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("error"), dict):
        return None
    error = payload["error"]
    message = error.get("message")
    if not message:
        return None
    return f"{error.get('type', '')}: {message}"


def describe_failure(error: TransportError) -> str:
    """Builds the message surfaced to the listener for a failed request.

    A structured error embedded by the server wins over the generic status
    mapping; without any status the transport's own message is used.
    """
    api_error = extract_api_error(error.body)
    if error.is_rate_limited:
        if api_error:
            return f"{api_error} (max retries exceeded)"
        return RETRIES_EXHAUSTED
    if api_error:
        return api_error
    if error.status_code:
        return describe_status(error.status_code)
    return error.message or NETWORK_ERROR


def parse_retry_after(headers: Mapping[str, str], default: int) -> int:
    """Reads a positive integer ``retry-after`` header, else ``default``."""
    value = headers.get("retry-after", "")
    try:
        seconds = int(str(value).strip())
    except ValueError:
        return default
    return seconds if seconds > 0 else default
