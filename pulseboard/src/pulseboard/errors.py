import json
import traceback
from typing import Optional


class PulseboardError(Exception):
    """Base exception for pulseboard"""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PulseboardError):
    """Bad request parameters or dashboard configuration"""
    pass


class ProviderError(PulseboardError):
    """
    An upstream quote provider or feed failed.

    Transport failures (timeouts, non-200) and shape failures (missing price,
    unparsable body) are both reported this way; callers never need to tell
    them apart, they just move on to the next source.
    """
    def __init__(self, message: str, provider: Optional[str] = None, details: dict = None):
        super().__init__(message, details)
        self.provider = provider
        if provider:
            self.details.setdefault("provider", provider)


class UnknownError(PulseboardError):
    """Unexpected errors"""
    pass


def format_error(e: Exception) -> str:
    """Render any exception as the CLI's JSON error envelope."""

    if isinstance(e, PulseboardError):
        error_type = e.__class__.__name__
        message = e.message
        details = e.details
    else:
        error_type = "UnknownError"
        message = str(e)
        details = {
            "traceback": traceback.format_exc().splitlines()
        }

    payload = {
        "ok": False,
        "error": {
            "type": error_type,
            "message": message,
            "details": details
        },
        "meta": {
            "version": 1
        }
    }

    return json.dumps(payload, indent=2, ensure_ascii=False)
