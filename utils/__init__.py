"""Shared utilities for the CogniClear API."""

from utils.json_extraction import extract_json_from_response
from utils.logging import (
    LogContext,
    clear_request_context,
    configure_logging,
    get_logger,
    get_request_context,
    set_request_context,
)

__all__ = [
    # JSON extraction
    "extract_json_from_response",
    # Logging
    "LogContext",
    "configure_logging",
    "get_logger",
    "get_request_context",
    "set_request_context",
    "clear_request_context",
]
