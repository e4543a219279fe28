"""
User-Friendly Error Messages

Provides clear, actionable error messages for FlingIt failures.
Each error includes a description and a suggestion for how to resolve it.
"""
from enum import Enum
from dataclasses import dataclass
from typing import Optional


class MalformedOfferError(ValueError):
    """A file offer with missing or inconsistent metadata"""


class ProtocolError(Exception):
    """A frame that violates the wire format"""


@dataclass
class FlingError:
    """User-friendly error with message and suggestion"""
    message: str
    suggestion: str
    code: str = ""

    def __str__(self) -> str:
        result = f"Error: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "suggestion": self.suggestion
        }


class ErrorCode(Enum):
    """Error codes for categorization"""
    # Pairing
    PAIRING_UNAVAILABLE = "pairing_unavailable"
    ROOM_FULL = "room_full"

    # Network errors
    SERVER_NOT_FOUND = "server_not_found"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMEOUT = "connection_timeout"
    CONNECTION_LOST = "connection_lost"

    # Transfer errors
    TRANSFER_ABANDONED = "transfer_abandoned"
    MALFORMED_OFFER = "malformed_offer"
    FILE_NOT_FOUND = "file_not_found"

    # Resource errors
    PERMISSION_DENIED = "permission_denied"
    PORT_IN_USE = "port_in_use"

    # Configuration errors
    INVALID_CONFIG = "invalid_config"

    # Protocol errors
    PROTOCOL_ERROR = "protocol_error"
    MESSAGE_TOO_LARGE = "message_too_large"
    BUFFER_OVERFLOW = "buffer_overflow"

    # General
    UNKNOWN = "unknown"


ERROR_MESSAGES = {
    ErrorCode.PAIRING_UNAVAILABLE: FlingError(
        code="pairing_unavailable",
        message="No other device is connected from this network",
        suggestion="Open FlingIt on a second device connected to the same network"
    ),

    ErrorCode.ROOM_FULL: FlingError(
        code="room_full",
        message="Two devices from this network are already paired",
        suggestion="Close FlingIt on one of the other devices and try again"
    ),

    ErrorCode.SERVER_NOT_FOUND: FlingError(
        code="server_not_found",
        message="Could not find a FlingIt relay server",
        suggestion="Start one with 'flingit serve' or pass --server HOST[:PORT]"
    ),

    ErrorCode.CONNECTION_REFUSED: FlingError(
        code="connection_refused",
        message="Connection was refused by the relay server",
        suggestion="Check that 'flingit serve' is running and the port is correct"
    ),

    ErrorCode.CONNECTION_TIMEOUT: FlingError(
        code="connection_timeout",
        message="Connection timed out while trying to reach the relay server",
        suggestion="Check your network connection and firewall settings"
    ),

    ErrorCode.CONNECTION_LOST: FlingError(
        code="connection_lost",
        message="Connection to the relay server was lost",
        suggestion="Reconnect and send the files again"
    ),

    ErrorCode.TRANSFER_ABANDONED: FlingError(
        code="transfer_abandoned",
        message="The transfer was abandoned because the other device left or reset",
        suggestion="Send the files again once both devices are connected"
    ),

    ErrorCode.MALFORMED_OFFER: FlingError(
        code="malformed_offer",
        message="The other device announced a file with invalid metadata",
        suggestion="Ensure both devices run the same version of FlingIt"
    ),

    ErrorCode.FILE_NOT_FOUND: FlingError(
        code="file_not_found",
        message="The selected file was not found",
        suggestion="The file may have been moved or deleted. Select it again"
    ),

    ErrorCode.PERMISSION_DENIED: FlingError(
        code="permission_denied",
        message="Permission denied when accessing file or directory",
        suggestion="Check file permissions on the file or the download directory"
    ),

    ErrorCode.PORT_IN_USE: FlingError(
        code="port_in_use",
        message="The relay port is already in use",
        suggestion="Another relay may be running. Use --port to pick a different port"
    ),

    ErrorCode.INVALID_CONFIG: FlingError(
        code="invalid_config",
        message="Configuration file contains invalid values",
        suggestion="Run 'flingit config --reset' to restore default settings"
    ),

    ErrorCode.PROTOCOL_ERROR: FlingError(
        code="protocol_error",
        message="Communication protocol error",
        suggestion="Ensure the server and both devices run the same version of FlingIt"
    ),

    ErrorCode.MESSAGE_TOO_LARGE: FlingError(
        code="message_too_large",
        message="Received message exceeds maximum allowed size",
        suggestion="This may indicate a protocol mismatch or corrupted data"
    ),

    ErrorCode.BUFFER_OVERFLOW: FlingError(
        code="buffer_overflow",
        message="Network buffer overflow - too much data pending",
        suggestion="Check your network connection. The peer may be sending data too fast"
    ),

    ErrorCode.UNKNOWN: FlingError(
        code="unknown",
        message="An unexpected error occurred",
        suggestion="Run again with --verbose and check the log file for details"
    ),
}


def get_error(code: ErrorCode) -> FlingError:
    """Get user-friendly error for a given error code"""
    return ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.UNKNOWN])


def get_error_by_name(code: str) -> FlingError:
    """Get user-friendly error for a wire error code string"""
    try:
        return get_error(ErrorCode(code))
    except ValueError:
        return get_error(ErrorCode.UNKNOWN)


def get_error_from_exception(exc: Exception) -> FlingError:
    """Map common exceptions to user-friendly errors"""
    if isinstance(exc, MalformedOfferError):
        return get_error(ErrorCode.MALFORMED_OFFER)
    if isinstance(exc, ProtocolError):
        return get_error(ErrorCode.PROTOCOL_ERROR)
    if isinstance(exc, ConnectionRefusedError):
        return get_error(ErrorCode.CONNECTION_REFUSED)
    if isinstance(exc, FileNotFoundError):
        return get_error(ErrorCode.FILE_NOT_FOUND)
    if isinstance(exc, PermissionError):
        return get_error(ErrorCode.PERMISSION_DENIED)

    exc_str = str(exc).lower()
    exc_type = type(exc).__name__

    if "connection refused" in exc_str:
        return get_error(ErrorCode.CONNECTION_REFUSED)
    if "timed out" in exc_str or "timeout" in exc_str:
        return get_error(ErrorCode.CONNECTION_TIMEOUT)
    if "connection reset" in exc_str or "broken pipe" in exc_str:
        return get_error(ErrorCode.CONNECTION_LOST)
    if "address already in use" in exc_str:
        return get_error(ErrorCode.PORT_IN_USE)
    if "permission denied" in exc_str:
        return get_error(ErrorCode.PERMISSION_DENIED)

    error = get_error(ErrorCode.UNKNOWN)
    # Include original exception type for debugging
    return FlingError(
        code=error.code,
        message=f"{error.message}: {exc_type}",
        suggestion=error.suggestion
    )


def format_error(code: ErrorCode, details: Optional[str] = None) -> str:
    """Format error message for display"""
    error = get_error(code)
    result = str(error)
    if details:
        result = f"{result}\n  Details: {details}"
    return result
