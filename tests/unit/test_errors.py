"""
Unit tests for errors.py - User-facing error messages
"""
import socket
import pytest

from flingit.common.errors import (
    ErrorCode, FlingError, ERROR_MESSAGES, MalformedOfferError, ProtocolError,
    get_error, get_error_by_name, get_error_from_exception, format_error
)


class TestErrorTable:
    """Tests for the error message table"""

    def test_every_code_has_a_message(self):
        for code in ErrorCode:
            assert code in ERROR_MESSAGES
            assert ERROR_MESSAGES[code].code == code.value

    def test_str_includes_suggestion(self):
        text = str(get_error(ErrorCode.ROOM_FULL))
        assert text.startswith("Error: ")
        assert "Suggestion:" in text

    def test_to_dict(self):
        error = FlingError(message="m", suggestion="s", code="c")
        assert error.to_dict() == {"code": "c", "message": "m", "suggestion": "s"}

    def test_format_error_details(self):
        text = format_error(ErrorCode.PORT_IN_USE, "port 3000")
        assert "Details: port 3000" in text


class TestErrorLookup:
    """Tests for mapping wire codes and exceptions"""

    def test_by_name(self):
        assert get_error_by_name("room_full") is ERROR_MESSAGES[ErrorCode.ROOM_FULL]

    def test_unknown_name(self):
        assert get_error_by_name("nope").code == "unknown"

    @pytest.mark.parametrize("exc,code", [
        (MalformedOfferError("bad"), "malformed_offer"),
        (ProtocolError("bad"), "protocol_error"),
        (ConnectionRefusedError(), "connection_refused"),
        (FileNotFoundError(), "file_not_found"),
        (PermissionError(), "permission_denied"),
        (socket.timeout("timed out"), "connection_timeout"),
        (OSError(98, "Address already in use"), "port_in_use"),
        (BrokenPipeError(32, "Broken pipe"), "connection_lost"),
    ])
    def test_from_exception(self, exc, code):
        assert get_error_from_exception(exc).code == code

    def test_unknown_exception_mentions_type(self):
        error = get_error_from_exception(KeyError("x"))
        assert error.code == "unknown"
        assert "KeyError" in error.message
