"""Tests for output module."""

import json

import pytest

from granola_auth.oauth.errors import AuthorizationError, TokenExchangeError
from granola_auth.output import OutputHandler, format_error_json, format_json


class TestFormatJson:
    """Tests for format_json function."""

    def test_format_success(self):
        """Test formatting successful response."""
        parsed = json.loads(format_json({"key": "value"}))
        assert parsed == {"success": True, "data": {"key": "value"}}

    def test_format_success_false(self):
        """Test formatting with success=False."""
        error_data = {"success": False, "error": "message"}
        assert json.loads(format_json(error_data, success=False)) == error_data


class TestFormatErrorJson:
    """Tests for format_error_json function."""

    def test_basic_error(self):
        """Test formatting a plain exception."""
        parsed = json.loads(format_error_json(ValueError("bad"), help_text="try again"))
        assert parsed["success"] is False
        assert parsed["error"]["type"] == "ValueError"
        assert parsed["error"]["message"] == "bad"
        assert parsed["error"]["help"] == "try again"
        assert "kind" not in parsed["error"]

    def test_authorization_kind_included(self):
        """Test that the authorization failure kind is reported."""
        error = AuthorizationError(AuthorizationError.STATE_MISMATCH, "mismatch")
        parsed = json.loads(format_error_json(error))
        assert parsed["error"]["kind"] == "state-mismatch"

    def test_status_code_included(self):
        """Test that an HTTP status is reported for endpoint failures."""
        error = TokenExchangeError("rejected", status_code=400, body="{}")
        parsed = json.loads(format_error_json(error))
        assert parsed["error"]["status_code"] == 400


class TestOutputHandler:
    """Tests for OutputHandler class."""

    def test_success_json_mode(self, capsys):
        """Test success output in JSON mode."""
        OutputHandler(json_mode=True).success({"refreshed": False})
        parsed = json.loads(capsys.readouterr().out)
        assert parsed["data"] == {"refreshed": False}

    def test_success_human_mode(self, capsys):
        """Test success output in human mode."""
        OutputHandler(json_mode=False).success({}, human_message="Done")
        assert capsys.readouterr().out.strip() == "Done"

    def test_status_goes_to_stderr_in_json_mode(self, capsys):
        """Test that progress messages keep stdout parseable."""
        OutputHandler(json_mode=True).status("Discovering OAuth endpoints...")
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "Discovering" in captured.err

    def test_error_exits(self, capsys):
        """Test that errors exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            OutputHandler(json_mode=False).error(ValueError("boom"), help_text="hint")

        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "Error: boom" in captured.err
        assert "hint" in captured.err

    def test_success_human_mode_without_message(self, capsys):
        """Test that human mode falls back to pretty-printed data."""
        OutputHandler(json_mode=False).success({"refreshed": True})
        assert json.loads(capsys.readouterr().out) == {"refreshed": True}
