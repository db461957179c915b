"""Tests for utility functions."""

import pytest

from dbtunnel.common.utils import (
    MAX_PORT,
    MIN_PORT,
    format_address,
    mask_sensitive_data,
    sanitize_log_data,
    validate_non_empty_string,
    validate_port,
)


class TestValidatePort:
    """Test port validation function."""

    def test_valid_ports(self):
        """Test validation of valid ports."""
        validate_port(1, "Test port")
        validate_port(22, "SSH port")
        validate_port(27017, "Database port")
        validate_port(65535, "Max port")

    def test_invalid_ports(self):
        """Test validation of invalid ports."""
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(0, "Test port")

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(65536, "Test port")

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(-1, "Test port")

    def test_zero_allowed_for_ephemeral(self):
        """Test port 0 is accepted when the OS may pick the port."""
        validate_port(0, "Local port", allow_zero=True)

        with pytest.raises(ValueError, match="Local port must be between 0 and 65535"):
            validate_port(-1, "Local port", allow_zero=True)

    def test_non_integer_ports(self):
        """Test validation of non-integer ports."""
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port("80", "Test port")  # type: ignore

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(80.5, "Test port")  # type: ignore

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(True, "Test port")


class TestValidateNonEmptyString:
    """Test non-empty string validation function."""

    def test_valid_strings(self):
        """Test validation of valid strings."""
        assert validate_non_empty_string("db.internal", "Field") == "db.internal"
        assert validate_non_empty_string("  host  ", "Field") == "host"

    def test_invalid_strings(self):
        """Test validation of invalid strings."""
        with pytest.raises(ValueError, match="Field cannot be empty"):
            validate_non_empty_string("", "Field")

        with pytest.raises(ValueError, match="Remote host cannot be empty"):
            validate_non_empty_string("   ", "Remote host")


class TestFormatAddress:
    """Test host/port rendering."""

    def test_ipv4_and_names(self):
        assert format_address("127.0.0.1", 27017) == "127.0.0.1:27017"
        assert format_address("bastion.example.com", 22) == "bastion.example.com:22"

    def test_ipv6_is_bracketed(self):
        assert format_address("::1", 2222) == "[::1]:2222"
        assert format_address("[::1]", 2222) == "[::1]:2222"


class TestMaskSensitiveData:
    """Test sensitive data masking function."""

    def test_mask_fully_by_default(self):
        """Test secrets are fully masked unless asked otherwise."""
        assert mask_sensitive_data("hunter2") == "*******"
        assert mask_sensitive_data("pw") == "**"

    def test_show_trailing_chars(self):
        """Test revealing a suffix."""
        assert mask_sensitive_data("secret123456", show_chars=4) == "********3456"
        assert mask_sensitive_data("abc", show_chars=4) == "***"

    def test_mask_none_data(self):
        """Test masking of None data."""
        assert mask_sensitive_data(None) == "<None>"
        assert mask_sensitive_data("") == "<None>"

    def test_custom_mask_char(self):
        """Test custom mask character."""
        assert mask_sensitive_data("test", mask_char="#") == "####"


class TestSanitizeLogData:
    """Test log data sanitization function."""

    def test_sanitize_sensitive_fields(self):
        """Test sanitization of sensitive fields."""
        data = {
            "username": "john",
            "password": "mypassword",
            "passphrase": "keypass",
            "private_key_path": "/home/john/.ssh/id_ed25519",
            "server_port": 22,
        }

        sanitized = sanitize_log_data(data)

        assert sanitized["username"] == "john"
        assert sanitized["password"] == "**********"
        assert sanitized["passphrase"] == "*******"
        assert sanitized["private_key_path"] == "/home/john/.ssh/id_ed25519"
        assert sanitized["server_port"] == 22

    def test_empty_secret_reported_as_unset(self):
        assert sanitize_log_data({"passphrase": ""}) == {"passphrase": "<None>"}

    def test_case_insensitive_detection(self):
        """Test case-insensitive sensitive field detection."""
        sanitized = sanitize_log_data({"DB_PASSWORD": "abc", "Secret": "xyz"})

        assert sanitized["DB_PASSWORD"] == "***"
        assert sanitized["Secret"] == "***"

    def test_no_sensitive_fields(self):
        """Test sanitization with no sensitive fields."""
        data = {"username": "john", "port": 8080, "server": "example.com"}
        assert sanitize_log_data(data) == data


class TestConstants:
    """Test utility constants."""

    def test_port_constants(self):
        assert MIN_PORT == 1
        assert MAX_PORT == 65535
