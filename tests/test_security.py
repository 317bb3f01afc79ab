"""
Unit Tests - Security Module

Tests for record validation, sanitization and credentials.
"""

import pytest
from werkzeug.security import generate_password_hash

import security
from security import (
    ValidationError,
    is_valid_api_key,
    sanitize_int,
    sanitize_string,
    validate_record_body,
    verify_credentials,
)


class TestSanitize:
    """Tests for sanitize helpers."""

    def test_strips_tags(self):
        assert sanitize_string("<b>Ali</b>") == "Ali"

    @pytest.mark.parametrize("value", ["Ali & Omar", "A<B", "x > 3"])
    def test_plain_text_characters_kept(self, value):
        """Test characters that are not markup come back unescaped."""
        assert sanitize_string(value) == value

    def test_truncates(self):
        assert sanitize_string("abcdef", max_length=3) == "abc"

    def test_non_string(self):
        assert sanitize_string(None) == ""

    def test_sanitize_int(self):
        assert sanitize_int("5") == 5
        assert sanitize_int("x", default=-1) == -1
        assert sanitize_int(500, max_val=100) == 100


class TestValidateRecordBody:
    """Tests for validate_record_body function."""

    def test_valid_body(self):
        body = {"full_name": "Ali Omar", "atco_license_expiry": 45432}

        assert validate_record_body(body) == body

    def test_header_keys_are_resolved(self):
        result = validate_record_body({"ATCO LIC Expiry": 45432, "الاسم الكامل": "Ali"})

        assert result == {"atco_license_expiry": 45432, "full_name": "Ali"}

    def test_numeric_expiry_string_becomes_number(self):
        assert validate_record_body({"medical_expiry": "45432"}) == {"medical_expiry": 45432}

    def test_whole_float_expiry_becomes_int(self):
        result = validate_record_body({"medical_expiry": 45432.0})

        assert result["medical_expiry"] == 45432
        assert isinstance(result["medical_expiry"], int)

    def test_text_expiry_kept(self):
        result = validate_record_body({"language_proficiency_expiry": "LEVEL 4 25/12/2024"})

        assert result["language_proficiency_expiry"] == "LEVEL 4 25/12/2024"

    def test_empty_expiry_is_null(self):
        assert validate_record_body({"medical_expiry": ""}) == {"medical_expiry": None}

    def test_number_in_text_field(self):
        assert validate_record_body({"license_number": 1234.0}) == {"license_number": "1234"}

    def test_ampersand_in_expiry_text(self):
        result = validate_record_body({"language_proficiency_expiry": "LEVEL 4 & 25/12/2024"})

        assert result["language_proficiency_expiry"] == "LEVEL 4 & 25/12/2024"

    def test_html_is_stripped(self):
        assert validate_record_body({"full_name": "<i>Ali</i> Omar"})["full_name"] == "Ali Omar"

    def test_id_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_record_body({"id": 5, "full_name": "Ali"})
        assert "id" in str(exc.value)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_record_body({"full_name": "Ali", "salary": 10})
        assert "salary" in str(exc.value)

    def test_duplicate_field_rejected(self):
        with pytest.raises(ValidationError):
            validate_record_body({"full_name": "Ali", "Full Name": "Omar"})

    def test_empty_body_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_record_body({})
        assert "At least one field" in str(exc.value)

    def test_empty_body_allowed_when_not_required(self):
        assert validate_record_body({}, require_fields=False) == {}

    @pytest.mark.parametrize("body", [None, [], "text", 5])
    def test_non_object_rejected(self, body):
        with pytest.raises(ValidationError):
            validate_record_body(body)

    @pytest.mark.parametrize("value", [True, [1], {"a": 1}, float("nan"), 10 ** 400])
    def test_bad_expiry_values(self, value):
        with pytest.raises(ValidationError):
            validate_record_body({"medical_expiry": value})

    def test_errors_are_collected(self):
        with pytest.raises(ValidationError) as exc:
            validate_record_body({"id": 1, "salary": 2, "full_name": True})
        assert len(exc.value.errors) == 3


class TestCredentials:
    """Tests for login and API key checks."""

    @pytest.fixture(autouse=True)
    def admin(self, monkeypatch):
        monkeypatch.setattr(security, "ADMIN_USERNAME", "admin")
        monkeypatch.setattr(security, "ADMIN_PASSWORD_HASH", generate_password_hash("secret"))
        monkeypatch.setattr(security, "API_KEYS", ["test-key"])

    def test_valid_credentials(self):
        assert verify_credentials("admin", "secret") is True

    def test_wrong_password(self):
        assert verify_credentials("admin", "nope") is False

    def test_wrong_username(self):
        assert verify_credentials("other", "secret") is False

    def test_missing_values(self):
        assert verify_credentials("", "") is False

    def test_no_configured_password(self, monkeypatch):
        monkeypatch.setattr(security, "ADMIN_PASSWORD_HASH", "")
        assert verify_credentials("admin", "secret") is False

    def test_api_key(self):
        assert is_valid_api_key("test-key") is True
        assert is_valid_api_key("wrong") is False
        assert is_valid_api_key(None) is False
