"""
User Domain Tests

Tests the UserId, Username and Email smart constructors and map_to_user.
"""

import uuid

import pytest

from auth_gateway.exceptions import ValidationError
from auth_gateway.users import (
    USER_FIELDS_ALL,
    User,
    make_email,
    make_user_id,
    make_username,
    map_to_user,
)


VALID_UUID4 = "0b9f2b4e-8a0c-4b64-9f0a-3c2f7d1e5a6b"


class TestUserId:
    """Test suite for make_user_id"""

    def test_valid_uuid4_accepted(self):
        user_id = make_user_id(VALID_UUID4)

        assert user_id == VALID_UUID4
        assert make_user_id(str(user_id)) == user_id

    def test_generated_uuid4_round_trips(self):
        value = str(uuid.uuid4())

        assert make_user_id(value) == value

    @pytest.mark.parametrize("value", [
        "not-a-uuid",
        "",
        "1234",
        None,
        42,
        f"urn:uuid:{VALID_UUID4}",
        f"{{{VALID_UUID4}}}",
        VALID_UUID4.replace("-", ""),
        f" {VALID_UUID4} ",
    ])
    def test_invalid_values_rejected(self, value):
        with pytest.raises(ValidationError):
            make_user_id(value)

    def test_uppercase_accepted_unchanged(self):
        assert make_user_id(VALID_UUID4.upper()) == VALID_UUID4.upper()

    def test_other_uuid_versions_rejected(self):
        with pytest.raises(ValidationError):
            make_user_id(str(uuid.uuid1()))

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            make_user_id("not-a-uuid")


class TestUsername:
    """Test suite for make_username"""

    def test_four_characters_accepted(self):
        assert make_username("abcd") == "abcd"

    @pytest.mark.parametrize("value", ["abc", "", None])
    def test_short_values_rejected(self, value):
        with pytest.raises(ValidationError):
            make_username(value)


class TestEmail:
    """Test suite for make_email"""

    def test_valid_email_accepted(self):
        assert make_email("ana@example.com") == "ana@example.com"

    @pytest.mark.parametrize("value", ["ana", "ana@", "@example.com", "", None])
    def test_invalid_email_rejected(self, value):
        with pytest.raises(ValidationError):
            make_email(value)


class TestMapToUser:
    """Test suite for map_to_user"""

    def test_maps_valid_document(self):
        user = map_to_user({"id": VALID_UUID4, "email": "ana@example.com", "username": "anaana"})

        assert user == User(id=VALID_UUID4, email="ana@example.com", username="anaana")

    def test_username_is_optional(self):
        user = map_to_user({"id": VALID_UUID4, "email": "ana@example.com"})

        assert user.username is None

    @pytest.mark.parametrize("doc", [
        {"id": "not-a-uuid", "email": "ana@example.com"},
        {"id": VALID_UUID4, "email": "not-an-email"},
        {"id": VALID_UUID4, "email": "ana@example.com", "username": "abc"},
    ])
    def test_invalid_document_rejected(self, doc):
        with pytest.raises(ValidationError):
            map_to_user(doc)

    def test_all_fields_listed(self):
        assert set(USER_FIELDS_ALL) == {"id", "email", "username"}
