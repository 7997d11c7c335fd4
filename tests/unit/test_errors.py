"""
Unit tests for ledger error types.

Tests cover:
- Stable string and numeric codes
- Error hierarchy
- JSON error bodies
"""

import pytest

from services.wasteledger_server.errors import (
    CollaboratorLimitReachedError,
    DescriptionTooLongError,
    InvalidCategoryLabelError,
    InvalidDigestError,
    InvalidOwnerError,
    InvalidQuantityError,
    InvalidRoleError,
    InvalidStatusError,
    InvalidTagError,
    LedgerError,
    LimitReachedError,
    NotAuthorizedError,
    NotFoundError,
    NotOwnerError,
    NotPausedError,
    NoteTooLongError,
    PausedError,
    TagLimitExceededError,
    ValidationError,
    VersionLimitReachedError,
)


class TestCodes:
    """Tests for error codes."""

    @pytest.mark.parametrize(
        "error, code, numeric",
        [
            (NotOwnerError("a", 1), "NOT_OWNER", 2),
            (InvalidDigestError(), "INVALID_DIGEST", 3),
            (InvalidQuantityError(0), "INVALID_QUANTITY", 4),
            (InvalidCategoryLabelError(), "INVALID_CATEGORY_LABEL", 5),
            (NotAuthorizedError("a"), "NOT_AUTHORIZED", 6),
            (VersionLimitReachedError(1, 10), "VERSION_LIMIT_REACHED", 8),
            (InvalidTagError(0), "INVALID_TAG", 10),
            (TagLimitExceededError(1, 15), "TAG_LIMIT_EXCEEDED", 11),
            (InvalidRoleError(), "INVALID_ROLE", 12),
            (InvalidOwnerError(), "INVALID_OWNER", 19),
            (CollaboratorLimitReachedError(1, 5), "COLLABORATOR_LIMIT_REACHED", 13),
            (InvalidStatusError(), "INVALID_STATUS", 14),
            (DescriptionTooLongError(1001, 1000), "DESCRIPTION_TOO_LONG", 15),
            (NoteTooLongError(501, 500), "NOTE_TOO_LONG", 15),
            (PausedError(), "PAUSED", 16),
            (NotPausedError(), "NOT_PAUSED", 17),
            (NotFoundError(1), "NOT_FOUND", 18),
        ],
    )
    def test_codes(self, error, code, numeric):
        assert error.code == code
        assert error.numeric_code == numeric
        assert isinstance(error, LedgerError)


class TestHierarchy:
    """Tests for base classes."""

    def test_length_errors_share_numeric_code(self):
        """Description and note length errors share 15 but differ by code."""
        description = DescriptionTooLongError(1001, 1000)
        note = NoteTooLongError(501, 500)
        assert description.numeric_code == note.numeric_code == 15
        assert description.code != note.code

    def test_validation_errors(self):
        assert isinstance(InvalidTagError(2), ValidationError)
        assert InvalidTagError(2).field_name == "tags"

    def test_limit_errors(self):
        assert isinstance(TagLimitExceededError(1, 15), LimitReachedError)
        assert CollaboratorLimitReachedError(3, 5).limit == 5


class TestToDict:
    """Tests for error bodies."""

    def test_to_dict(self):
        body = NotFoundError(7).to_dict()
        assert body == {
            "error": "Waste entry 7 not found",
            "error_code": "NOT_FOUND",
            "code": 18,
            "details": {"entry_id": 7},
        }

    def test_not_authorized_message(self):
        error = NotAuthorizedError("bob", 3, required_permission="add-note")
        assert "add-note" in error.message
        assert error.details["entry_id"] == 3
