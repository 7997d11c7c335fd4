"""
Error types for the waste ledger.

Every rejected ledger call raises one of these exceptions:
- LedgerError: Base exception
- PausedError / NotPausedError: Pause switch state conflicts
- NotFoundError: Entry does not exist
- NotOwnerError / NotAuthorizedError: Access controller denials
- Validation errors: one class per rejected field

Invariants:
    - All errors inherit from LedgerError
    - A raised error means no state was changed
    - `code` is stable for programmatic handling, `numeric_code` matches
      the ledger's historical integer error codes
    - DescriptionTooLongError and NoteTooLongError share numeric_code 15
      (historical 'invalid note' code); tell them apart by `code`

How to change safely:
    - Never renumber an existing numeric_code
    - New error kinds get a new code, not a reused one
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base exception for all ledger errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    numeric_code = 0

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "LEDGER_ERROR"
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable error body."""
        return {
            "error": self.message,
            "error_code": self.code,
            "code": self.numeric_code,
            "details": self.details,
        }


class PausedError(LedgerError):
    """The pause switch is engaged.

    Raised when:
    - Any mutating operation is attempted while paused
    - pause() is called while already paused
    """

    numeric_code = 16

    def __init__(self, message: str = "Ledger is paused") -> None:
        super().__init__(message, code="PAUSED")


class NotPausedError(LedgerError):
    """unpause() was called while the ledger is running."""

    numeric_code = 17

    def __init__(self, message: str = "Ledger is not paused") -> None:
        super().__init__(message, code="NOT_PAUSED")


class NotFoundError(LedgerError):
    """Waste entry does not exist."""

    numeric_code = 18

    def __init__(self, entry_id: int) -> None:
        super().__init__(
            f"Waste entry {entry_id} not found",
            code="NOT_FOUND",
            details={"entry_id": entry_id},
        )
        self.entry_id = entry_id


class NotOwnerError(LedgerError):
    """Caller is not the current owner of the entry.

    Raised for every structural mutation (version, category, collaborator,
    status, transfer) attempted by anyone but the owner.
    """

    numeric_code = 2

    def __init__(self, actor: str, entry_id: int) -> None:
        super().__init__(
            f"{actor} is not the owner of waste entry {entry_id}",
            code="NOT_OWNER",
            details={"actor": actor, "entry_id": entry_id},
        )
        self.actor = actor
        self.entry_id = entry_id


class NotAuthorizedError(LedgerError):
    """Caller lacks the authority for the requested action.

    Raised when:
    - A non-administrator tries to pause or unpause
    - A caller who is neither owner nor holder of the required
      permission token tries a delegable action
    """

    numeric_code = 6

    def __init__(
        self,
        actor: str,
        entry_id: int | None = None,
        required_permission: str | None = None,
    ) -> None:
        if entry_id is None:
            msg = f"{actor} is not authorized"
        else:
            msg = f"{actor} is not authorized on waste entry {entry_id}"
        if required_permission:
            msg += f" (requires '{required_permission}')"
        super().__init__(
            msg,
            code="NOT_AUTHORIZED",
            details={
                "actor": actor,
                "entry_id": entry_id,
                "required_permission": required_permission,
            },
        )
        self.actor = actor
        self.entry_id = entry_id
        self.required_permission = required_permission


class ValidationError(LedgerError):
    """A field value was rejected.

    Subclasses pin the code; `field_name` names the offending input.
    """

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field_name: str, **details: Any) -> None:
        super().__init__(
            message,
            code=self.error_code,
            details={"field": field_name, **details},
        )
        self.field_name = field_name


class InvalidDigestError(ValidationError):
    error_code = "INVALID_DIGEST"
    numeric_code = 3

    def __init__(self) -> None:
        super().__init__("Digest must not be empty", "digest")


class InvalidQuantityError(ValidationError):
    error_code = "INVALID_QUANTITY"
    numeric_code = 4

    def __init__(self, quantity: Any) -> None:
        super().__init__(f"Quantity must be positive, got {quantity}", "quantity")


class InvalidCategoryLabelError(ValidationError):
    error_code = "INVALID_CATEGORY_LABEL"
    numeric_code = 5

    def __init__(self, field_name: str = "category_label") -> None:
        super().__init__("Category label must not be empty", field_name)


class DescriptionTooLongError(ValidationError):
    error_code = "DESCRIPTION_TOO_LONG"
    numeric_code = 15

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(
            f"Description is {length} characters, limit is {limit}",
            "description",
            length=length,
            limit=limit,
        )


class InvalidOwnerError(ValidationError):
    error_code = "INVALID_OWNER"
    numeric_code = 19

    def __init__(self) -> None:
        super().__init__("New owner must not be empty", "new_owner")


class InvalidRoleError(ValidationError):
    error_code = "INVALID_ROLE"
    numeric_code = 12

    def __init__(self) -> None:
        super().__init__("Role must not be empty", "role")


class InvalidStatusError(ValidationError):
    error_code = "INVALID_STATUS"
    numeric_code = 14

    def __init__(self) -> None:
        super().__init__("Status must not be empty", "status")


class InvalidTagError(ValidationError):
    error_code = "INVALID_TAG"
    numeric_code = 10

    def __init__(self, index: int) -> None:
        super().__init__(f"Tag {index} is empty", "tags", index=index)


class NoteTooLongError(ValidationError):
    error_code = "NOTE_TOO_LONG"
    numeric_code = 15

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(
            f"Note is {length} characters, limit is {limit}",
            "note",
            length=length,
            limit=limit,
        )


class LimitReachedError(LedgerError):
    """A bounded per-entry collection is full."""

    error_code = "LIMIT_REACHED"

    def __init__(self, entry_id: int, limit: int, what: str) -> None:
        super().__init__(
            f"Waste entry {entry_id} already has the maximum of {limit} {what}",
            code=self.error_code,
            details={"entry_id": entry_id, "limit": limit},
        )
        self.entry_id = entry_id
        self.limit = limit


class TagLimitExceededError(LimitReachedError):
    error_code = "TAG_LIMIT_EXCEEDED"
    numeric_code = 11

    def __init__(self, entry_id: int, limit: int) -> None:
        super().__init__(entry_id, limit, "tags")


class CollaboratorLimitReachedError(LimitReachedError):
    error_code = "COLLABORATOR_LIMIT_REACHED"
    numeric_code = 13

    def __init__(self, entry_id: int, limit: int) -> None:
        super().__init__(entry_id, limit, "collaborators")


class VersionLimitReachedError(LimitReachedError):
    error_code = "VERSION_LIMIT_REACHED"
    numeric_code = 8

    def __init__(self, entry_id: int, limit: int) -> None:
        super().__init__(entry_id, limit, "versions")
