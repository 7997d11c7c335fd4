"""
Record types for the waste ledger.

One dataclass per stored record:
- WasteEntry: the root aggregate, keyed by entry_id
- VersionRecord: one digest update, keyed by (entry_id, version)
- CategoryInfo: current category and tags of an entry
- CollaboratorGrant: role and permission tokens of one collaborator
- StatusInfo: current status and visibility of an entry
- ComplianceNote: one append-only annotation, keyed by (entry_id, note_id)

Invariants:
    - to_dict()/from_dict() round-trip every field losslessly
    - Digests travel as lowercase hex strings outside the process
    - Tag and permission lists keep insertion order

How to change safely:
    - New fields need defaults so older dictionaries still load
    - Never change the dictionary key of an existing field
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

GENERATED_STATUS = "generated"

# Largest value an SQLite INTEGER column holds
MAX_INTEGER = 2**63 - 1


def digest_to_hex(digest: bytes) -> str:
    """Encode a digest for JSON."""
    return digest.hex()


def digest_from_hex(value: str) -> bytes:
    """Decode a hex digest.

    Raises:
        ValueError: If value is not valid hex
    """
    return bytes.fromhex(value)


@dataclass(frozen=True)
class WasteEntry:
    """A registered waste record.

    Attributes:
        entry_id: Permanent identifier, dense from 1
        digest: Content fingerprint at registration time
        owner: Current owner (changes only through transfer)
        created_at: Ordering counter at registration
        category_label: Waste type label
        quantity: Positive amount
        unit: Unit of quantity
        description: Free text, bounded
        location: Free text
    """

    entry_id: int
    digest: bytes
    owner: str
    created_at: int
    category_label: str
    quantity: int
    unit: str
    description: str
    location: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "digest": digest_to_hex(self.digest),
            "owner": self.owner,
            "created_at": self.created_at,
            "category_label": self.category_label,
            "quantity": self.quantity,
            "unit": self.unit,
            "description": self.description,
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WasteEntry:
        return cls(
            entry_id=data["entry_id"],
            digest=digest_from_hex(data["digest"]),
            owner=data["owner"],
            created_at=data["created_at"],
            category_label=data["category_label"],
            quantity=data["quantity"],
            unit=data["unit"],
            description=data["description"],
            location=data["location"],
        )


@dataclass(frozen=True)
class VersionRecord:
    """A digest update appended to an entry's history."""

    entry_id: int
    version: int
    digest: bytes
    notes: str
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "version": self.version,
            "digest": digest_to_hex(self.digest),
            "notes": self.notes,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VersionRecord:
        return cls(
            entry_id=data["entry_id"],
            version=data["version"],
            digest=digest_from_hex(data["digest"]),
            notes=data["notes"],
            created_at=data["created_at"],
        )


@dataclass(frozen=True)
class CategoryInfo:
    """Current category of an entry. Replaced wholesale on update."""

    entry_id: int
    label: str
    tags: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "label": self.label,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CategoryInfo:
        return cls(
            entry_id=data["entry_id"],
            label=data["label"],
            tags=list(data.get("tags", [])),
        )


@dataclass(frozen=True)
class CollaboratorGrant:
    """A role and permission tokens bound to one collaborator of an entry.

    Attributes:
        entry_id: Entry the grant applies to
        collaborator: Identity of the collaborator
        role: Role label (non-empty)
        permissions: Ordered permission tokens, treated as opaque data
        joined_at: Ordering counter when the grant was last written
    """

    entry_id: int
    collaborator: str
    role: str
    permissions: list[str] = field(default_factory=list)
    joined_at: int = 0

    def allows(self, token: str) -> bool:
        """Check whether this grant carries a permission token."""
        return token in self.permissions

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "collaborator": self.collaborator,
            "role": self.role,
            "permissions": list(self.permissions),
            "joined_at": self.joined_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CollaboratorGrant:
        return cls(
            entry_id=data["entry_id"],
            collaborator=data["collaborator"],
            role=data["role"],
            permissions=list(data.get("permissions", [])),
            joined_at=data.get("joined_at", 0),
        )


@dataclass(frozen=True)
class StatusInfo:
    """Current status of an entry. Always fully overwritten."""

    entry_id: int
    status: str
    visibility: bool
    updated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "status": self.status,
            "visibility": self.visibility,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusInfo:
        return cls(
            entry_id=data["entry_id"],
            status=data["status"],
            visibility=bool(data["visibility"]),
            updated_at=data["updated_at"],
        )


@dataclass(frozen=True)
class ComplianceNote:
    """An immutable annotation on an entry."""

    entry_id: int
    note_id: int
    note: str
    author: str
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "note_id": self.note_id,
            "note": self.note,
            "author": self.author,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComplianceNote:
        return cls(
            entry_id=data["entry_id"],
            note_id=data["note_id"],
            note=data["note"],
            author=data["author"],
            created_at=data["created_at"],
        )


@dataclass(frozen=True)
class LedgerState:
    """Process-wide ledger state.

    Attributes:
        admin: Administrator identity, fixed at first initialization
        paused: Pause switch
        entry_count: Last allocated entry id
    """

    admin: str
    paused: bool
    entry_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "admin": self.admin,
            "paused": self.paused,
            "entry_count": self.entry_count,
        }
