"""
Waste ledger state machine.

WasteLedger is the single entry point for every ledger operation. Each
mutating call runs the same pipeline inside one store session:

    pause switch -> entry lookup -> access controller -> field validation
    -> capacity checks -> writes -> commit

Reads bypass the pause switch and the access controller.

Invariants:
    - A rejected call raises a LedgerError and commits nothing
    - Entry ids are allocated only after validation passes
    - Version numbers and note ids are contiguous per entry, from 1
    - Only the owner changes an entry's structure; compliance notes may be
      delegated through the "add-note" permission token
    - Only the administrator toggles the pause switch, strictly alternating

How to change safely:
    - Keep every check inside the session so rejections roll back
    - New operations must go through _mutation() to honour the pause switch
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from ..config import LimitsConfig
from ..errors import (
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
    NotFoundError,
    NotPausedError,
    NoteTooLongError,
    PausedError,
    TagLimitExceededError,
    VersionLimitReachedError,
)
from .acl import AccessController, Action, get_access_controller
from .canonical_store import CanonicalStore, LedgerSession
from .models import (
    GENERATED_STATUS,
    MAX_INTEGER,
    CategoryInfo,
    CollaboratorGrant,
    ComplianceNote,
    LedgerState,
    StatusInfo,
    VersionRecord,
    WasteEntry,
)

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Default ordering counter: Unix time in milliseconds."""
    return int(time.time() * 1000)


class WasteLedger:
    """Record state machine and access-control layer.

    Attributes:
        store: Canonical SQLite store
        limits: Per-entry record limits
        access: Access controller
        clock: Ordering counter used when a call supplies none

    Example:
        >>> ledger = WasteLedger(store)
        >>> entry_id = ledger.register(
        ...     "company_1", b"h1", "chemical", 500, "kg", "Solvent drums", "Plant A"
        ... )
        >>> ledger.add_collaborator("company_1", entry_id, "inspector_1", "inspector", ["add-note"])
        >>> ledger.add_note("inspector_1", entry_id, "ok")
        1
    """

    def __init__(
        self,
        store: CanonicalStore,
        limits: LimitsConfig | None = None,
        access: AccessController | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.store = store
        self.limits = limits or LimitsConfig()
        self.access = access or get_access_controller()
        self.clock = clock or now_ms

    def _tick(self, at: int | None) -> int:
        return at if at is not None else self.clock()

    @contextmanager
    def _mutation(
        self,
        operation: str,
        caller: str,
        entry_id: int | None = None,
        gated: bool = True,
    ) -> Iterator[LedgerSession]:
        """Open a write session, enforcing the pause switch.

        Rejections are logged and re-raised; the session rolls back.
        """
        try:
            with self.store.session() as session:
                if gated and session.get_state().paused:
                    raise PausedError()
                yield session
        except LedgerError as e:
            logger.info(
                f"Rejected {operation}: {e.message}",
                extra={
                    "operation": operation,
                    "actor": caller,
                    "entry_id": entry_id,
                    "error_code": e.code,
                },
            )
            raise

    def _require_entry(self, session: LedgerSession, entry_id: int) -> WasteEntry:
        entry = session.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(entry_id)
        return entry

    def _require_owner(
        self, session: LedgerSession, caller: str, entry_id: int, action: Action
    ) -> WasteEntry:
        entry = self._require_entry(session, entry_id)
        self.access.check_permission_or_raise(caller, entry, action)
        return entry

    # =========================================================================
    # Record store
    # =========================================================================

    def register(
        self,
        caller: str,
        digest: bytes,
        category_label: str,
        quantity: int,
        unit: str,
        description: str,
        location: str,
        at: int | None = None,
    ) -> int:
        """Register a new waste entry owned by the caller.

        Args:
            caller: Authenticated caller identity
            digest: Content fingerprint (non-empty)
            category_label: Waste type label (non-empty)
            quantity: Positive quantity
            unit: Unit of quantity
            description: Free text, bounded by max_description_length
            location: Free text
            at: Ordering counter (defaults to the ledger clock)

        Returns:
            The new entry id

        Raises:
            PausedError, InvalidDigestError, InvalidQuantityError,
            InvalidCategoryLabelError, DescriptionTooLongError
        """
        now = self._tick(at)

        with self._mutation("register", caller) as session:
            if not digest:
                raise InvalidDigestError()
            if (
                isinstance(quantity, bool)
                or not isinstance(quantity, int)
                or not 0 < quantity <= MAX_INTEGER
            ):
                raise InvalidQuantityError(quantity)
            if not category_label:
                raise InvalidCategoryLabelError()
            if len(description) > self.limits.max_description_length:
                raise DescriptionTooLongError(
                    len(description), self.limits.max_description_length
                )

            entry_id = session.allocate_entry_id()
            session.insert_entry(
                WasteEntry(
                    entry_id=entry_id,
                    digest=bytes(digest),
                    owner=caller,
                    created_at=now,
                    category_label=category_label,
                    quantity=quantity,
                    unit=unit,
                    description=description,
                    location=location,
                )
            )
            session.put_status(
                StatusInfo(
                    entry_id=entry_id,
                    status=GENERATED_STATUS,
                    visibility=True,
                    updated_at=now,
                )
            )

        logger.info("Registered waste entry", extra={"entry_id": entry_id, "actor": caller})
        return entry_id

    def transfer_ownership(self, caller: str, entry_id: int, new_owner: str) -> None:
        """Hand an entry over to a new owner.

        Only the owner field changes; history and satellites are untouched.

        Raises:
            PausedError, NotFoundError, NotOwnerError, InvalidOwnerError
        """
        with self._mutation("transfer_ownership", caller, entry_id) as session:
            self._require_owner(session, caller, entry_id, Action.TRANSFER_OWNERSHIP)
            if not new_owner:
                raise InvalidOwnerError()
            session.update_owner(entry_id, new_owner)

        logger.info(
            "Transferred waste entry",
            extra={"entry_id": entry_id, "actor": caller, "new_owner": new_owner},
        )

    def get_entry(self, entry_id: int) -> WasteEntry | None:
        with self.store.reader() as session:
            return session.get_entry(entry_id)

    def verify_entry(self, entry_id: int, digest: bytes) -> bool:
        """Check a digest against the one recorded at registration."""
        entry = self.get_entry(entry_id)
        return entry is not None and entry.digest == bytes(digest)

    def get_entry_count(self) -> int:
        """Get the last allocated entry id."""
        return self.get_state().entry_count

    # =========================================================================
    # Version log
    # =========================================================================

    def append_version(
        self,
        caller: str,
        entry_id: int,
        new_digest: bytes,
        notes: str,
        at: int | None = None,
    ) -> int:
        """Append a digest update to an entry's history.

        Returns:
            The new version number

        Raises:
            PausedError, NotFoundError, NotOwnerError,
            VersionLimitReachedError, InvalidDigestError
        """
        now = self._tick(at)

        with self._mutation("append_version", caller, entry_id) as session:
            self._require_owner(session, caller, entry_id, Action.APPEND_VERSION)

            version_count, _ = session.get_counters(entry_id)
            if version_count >= self.limits.max_versions:
                raise VersionLimitReachedError(entry_id, self.limits.max_versions)
            if not new_digest:
                raise InvalidDigestError()

            version = version_count + 1
            session.insert_version(
                VersionRecord(
                    entry_id=entry_id,
                    version=version,
                    digest=bytes(new_digest),
                    notes=notes,
                    created_at=now,
                )
            )

        logger.debug(
            "Appended version",
            extra={"entry_id": entry_id, "version": version, "actor": caller},
        )
        return version

    def get_version(self, entry_id: int, version: int) -> VersionRecord | None:
        with self.store.reader() as session:
            return session.get_version(entry_id, version)

    def list_versions(self, entry_id: int) -> list[VersionRecord]:
        with self.store.reader() as session:
            return session.list_versions(entry_id)

    # =========================================================================
    # Category index
    # =========================================================================

    def set_category(
        self,
        caller: str,
        entry_id: int,
        label: str,
        tags: Sequence[str],
    ) -> None:
        """Replace an entry's category and tags wholesale.

        Raises:
            PausedError, NotFoundError, NotOwnerError,
            InvalidCategoryLabelError, TagLimitExceededError, InvalidTagError
        """
        tags = list(tags)

        with self._mutation("set_category", caller, entry_id) as session:
            self._require_owner(session, caller, entry_id, Action.SET_CATEGORY)

            if not label:
                raise InvalidCategoryLabelError(field_name="label")
            if len(tags) > self.limits.max_tags:
                raise TagLimitExceededError(entry_id, self.limits.max_tags)
            for i, tag in enumerate(tags):
                if not tag:
                    raise InvalidTagError(i)

            session.put_category(CategoryInfo(entry_id=entry_id, label=label, tags=tags))

        logger.debug(
            "Set category",
            extra={"entry_id": entry_id, "label": label, "tag_count": len(tags)},
        )

    def get_category(self, entry_id: int) -> CategoryInfo | None:
        with self.store.reader() as session:
            return session.get_category(entry_id)

    # =========================================================================
    # Collaborator registry
    # =========================================================================

    def add_collaborator(
        self,
        caller: str,
        entry_id: int,
        collaborator: str,
        role: str,
        permissions: Sequence[str],
        at: int | None = None,
    ) -> None:
        """Grant (or re-grant) a role and permission tokens to a collaborator.

        A re-grant overwrites the existing grant in place and does not count
        against the collaborator limit.

        Raises:
            PausedError, NotFoundError, NotOwnerError,
            InvalidRoleError, CollaboratorLimitReachedError
        """
        now = self._tick(at)

        with self._mutation("add_collaborator", caller, entry_id) as session:
            self._require_owner(session, caller, entry_id, Action.ADD_COLLABORATOR)

            if not role:
                raise InvalidRoleError()

            existing = session.get_collaborator(entry_id, collaborator)
            if (
                existing is None
                and session.count_collaborators(entry_id) >= self.limits.max_collaborators
            ):
                raise CollaboratorLimitReachedError(entry_id, self.limits.max_collaborators)

            session.put_collaborator(
                CollaboratorGrant(
                    entry_id=entry_id,
                    collaborator=collaborator,
                    role=role,
                    permissions=list(permissions),
                    joined_at=now,
                )
            )

        logger.info(
            "Granted collaborator",
            extra={
                "entry_id": entry_id,
                "collaborator": collaborator,
                "role": role,
                "regrant": existing is not None,
            },
        )

    def has_permission(self, entry_id: int, identity: str, token: str) -> bool:
        """Check whether a live grant for identity carries token."""
        grant = self.get_collaborator(entry_id, identity)
        return grant is not None and grant.allows(token)

    def get_collaborator(self, entry_id: int, collaborator: str) -> CollaboratorGrant | None:
        with self.store.reader() as session:
            return session.get_collaborator(entry_id, collaborator)

    def list_collaborators(self, entry_id: int) -> list[CollaboratorGrant]:
        with self.store.reader() as session:
            return session.list_collaborators(entry_id)

    # =========================================================================
    # Status tracker
    # =========================================================================

    def set_status(
        self,
        caller: str,
        entry_id: int,
        status: str,
        visibility: bool,
        at: int | None = None,
    ) -> None:
        """Overwrite an entry's status and visibility.

        Raises:
            PausedError, NotFoundError, NotOwnerError, InvalidStatusError
        """
        now = self._tick(at)

        with self._mutation("set_status", caller, entry_id) as session:
            self._require_owner(session, caller, entry_id, Action.SET_STATUS)

            if not status:
                raise InvalidStatusError()

            session.put_status(
                StatusInfo(
                    entry_id=entry_id,
                    status=status,
                    visibility=visibility,
                    updated_at=now,
                )
            )

        logger.debug(
            "Set status",
            extra={"entry_id": entry_id, "status": status, "visibility": visibility},
        )

    def get_status(self, entry_id: int) -> StatusInfo | None:
        with self.store.reader() as session:
            return session.get_status(entry_id)

    # =========================================================================
    # Compliance log
    # =========================================================================

    def add_note(
        self,
        caller: str,
        entry_id: int,
        note: str,
        at: int | None = None,
    ) -> int:
        """Append a compliance note authored by the caller.

        The owner may always annotate; collaborators need the "add-note"
        permission token.

        Returns:
            The new note id

        Raises:
            PausedError, NotFoundError, NotAuthorizedError, NoteTooLongError
        """
        now = self._tick(at)

        with self._mutation("add_note", caller, entry_id) as session:
            entry = self._require_entry(session, entry_id)
            grant = session.get_collaborator(entry_id, caller)
            self.access.check_permission_or_raise(caller, entry, Action.ADD_NOTE, grant)

            if len(note) > self.limits.max_note_length:
                raise NoteTooLongError(len(note), self.limits.max_note_length)

            _, note_count = session.get_counters(entry_id)
            note_id = note_count + 1
            session.insert_note(
                ComplianceNote(
                    entry_id=entry_id,
                    note_id=note_id,
                    note=note,
                    author=caller,
                    created_at=now,
                )
            )

        logger.info(
            "Added compliance note",
            extra={"entry_id": entry_id, "note_id": note_id, "actor": caller},
        )
        return note_id

    def get_note(self, entry_id: int, note_id: int) -> ComplianceNote | None:
        with self.store.reader() as session:
            return session.get_note(entry_id, note_id)

    def list_notes(self, entry_id: int) -> list[ComplianceNote]:
        with self.store.reader() as session:
            return session.list_notes(entry_id)

    # =========================================================================
    # Pause switch
    # =========================================================================

    def pause(self, caller: str) -> None:
        """Engage the pause switch.

        Raises:
            NotAuthorizedError: If caller is not the administrator
            PausedError: If already paused
        """
        with self._mutation("pause", caller, gated=False) as session:
            state = session.get_state()
            self.access.check_admin_or_raise(caller, state.admin)
            if state.paused:
                raise PausedError("Ledger is already paused")
            session.set_paused(True)

        logger.warning("Ledger paused", extra={"actor": caller})

    def unpause(self, caller: str) -> None:
        """Release the pause switch.

        Raises:
            NotAuthorizedError: If caller is not the administrator
            NotPausedError: If not paused
        """
        with self._mutation("unpause", caller, gated=False) as session:
            state = session.get_state()
            self.access.check_admin_or_raise(caller, state.admin)
            if not state.paused:
                raise NotPausedError()
            session.set_paused(False)

        logger.info("Ledger unpaused", extra={"actor": caller})

    def is_paused(self) -> bool:
        return self.get_state().paused

    def get_admin(self) -> str:
        return self.get_state().admin

    def get_state(self) -> LedgerState:
        with self.store.reader() as session:
            return session.get_state()
