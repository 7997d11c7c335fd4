"""
Unit tests for the WasteLedger state machine.

Tests cover:
- Registration validation and entry-id allocation
- Ownership and transfer
- Version log limits and numbering
- Category replacement and tag validation
- Collaborator grants and the collaborator limit
- Status overwrite
- Compliance notes and delegation through "add-note"
- Pause switch gating
"""

import pytest

from services.wasteledger_server.config import LimitsConfig
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
    NotAuthorizedError,
    NotFoundError,
    NotOwnerError,
    NotPausedError,
    NoteTooLongError,
    PausedError,
    TagLimitExceededError,
    VersionLimitReachedError,
)
from services.wasteledger_server.records.ledger import WasteLedger

ADMIN = "deployer"


def register(ledger, caller="company_1", digest=b"h1", **overrides):
    args = {
        "category_label": "chemical",
        "quantity": 500,
        "unit": "kg",
        "description": "Solvent drums",
        "location": "Plant A",
    }
    args.update(overrides)
    return ledger.register(caller, digest, **args)


class TestRegister:
    """Tests for entry registration."""

    def test_register_allocates_dense_ids(self, ledger):
        """Entry ids start at 1 and increase by one."""
        assert register(ledger) == 1
        assert register(ledger, digest=b"h2") == 2
        assert ledger.get_entry_count() == 2

    def test_register_stores_fields(self, ledger):
        """All supplied fields are recorded with the caller as owner."""
        entry_id = register(ledger, at=42)

        entry = ledger.get_entry(entry_id)
        assert entry.owner == "company_1"
        assert entry.digest == b"h1"
        assert entry.created_at == 42
        assert entry.category_label == "chemical"
        assert entry.quantity == 500
        assert entry.unit == "kg"
        assert entry.description == "Solvent drums"
        assert entry.location == "Plant A"

    def test_register_initializes_status(self, ledger):
        """New entries start as generated and visible."""
        entry_id = register(ledger, at=7)

        status = ledger.get_status(entry_id)
        assert status.status == "generated"
        assert status.visibility is True
        assert status.updated_at == 7

    def test_register_uses_clock_when_at_omitted(self, ledger, clock):
        """Without an ordering counter, the ledger clock is used."""
        entry_id = register(ledger)
        assert ledger.get_entry(entry_id).created_at == clock.value

    @pytest.mark.parametrize(
        "overrides, error",
        [
            ({"digest": b""}, InvalidDigestError),
            ({"quantity": 0}, InvalidQuantityError),
            ({"quantity": -5}, InvalidQuantityError),
            ({"quantity": 0.5}, InvalidQuantityError),
            ({"quantity": float("nan")}, InvalidQuantityError),
            ({"quantity": True}, InvalidQuantityError),
            ({"quantity": 2**63}, InvalidQuantityError),
            ({"category_label": ""}, InvalidCategoryLabelError),
            ({"description": "x" * 1001}, DescriptionTooLongError),
        ],
    )
    def test_register_rejections_allocate_nothing(self, ledger, overrides, error):
        """Each invalid field has its own error and leaves no trace."""
        with pytest.raises(error):
            register(ledger, **overrides)

        assert ledger.get_entry_count() == 0
        assert ledger.get_entry(1) is None
        assert ledger.get_status(1) is None

        # The next successful registration still gets id 1
        assert register(ledger) == 1

    def test_register_check_order(self, ledger):
        """Digest is checked before quantity, quantity before label."""
        with pytest.raises(InvalidDigestError):
            register(ledger, digest=b"", quantity=0, category_label="")
        with pytest.raises(InvalidQuantityError):
            register(ledger, quantity=0, category_label="")

    def test_largest_quantity_accepted(self, ledger):
        """The largest storable quantity round-trips."""
        entry_id = register(ledger, quantity=2**63 - 1)
        assert ledger.get_entry(entry_id).quantity == 2**63 - 1

    def test_description_at_limit_accepted(self, ledger):
        """A description exactly at the bound is accepted."""
        entry_id = register(ledger, description="x" * 1000)
        assert len(ledger.get_entry(entry_id).description) == 1000

    def test_verify_entry(self, ledger):
        """verify_entry compares against the registration digest only."""
        entry_id = register(ledger, digest=b"h1")
        ledger.append_version("company_1", entry_id, b"h2", "update")

        assert ledger.verify_entry(entry_id, b"h1") is True
        assert ledger.verify_entry(entry_id, b"h2") is False
        assert ledger.verify_entry(99, b"h1") is False

    def test_get_missing_entry(self, ledger):
        """Unknown entry id returns None."""
        assert ledger.get_entry(99) is None


class TestTransferOwnership:
    """Tests for ownership transfer."""

    def test_transfer_then_requery(self, ledger):
        """After transfer only the new owner can append versions."""
        entry_id = register(ledger, caller="A")
        assert entry_id == 1

        ledger.transfer_ownership("A", 1, "B")
        assert ledger.get_entry(1).owner == "B"

        with pytest.raises(NotOwnerError):
            ledger.append_version("A", 1, b"h2", "by old owner")

        assert ledger.append_version("B", 1, b"h2", "by new owner") == 1

    def test_transfer_keeps_other_fields(self, ledger):
        """Only the owner field changes."""
        entry_id = register(ledger, caller="A")
        before = ledger.get_entry(entry_id)

        ledger.transfer_ownership("A", entry_id, "B")

        after = ledger.get_entry(entry_id)
        assert after.digest == before.digest
        assert after.created_at == before.created_at
        assert after.quantity == before.quantity

    def test_transfer_by_non_owner(self, ledger):
        """Non-owner cannot transfer."""
        entry_id = register(ledger, caller="A")
        with pytest.raises(NotOwnerError):
            ledger.transfer_ownership("C", entry_id, "C")
        assert ledger.get_entry(entry_id).owner == "A"

    def test_transfer_to_empty_owner(self, ledger):
        """An empty new owner is rejected and the owner is kept."""
        entry_id = register(ledger, caller="A")
        with pytest.raises(InvalidOwnerError):
            ledger.transfer_ownership("A", entry_id, "")
        assert ledger.get_entry(entry_id).owner == "A"

    def test_transfer_missing_entry(self, ledger):
        """Transfer of an unknown entry fails with NotFound."""
        with pytest.raises(NotFoundError):
            ledger.transfer_ownership("A", 5, "B")

    def test_owner_stable_without_transfer(self, ledger):
        """Owner stays the registering caller through other mutations."""
        entry_id = register(ledger, caller="A")
        ledger.append_version("A", entry_id, b"h2", "")
        ledger.set_category("A", entry_id, "hazardous", ["toxic"])
        ledger.add_collaborator("A", entry_id, "B", "inspector", [])
        ledger.set_status("A", entry_id, "stored", False)
        ledger.add_note("A", entry_id, "ok")

        assert ledger.get_entry(entry_id).owner == "A"


class TestVersionLog:
    """Tests for the version log."""

    def test_versions_are_contiguous(self, ledger):
        """Version numbers run 1..k with no gaps."""
        entry_id = register(ledger)
        numbers = [
            ledger.append_version("company_1", entry_id, f"h{i}".encode(), f"v{i}")
            for i in range(1, 11)
        ]
        assert numbers == list(range(1, 11))

        versions = ledger.list_versions(entry_id)
        assert [v.version for v in versions] == list(range(1, 11))

    def test_version_limit(self, ledger):
        """The eleventh version is rejected."""
        entry_id = register(ledger)
        for i in range(10):
            ledger.append_version("company_1", entry_id, b"d", "")

        with pytest.raises(VersionLimitReachedError):
            ledger.append_version("company_1", entry_id, b"d", "")
        assert ledger.get_version(entry_id, 11) is None

    def test_version_limit_configurable(self, store, clock):
        """A lower limit is honoured."""
        ledger = WasteLedger(store, limits=LimitsConfig(max_versions=2), clock=clock)
        entry_id = register(ledger)
        ledger.append_version("company_1", entry_id, b"d1", "")
        ledger.append_version("company_1", entry_id, b"d2", "")

        with pytest.raises(VersionLimitReachedError):
            ledger.append_version("company_1", entry_id, b"d3", "")

    def test_version_record_fields(self, ledger):
        """Stored version carries digest, notes and ordering counter."""
        entry_id = register(ledger)
        ledger.append_version("company_1", entry_id, b"h2", "repacked", at=77)

        version = ledger.get_version(entry_id, 1)
        assert version.digest == b"h2"
        assert version.notes == "repacked"
        assert version.created_at == 77

    def test_empty_digest_rejected(self, ledger):
        """Empty digest fails and does not consume a version number."""
        entry_id = register(ledger)
        with pytest.raises(InvalidDigestError):
            ledger.append_version("company_1", entry_id, b"", "")

        assert ledger.append_version("company_1", entry_id, b"h2", "") == 1

    def test_non_owner_rejected(self, ledger):
        """Only the owner appends versions."""
        entry_id = register(ledger)
        with pytest.raises(NotOwnerError):
            ledger.append_version("intruder", entry_id, b"h2", "")

    def test_missing_entry(self, ledger):
        """Unknown entry fails with NotFound before any access check."""
        with pytest.raises(NotFoundError):
            ledger.append_version("company_1", 3, b"h2", "")

    def test_limit_checked_before_digest(self, ledger):
        """A full log reports the limit even for an empty digest."""
        ledger.limits = LimitsConfig(max_versions=1)
        entry_id = register(ledger)
        ledger.append_version("company_1", entry_id, b"h2", "")

        with pytest.raises(VersionLimitReachedError):
            ledger.append_version("company_1", entry_id, b"", "")

    def test_get_unknown_version(self, ledger):
        """Version 0 and versions past the count are absent."""
        entry_id = register(ledger)
        assert ledger.get_version(entry_id, 0) is None
        assert ledger.get_version(entry_id, 1) is None
        assert ledger.list_versions(entry_id) == []


class TestCategoryIndex:
    """Tests for the category index."""

    def test_set_and_get_category(self, ledger):
        """Category and tag order are stored exactly."""
        entry_id = register(ledger)
        ledger.set_category("company_1", entry_id, "hazardous", ["toxic", "flammable"])

        category = ledger.get_category(entry_id)
        assert category.label == "hazardous"
        assert category.tags == ["toxic", "flammable"]

    def test_category_replaced_wholesale(self, ledger):
        """A second set_category replaces label and tags."""
        entry_id = register(ledger)
        ledger.set_category("company_1", entry_id, "hazardous", ["toxic", "flammable"])
        ledger.set_category("company_1", entry_id, "inert", [])

        category = ledger.get_category(entry_id)
        assert category.label == "inert"
        assert category.tags == []

    def test_empty_label_rejected(self, ledger):
        """Empty label fails."""
        entry_id = register(ledger)
        with pytest.raises(InvalidCategoryLabelError):
            ledger.set_category("company_1", entry_id, "", ["toxic"])

    def test_tag_limit(self, ledger):
        """Sixteen tags exceed the limit; fifteen are fine."""
        entry_id = register(ledger)
        ledger.set_category("company_1", entry_id, "mixed", [f"t{i}" for i in range(15)])

        with pytest.raises(TagLimitExceededError):
            ledger.set_category("company_1", entry_id, "mixed", [f"t{i}" for i in range(16)])

        assert len(ledger.get_category(entry_id).tags) == 15

    def test_empty_tag_aborts_whole_update(self, ledger):
        """An empty tag anywhere leaves the previous category intact."""
        entry_id = register(ledger)
        ledger.set_category("company_1", entry_id, "hazardous", ["toxic"])

        with pytest.raises(InvalidTagError) as exc_info:
            ledger.set_category("company_1", entry_id, "inert", ["a", "", "b"])
        assert exc_info.value.details["index"] == 1

        category = ledger.get_category(entry_id)
        assert category.label == "hazardous"
        assert category.tags == ["toxic"]

    def test_non_owner_rejected(self, ledger):
        """Only the owner sets the category."""
        entry_id = register(ledger)
        with pytest.raises(NotOwnerError):
            ledger.set_category("intruder", entry_id, "hazardous", [])
        assert ledger.get_category(entry_id) is None


class TestCollaboratorRegistry:
    """Tests for collaborator grants."""

    def test_add_collaborator(self, ledger):
        """Grant stores role, permissions and join time."""
        entry_id = register(ledger)
        ledger.add_collaborator(
            "company_1", entry_id, "inspector_1", "inspector", ["add-note"], at=55
        )

        grant = ledger.get_collaborator(entry_id, "inspector_1")
        assert grant.role == "inspector"
        assert grant.permissions == ["add-note"]
        assert grant.joined_at == 55

    def test_empty_role_rejected(self, ledger):
        """Empty role fails."""
        entry_id = register(ledger)
        with pytest.raises(InvalidRoleError):
            ledger.add_collaborator("company_1", entry_id, "inspector_1", "", [])
        assert ledger.get_collaborator(entry_id, "inspector_1") is None

    def test_collaborator_limit(self, ledger):
        """A sixth distinct collaborator is rejected."""
        entry_id = register(ledger)
        for i in range(5):
            ledger.add_collaborator("company_1", entry_id, f"c{i}", "viewer", [])

        with pytest.raises(CollaboratorLimitReachedError):
            ledger.add_collaborator("company_1", entry_id, "c5", "viewer", [])
        assert ledger.get_collaborator(entry_id, "c5") is None

    def test_regrant_at_limit_allowed(self, ledger):
        """Re-granting an existing collaborator does not consume a slot."""
        entry_id = register(ledger)
        for i in range(5):
            ledger.add_collaborator("company_1", entry_id, f"c{i}", "viewer", [])

        ledger.add_collaborator("company_1", entry_id, "c2", "inspector", ["add-note"])

        grant = ledger.get_collaborator(entry_id, "c2")
        assert grant.role == "inspector"
        assert grant.permissions == ["add-note"]
        assert len(ledger.list_collaborators(entry_id)) == 5

    def test_regrant_keeps_join_order(self, ledger):
        """A re-grant overwrites in place."""
        entry_id = register(ledger)
        ledger.add_collaborator("company_1", entry_id, "a", "viewer", [])
        ledger.add_collaborator("company_1", entry_id, "b", "viewer", [])
        ledger.add_collaborator("company_1", entry_id, "a", "inspector", [])

        assert [g.collaborator for g in ledger.list_collaborators(entry_id)] == ["a", "b"]

    def test_role_checked_before_limit(self, ledger):
        """A full registry still reports an empty role first."""
        entry_id = register(ledger)
        for i in range(5):
            ledger.add_collaborator("company_1", entry_id, f"c{i}", "viewer", [])

        with pytest.raises(InvalidRoleError):
            ledger.add_collaborator("company_1", entry_id, "c5", "", [])

    def test_non_owner_rejected(self, ledger):
        """Only the owner grants."""
        entry_id = register(ledger)
        with pytest.raises(NotOwnerError):
            ledger.add_collaborator("intruder", entry_id, "intruder", "owner", ["add-note"])

    def test_has_permission(self, ledger):
        """Permission check is plain membership in the grant's list."""
        entry_id = register(ledger)
        ledger.add_collaborator("company_1", entry_id, "b", "inspector", ["add-note", "audit"])

        assert ledger.has_permission(entry_id, "b", "add-note") is True
        assert ledger.has_permission(entry_id, "b", "audit") is True
        assert ledger.has_permission(entry_id, "b", "delete") is False
        assert ledger.has_permission(entry_id, "nobody", "add-note") is False

    def test_permission_order_preserved(self, ledger):
        """Permission tokens keep their order."""
        entry_id = register(ledger)
        ledger.add_collaborator("company_1", entry_id, "b", "inspector", ["z", "a", "m"])
        assert ledger.get_collaborator(entry_id, "b").permissions == ["z", "a", "m"]


class TestStatusTracker:
    """Tests for the status tracker."""

    def test_set_status_overwrites(self, ledger):
        """Status and visibility are fully overwritten."""
        entry_id = register(ledger, at=1)
        ledger.set_status("company_1", entry_id, "disposed", False, at=9)

        status = ledger.get_status(entry_id)
        assert status.status == "disposed"
        assert status.visibility is False
        assert status.updated_at == 9

    def test_empty_status_rejected(self, ledger):
        """Empty status fails and keeps the previous value."""
        entry_id = register(ledger)
        with pytest.raises(InvalidStatusError):
            ledger.set_status("company_1", entry_id, "", True)
        assert ledger.get_status(entry_id).status == "generated"

    def test_non_owner_rejected(self, ledger):
        """Only the owner sets status."""
        entry_id = register(ledger)
        with pytest.raises(NotOwnerError):
            ledger.set_status("intruder", entry_id, "stolen", False)

    def test_missing_entry(self, ledger):
        """Unknown entry has no status and cannot be updated."""
        assert ledger.get_status(4) is None
        with pytest.raises(NotFoundError):
            ledger.set_status("company_1", 4, "stored", True)


class TestComplianceLog:
    """Tests for compliance notes."""

    def test_owner_adds_note(self, ledger):
        """Owner needs no grant."""
        entry_id = register(ledger)
        note_id = ledger.add_note("company_1", entry_id, "labelled", at=12)

        note = ledger.get_note(entry_id, note_id)
        assert note_id == 1
        assert note.author == "company_1"
        assert note.note == "labelled"
        assert note.created_at == 12

    def test_collaborator_with_token(self, ledger):
        """Collaborator holding add-note is recorded as author."""
        entry_id = register(ledger)
        ledger.add_collaborator("company_1", entry_id, "inspector_1", "inspector", ["add-note"])

        note_id = ledger.add_note("inspector_1", entry_id, "checked")
        assert ledger.get_note(entry_id, note_id).author == "inspector_1"

    def test_collaborator_without_token(self, ledger):
        """A grant without add-note is not enough."""
        entry_id = register(ledger)
        ledger.add_collaborator("company_1", entry_id, "viewer_1", "viewer", ["read"])

        with pytest.raises(NotAuthorizedError):
            ledger.add_note("viewer_1", entry_id, "sneaky")
        assert ledger.list_notes(entry_id) == []

    def test_stranger_rejected(self, ledger):
        """A caller with no grant is not authorized."""
        entry_id = register(ledger)
        with pytest.raises(NotAuthorizedError):
            ledger.add_note("stranger", entry_id, "x")

    def test_note_length_limit(self, ledger):
        """Notes over the bound fail; at the bound they pass."""
        entry_id = register(ledger)
        ledger.add_note("company_1", entry_id, "n" * 500)
        with pytest.raises(NoteTooLongError):
            ledger.add_note("company_1", entry_id, "n" * 501)

    def test_note_ids_independent_of_versions(self, ledger):
        """Note ids and version numbers each start at 1."""
        entry_id = register(ledger)
        ledger.append_version("company_1", entry_id, b"h2", "")
        ledger.append_version("company_1", entry_id, b"h3", "")

        assert ledger.add_note("company_1", entry_id, "first") == 1
        assert ledger.add_note("company_1", entry_id, "second") == 2
        assert ledger.append_version("company_1", entry_id, b"h4", "") == 3

        assert [n.note_id for n in ledger.list_notes(entry_id)] == [1, 2]

    def test_revoked_token_denies(self, ledger):
        """Re-granting without add-note removes the delegation."""
        entry_id = register(ledger)
        ledger.add_collaborator("company_1", entry_id, "b", "inspector", ["add-note"])
        ledger.add_note("b", entry_id, "ok")

        ledger.add_collaborator("company_1", entry_id, "b", "viewer", [])
        with pytest.raises(NotAuthorizedError):
            ledger.add_note("b", entry_id, "again")

    def test_missing_entry(self, ledger):
        """Unknown entry fails with NotFound."""
        with pytest.raises(NotFoundError):
            ledger.add_note("company_1", 8, "x")


class TestPauseSwitch:
    """Tests for the pause switch."""

    def test_admin_pause_unpause(self, ledger):
        """Admin toggles the switch."""
        assert ledger.is_paused() is False
        ledger.pause(ADMIN)
        assert ledger.is_paused() is True
        ledger.unpause(ADMIN)
        assert ledger.is_paused() is False

    def test_non_admin_rejected(self, ledger):
        """Only the admin toggles."""
        with pytest.raises(NotAuthorizedError):
            ledger.pause("company_1")
        ledger.pause(ADMIN)
        with pytest.raises(NotAuthorizedError):
            ledger.unpause("company_1")
        assert ledger.is_paused() is True

    def test_double_pause(self, ledger):
        """Pausing twice fails with the already-paused error."""
        ledger.pause(ADMIN)
        with pytest.raises(PausedError) as exc_info:
            ledger.pause(ADMIN)
        assert "already paused" in exc_info.value.message

    def test_unpause_when_running(self, ledger):
        """Unpausing a running ledger fails."""
        with pytest.raises(NotPausedError):
            ledger.unpause(ADMIN)

    def test_mutations_blocked_reads_allowed(self, ledger):
        """While paused every mutation fails and every read works."""
        entry_id = register(ledger)
        ledger.append_version("company_1", entry_id, b"h2", "")
        ledger.add_collaborator("company_1", entry_id, "b", "inspector", ["add-note"])
        ledger.add_note("company_1", entry_id, "ok")
        ledger.pause(ADMIN)

        mutations = [
            lambda: register(ledger),
            lambda: ledger.transfer_ownership("company_1", entry_id, "b"),
            lambda: ledger.append_version("company_1", entry_id, b"h3", ""),
            lambda: ledger.set_category("company_1", entry_id, "hazardous", []),
            lambda: ledger.add_collaborator("company_1", entry_id, "c", "viewer", []),
            lambda: ledger.set_status("company_1", entry_id, "stored", True),
            lambda: ledger.add_note("b", entry_id, "paused"),
        ]
        for mutation in mutations:
            with pytest.raises(PausedError):
                mutation()

        assert ledger.get_entry(entry_id).owner == "company_1"
        assert ledger.get_version(entry_id, 1).digest == b"h2"
        assert ledger.get_collaborator(entry_id, "b") is not None
        assert ledger.get_status(entry_id).status == "generated"
        assert ledger.get_note(entry_id, 1).note == "ok"
        assert ledger.verify_entry(entry_id, b"h1") is True
        assert ledger.get_entry_count() == 1

    def test_paused_checked_first(self, ledger):
        """Paused wins over NotFound and validation errors."""
        ledger.pause(ADMIN)
        with pytest.raises(PausedError):
            ledger.append_version("anyone", 42, b"", "")
        with pytest.raises(PausedError):
            register(ledger, digest=b"")

    def test_admin_fixed(self, ledger):
        """Admin is the identity recorded at initialization."""
        assert ledger.get_admin() == ADMIN
        state = ledger.get_state()
        assert state.admin == ADMIN
        assert state.paused is False


class TestScenario:
    """End-to-end walk through the ledger."""

    def test_register_categorize_delegate_annotate(self, ledger):
        """Owner registers, categorizes and delegates notes to an inspector."""
        entry_id = ledger.register("A", b"h1", "chemical", 500, "kg", "drums", "Plant A")
        assert entry_id == 1

        ledger.set_category("A", 1, "hazardous", ["toxic", "flammable"])
        category = ledger.get_category(1)
        assert (category.label, category.tags) == ("hazardous", ["toxic", "flammable"])

        ledger.add_collaborator("A", 1, "B", "inspector", ["add-note"])
        assert ledger.add_note("B", 1, "ok") == 1

        with pytest.raises(NotAuthorizedError):
            ledger.add_note("C", 1, "x")
