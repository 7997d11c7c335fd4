"""
Access control for waste entries.

This module decides whether a caller may perform a gated write:
- Owner-only structural actions (version, category, collaborators,
  status, transfer)
- Delegable actions that a collaborator may perform when their grant
  carries the matching permission token (compliance notes)

Invariants:
    - Owner always has full access
    - Delegation is granted only through an explicit permission token
    - Decisions are pure: no storage access, no side effects

How to change safely:
    - New delegable actions must name their token in DELEGABLE_ACTIONS
    - Keep structural actions owner-only unless ownership semantics change
"""

from __future__ import annotations

import logging
from enum import Enum

from ..errors import NotAuthorizedError, NotOwnerError
from .models import CollaboratorGrant, WasteEntry

logger = logging.getLogger(__name__)

ADD_NOTE_PERMISSION = "add-note"


class Action(Enum):
    """Gated write actions on an existing entry."""

    APPEND_VERSION = "append_version"
    SET_CATEGORY = "set_category"
    ADD_COLLABORATOR = "add_collaborator"
    SET_STATUS = "set_status"
    TRANSFER_OWNERSHIP = "transfer_ownership"
    ADD_NOTE = "add_note"


class AccessController:
    """Decides allow/deny for gated writes.

    Thread safety:
        This class is stateless and thread-safe.

    Example:
        >>> controller = AccessController()
        >>> controller.check_permission("alice", "alice", Action.SET_STATUS)
        True
        >>> controller.check_permission("bob", "alice", Action.ADD_NOTE)
        False
    """

    # Actions a collaborator may perform, with the token they must hold
    DELEGABLE_ACTIONS = {
        Action.ADD_NOTE: ADD_NOTE_PERMISSION,
    }

    def required_permission(self, action: Action) -> str | None:
        """Get the permission token that delegates an action.

        Returns:
            Token string, or None for owner-only actions
        """
        return self.DELEGABLE_ACTIONS.get(action)

    def check_permission(
        self,
        actor: str,
        owner: str,
        action: Action,
        grant: CollaboratorGrant | None = None,
    ) -> bool:
        """Check if an actor may perform an action.

        Args:
            actor: Caller identity
            owner: Current owner of the entry
            action: Requested action
            grant: Caller's collaborator grant on the entry, if any

        Returns:
            True if access is granted
        """
        if actor == owner:
            return True

        token = self.required_permission(action)
        if token is None or grant is None:
            return False

        if grant.collaborator != actor:
            logger.warning(
                "Grant does not belong to actor",
                extra={"actor": actor, "collaborator": grant.collaborator},
            )
            return False

        return grant.allows(token)

    def check_permission_or_raise(
        self,
        actor: str,
        entry: WasteEntry,
        action: Action,
        grant: CollaboratorGrant | None = None,
    ) -> None:
        """Check permission and raise if denied.

        Raises:
            NotOwnerError: If an owner-only action is denied
            NotAuthorizedError: If a delegable action is denied
        """
        if self.check_permission(actor, entry.owner, action, grant):
            return

        token = self.required_permission(action)
        if token is None:
            raise NotOwnerError(actor, entry.entry_id)
        raise NotAuthorizedError(actor, entry.entry_id, required_permission=token)

    def is_admin(self, actor: str, admin: str) -> bool:
        """Check if an actor is the ledger administrator."""
        return actor == admin

    def check_admin_or_raise(self, actor: str, admin: str) -> None:
        """Raise NotAuthorizedError unless actor is the administrator."""
        if not self.is_admin(actor, admin):
            raise NotAuthorizedError(actor)


# Default access controller instance
_default_controller: AccessController | None = None


def get_access_controller() -> AccessController:
    """Get the default access controller instance."""
    global _default_controller
    if _default_controller is None:
        _default_controller = AccessController()
    return _default_controller
