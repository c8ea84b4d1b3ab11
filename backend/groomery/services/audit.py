from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Tuple

from groomery.constants.permissions import Permission, permission_values
from groomery.models.store import utcnow
from groomery.services.store import DocumentStore

USER_HISTORY_COLLECTION = 'role-history'
ROLE_HISTORY_COLLECTION = 'role-definition-history'


class RoleHistoryLog:
    """Append-only audit trail for role assignments and role definition edits.

    Entries are written with ``push`` and never updated; nothing in the authorization path reads
    them back. ``entries_for_user`` / ``entries_for_role`` exist for compliance tooling and tests.
    """

    def __init__(self, store: DocumentStore):
        self.store = store

    def record_assignment(
        self,
        user_id: str,
        action: str,
        new_role: str,
        new_permissions: Iterable[Permission],
        previous_role: Optional[str] = None,
        previous_permissions: Iterable[Permission] = (),
        branch_id: Optional[str] = None,
        entry_type: str = 'role_change',
        actor: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Push a RoleHistoryEntry for ``user_id`` and return its entry id.

        Parameters:
          action: short action code e.g. assign_role, initial_setup
          entry_type: role_change for ordinary assignments, initial_setup for the administrator grant
          actor: uid of the administrator performing the change (None for system actions)
          meta: additional JSON-safe dictionary (shallow copied)
        """
        entry = {
            'user_id': user_id,
            'action': action,
            'previous_role': previous_role,
            'new_role': new_role,
            'branch_id': branch_id,
            'previous_permissions': permission_values(previous_permissions),
            'new_permissions': permission_values(new_permissions),
            'timestamp': utcnow().isoformat(),
            'type': entry_type,
            'actor': actor or 'system',
        }
        if meta:
            entry['meta'] = dict(meta)
        return self.store.push(f"{USER_HISTORY_COLLECTION}/{user_id}", entry)

    def record_definition_change(
        self,
        role_name: str,
        previous_permissions: Iterable[Permission],
        new_permissions: Iterable[Permission],
        entry_type: str = 'update',
        previous_description: Optional[str] = None,
        new_description: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> str:
        entry = {
            'role': role_name,
            'previous_permissions': permission_values(previous_permissions),
            'new_permissions': permission_values(new_permissions),
            'previous_description': previous_description,
            'new_description': new_description,
            'timestamp': utcnow().isoformat(),
            'type': entry_type,
            'actor': actor or 'system',
        }
        return self.store.push(f"{ROLE_HISTORY_COLLECTION}/{role_name}", entry)

    def entries_for_user(self, user_id: str) -> List[Tuple[str, Dict[str, Any]]]:
        return self.store.entries(f"{USER_HISTORY_COLLECTION}/{user_id}")

    def entries_for_role(self, role_name: str) -> List[Tuple[str, Dict[str, Any]]]:
        return self.store.entries(f"{ROLE_HISTORY_COLLECTION}/{role_name}")


__all__ = ['RoleHistoryLog', 'USER_HISTORY_COLLECTION', 'ROLE_HISTORY_COLLECTION']
