# SPDX-License-Identifier: Apache-2.0
"""Registration and inspection of sync targets."""

import logging
from typing import Any, Dict, List, Optional

from core.sync.constants import Provider, SyncStatus
from core.sync.exceptions import CredentialInactiveError, SyncTargetError
from data.database.models import SyncState


logger = logging.getLogger("dashsync.sync.targets")


class SyncTargetService:
    """Creates sync targets and exposes their status."""

    def __init__(self, credential_store, state_store):
        self.credential_store = credential_store
        self.state_store = state_store

    def register_target(
        self,
        credential_id: str,
        resource_id: str = "primary",
        name: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> SyncState:
        """
        Create the sync state for a (credential, resource) pair.

        The new target starts idle with an empty cursor, so its first run is
        a full sync.

        Raises:
            NotFoundError: Unknown credential
            CredentialInactiveError: The credential was deactivated
            SyncTargetError: Unsupported provider, or an active target for the
                             same pair already exists
        """
        credential = self.credential_store.get(credential_id)
        if not credential.active:
            raise CredentialInactiveError(credential_id)
        if credential.provider not in Provider.list():
            raise SyncTargetError(f"Unsupported provider: {credential.provider}")

        existing = self.state_store.find_active(credential_id, resource_id)
        if existing is not None:
            raise SyncTargetError(
                f"Sync target already registered for {credential_id}/{resource_id}: {existing.id}"
            )

        state = SyncState(
            credential_id=credential_id,
            provider=credential.provider,
            resource_id=resource_id,
            name=name or resource_id,
            owner=owner or credential.account,
            cursor="",
            status=SyncStatus.IDLE,
        )
        self.state_store.create(state)
        logger.info(f"Registered sync target {state.id} for {credential.provider}/{resource_id}")
        return state

    def deactivate_target(self, target_id: str) -> None:
        self.state_store.update(target_id, {"is_active": False, "in_progress": False})
        logger.info(f"Deactivated sync target {target_id}")

    def get_status(self, target_id: str) -> Dict[str, Any]:
        return self.state_store.get(target_id).to_status_dict()

    def list_statuses(self) -> List[Dict[str, Any]]:
        return [state.to_status_dict() for state in self.state_store.list_active()]
