"""
Identity & Role Resolver

Turns an authenticated actor id into an Actor: role, organization key
and display name. Every other component starts here.

Resolution order for the role:
1. an explicit RoleRecord written at provisioning
2. the role claim carried in the session metadata
3. membership in an owner's delegate roster

A revoked role record (a removed delegate) ends resolution: the actor
is unresolved whatever the session still claims.

CRITICAL: There is no fallback. An actor that matches none of the above
is unresolved and gets no access at all. Accounts that arrive without a
role are handled by AccountProvisioner, which writes an explicit and
audited assignment instead of guessing at request time.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from teamledger.audit import AuditLogger
from teamledger.config import IdentitySettings, get_settings
from teamledger.errors import (
    UnavailableError,
    UnresolvedIdentityError,
    translate_storage_error,
)
from teamledger.models.actor import (
    Actor,
    AuthSession,
    DelegateRosterEntry,
    Role,
    RoleRecord,
    RoleSource,
)
from teamledger.services.storage import DirectoryStoreInterface, StorageError


logger = structlog.get_logger(__name__)


# Session claims use the account vocabulary of the identity provider
ROLE_CLAIMS = {
    "owner": Role.OWNER,
    "admin": Role.OWNER,
    "delegate": Role.DELEGATE,
    "employee": Role.DELEGATE,
}


def parse_role_claim(claim: Optional[str]) -> Optional[Role]:
    if not claim:
        return None
    return ROLE_CLAIMS.get(claim.strip().lower())


def author_display(actor: Actor, settings: Optional[IdentitySettings] = None) -> str:
    """Role label plus name, e.g. 'Owner - Asha' or 'Delegate - Ravi'."""
    settings = settings or get_settings().identity
    label = settings.owner_label if actor.is_owner else settings.delegate_label
    return f"{label} - {actor.display_name}"


class IdentityResolver:
    """
    Resolves actors against the directory tables.

    Usage:
        resolver = IdentityResolver(store, audit_logger)
        actor = await resolver.resolve("user-123", session)
    """

    def __init__(
        self,
        directory: DirectoryStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._directory = directory
        self._audit = audit_logger or AuditLogger()

    async def resolve(
        self,
        actor_id: Optional[str],
        session: Optional[AuthSession] = None,
    ) -> Actor:
        """
        Resolve an actor.

        Raises:
            UnresolvedIdentityError: No role or organization is derivable
            UnavailableError: The directory could not be read
        """
        if not actor_id or not actor_id.strip():
            await self._unresolved(actor_id, "no authenticated actor")
        if session is not None and session.actor_id != actor_id:
            await self._unresolved(actor_id, "session belongs to another actor")

        try:
            role_record = await self._directory.get_role_record(actor_id)
            roster_entry = None
            if role_record is None:
                roster_entry = await self._directory.find_roster_entry(actor_id)
        except StorageError as e:
            error = translate_storage_error(e)
            if isinstance(error, UnavailableError):
                await self._audit.log_store_failure(e, "actor", actor_id)
            raise error

        if role_record is not None and role_record.is_revoked:
            await self._unresolved(actor_id, "access revoked")
        if role_record is not None:
            actor = self._from_role_record(role_record)
        else:
            actor = self._from_session(actor_id, session, roster_entry)
            if actor is None and roster_entry is not None:
                actor = self._build(
                    actor_id,
                    Role.DELEGATE,
                    roster_entry.owner_id,
                    self._display_name(session, roster_entry),
                    RoleSource.DELEGATE_ROSTER,
                )

        if actor is None:
            await self._unresolved(actor_id, "no role record, role claim or roster entry")

        logger.debug(
            "identity_resolved",
            actor_id=actor.id,
            role=actor.role.value,
            organization_key=actor.organization_key,
            source=actor.role_source.value if actor.role_source else None,
        )
        if actor.role_source != RoleSource.ROLE_RECORD:
            await self._audit.log_identity_resolved(
                actor.id, actor.role.value, actor.organization_key, actor.role_source.value
            )
        return actor

    async def resolve_or_none(
        self,
        actor_id: Optional[str],
        session: Optional[AuthSession] = None,
    ) -> Optional[Actor]:
        """Like resolve(), but an unresolved actor yields None."""
        try:
            return await self.resolve(actor_id, session)
        except UnresolvedIdentityError:
            return None

    def _from_role_record(self, record: RoleRecord) -> Optional[Actor]:
        return self._build(
            record.actor_id,
            record.role,
            record.organization_key,
            record.display_name,
            RoleSource.ROLE_RECORD,
        )

    def _from_session(
        self,
        actor_id: str,
        session: Optional[AuthSession],
        roster_entry: Optional[DelegateRosterEntry],
    ) -> Optional[Actor]:
        if session is None:
            return None
        role = parse_role_claim(session.role_claim)
        if role is None:
            return None

        if role == Role.OWNER:
            organization_key = actor_id
        else:
            organization_key = session.organization_claim or (
                roster_entry.owner_id if roster_entry else None
            )
            if not organization_key:
                return None

        return self._build(
            actor_id,
            role,
            organization_key,
            self._display_name(session, roster_entry),
            RoleSource.SESSION_CLAIM,
        )

    @staticmethod
    def _display_name(
        session: Optional[AuthSession],
        roster_entry: Optional[DelegateRosterEntry],
    ) -> str:
        if session is not None and session.name_claim:
            return session.name_claim
        if roster_entry is not None:
            return roster_entry.name
        return "Unknown"

    @staticmethod
    def _build(
        actor_id: str,
        role: Role,
        organization_key: str,
        display_name: str,
        source: RoleSource,
    ) -> Optional[Actor]:
        """An Actor, or None if the combination is inconsistent."""
        try:
            return Actor(
                id=actor_id,
                role=role,
                organization_key=organization_key,
                display_name=display_name[:200] or "Unknown",
                role_source=source,
            )
        except ValidationError as e:
            logger.warning(
                "inconsistent_identity",
                actor_id=actor_id,
                role=role.value,
                organization_key=organization_key,
                error=str(e),
            )
            return None

    async def _unresolved(self, actor_id: Optional[str], reason: str) -> None:
        await self._audit.log_identity_unresolved(actor_id, reason)
        raise UnresolvedIdentityError(actor_id, reason)
