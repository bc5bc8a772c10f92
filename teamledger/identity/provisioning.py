"""
Account Provisioning

Writes the explicit role assignments the resolver reads, and manages an
owner's delegate roster.

DESIGN DECISION: Accounts created by an external identity system arrive
without a local role. Instead of assuming "owner" whenever nothing else
matches at request time, provisioning assigns a role once, stores it as
a RoleRecord and writes a ROLE_ASSIGNED audit event. The configured
default (IDENTITY_DEFAULT_ROLE) is only used here, and never when a
roster entry already references the account.
"""

from typing import Optional
from uuid import UUID

from teamledger.audit import AuditLogger
from teamledger.config import IdentitySettings, get_settings
from teamledger.errors import (
    ForbiddenError,
    RecordNotFoundError,
    UnresolvedIdentityError,
    translate_storage_error,
)
from teamledger.identity.resolver import IdentityResolver, parse_role_claim
from teamledger.models.actor import (
    Actor,
    AuthSession,
    DelegateRosterEntry,
    Role,
    RoleRecord,
    RoleSource,
    utc_now,
)
from teamledger.models.audit import AuditEventType
from teamledger.services.storage import (
    DirectoryStoreInterface,
    DuplicateError,
    StorageError,
)


PROVISIONING = "provisioning"


class AccountProvisioner:
    """Role assignment and delegate roster management."""

    def __init__(
        self,
        directory: DirectoryStoreInterface,
        resolver: Optional[IdentityResolver] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[IdentitySettings] = None,
    ):
        self._directory = directory
        self._audit = audit_logger or AuditLogger()
        self._resolver = resolver or IdentityResolver(directory, self._audit)
        self._settings = settings or get_settings().identity

    async def provision(
        self,
        session: AuthSession,
        display_name: Optional[str] = None,
        role: Optional[Role] = None,
    ) -> Actor:
        """
        Give an authenticated account an explicit role.

        Idempotent: an account that already has a role record keeps it.
        A revoked account stays unresolved until an owner links it again.

        Precedence: roster membership (always delegate), then the
        explicit role argument, then the session's role claim, then
        the configured default role.

        Raises:
            ForbiddenError: Asked to make a rostered account an owner
            UnresolvedIdentityError: A delegate with no provisioned owner
        """
        actor_id = session.actor_id
        try:
            existing = await self._directory.get_role_record(actor_id)
            if existing is not None:
                return await self._resolver.resolve(actor_id)
            roster_entry = await self._directory.find_roster_entry(actor_id)
        except StorageError as e:
            raise translate_storage_error(e)

        name = display_name or session.name_claim

        if roster_entry is not None:
            if role == Role.OWNER:
                raise ForbiddenError(
                    f"Account {actor_id} is on the roster of {roster_entry.owner_id}"
                )
            return await self._assign(
                actor_id,
                Role.DELEGATE,
                roster_entry.owner_id,
                name or roster_entry.name,
                assigned_by=PROVISIONING,
                reason=RoleSource.DELEGATE_ROSTER.value,
            )

        if role is not None:
            chosen, reason = role, "explicit"
        elif parse_role_claim(session.role_claim) is not None:
            chosen, reason = parse_role_claim(session.role_claim), RoleSource.SESSION_CLAIM.value
        else:
            chosen, reason = Role(self._settings.default_role), "default_role"

        if chosen == Role.OWNER:
            organization_key = actor_id
        else:
            organization_key = session.organization_claim
            if not organization_key or not await self._is_owner(organization_key):
                await self._audit.log_identity_unresolved(
                    actor_id, "delegate has no provisioned owner"
                )
                raise UnresolvedIdentityError(actor_id, "delegate has no provisioned owner")

        return await self._assign(
            actor_id,
            chosen,
            organization_key,
            name or "Unknown",
            assigned_by=PROVISIONING,
            reason=reason,
        )

    async def add_delegate(
        self,
        owner_id: str,
        name: str,
        email: Optional[str] = None,
        delegate_id: Optional[str] = None,
    ) -> DelegateRosterEntry:
        """Put a delegate on the owner's roster (and link the account if known)."""
        await self._require_owner(owner_id)
        entry = DelegateRosterEntry(owner_id=owner_id, name=name, email=email)
        try:
            entry = await self._directory.save_roster_entry(entry)
        except StorageError as e:
            raise translate_storage_error(e)

        await self._audit.log_delegate_change(
            AuditEventType.DELEGATE_ADDED, owner_id, entry.id, entry.name
        )
        if delegate_id:
            await self.link_delegate_account(owner_id, entry.id, delegate_id)
            entry = entry.model_copy(update={"delegate_id": delegate_id})
        return entry

    async def link_delegate_account(
        self,
        owner_id: str,
        roster_id: UUID,
        delegate_id: str,
    ) -> Actor:
        """
        Attach an account to a roster entry and assign it the delegate role.

        Raises:
            ForbiddenError: Caller is not the entry's owner, or the account
                already belongs to another organization or is an owner
            RecordNotFoundError: No such roster entry
        """
        await self._require_owner(owner_id)
        if delegate_id == owner_id:
            raise ForbiddenError("An owner cannot be their own delegate")

        try:
            entry = await self._directory.get_roster_entry(roster_id)
            if entry is None or entry.owner_id != owner_id:
                raise RecordNotFoundError(f"Roster entry not found: {roster_id}")

            existing = await self._directory.get_role_record(delegate_id)
            if existing is not None and not existing.is_revoked and (
                existing.role == Role.OWNER or existing.organization_key != owner_id
            ):
                raise ForbiddenError(
                    f"Account {delegate_id} already belongs to another organization"
                )

            linked = entry.model_copy(update={"delegate_id": delegate_id})
            await self._directory.save_roster_entry(linked)
        except DuplicateError as e:
            raise ForbiddenError(str(e))
        except StorageError as e:
            raise translate_storage_error(e)

        await self._audit.log_delegate_change(
            AuditEventType.DELEGATE_LINKED, owner_id, entry.id, entry.name, delegate_id
        )
        return await self._assign(
            delegate_id,
            Role.DELEGATE,
            owner_id,
            entry.name,
            assigned_by=owner_id,
            reason=RoleSource.DELEGATE_ROSTER.value,
        )

    async def list_delegates(self, owner_id: str) -> list[DelegateRosterEntry]:
        await self._require_owner(owner_id)
        try:
            return await self._directory.list_roster(owner_id)
        except StorageError as e:
            raise translate_storage_error(e)

    async def remove_delegate(self, owner_id: str, roster_id: UUID) -> bool:
        """
        Take a delegate off the roster and revoke their role.

        The role record is kept with revoked_at set rather than deleted,
        so a session still claiming the delegate role resolves to nothing.
        Records the delegate authored keep their author_display.
        """
        await self._require_owner(owner_id)
        try:
            entry = await self._directory.get_roster_entry(roster_id)
            if entry is None or entry.owner_id != owner_id:
                return False
            await self._directory.delete_roster_entry(roster_id)
            if entry.delegate_id:
                record = await self._directory.get_role_record(entry.delegate_id)
                if record is None or record.organization_key == owner_id:
                    await self._directory.save_role_record(
                        RoleRecord(
                            actor_id=entry.delegate_id,
                            role=Role.DELEGATE,
                            display_name=entry.name,
                            organization_key=owner_id,
                            assigned_by=owner_id,
                            revoked_at=utc_now(),
                        )
                    )
        except StorageError as e:
            raise translate_storage_error(e)

        await self._audit.log_delegate_change(
            AuditEventType.DELEGATE_REMOVED, owner_id, entry.id, entry.name, entry.delegate_id
        )
        return True

    async def _is_owner(self, actor_id: str) -> bool:
        record = await self._directory.get_role_record(actor_id)
        return record is not None and record.role == Role.OWNER and not record.is_revoked

    async def _require_owner(self, owner_id: str) -> Actor:
        actor = await self._resolver.resolve(owner_id)
        if not actor.is_owner:
            raise ForbiddenError(f"{owner_id} is not an owner")
        return actor

    async def _assign(
        self,
        actor_id: str,
        role: Role,
        organization_key: str,
        display_name: str,
        assigned_by: str,
        reason: str,
    ) -> Actor:
        record = RoleRecord(
            actor_id=actor_id,
            role=role,
            display_name=display_name[:200],
            organization_key=organization_key,
            assigned_by=assigned_by,
        )
        try:
            await self._directory.save_role_record(record)
        except StorageError as e:
            raise translate_storage_error(e)

        await self._audit.log_role_assigned(
            actor_id=actor_id,
            role=role.value,
            organization_key=organization_key,
            assigned_by=assigned_by,
            reason=reason,
        )
        return await self._resolver.resolve(actor_id)
