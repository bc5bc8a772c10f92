"""
Invoice Numbering

Invoice numbers come from one counter per organization: INV-0001,
INV-0002, ... Delegates draw from their owner's counter, so numbers
never collide within an organization.
"""

from typing import Optional

from teamledger.errors import translate_storage_error
from teamledger.identity import IdentityResolver
from teamledger.models.actor import AuthSession
from teamledger.services.storage import DirectoryStoreInterface, StorageError


INVOICE_SEQUENCE = "invoice_number"
INVOICE_PREFIX = "INV"


def format_invoice_number(value: int, prefix: str = INVOICE_PREFIX, width: int = 4) -> str:
    return f"{prefix}-{value:0{width}d}"


class InvoiceNumberer:
    """Hands out the next invoice number of the actor's organization."""

    def __init__(
        self,
        directory: DirectoryStoreInterface,
        resolver: IdentityResolver,
        prefix: str = INVOICE_PREFIX,
    ):
        self._directory = directory
        self._resolver = resolver
        self._prefix = prefix

    async def next_number(
        self,
        actor_id: Optional[str],
        session: Optional[AuthSession] = None,
    ) -> str:
        """
        Reserve and return the next number.

        Raises:
            UnresolvedIdentityError: Actor has no role
            UnavailableError: The counter could not be advanced
        """
        actor = await self._resolver.resolve(actor_id, session)
        try:
            value = await self._directory.next_sequence_value(
                actor.organization_key, INVOICE_SEQUENCE
            )
        except StorageError as e:
            raise translate_storage_error(e)
        return format_invoice_number(value, self._prefix)
