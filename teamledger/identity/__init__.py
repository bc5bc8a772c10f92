"""Identity & role resolution and account provisioning."""

from teamledger.identity.resolver import (
    IdentityResolver,
    author_display,
    parse_role_claim,
)
from teamledger.identity.provisioning import AccountProvisioner

__all__ = [
    "AccountProvisioner",
    "IdentityResolver",
    "author_display",
    "parse_role_claim",
]
