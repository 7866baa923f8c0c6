# Overview: Capability system package.
# Re-exports the role/action table and enforcement helpers.

from .categories import CapabilityCategory
from .definitions import (
    ADMIN,
    OPERATOR,
    CUSTOMER,
    GUEST,
    ROLES,
    STAFF_ROLES,
    CAPABILITY_DEFINITIONS,
    CAPABILITY_TABLE,
    ROLE_CAPABILITIES,
)
from .helpers import (
    Actor,
    SYSTEM_ACTOR,
    can,
    require_capability,
    get_all_capability_codes,
    get_capability_definition,
)

__all__ = [
    "CapabilityCategory",
    "ADMIN",
    "OPERATOR",
    "CUSTOMER",
    "GUEST",
    "ROLES",
    "STAFF_ROLES",
    "CAPABILITY_DEFINITIONS",
    "CAPABILITY_TABLE",
    "ROLE_CAPABILITIES",
    "Actor",
    "SYSTEM_ACTOR",
    "can",
    "require_capability",
    "get_all_capability_codes",
    "get_capability_definition",
]
