# Overview: Utility functions for capability lookups and enforcement.

from __future__ import annotations

from dataclasses import dataclass

from ..errors import Forbidden
from .definitions import CAPABILITY_DEFINITIONS, CAPABILITY_TABLE, GUEST, ROLES, STAFF_ROLES


@dataclass(frozen=True)
class Actor:
    """Authenticated identity forwarded by the gateway (guest when id is None)."""
    id: str | None
    role: str = GUEST

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role}


SYSTEM_ACTOR = Actor(id="system", role="admin")


def get_all_capability_codes():
    """Get list of all capability codes."""
    return [cap[0] for cap in CAPABILITY_DEFINITIONS]


def get_capability_definition(code):
    """Get full definition for a capability code."""
    for cap in CAPABILITY_DEFINITIONS:
        if cap[0] == code:
            return {
                "code": cap[0],
                "name": cap[1],
                "description": cap[2],
                "category": cap[3],
            }
    return None


def can(role: str, action: str) -> bool:
    """Look up a (role, action) pair; unknown pairs are denied."""
    return CAPABILITY_TABLE.get((role, action), False)


def require_capability(actor: Actor, action: str) -> None:
    if actor.role not in ROLES:
        raise Forbidden(f"Unknown role '{actor.role}'", details={"role": actor.role})
    if not can(actor.role, action):
        raise Forbidden(
            f"Role '{actor.role}' may not perform {action}",
            details={"role": actor.role, "required_capability": action},
        )
