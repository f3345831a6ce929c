"""
Access policy guard.

A pure decision over (principal, resource, permission) consulted by every
mutator before it touches state. The guard looks at role, ownership scope and,
for facility principals, whether the resource is still in a facility-owned
status. Whether the transition itself is legal is left to the transition
tables.
"""

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from nhis_claims.domain.batches import Batch, BatchCreate
from nhis_claims.domain.claims import Claim, ClaimCreate
from nhis_claims.domain.enums import ActorRole, BatchStatus, ClaimStatus, Permission
from nhis_claims.domain.errors import AccessDeniedError
from nhis_claims.domain.principal import Principal

logger = structlog.get_logger()


ROLE_PERMISSIONS: dict[ActorRole, frozenset[Permission]] = {
    ActorRole.FACILITY: frozenset({
        Permission.CREATE_CLAIM,
        Permission.EDIT_CLAIM,
        Permission.DELETE_CLAIM,
        Permission.SUBMIT_CLAIM,
        Permission.RESUBMIT_CLAIM,
        Permission.VIEW_CLAIM,
        Permission.CREATE_BATCH,
        Permission.EDIT_BATCH_MEMBERSHIP,
        Permission.SUBMIT_BATCH,
        Permission.DELETE_BATCH,
        Permission.VIEW_BATCH,
    }),
    ActorRole.TPA: frozenset({
        Permission.CREATE_CLAIM,
        Permission.EDIT_CLAIM,
        Permission.DELETE_CLAIM,
        Permission.SUBMIT_CLAIM,
        Permission.REVIEW_CLAIM,
        Permission.DECIDE_CLAIM,
        Permission.MARK_CLAIM_PAID,
        Permission.VIEW_CLAIM,
        Permission.CREATE_BATCH,
        Permission.EDIT_BATCH_MEMBERSHIP,
        Permission.SUBMIT_BATCH,
        Permission.DELETE_BATCH,
        Permission.CLOSE_BATCH,
        Permission.VIEW_BATCH,
        Permission.VIEW_FINANCE,
    }),
    ActorRole.INSURER: frozenset(Permission),
}

# Statuses in which a facility still owns its claims and batches
FACILITY_CLAIM_STATUSES = frozenset({ClaimStatus.DRAFT, ClaimStatus.SUBMITTED})
FACILITY_BATCH_STATUSES = frozenset({BatchStatus.DRAFT})

# Field edits are gated by the claim field-group policy, resubmission starts
# from a rejected claim, and reads are never status-gated.
_FACILITY_STATUS_EXEMPT = frozenset({
    Permission.EDIT_CLAIM,
    Permission.RESUBMIT_CLAIM,
    Permission.VIEW_CLAIM,
    Permission.VIEW_BATCH,
})


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of a policy check. Truthy when allowed."""

    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = AccessDecision(True)


def _deny(reason: str) -> AccessDecision:
    return AccessDecision(False, reason)


def _facility_status_allowed(resource: Any) -> Optional[bool]:
    """None when the resource carries no facility-owned status rules."""
    if isinstance(resource, Claim):
        return resource.status in FACILITY_CLAIM_STATUSES
    if isinstance(resource, Batch):
        return resource.status in FACILITY_BATCH_STATUSES
    return None


def can_transition(
    actor: Principal,
    resource: Any,
    permission: Permission,
) -> AccessDecision:
    """
    Decide whether a principal may perform an operation on a resource.

    Args:
        actor: Acting principal
        resource: Claim, Batch, finance record or creation payload; None for
            operations that are not scoped to a single record
        permission: Operation being attempted

    Returns:
        AccessDecision with the denial reason when not allowed
    """
    if permission not in ROLE_PERMISSIONS[actor.role]:
        return _deny(f"Role {actor.role.value} may not {permission.value}")

    if actor.role == ActorRole.INSURER or resource is None:
        return ALLOW

    if actor.role == ActorRole.TPA:
        if getattr(resource, "tpa_id", None) != actor.tpa_id:
            return _deny(f"Resource belongs to another TPA (tpa {actor.tpa_id})")
        return ALLOW

    # Facility
    if getattr(resource, "facility_id", None) != actor.facility_id:
        return _deny(f"Resource belongs to another facility (facility {actor.facility_id})")
    if isinstance(resource, (ClaimCreate, BatchCreate)) and not isinstance(resource, Batch):
        if actor.tpa_id is not None and resource.tpa_id != actor.tpa_id:
            return _deny(f"Facility is not registered with TPA {resource.tpa_id}")
        return ALLOW
    if permission not in _FACILITY_STATUS_EXEMPT and _facility_status_allowed(resource) is False:
        return _deny(
            f"Facility may not {permission.value} once status is {resource.status.value}"
        )
    return ALLOW


def require(
    actor: Principal,
    resource: Any,
    permission: Permission,
) -> None:
    """
    Enforce can_transition.

    Raises:
        AccessDeniedError: If the decision is a denial
    """
    decision = can_transition(actor, resource, permission)
    if not decision.allowed:
        logger.warning(
            "access_denied",
            actor=actor.label,
            permission=permission.value,
            resource_id=getattr(resource, "id", None),
            reason=decision.reason,
        )
        raise AccessDeniedError(
            decision.reason,
            actor=actor.label,
            permission=permission.value,
            resource_id=getattr(resource, "id", None),
        )
