"""
Acting principal supplied by the identity/session provider.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator

from nhis_claims.domain.enums import ActorRole


class Principal(BaseModel):
    """
    An already-verified caller identity.

    Facility principals carry a facility_id (and usually their TPA),
    TPA principals carry a tpa_id, insurer principals carry neither.
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    role: ActorRole
    tpa_id: Optional[int] = None
    facility_id: Optional[int] = None

    @model_validator(mode="after")
    def scope_matches_role(self) -> "Principal":
        """Ensure scoped roles carry their scope id."""
        if self.role == ActorRole.FACILITY and self.facility_id is None:
            raise ValueError("facility principals require facility_id")
        if self.role == ActorRole.TPA and self.tpa_id is None:
            raise ValueError("tpa principals require tpa_id")
        return self

    @property
    def is_insurer(self) -> bool:
        return self.role == ActorRole.INSURER

    @property
    def label(self) -> str:
        """Short identifier used in audit columns and logs."""
        return f"{self.role.value}:{self.user_id}"
