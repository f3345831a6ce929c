"""
Base service class for the claims core components.

Provides the engine, configuration and shared helpers used by the claim
ledger, batch aggregator and reconciliation engine.
"""

from datetime import datetime
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.engine import Engine

from nhis_claims.config.models import CoreConfig
from nhis_claims.domain.errors import MissingFieldError, ValidationError


M = TypeVar("M", bound=BaseModel)


def parse_payload(model: type[M], payload: Any) -> M:
    """
    Validate caller input against a pydantic model.

    Args:
        model: Target model class
        payload: Model instance or mapping of field values

    Returns:
        Validated model instance

    Raises:
        MissingFieldError: If a required field is absent
        ValidationError: For any other malformed input
    """
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        errors = e.errors(include_url=False)
        for err in errors:
            if err["type"] == "missing":
                field = ".".join(str(p) for p in err["loc"])
                raise MissingFieldError(field) from e
        first = errors[0]
        location = ".".join(str(p) for p in first["loc"]) or model.__name__
        raise ValidationError(
            f"Invalid {location}: {first['msg']}",
            model=model.__name__,
            errors=[
                {"loc": list(err["loc"]), "type": err["type"], "msg": err["msg"]}
                for err in errors
            ],
        ) from e


class BaseService:
    """
    Common base for the core components.

    Each public method is one unit of work: it opens a transaction, consults
    the access guard and the relevant transition table, applies its writes
    with compare-and-set updates and commits once.
    """

    def __init__(self, engine: Engine, config: Optional[CoreConfig] = None):
        """
        Initialize the service.

        Args:
            engine: SQLAlchemy engine for the claims database
            config: Core configuration (defaults are used when omitted)
        """
        self.engine = engine
        self.config = config or CoreConfig()

    @property
    def places(self) -> int:
        """Decimal places of the configured currency."""
        return self.config.finance.currency_places

    def now(self) -> datetime:
        """Timestamp for audit columns."""
        return datetime.now()
