"""
Structured logging configuration for the NHIS claims core.

Uses structlog for structured, contextual logging.
"""

import logging
import sys
from decimal import Decimal
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    include_timestamp: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output logs as JSON
        include_timestamp: If True, include timestamp in logs
    """
    # Set up standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if json_output:
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class ReconciliationLogger:
    """
    Logger for money movements, bound to the acting principal.

    Usage:
        log = ReconciliationLogger(actor)
        log.reimbursement_computed(reimbursement_id, tpa_id, net_amount)
        log.advance_payment_disbursed(payment_id, tpa_id, amount)
    """

    def __init__(self, actor_label: str):
        """
        Initialize the reconciliation logger.

        Args:
            actor_label: Principal label, e.g. "nhis_admin:1"
        """
        self._logger = structlog.get_logger().bind(actor=actor_label)

    def bind(self, **kwargs: Any) -> "ReconciliationLogger":
        """Bind additional context to the logger."""
        self._logger = self._logger.bind(**kwargs)
        return self

    def advance_payment_recorded(self, payment_id: int, tpa_id: int, amount: Decimal, **kwargs: Any) -> None:
        """Log a new advance payment."""
        self._logger.info(
            "advance_payment_recorded",
            payment_id=payment_id,
            tpa_id=tpa_id,
            amount=str(amount),
            **kwargs,
        )

    def advance_payment_transitioned(self, payment_id: int, from_status: str, to_status: str, **kwargs: Any) -> None:
        """Log an advance payment status change."""
        self._logger.info(
            "advance_payment_transitioned",
            payment_id=payment_id,
            from_status=from_status,
            to_status=to_status,
            **kwargs,
        )

    def advance_payment_disbursed(self, payment_id: int, tpa_id: int, amount: Decimal, **kwargs: Any) -> None:
        """Log an advance payment disbursement (money left the insurer)."""
        self._logger.info(
            "advance_payment_disbursed",
            payment_id=payment_id,
            tpa_id=tpa_id,
            amount=str(amount),
            **kwargs,
        )

    def reimbursement_computed(self, reimbursement_id: int, tpa_id: int, net_amount: Decimal, **kwargs: Any) -> None:
        """Log a pending reimbursement."""
        self._logger.info(
            "reimbursement_computed",
            reimbursement_id=reimbursement_id,
            tpa_id=tpa_id,
            net_amount=str(net_amount),
            **kwargs,
        )

    def reimbursement_completed(self, reimbursement_id: int, tpa_id: int, net_amount: Decimal, **kwargs: Any) -> None:
        """Log a completed reimbursement."""
        self._logger.info(
            "reimbursement_completed",
            reimbursement_id=reimbursement_id,
            tpa_id=tpa_id,
            net_amount=str(net_amount),
            **kwargs,
        )

    def race_lost(self, batch_ids: list[int], **kwargs: Any) -> None:
        """Log a reimbursement that lost a batch to a concurrent caller."""
        self._logger.warning("reimbursement_race_lost", batch_ids=batch_ids, **kwargs)
