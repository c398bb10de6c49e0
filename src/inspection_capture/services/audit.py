"""Audit logging service."""

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class AuditRepository(Protocol):
    """Persistence interface for audit events."""

    def create_event(
        self,
        user_id: str,
        action: str,
        report_id: str | None,
        meta: dict[str, object] | None,
    ) -> None:
        """Create an audit event row."""


@dataclass
class AuditService:
    """Service for recording audit events.

    Audit writes are best-effort: a failed write is logged and never
    interrupts the sign-in or commit that triggered it.
    """

    repository: AuditRepository

    def record_event(
        self,
        user_id: str,
        action: str,
        report_id: str | None = None,
        meta: dict[str, object] | None = None,
    ) -> bool:
        """Persist an audit event and report whether it was written."""
        try:
            self.repository.create_event(
                user_id=user_id,
                action=action,
                report_id=report_id,
                meta=meta,
            )
        except Exception:
            logger.warning("Audit event %s was not recorded", action, exc_info=True)
            return False
        return True
