"""Tests for best-effort audit logging."""

import asyncio

from inspection_capture.services.audit import AuditService
from inspection_capture.services.session_guard import SessionGuard
from tests.conftest import InMemoryAuditRepository


def test_record_event_persists(audit_repository: InMemoryAuditRepository) -> None:
    service = AuditService(audit_repository)

    assert service.record_event("acc-alice", "report_create", "R-1")
    assert audit_repository.events == [
        {
            "user_id": "acc-alice",
            "action": "report_create",
            "report_id": "R-1",
            "meta": None,
        }
    ]


def test_failed_audit_write_is_swallowed(
    audit_repository: InMemoryAuditRepository,
) -> None:
    audit_repository.fail = True

    assert AuditService(audit_repository).record_event("acc-alice", "login") is False


def test_failed_audit_write_does_not_block_sign_in(
    session_guard: SessionGuard, audit_repository: InMemoryAuditRepository
) -> None:
    audit_repository.fail = True

    asyncio.run(session_guard.sign_in("alice", "secret"))

    assert session_guard.is_signed_in
