"""Supabase repository for audit events."""

from dataclasses import dataclass

from supabase import Client

from inspection_capture.services.audit import AuditRepository


@dataclass
class SupabaseAuditRepository(AuditRepository):
    """Supabase-backed audit repository."""

    client: Client

    def create_event(
        self,
        user_id: str,
        action: str,
        report_id: str | None,
        meta: dict[str, object] | None,
    ) -> None:
        """Create an audit_logs row."""
        self.client.table("audit_logs").insert(
            {
                "user_id": user_id,
                "action": action,
                "report_id": report_id,
                "meta": meta,
            }
        ).execute()
