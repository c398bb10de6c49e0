"""Supabase-backed login lock repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from inspection_capture.domain.sessions import SessionLockRecord
from inspection_capture.services.session_guard import SessionLockRepository


@dataclass
class SupabaseSessionLockRepository(SessionLockRepository):
    """Supabase implementation for the per-account login lock row."""

    client: Client

    def upsert_lock(self, account_id: str, session_token: str) -> None:
        """Blindly write the token as the account's current session."""
        self.client.table("user_login_lock").upsert(
            {
                "user_id": account_id,
                "session_id": session_token,
                "updated_at": datetime.now(tz=UTC).isoformat(),
            }
        ).execute()

    def get_lock(self, account_id: str) -> SessionLockRecord | None:
        """Return the lock row for an account, if present."""
        response = (
            self.client.table("user_login_lock")
            .select("user_id, session_id, updated_at")
            .eq("user_id", account_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        if not row.get("session_id"):
            return None
        updated_at = row.get("updated_at")
        return SessionLockRecord(
            account_id=row["user_id"],
            session_token=row["session_id"],
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )
