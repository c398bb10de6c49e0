"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from supabase import create_client

from inspection_capture.adapters.pillow_image_compressor import PillowImageCompressor
from inspection_capture.adapters.sqlite_draft_storage import SqliteDraftStorage
from inspection_capture.adapters.supabase_audit_repository import (
    SupabaseAuditRepository,
)
from inspection_capture.adapters.supabase_auth_gateway import SupabaseAuthGateway
from inspection_capture.adapters.supabase_photo_storage import SupabasePhotoStorage
from inspection_capture.adapters.supabase_report_repository import (
    SupabaseProcessRepository,
    SupabaseReportRepository,
)
from inspection_capture.adapters.supabase_session_lock_repository import (
    SupabaseSessionLockRepository,
)
from inspection_capture.config import Settings, parse_admin_usernames
from inspection_capture.services.audit import AuditService
from inspection_capture.services.drafts import DraftStore
from inspection_capture.services.photos import PhotoLinkService
from inspection_capture.services.session_guard import SessionGuard
from inspection_capture.services.submissions import ReportCommitService
from inspection_capture.services.uploads import UploadPipeline


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    session_guard: SessionGuard
    draft_store: DraftStore
    commit_service: ReportCommitService
    photo_link_service: PhotoLinkService
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_anon_key
    )
    audit_service = AuditService(SupabaseAuditRepository(supabase_client))
    session_guard = SessionGuard(
        auth_gateway=SupabaseAuthGateway(supabase_client),
        lock_repository=SupabaseSessionLockRepository(supabase_client),
        audit_service=audit_service,
        admin_usernames=parse_admin_usernames(resolved_settings.admin_usernames),
        email_domain=resolved_settings.account_email_domain,
        poll_interval_seconds=resolved_settings.lock_poll_interval_seconds,
        grace_seconds=resolved_settings.lock_grace_seconds,
        idle_timeout_seconds=resolved_settings.idle_timeout_seconds,
        idle_check_interval_seconds=resolved_settings.idle_check_interval_seconds,
    )
    draft_store = DraftStore(
        storage=SqliteDraftStorage(Path(resolved_settings.draft_db_path)),
        debounce_seconds=resolved_settings.draft_debounce_seconds,
    )
    session_guard.subscribe(draft_store.handle_logout)
    photo_storage = SupabasePhotoStorage(
        supabase_client, bucket=resolved_settings.photo_bucket
    )
    pipeline = UploadPipeline(
        storage=photo_storage,
        compressor=PillowImageCompressor(
            max_dimension=resolved_settings.image_max_dimension,
            quality=resolved_settings.image_jpeg_quality,
        ),
        concurrency=resolved_settings.upload_concurrency,
    )
    commit_service = ReportCommitService(
        session_guard=session_guard,
        report_repository=SupabaseReportRepository(supabase_client),
        process_repository=SupabaseProcessRepository(supabase_client),
        pipeline=pipeline,
        draft_store=draft_store,
        audit_service=audit_service,
    )
    photo_link_service = PhotoLinkService(
        storage=photo_storage, ttl_seconds=resolved_settings.signed_url_ttl_seconds
    )

    async def close_resources() -> None:
        await commit_service.wait_idle()
        await draft_store.flush()
        await session_guard.stop()

    return AppContainer(
        settings=resolved_settings,
        session_guard=session_guard,
        draft_store=draft_store,
        commit_service=commit_service,
        photo_link_service=photo_link_service,
        close_resources=close_resources,
    )
