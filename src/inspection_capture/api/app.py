"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status

from inspection_capture.api.models import (
    CommitStatusResponse,
    DraftResolveRequest,
    DraftSaveRequest,
    EditReportRequest,
    NewReportRequest,
    PendingDraftResponse,
    RestoredDraftResponse,
    SessionResponse,
    SignInRequest,
    SignOutRequest,
    to_checklist,
)
from inspection_capture.app_logging import configure_logging
from inspection_capture.containers import AppContainer
from inspection_capture.domain.errors import (
    AuthError,
    AuthErrorReason,
    SubmissionInProgressError,
)
from inspection_capture.domain.sessions import Session
from inspection_capture.services.submissions import (
    EditReportCommand,
    NewReportCommand,
)

_AUTH_STATUS = {
    AuthErrorReason.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorReason.NETWORK_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
    AuthErrorReason.LOCK_NOT_CONFIRMED: status.HTTP_409_CONFLICT,
    AuthErrorReason.SIGN_IN_IN_PROGRESS: status.HTTP_409_CONFLICT,
}


def _container(request: Request) -> AppContainer:
    return request.app.state.container


async def require_session(
    container: AppContainer = Depends(_container),
) -> Session:
    """Reject requests made without a live session."""
    session = container.session_guard.session
    if session is None or not container.session_guard.is_signed_in:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=container.session_guard.logout_message or "Not signed in.",
        )
    return session


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        try:
            await app.state.container.close_resources()
        except Exception:
            logger.exception("Failed to close resources")

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/session/sign-in")
    async def sign_in(
        body: SignInRequest, state: AppContainer = Depends(_container)
    ) -> SessionResponse:
        """Sign in and claim the account lock."""
        try:
            session = await state.session_guard.sign_in(body.username, body.password)
        except AuthError as exc:
            raise HTTPException(
                status_code=_AUTH_STATUS[exc.reason],
                detail={"reason": exc.reason.value, "message": exc.message},
            ) from exc
        await state.draft_store.load(session.account_id)
        return _session_response(state)

    @app.post("/session/sign-out")
    async def sign_out(
        body: SignOutRequest | None = None, state: AppContainer = Depends(_container)
    ) -> SessionResponse:
        """Voluntary logout; clears the local draft unless asked not to."""
        clear_draft = body.clear_draft if body is not None else True
        await state.session_guard.sign_out(clear_draft=clear_draft)
        return _session_response(state)

    @app.post("/session/activity", dependencies=[Depends(require_session)])
    async def record_activity(
        state: AppContainer = Depends(_container),
    ) -> SessionResponse:
        """Stamp a user interaction for the idle timer."""
        state.session_guard.record_activity()
        return _session_response(state)

    @app.post("/session/resume")
    async def resume(state: AppContainer = Depends(_container)) -> SessionResponse:
        """Re-check idleness after the client regains focus."""
        await state.session_guard.resume()
        return _session_response(state)

    @app.get("/session")
    async def current_session(
        state: AppContainer = Depends(_container),
    ) -> SessionResponse:
        """Return session state, including why the last session ended."""
        return _session_response(state)

    @app.get("/drafts/pending", dependencies=[Depends(require_session)])
    async def pending_draft(
        state: AppContainer = Depends(_container),
    ) -> PendingDraftResponse | None:
        """Return the draft awaiting a resume decision, if any."""
        draft = state.draft_store.pending_draft
        if draft is None:
            return None
        return PendingDraftResponse(page=draft.page.value, updated_at=draft.updated_at)

    @app.post("/drafts/resolve", dependencies=[Depends(require_session)])
    async def resolve_draft(
        body: DraftResolveRequest, state: AppContainer = Depends(_container)
    ) -> RestoredDraftResponse | None:
        """Resume or discard the pending draft."""
        restored = await state.draft_store.resolve(body.accept)
        if restored is None:
            return None
        return RestoredDraftResponse.from_restored(restored)

    @app.put("/drafts", status_code=status.HTTP_202_ACCEPTED)
    async def save_draft(
        body: DraftSaveRequest,
        session: Session = Depends(require_session),
        state: AppContainer = Depends(_container),
    ) -> dict[str, str]:
        """Schedule a debounced save of the current page state."""
        state.draft_store.save(session.account_id, body.draft.to_payload())
        return {"status": "scheduled"}

    @app.delete("/drafts", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_draft(
        session: Session = Depends(require_session),
        state: AppContainer = Depends(_container),
    ) -> Response:
        """Discard the stored draft."""
        await state.draft_store.clear(session.account_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post(
        "/reports",
        status_code=status.HTTP_202_ACCEPTED,
        dependencies=[Depends(require_session)],
    )
    async def create_report(
        body: NewReportRequest, state: AppContainer = Depends(_container)
    ) -> CommitStatusResponse:
        """Start a new-report commit; poll /commit/status for the outcome."""
        command = NewReportCommand(
            serial=body.serial,
            model=body.model,
            process=body.process,
            checklist=to_checklist(body.checklist),
        )
        try:
            state.commit_service.submit_new(command)
        except SubmissionInProgressError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail=str(exc)
            ) from exc
        return CommitStatusResponse.from_status(state.commit_service.status())

    @app.put(
        "/reports/{report_id}",
        status_code=status.HTTP_202_ACCEPTED,
        dependencies=[Depends(require_session)],
    )
    async def edit_report(
        report_id: str,
        body: EditReportRequest,
        state: AppContainer = Depends(_container),
    ) -> CommitStatusResponse:
        """Start an edit commit for an existing report."""
        command = EditReportCommand(
            report_id=report_id, checklist=to_checklist(body.checklist)
        )
        try:
            state.commit_service.submit_edit(command)
        except SubmissionInProgressError as exc:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT, detail=str(exc)
            ) from exc
        return CommitStatusResponse.from_status(state.commit_service.status())

    @app.get("/commit/status", dependencies=[Depends(require_session)])
    async def commit_status(
        state: AppContainer = Depends(_container),
    ) -> CommitStatusResponse:
        """Return progress of the current or last commit."""
        return CommitStatusResponse.from_status(state.commit_service.status())

    @app.get("/photos/signed-url", dependencies=[Depends(require_session)])
    async def signed_url(
        path: str, state: AppContainer = Depends(_container)
    ) -> dict[str, str]:
        """Return a short-lived URL for a stored photo path or public URL."""
        url = await state.photo_link_service.signed_url(path)
        if not url:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return {"url": url}

    return app


def _session_response(container: AppContainer) -> SessionResponse:
    guard = container.session_guard
    return SessionResponse(
        state=guard.state.value,
        username=guard.username,
        is_admin=guard.is_admin,
        logout_reason=guard.logout_reason.value if guard.logout_reason else None,
        logout_message=guard.logout_message,
        has_pending_draft=container.draft_store.has_pending_prompt,
    )
