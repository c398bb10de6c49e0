"""Pydantic request and response models for the HTTP surface."""

from dataclasses import asdict, fields
from datetime import datetime
from typing import Any, Literal

from pydantic import Base64Bytes, BaseModel, Field, model_validator

from inspection_capture.domain.attachments import Attachment
from inspection_capture.domain.drafts import (
    AdministrationDraftData,
    CreationDraftData,
    QueryFilters,
    RestoredDraft,
    ReviewDraftData,
)
from inspection_capture.domain.reports import ChecklistEdits
from inspection_capture.services.submissions import CommitStatus


class SignInRequest(BaseModel):
    """Credentials typed into the sign-in form."""

    username: str
    password: str


class SignOutRequest(BaseModel):
    """Voluntary logout options."""

    clear_draft: bool = True


class SessionResponse(BaseModel):
    """Current session state and the reason for the last logout."""

    state: str
    username: str = ""
    is_admin: bool = False
    logout_reason: str | None = None
    logout_message: str = ""
    has_pending_draft: bool = False


class AttachmentModel(BaseModel):
    """A photo sent as base64 content."""

    content: Base64Bytes
    filename: str | None = None
    mime_type: str | None = None
    captured_at: datetime | None = None

    def to_attachment(self) -> Attachment:
        return Attachment.restore(
            content=self.content,
            filename=self.filename,
            mime_type=self.mime_type,
            captured_at=self.captured_at,
        )


class ChecklistItemModel(BaseModel):
    """Photos or the not-applicable mark for one checklist item."""

    photos: list[AttachmentModel] = Field(default_factory=list)
    not_applicable: bool = False

    @model_validator(mode="after")
    def _photos_or_mark(self) -> "ChecklistItemModel":
        if self.not_applicable and self.photos:
            raise ValueError("An item cannot hold photos and be marked not applicable")
        return self


def to_checklist(items: dict[str, ChecklistItemModel]) -> ChecklistEdits:
    """Convert request checklist items to domain edits."""
    edits = ChecklistEdits()
    for item, value in items.items():
        if value.not_applicable:
            edits.mark_not_applicable(item)
        else:
            edits.add_photos(item, [photo.to_attachment() for photo in value.photos])
    return edits


class QueryFiltersModel(BaseModel):
    process: str = ""
    model: str = ""
    status: str = ""


class CreationDraftModel(BaseModel):
    """New-report form state."""

    page: Literal["creation"] = "creation"
    serial: str = ""
    selected_model: str = ""
    selected_process: str = ""
    checklist: dict[str, ChecklistItemModel] = Field(default_factory=dict)

    def to_payload(self) -> CreationDraftData:
        return CreationDraftData(
            serial=self.serial,
            selected_model=self.selected_model,
            selected_process=self.selected_process,
            checklist=to_checklist(self.checklist),
        )


class ReviewDraftModel(BaseModel):
    """Review page state."""

    page: Literal["review"] = "review"
    process_filter: str = ""
    model_filter: str = ""
    status_filter: str = ""
    query_filters: QueryFiltersModel = Field(default_factory=QueryFiltersModel)
    has_queried: bool = False
    expanded_report_id: str | None = None
    editing_report_id: str | None = None
    selected_key: str | None = None
    checklist: dict[str, ChecklistItemModel] = Field(default_factory=dict)

    def to_payload(self) -> ReviewDraftData:
        return ReviewDraftData(
            process_filter=self.process_filter,
            model_filter=self.model_filter,
            status_filter=self.status_filter,
            query_filters=QueryFilters(**self.query_filters.model_dump()),
            has_queried=self.has_queried,
            expanded_report_id=self.expanded_report_id,
            editing_report_id=self.editing_report_id,
            selected_key=self.selected_key,
            checklist=to_checklist(self.checklist),
        )


class AdministrationDraftModel(BaseModel):
    """Process administration form state."""

    page: Literal["administration"] = "administration"
    process_name: str = ""
    process_code: str = ""
    process_model: str = ""
    new_item: str = ""
    insert_after: str = "last"
    editing_index: int | None = None
    items: list[str] = Field(default_factory=list)

    def to_payload(self) -> AdministrationDraftData:
        return AdministrationDraftData(
            process_name=self.process_name,
            process_code=self.process_code,
            process_model=self.process_model,
            new_item=self.new_item,
            insert_after=self.insert_after,
            editing_index=self.editing_index,
            items=list(self.items),
        )


class DraftSaveRequest(BaseModel):
    """Latest state of the page the operator is working on."""

    draft: CreationDraftModel | ReviewDraftModel | AdministrationDraftModel = Field(
        discriminator="page"
    )


class DraftResolveRequest(BaseModel):
    accept: bool


class PendingDraftResponse(BaseModel):
    """Summary shown in the resume prompt."""

    page: str
    updated_at: datetime


class RestoredDraftResponse(BaseModel):
    """A resumed draft with previews for every restored photo."""

    page: str
    updated_at: datetime
    form: dict[str, Any]
    not_applicable: list[str] = Field(default_factory=list)
    previews: dict[str, list[str]] = Field(default_factory=dict)
    filenames: dict[str, list[str]] = Field(default_factory=dict)

    @classmethod
    def from_restored(cls, restored: RestoredDraft) -> "RestoredDraftResponse":
        payload = restored.draft.payload
        values: dict[str, Any] = {}
        checklist: ChecklistEdits | None = None
        for payload_field in fields(payload):
            value = getattr(payload, payload_field.name)
            if isinstance(value, ChecklistEdits):
                checklist = value
            elif isinstance(value, QueryFilters):
                values[payload_field.name] = asdict(value)
            else:
                values[payload_field.name] = value
        return cls(
            page=restored.draft.page.value,
            updated_at=restored.draft.updated_at,
            form=values,
            not_applicable=sorted(checklist.not_applicable) if checklist else [],
            previews=restored.previews,
            filenames={
                item: [photo.filename for photo in photos]
                for item, photos in (checklist.attachments if checklist else {}).items()
            },
        )


class NewReportRequest(BaseModel):
    """Confirmation of a new inspection report."""

    serial: str
    model: str
    process: str
    checklist: dict[str, ChecklistItemModel] = Field(default_factory=dict)


class EditReportRequest(BaseModel):
    """Changes to an existing report.

    Items marked not applicable here form the full marked set after the edit.
    """

    checklist: dict[str, ChecklistItemModel] = Field(default_factory=dict)


class CommitStatusResponse(BaseModel):
    """Progress of the current or most recent commit."""

    in_flight: bool
    completed: int
    total: int
    percent: int
    text: str
    report_id: str | None = None
    error: str | None = None

    @classmethod
    def from_status(cls, status: CommitStatus) -> "CommitStatusResponse":
        return cls(
            in_flight=status.in_flight,
            completed=status.completed,
            total=status.total,
            percent=status.percent,
            text=status.text,
            report_id=status.report_id,
            error=status.error,
        )
