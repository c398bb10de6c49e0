"""Domain models for locally persisted, unsubmitted work."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from inspection_capture.domain.reports import ChecklistEdits


class DraftPage(StrEnum):
    """Page whose state a draft captures."""

    CREATION = "creation"
    REVIEW = "review"
    ADMINISTRATION = "administration"


@dataclass(frozen=True)
class QueryFilters:
    """Filters applied to the last report query on the review page."""

    process: str = ""
    model: str = ""
    status: str = ""


@dataclass(frozen=True)
class CreationDraftData:
    """New-report form state."""

    serial: str = ""
    selected_model: str = ""
    selected_process: str = ""
    checklist: ChecklistEdits = field(default_factory=ChecklistEdits)


@dataclass(frozen=True)
class ReviewDraftData:
    """Review page state, including an in-progress edit of one report."""

    process_filter: str = ""
    model_filter: str = ""
    status_filter: str = ""
    query_filters: QueryFilters = field(default_factory=QueryFilters)
    has_queried: bool = False
    expanded_report_id: str | None = None
    editing_report_id: str | None = None
    selected_key: str | None = None
    checklist: ChecklistEdits = field(default_factory=ChecklistEdits)


@dataclass(frozen=True)
class AdministrationDraftData:
    """Process administration form state."""

    process_name: str = ""
    process_code: str = ""
    process_model: str = ""
    new_item: str = ""
    insert_after: str = "last"
    editing_index: int | None = None
    items: list[str] = field(default_factory=list)


DraftPayload = CreationDraftData | ReviewDraftData | AdministrationDraftData

PAYLOAD_TYPES: dict[DraftPage, type] = {
    DraftPage.CREATION: CreationDraftData,
    DraftPage.REVIEW: ReviewDraftData,
    DraftPage.ADMINISTRATION: AdministrationDraftData,
}


def page_for(payload: DraftPayload) -> DraftPage:
    """Return the page a payload belongs to."""
    for page, payload_type in PAYLOAD_TYPES.items():
        if isinstance(payload, payload_type):
            return page
    raise TypeError(f"Unsupported draft payload: {type(payload).__name__}")


@dataclass(frozen=True)
class Draft:
    """The single persisted draft for an account."""

    page: DraftPage
    updated_at: datetime
    payload: DraftPayload


@dataclass(frozen=True)
class RestoredDraft:
    """A draft the operator chose to resume, with fresh preview handles."""

    draft: Draft
    previews: dict[str, list[str]]
