"""Domain models for inspection reports and checklist item state."""

from dataclasses import dataclass, field
from enum import StrEnum

from inspection_capture.domain.attachments import Attachment

NA_SENTINEL = "__NA__"

ImageValue = list[str] | str


class ChecklistItemState(StrEnum):
    """What an operator has recorded for one checklist item."""

    UNTOUCHED = "untouched"
    HAS_ATTACHMENTS = "has_attachments"
    NOT_APPLICABLE = "not_applicable"


@dataclass(frozen=True)
class Process:
    """A process checklist for one product model."""

    name: str
    code: str
    model: str
    items: list[str]


@dataclass(frozen=True)
class Report:
    """An inspection record as stored remotely."""

    id: str
    serial: str
    model: str
    process: str
    images: dict[str, ImageValue]
    expected_items: list[str]
    edited_by: str = ""


def is_na_value(value: ImageValue | None) -> bool:
    """Return True when a stored image value is the not-applicable marker."""
    return value == NA_SENTINEL


def normalize_image_value(value: ImageValue | None) -> list[str]:
    """Return stored paths for an item, treating the marker as no paths."""
    if not value or value == NA_SENTINEL:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


def normalize_images_map(images: dict[str, ImageValue] | None) -> dict[str, ImageValue]:
    """Drop empty items and coerce single paths to lists, keeping markers."""
    normalized: dict[str, ImageValue] = {}
    for item, value in (images or {}).items():
        if value == NA_SENTINEL:
            normalized[item] = NA_SENTINEL
            continue
        paths = normalize_image_value(value)
        if paths:
            normalized[item] = paths
    return normalized


@dataclass
class ChecklistEdits:
    """Unsaved per-item photos and not-applicable marks.

    An item never holds photos and the not-applicable mark at the same time:
    adding photos clears the mark and marking clears the photos.
    """

    attachments: dict[str, list[Attachment]] = field(default_factory=dict)
    not_applicable: set[str] = field(default_factory=set)

    def add_photos(self, item: str, photos: list[Attachment]) -> None:
        if not photos:
            return
        self.not_applicable.discard(item)
        self.attachments[item] = [*self.attachments.get(item, []), *photos]

    def remove_photo(self, item: str, index: int) -> None:
        photos = list(self.attachments.get(item, []))
        if 0 <= index < len(photos):
            photos.pop(index)
        if photos:
            self.attachments[item] = photos
        else:
            self.attachments.pop(item, None)

    def mark_not_applicable(self, item: str) -> None:
        self.attachments.pop(item, None)
        self.not_applicable.add(item)

    def clear_not_applicable(self, item: str) -> None:
        self.not_applicable.discard(item)

    def state(self, item: str) -> ChecklistItemState:
        if item in self.not_applicable:
            return ChecklistItemState.NOT_APPLICABLE
        if self.attachments.get(item):
            return ChecklistItemState.HAS_ATTACHMENTS
        return ChecklistItemState.UNTOUCHED

    def photo_count(self) -> int:
        return sum(len(photos) for photos in self.attachments.values())

    def is_empty(self) -> bool:
        return not self.not_applicable and self.photo_count() == 0
