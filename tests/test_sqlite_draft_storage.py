"""Tests for the SQLite draft storage adapter."""

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

import pytest

from inspection_capture.adapters.sqlite_draft_storage import SqliteDraftStorage
from inspection_capture.domain.attachments import Attachment
from inspection_capture.domain.drafts import (
    AdministrationDraftData,
    Draft,
    DraftPage,
    QueryFilters,
    ReviewDraftData,
)
from inspection_capture.domain.errors import PersistenceError
from inspection_capture.domain.reports import ChecklistEdits

STAMP = datetime(2024, 5, 1, 8, 15, tzinfo=UTC)


def test_review_draft_survives_restart_byte_for_byte(tmp_path: Path) -> None:
    content = bytes(range(256)) * 40
    checklist = ChecklistEdits(not_applicable={"C"})
    checklist.add_photos(
        "A",
        [
            Attachment(content, "front.jpg", "image/jpeg", STAMP),
            Attachment(b"\xff\xd8second", "side.jpg", "image/jpeg", STAMP),
        ],
    )
    draft = Draft(
        page=DraftPage.REVIEW,
        updated_at=STAMP,
        payload=ReviewDraftData(
            process_filter="Assembly",
            query_filters=QueryFilters(process="Assembly", model="X1"),
            has_queried=True,
            editing_report_id="ASM-20240501001",
            checklist=checklist,
        ),
    )
    path = tmp_path / "drafts" / "store.sqlite3"
    SqliteDraftStorage(path).set("draft_v1:acc-alice", draft)

    restored = SqliteDraftStorage(path).get("draft_v1:acc-alice")

    assert restored is not None
    assert restored.page is DraftPage.REVIEW
    assert restored.updated_at == STAMP
    payload = restored.payload
    assert isinstance(payload, ReviewDraftData)
    assert payload.query_filters == QueryFilters(process="Assembly", model="X1")
    assert payload.editing_report_id == "ASM-20240501001"
    assert payload.checklist.not_applicable == {"C"}
    photos = payload.checklist.attachments["A"]
    assert [photo.content for photo in photos] == [content, b"\xff\xd8second"]
    assert [photo.filename for photo in photos] == ["front.jpg", "side.jpg"]
    assert photos[0].captured_at == STAMP


def test_set_replaces_previous_attachments(tmp_path: Path) -> None:
    storage = SqliteDraftStorage(tmp_path / "store.sqlite3")
    first = ChecklistEdits()
    first.add_photos("A", [Attachment(b"one"), Attachment(b"two")])
    storage.set(
        "key",
        Draft(DraftPage.REVIEW, STAMP, ReviewDraftData(checklist=first)),
    )
    second = ChecklistEdits()
    second.add_photos("B", [Attachment(b"three")])
    storage.set(
        "key",
        Draft(DraftPage.REVIEW, STAMP, ReviewDraftData(checklist=second)),
    )

    restored = storage.get("key")

    assert restored is not None
    assert list(restored.payload.checklist.attachments) == ["B"]


def test_administration_draft_round_trip_and_delete(tmp_path: Path) -> None:
    storage = SqliteDraftStorage(tmp_path / "store.sqlite3")
    payload = AdministrationDraftData(
        process_name="Paint", process_code="PNT", items=["Primer", "Top coat"]
    )
    storage.set("key", Draft(DraftPage.ADMINISTRATION, STAMP, payload))

    assert storage.get("key").payload == payload

    storage.delete("key")
    assert storage.get("key") is None


def test_missing_metadata_gets_defaults(tmp_path: Path) -> None:
    path = tmp_path / "store.sqlite3"
    storage = SqliteDraftStorage(path)
    storage.set(
        "key",
        Draft(DraftPage.ADMINISTRATION, STAMP, AdministrationDraftData(items=["x"])),
    )
    with sqlite3.connect(path) as conn:
        conn.execute(
            "UPDATE drafts SET page = 'review', payload_json = '{}' WHERE key = 'key'"
        )
        conn.execute(
            "INSERT INTO draft_blobs VALUES ('key', 'A', 0, ?, NULL, NULL, NULL)",
            (b"raw",),
        )

    restored = storage.get("key")

    assert restored is not None
    attachment = restored.payload.checklist.attachments["A"][0]
    assert attachment.content == b"raw"
    assert attachment.filename == "image.jpg"
    assert attachment.mime_type == "application/octet-stream"


def test_corrupt_row_raises_persistence_error(tmp_path: Path) -> None:
    path = tmp_path / "store.sqlite3"
    storage = SqliteDraftStorage(path)
    storage.delete("key")
    with sqlite3.connect(path) as conn:
        conn.execute(
            "INSERT INTO drafts VALUES ('key', 'review', 'not-a-date', 'not json')"
        )

    with pytest.raises(PersistenceError):
        storage.get("key")


def test_unwritable_location_raises_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory")
    storage = SqliteDraftStorage(blocker / "store.sqlite3")

    with pytest.raises(PersistenceError):
        storage.get("key")
