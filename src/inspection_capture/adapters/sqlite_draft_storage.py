"""SQLite-backed local draft storage.

Draft metadata is stored as JSON and attachments as raw BLOB rows next to
it, so photos survive restarts byte for byte without a text encoding step.
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from pathlib import Path

from inspection_capture.domain.attachments import Attachment
from inspection_capture.domain.drafts import (
    PAYLOAD_TYPES,
    Draft,
    DraftPage,
    DraftPayload,
    QueryFilters,
)
from inspection_capture.domain.errors import PersistenceError
from inspection_capture.domain.reports import ChecklistEdits
from inspection_capture.services.drafts import DraftStorage

_SCHEMA = """
CREATE TABLE IF NOT EXISTS drafts (
    key TEXT PRIMARY KEY,
    page TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    payload_json TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS draft_blobs (
    key TEXT NOT NULL,
    item TEXT NOT NULL,
    position INTEGER NOT NULL,
    content BLOB NOT NULL,
    filename TEXT,
    mime_type TEXT,
    captured_at TEXT,
    PRIMARY KEY(key, item, position)
);
"""


@dataclass
class SqliteDraftStorage(DraftStorage):
    """Draft storage in a single SQLite file."""

    path: Path
    _ready: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        self.path = Path(self.path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self._ready:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        try:
            if not self._ready:
                conn.executescript(_SCHEMA)
                self._ready = True
            with conn:
                yield conn
        finally:
            conn.close()

    def get(self, key: str) -> Draft | None:
        """Return the stored draft with its attachments rebuilt."""
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT page, updated_at, payload_json FROM drafts WHERE key = ?",
                    (key,),
                ).fetchone()
                if row is None:
                    return None
                blobs = conn.execute(
                    "SELECT item, content, filename, mime_type, captured_at "
                    "FROM draft_blobs WHERE key = ? ORDER BY item, position",
                    (key,),
                ).fetchall()
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Draft read failed: {exc}") from exc
        try:
            return _row_to_draft(row, blobs)
        except (ValueError, TypeError, KeyError) as exc:
            raise PersistenceError(f"Stored draft {key} is unreadable: {exc}") from exc

    def set(self, key: str, draft: Draft) -> None:
        """Replace the draft and its attachments in one transaction."""
        scalars, attachments = _payload_to_json(draft.payload)
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM draft_blobs WHERE key = ?", (key,))
                conn.execute(
                    "INSERT OR REPLACE INTO drafts "
                    "(key, page, updated_at, payload_json) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        key,
                        draft.page.value,
                        draft.updated_at.isoformat(),
                        json.dumps(scalars, ensure_ascii=False),
                    ),
                )
                conn.executemany(
                    "INSERT INTO draft_blobs "
                    "(key, item, position, content, filename, mime_type, captured_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            key,
                            item,
                            position,
                            sqlite3.Binary(photo.content),
                            photo.filename,
                            photo.mime_type,
                            photo.captured_at.isoformat(),
                        )
                        for item, photos in attachments.items()
                        for position, photo in enumerate(photos)
                    ],
                )
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Draft write failed: {exc}") from exc

    def delete(self, key: str) -> None:
        """Remove the draft and its attachments."""
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM draft_blobs WHERE key = ?", (key,))
                conn.execute("DELETE FROM drafts WHERE key = ?", (key,))
        except (sqlite3.Error, OSError) as exc:
            raise PersistenceError(f"Draft delete failed: {exc}") from exc


def _row_to_draft(row: sqlite3.Row, blobs: list[sqlite3.Row]) -> Draft:
    page = DraftPage(row["page"])
    attachments: dict[str, list[Attachment]] = {}
    for blob in blobs:
        attachments.setdefault(blob["item"], []).append(
            Attachment.restore(
                content=bytes(blob["content"]),
                filename=blob["filename"],
                mime_type=blob["mime_type"],
                captured_at=_parse_time(blob["captured_at"]),
            )
        )
    payload = _payload_from_json(page, json.loads(row["payload_json"]), attachments)
    return Draft(
        page=page,
        updated_at=datetime.fromisoformat(row["updated_at"]),
        payload=payload,
    )


def _payload_to_json(
    payload: DraftPayload,
) -> tuple[dict[str, object], dict[str, list[Attachment]]]:
    scalars: dict[str, object] = {}
    attachments: dict[str, list[Attachment]] = {}
    for payload_field in fields(payload):
        value = getattr(payload, payload_field.name)
        if isinstance(value, ChecklistEdits):
            scalars["not_applicable"] = sorted(value.not_applicable)
            attachments = {
                item: list(photos) for item, photos in value.attachments.items()
            }
        elif isinstance(value, QueryFilters):
            scalars[payload_field.name] = asdict(value)
        else:
            scalars[payload_field.name] = value
    return scalars, attachments


def _payload_from_json(
    page: DraftPage,
    scalars: dict[str, object],
    attachments: dict[str, list[Attachment]],
) -> DraftPayload:
    payload_type = PAYLOAD_TYPES[page]
    known = {payload_field.name for payload_field in fields(payload_type)}
    values = {name: value for name, value in scalars.items() if name in known}
    if "query_filters" in known:
        filters = scalars.get("query_filters") or {}
        values["query_filters"] = QueryFilters(**dict(filters))
    if "checklist" in known:
        values["checklist"] = ChecklistEdits(
            attachments=attachments,
            not_applicable=set(scalars.get("not_applicable") or []),
        )
    return payload_type(**values)


def _parse_time(raw: str | None) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None
