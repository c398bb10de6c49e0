"""Supabase-backed report and process repositories."""

import json
from dataclasses import dataclass

from supabase import Client

from inspection_capture.domain.reports import Process, Report, normalize_images_map
from inspection_capture.services.submissions import ProcessRepository, ReportRepository

_REPORT_COLUMNS = "id, serial, model, process, edited_by, images, expected_items"


@dataclass
class SupabaseReportRepository(ReportRepository):
    """Supabase implementation for inspection reports."""

    client: Client

    def list_report_ids(self, prefix: str) -> list[str]:
        """Return ids of reports whose id starts with prefix."""
        response = (
            self.client.table("reports")
            .select("id")
            .like("id", f"{prefix}%")
            .execute()
        )
        return [row["id"] for row in response.data or []]

    def get_report(self, report_id: str) -> Report | None:
        """Return a report by id, if present."""
        response = (
            self.client.table("reports")
            .select(_REPORT_COLUMNS)
            .eq("id", report_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_report(response.data[0])

    def insert_report(self, report: Report) -> None:
        """Insert a new report row in a single write."""
        response = (
            self.client.table("reports")
            .insert(
                {
                    "id": report.id,
                    "serial": report.serial,
                    "model": report.model,
                    "process": report.process,
                    "edited_by": report.edited_by,
                    "images": report.images,
                    "expected_items": json.dumps(report.expected_items),
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create report")

    def update_report(self, report: Report) -> None:
        """Replace images, checklist and editor in a single write."""
        response = (
            self.client.table("reports")
            .update(
                {
                    "images": report.images,
                    "expected_items": json.dumps(report.expected_items),
                    "edited_by": report.edited_by,
                }
            )
            .eq("id", report.id)
            .execute()
        )
        if not response.data:
            raise RuntimeError(f"Failed to update report {report.id}")


@dataclass
class SupabaseProcessRepository(ProcessRepository):
    """Supabase implementation for reading process checklists."""

    client: Client

    def find_process(self, name: str, model: str) -> Process | None:
        """Return the process with this name for a product model."""
        response = (
            self.client.table("processes")
            .select("name, code, model, items")
            .eq("name", name)
            .eq("model", model)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_process(response.data[0])

    def find_by_name(self, name: str) -> Process | None:
        """Return any process with this name."""
        response = (
            self.client.table("processes")
            .select("name, code, model, items")
            .eq("name", name)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_process(response.data[0])


def _row_to_report(row: dict[str, object]) -> Report:
    expected = row.get("expected_items") or []
    if isinstance(expected, str):
        expected = json.loads(expected)
    return Report(
        id=str(row["id"]),
        serial=str(row.get("serial") or ""),
        model=str(row.get("model") or ""),
        process=str(row.get("process") or ""),
        images=normalize_images_map(row.get("images") or {}),
        expected_items=list(expected),
        edited_by=str(row.get("edited_by") or ""),
    )


def _row_to_process(row: dict[str, object]) -> Process:
    items = row.get("items") or []
    if isinstance(items, str):
        items = json.loads(items)
    return Process(
        name=str(row["name"]),
        code=str(row["code"]),
        model=str(row.get("model") or ""),
        items=[str(item) for item in items],
    )
